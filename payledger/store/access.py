from dataclasses import dataclass, replace
from typing import Optional

from payledger.core.errors import Unauthorized


def normalize_caller(identity: Optional[str]) -> Optional[str]:
    """Empty string means unrestricted, same as None."""
    return identity if identity else None


@dataclass(frozen=True)
class AccessPolicy:
    """
    Owner is bound once, at construction, to the creating identity and never
    changes. The owner may rotate the single allowed caller; when no allowed
    caller is set every identity may write.
    """
    owner_id: str
    allowed_caller: Optional[str] = None

    @classmethod
    def construct(cls, creator: str, allowed_caller: Optional[str] = None) -> "AccessPolicy":
        if not creator:
            raise ValueError("creator identity is required")
        return cls(owner_id=creator, allowed_caller=normalize_caller(allowed_caller))

    @property
    def is_restricted(self) -> bool:
        return self.allowed_caller is not None

    def check_caller(self, caller: str, action: str = "write to the ledger") -> None:
        if self.allowed_caller is not None and caller != self.allowed_caller:
            raise Unauthorized(f"Only the allowed caller can {action}")

    def rotate(self, caller: str, new_allowed: Optional[str]) -> "AccessPolicy":
        if caller != self.owner_id:
            raise Unauthorized("Only owner can set allowed caller")
        return replace(self, allowed_caller=normalize_caller(new_allowed))

    def to_dict(self) -> dict:
        return {"owner_id": self.owner_id, "allowed_caller": self.allowed_caller}

    @classmethod
    def from_dict(cls, d: dict) -> "AccessPolicy":
        return cls(owner_id=d["owner_id"], allowed_caller=normalize_caller(d.get("allowed_caller")))
