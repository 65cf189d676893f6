"""
Environment configuration.

LEDGER_DB_PATH    SQLite database used by the CLI (default ~/.payledger/payledger.db)
LEDGER_CALLER     identity the CLI acts as when --caller is not given
LEDGER_LOG_LEVEL  DEBUG | INFO | WARNING | ERROR (default WARNING)
LEDGER_LOG_JSON   1/true/yes for structured JSON log lines
"""

import os
from pathlib import Path
from typing import Optional


def get_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. --db flag
    2. LEDGER_DB_PATH environment variable
    3. Default: ~/.payledger/payledger.db
    """
    if db_flag:
        path = db_flag.resolve()
    else:
        env_path = os.environ.get("LEDGER_DB_PATH")
        if env_path:
            path = Path(env_path).resolve()
        else:
            path = Path.home() / ".payledger" / "payledger.db"

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_caller(caller_flag: Optional[str] = None) -> Optional[str]:
    """--caller flag wins over LEDGER_CALLER. Returns None when neither is set."""
    if caller_flag:
        return caller_flag
    return os.environ.get("LEDGER_CALLER") or None


def get_log_level() -> str:
    return os.environ.get("LEDGER_LOG_LEVEL", "WARNING").upper()


def use_json_logs() -> bool:
    return os.environ.get("LEDGER_LOG_JSON", "").lower() in ("1", "true", "yes")
