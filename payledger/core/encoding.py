import binascii


def hex_encode(data: bytes) -> str:
    """Encode bytes as lowercase hex."""
    return binascii.hexlify(data).decode("ascii")


def hex_decode(s: str) -> bytes:
    """Decode a hex string. Odd length or non-hex characters raise ValueError."""
    if not isinstance(s, str):
        raise ValueError(f"Expected hex string, got {type(s).__name__}")
    try:
        return binascii.unhexlify(s.strip())
    except binascii.Error as e:
        raise ValueError(f"Invalid hex string: {e}") from e
