"""Share code generation.

Codes are 6 characters from A-Z0-9 (36^6 combinations). Uniqueness is not
checked here; the record store retries on collision.
"""
import secrets
import string

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


def generate_code() -> str:
    """Return a random share code, each character drawn independently."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def is_valid_code(code: str) -> bool:
    return len(code) == CODE_LENGTH and all(c in CODE_ALPHABET for c in code)
