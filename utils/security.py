"""Password hashing and PhilSys number protection."""

import hashlib

import bcrypt

from utils.patterns import NON_DIGITS

DEFAULT_BCRYPT_ROUNDS = 12


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check *password* against a stored bcrypt hash; False for a missing hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in the table
        return False


def philsys_last4(card_number: str) -> str:
    return NON_DIGITS.sub("", card_number)[-4:]


def philsys_hash(card_number: str) -> str:
    """SHA-256 hex digest of the 12 PhilSys digits (separators ignored)."""
    digits = NON_DIGITS.sub("", card_number)
    return hashlib.sha256(digits.encode("ascii")).hexdigest()
