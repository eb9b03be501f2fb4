"""
MeshGate — Password Hashing
===========================

bcrypt with a per-password salt. The work factor comes from
settings.bcrypt_rounds (tests lower it to 4).
"""

from typing import Optional

import bcrypt

from meshgate.config import settings


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
