"""Password hashing for credential users.

Stored form is ``<iterations>$<salt hex>$<digest hex>`` (PBKDF2-HMAC-SHA256),
so the work factor can be raised without invalidating existing rows.
"""

import hashlib
import hmac
import os

HASH_ITERATIONS = 120_000
SALT_BYTES = 16


def hash_password(password: str, *, iterations: int = HASH_ITERATIONS) -> str:
    salt = os.urandom(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored_hash: str | None) -> bool:
    # Google-linked users have an empty hash.
    parts = (stored_hash or "").split("$")
    if len(parts) != 3 or not parts[0].isdigit():
        return False
    iterations, salt_hex, digest_hex = parts
    try:
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, int(iterations))
    return hmac.compare_digest(candidate.hex(), digest_hex)
