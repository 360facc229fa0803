"""
Utility functions for the chat service.
"""

import hmac
import hashlib
import logging
import secrets

logger = logging.getLogger(__name__)

PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 260_000


def hash_password(password: str, *, iterations: int = PASSWORD_ITERATIONS) -> str:
    """
    Hash a password with PBKDF2-HMAC-SHA256 and a random salt.

    Returns:
        "pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>"
    """
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{PASSWORD_ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """
    Verify a password against a value produced by hash_password.

    Args:
        password: Plain-text password from the login form
        encoded: Stored hash

    Returns:
        True if the password matches, False otherwise (including malformed hashes)
    """
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
        if algorithm != PASSWORD_ALGORITHM:
            logger.warning(f"Unsupported password hash algorithm: {algorithm}")
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iterations),
        )
    except ValueError:
        logger.warning("Malformed password hash")
        return False

    # Use constant-time comparison to prevent timing attacks
    return hmac.compare_digest(digest.hex(), digest_hex)
