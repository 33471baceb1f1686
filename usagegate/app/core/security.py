import hashlib
import secrets

PBKDF2_ITERATIONS = 100000


def hash_password(password: str, salt: str | None = None) -> tuple[str, str]:
    """Hash a password using PBKDF2 with SHA256.

    Args:
        password: The raw password to hash
        salt: Optional salt. If not provided, a random salt will be generated.

    Returns:
        A tuple of (salt, hashed_password)
    """
    if salt is None:
        salt = secrets.token_hex(16)

    hashed = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    ).hex()

    return salt, hashed


def verify_password(password: str, salt: str, hashed_password: str) -> bool:
    """Verify a raw password against a stored salt and hash.

    Args:
        password: The raw password to verify
        salt: The salt used for hashing
        hashed_password: The previously hashed password

    Returns:
        True if the password matches, False otherwise
    """
    _, computed_hash = hash_password(password, salt)
    return secrets.compare_digest(computed_hash, hashed_password)


def generate_session_token(nbytes: int = 32) -> str:
    """Generate a new opaque session token.

    Uses `secrets.token_urlsafe()`, so the token is URL-safe, unguessable and
    always the same length for a given nbytes.
    """
    return secrets.token_urlsafe(nbytes)
