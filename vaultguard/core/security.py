"""Password hashing (bcrypt) and bearer tokens (HS256 JWT, `sub` = user id)."""
from datetime import timedelta

import bcrypt
from jose import JWTError, jwt

from .config import settings
from .timeutil import utcnow

ALGORITHM = "HS256"
TOKEN_ISSUER = "vaultguard"
# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX = 72


def _secret_bytes(secret: str) -> bytes:
    return secret.encode("utf-8")[:_BCRYPT_MAX]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_secret_bytes(password), bcrypt.gensalt()).decode("ascii")


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_secret_bytes(plain), hashed.encode("ascii"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: int | str, expires_minutes: int | None = None) -> str:
    issued = utcnow()
    ttl = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    claims = {"sub": str(user_id), "iss": TOKEN_ISSUER, "iat": issued, "exp": issued + ttl}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Claims of a valid, unexpired token issued here; None otherwise."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM], issuer=TOKEN_ISSUER)
    except JWTError:
        return None
