import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from feedloop.core.config import JWT_SECRET, JWT_EXPIRE_MIN

ALGO = "HS256"

# stored as pbkdf2_sha256$<iterations>$<salt b64>$<hash b64>
HASH_SCHEME = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 210_000
SALT_BYTES = 16
DKLEN = 32

MIN_PASSWORD = 8
MAX_PASSWORD = 256


class InvalidToken(Exception):
    pass


def _derive(password: str, salt: bytes, iterations: int, dklen: int = DKLEN) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=dklen)


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def hash_password(password: str) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD:
        raise ValueError(f"Password must be at least {MIN_PASSWORD} characters")
    if len(password) > MAX_PASSWORD:
        raise ValueError("Password too long")

    salt = secrets.token_bytes(SALT_BYTES)
    digest = _derive(password, salt, PBKDF2_ITERATIONS)
    return "$".join([HASH_SCHEME, str(PBKDF2_ITERATIONS), _b64(salt), _b64(digest)])


def verify_password(password: str, stored: str | None) -> bool:
    try:
        scheme, iterations, salt, expected = (stored or "").split("$", 3)
        if scheme != HASH_SCHEME:
            return False
        iterations = int(iterations)
        salt = base64.b64decode(salt)
        expected = base64.b64decode(expected)
    except ValueError:
        return False

    return hmac.compare_digest(_derive(password, salt, iterations, len(expected)), expected)


def create_access_token(user_id: int, expires_minutes: int | None = None) -> str:
    minutes = JWT_EXPIRE_MIN if expires_minutes is None else expires_minutes
    claims = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=ALGO)


def decode_token(token: str) -> int:
    """Return the user id carried by a bearer token or raise InvalidToken."""
    try:
        claims = jwt.decode(token, JWT_SECRET, algorithms=[ALGO])
        return int(claims["sub"])
    except (JWTError, KeyError, TypeError, ValueError) as e:
        raise InvalidToken(str(e)) from e


def new_invitation_token() -> str:
    return secrets.token_urlsafe(32)
