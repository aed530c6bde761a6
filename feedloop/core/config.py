# feedloop/core/config.py

from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv


def _load_env():
    """
    Load .env from the project root (works locally + in containers where env vars exist anyway).
    We don't override existing OS env vars.
    """
    # This file: feedloop/core/config.py  -> parents[2] = project root
    root_dir = Path(__file__).resolve().parents[2]
    env_path = root_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    else:
        # fallback: try current working directory
        load_dotenv(override=False)


_load_env()


def _clean(s: str | None) -> str:
    s = (s or "").strip()
    # remove wrapping quotes if present
    if len(s) >= 2 and ((s[0] == s[-1] == '"') or (s[0] == s[-1] == "'")):
        s = s[1:-1].strip()
    return s


def _int(name: str, default: int) -> int:
    try:
        return int(_clean(os.getenv(name)) or str(default))
    except ValueError:
        return default


DATABASE_URL = _clean(os.getenv("DATABASE_URL")) or "sqlite:///./feedloop.db"

# Helpful local fallback: if user kept docker hostname "db", replace with localhost
if DATABASE_URL.startswith("postgresql://") and "@db:" in DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("@db:", "@localhost:")

JWT_SECRET = _clean(os.getenv("JWT_SECRET")) or "dev-secret"
JWT_EXPIRE_MIN = _int("JWT_EXPIRE_MIN", 60)

FRONTEND_ORIGIN = _clean(os.getenv("FRONTEND_ORIGIN")) or "*"
PUBLIC_BASE_URL = _clean(os.getenv("PUBLIC_BASE_URL")).rstrip("/")

LOG_LEVEL = (_clean(os.getenv("LOG_LEVEL")) or "INFO").upper()

# invitations
INVITATION_TTL_DAYS = _int("INVITATION_TTL_DAYS", 7)
EXPIRED_INVITATION_GRACE_DAYS = _int("EXPIRED_INVITATION_GRACE_DAYS", 30)

# uploads
MAX_UPLOAD_BYTES = _int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)
MAX_UPLOAD_FILES = _int("MAX_UPLOAD_FILES", 5)

# storage: "local" writes under STORAGE_DIR, "s3" talks to S3 / MinIO
STORAGE_BACKEND = (_clean(os.getenv("STORAGE_BACKEND")) or "local").lower()
STORAGE_DIR = _clean(os.getenv("STORAGE_DIR")) or "./storage"
S3_BUCKET = _clean(os.getenv("S3_BUCKET")) or "feedloop-attachments"
S3_ENDPOINT_URL = _clean(os.getenv("S3_ENDPOINT_URL")) or None
S3_REGION = _clean(os.getenv("S3_REGION")) or "us-east-1"

# widget
WIDGET_RATE_LIMIT = _clean(os.getenv("WIDGET_RATE_LIMIT")) or "30/minute"

# transactional email (Resend); invitations skip email when the key is unset
RESEND_API_KEY = _clean(os.getenv("RESEND_API_KEY"))
RESEND_FROM_EMAIL = _clean(os.getenv("RESEND_FROM_EMAIL")) or "Feedloop <onboarding@resend.dev>"
