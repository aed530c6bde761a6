# feedloop/auth/deps.py

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from feedloop.db.session import get_db
from feedloop.core.security import decode_token, InvalidToken
from feedloop.users.models import User

bearer = HTTPBearer(auto_error=False)


def bearer_token(creds: HTTPAuthorizationCredentials | None) -> str | None:
    token = (creds.credentials or "").strip() if creds else ""
    return token or None


def user_for_token(db: Session, token: str) -> User:
    try:
        user_id = decode_token(token)
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    token = bearer_token(creds)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_for_token(db, token)
