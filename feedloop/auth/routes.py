from pydantic import BaseModel, EmailStr, Field
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from feedloop.db.session import get_db
from feedloop.users.models import User
from feedloop.core.ratelimit import AUTH_LIMIT, limiter
from feedloop.core.security import hash_password, verify_password, create_access_token
from feedloop.invitations.lifecycle import accept_pending_invitations

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterBody(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=201)
@limiter.limit(AUTH_LIMIT)
def register(request: Request, body: RegisterBody, db: Session = Depends(get_db)):
    email = body.email.lower().strip()

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already exists")

    try:
        pwd_hash = hash_password(body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user = User(
        email=email,
        password_hash=pwd_hash,
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    joined = accept_pending_invitations(db, user)
    return {"access_token": create_access_token(user.id), "user_id": user.id, "projects_joined": joined}


@router.post("/login")
@limiter.limit(AUTH_LIMIT)
def login(request: Request, body: LoginBody, db: Session = Depends(get_db)):
    email = body.email.lower().strip()

    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return {"access_token": create_access_token(user.id)}
