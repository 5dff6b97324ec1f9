from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Literal
from datetime import datetime
from sqlalchemy import select, or_
from sqlalchemy.orm import Session
import logging
from examhub.core.auth import TokenData, create_token, get_current_user, hash_password, verify_password
from examhub.core.config import settings
from examhub.core.database import get_db
from examhub.core.errors import InvalidState, NotFound
from examhub.models.orm import User

logger = logging.getLogger(__name__)

router = APIRouter()

class RegisterIn(BaseModel):
    username: str = Field(min_length=3, max_length=100)
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    password: str = Field(min_length=settings.PASSWORD_MIN_LENGTH)
    role: Literal["teacher", "student"] = "student"

class LoginIn(BaseModel):
    username: str
    password: str

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    username: str
    email: str
    name: str
    role: str
    created_at: datetime | None = None

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str

@router.post("/register", response_model=UserOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    taken = db.scalar(select(User.id).where(or_(User.username == payload.username, User.email == payload.email)))
    if taken is not None:
        raise InvalidState("Username or email already registered")
    user = User(username=payload.username, email=payload.email, name=payload.name,
                password_hash=hash_password(payload.password), role=payload.role)
    db.add(user); db.commit()
    logger.info(f"Registered {payload.role} {user.id} ({payload.username})")
    return user

@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.username == payload.username))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    return TokenOut(access_token=create_token(user.id, user.role), role=user.role)

@router.get("/me", response_model=UserOut)
def me(user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    row = db.get(User, user.user_id)
    if row is None:
        raise NotFound("User not found")
    return row
