"""
Account registration and token endpoints.
"""

import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import get_db, User
from routers.deps import get_authenticator, get_current_user
from services.auth_service import Authenticator
from utils.exceptions import ConflictError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)
router = APIRouter()


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


def user_to_dict(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email}


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    authenticator: Authenticator = Depends(get_authenticator),
):
    """Create an account and return an access token."""
    email = body.email.strip().lower()
    if "@" not in email:
        raise ValidationError("Please add a valid email")

    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise ConflictError("Email already registered")

    user = User(
        name=body.name.strip(),
        email=email,
        hashed_password=authenticator.hash_password(body.password),
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    await db.commit()
    logger.info(f"User registered: id={user.id}")

    return {
        "token": authenticator.create_access_token(user.id),
        "token_type": "bearer",
        "user": user_to_dict(user),
    }


@router.post("/login")
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    authenticator: Authenticator = Depends(get_authenticator),
):
    """Exchange email and password for an access token."""
    result = await db.execute(select(User).where(User.email == body.email.strip().lower()))
    user = result.scalar_one_or_none()

    if not user or not authenticator.verify_password(body.password, user.hashed_password):
        raise UnauthorizedError("Incorrect email or password")

    return {
        "token": authenticator.create_access_token(user.id),
        "token_type": "bearer",
        "user": user_to_dict(user),
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return user_to_dict(user)
