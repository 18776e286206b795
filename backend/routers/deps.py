"""
Shared endpoint dependencies: services from app state and the current user.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from engine.job_queue import JobQueue
from models import get_db, User
from services.auth_service import Authenticator
from services.call_store import CallStore
from utils.exceptions import UnauthorizedError

# auto_error=False so missing tokens go through UnauthorizedError like every other auth failure
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


def get_call_store(request: Request) -> CallStore:
    return request.app.state.call_store


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    authenticator: Authenticator = Depends(get_authenticator),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user."""
    if not token:
        raise UnauthorizedError("Not authorized, no token")

    user_id = authenticator.authenticate(token)
    user = await db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("Not authorized, user not found")
    return user
