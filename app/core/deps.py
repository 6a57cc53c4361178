import asyncio
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from supabase_auth import UserResponse

from app.core.database import get_session, get_sessionmaker
from app.core.notifications import NotificationDispatcher
from app.core.realtime import RealtimeHub, hub
from app.core.supabase_client import get_supabase
from app.models.user import User
from app.schemas.user import UserRole, UserStatus

security = HTTPBearer(
    scheme_name="Access Token",
)


class CurrentUser(BaseModel):
    id: UUID
    email: str
    role: UserRole
    status: UserStatus

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_approved(self) -> bool:
        return self.status == UserStatus.APPROVED


async def resolve_token(token: str, session: AsyncSession) -> CurrentUser:
    """Verify a Supabase access token and load the matching portal user."""
    try:
        user_response: UserResponse = await asyncio.to_thread(
            get_supabase().auth.get_user, token
        )
    except Exception as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    if not user_response or not user_response.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )

    user = await session.get(User, UUID(user_response.user.id))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account not registered",
        )

    return CurrentUser(id=user.id, email=user.email, role=user.role, status=user.status)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    return await resolve_token(credentials.credentials, session)


AuthenticatedUser = Annotated[CurrentUser, Depends(get_current_user)]


async def get_admin_user(user: AuthenticatedUser) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


AdminUser = Annotated[CurrentUser, Depends(get_admin_user)]

Sessions = Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)]
Session = Annotated[AsyncSession, Depends(get_session)]


def get_notifier(sessions: Sessions) -> NotificationDispatcher:
    return NotificationDispatcher(sessions)


Notifier = Annotated[NotificationDispatcher, Depends(get_notifier)]


def get_realtime_hub() -> RealtimeHub:
    return hub


async def get_websocket_user(sessions: Sessions, token: str = Query(...)) -> CurrentUser | None:
    """Websocket variant of ``get_current_user``: the token rides in the query string."""
    async with sessions() as session:
        try:
            return await resolve_token(token, session)
        except HTTPException:
            return None


WebSocketUser = Annotated[CurrentUser | None, Depends(get_websocket_user)]
