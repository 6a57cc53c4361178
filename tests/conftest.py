import os
import tempfile
import uuid
from uuid import UUID

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.gettempdir(), "alumni_connect_test.db"
)
os.environ.pop("VAPID_PRIVATE_KEY", None)

import pytest
from fastapi import HTTPException, Query, Request, status
from httpx import ASGITransport, AsyncClient

from app.core.database import create_engine_for, get_sessionmaker, init_db, make_sessionmaker
from app.core.deps import (
    CurrentUser,
    Sessions,
    get_current_user,
    get_realtime_hub,
    get_websocket_user,
)
from app.core.notifications import NotificationDispatcher
from app.core.realtime import RealtimeHub
from app.main import app
from app.models.user import User
from app.schemas.mentoring import MentorshipDecision, MentorshipRequestType
from app.schemas.user import UserRole, UserStatus
from app.services.conversations import ConversationService
from app.services.mentorship import MentorshipEngine
from app.services.moderation import ModerationEngine
from app.services.reports import ReportService

TEST_USER_HEADER = "X-Test-User"


def as_user(user: CurrentUser) -> dict:
    return {TEST_USER_HEADER: str(user.id)}


async def _load_principal(sessions, raw_id: str | None) -> CurrentUser | None:
    try:
        user_id = UUID(raw_id)
    except (TypeError, ValueError):
        return None
    async with sessions() as session:
        user = await session.get(User, user_id)
    if user is None:
        return None
    return CurrentUser(id=user.id, email=user.email, role=user.role, status=user.status)


async def _override_get_current_user(request: Request, sessions: Sessions) -> CurrentUser:
    principal = await _load_principal(sessions, request.headers.get(TEST_USER_HEADER))
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return principal


async def _override_get_websocket_user(
    sessions: Sessions, token: str = Query(...)
) -> CurrentUser | None:
    return await _load_principal(sessions, token)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def notifier(sessions):
    return NotificationDispatcher(sessions)


@pytest.fixture
def moderation(sessions):
    return ModerationEngine(sessions)


@pytest.fixture
def conversations(sessions, notifier, hub):
    return ConversationService(sessions, notifier, hub)


@pytest.fixture
def mentorship(sessions, notifier, moderation):
    return MentorshipEngine(sessions, notifier, moderation)


@pytest.fixture
def reports(sessions):
    return ReportService(sessions)


@pytest.fixture
def overrides(sessions, hub):
    app.dependency_overrides[get_sessionmaker] = lambda: sessions
    app.dependency_overrides[get_realtime_hub] = lambda: hub
    app.dependency_overrides[get_current_user] = _override_get_current_user
    app.dependency_overrides[get_websocket_user] = _override_get_websocket_user
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(overrides):
    transport = ASGITransport(app=overrides)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(sessions):
    async def _make_user(
        role: UserRole, status: UserStatus = UserStatus.APPROVED, name: str | None = None
    ) -> CurrentUser:
        suffix = uuid.uuid4().hex[:8]
        async with sessions() as session, session.begin():
            user = User(
                email=f"{role.value}-{suffix}@example.com",
                name=name or f"{role.value.title()} {suffix}",
                role=role,
                status=status,
            )
            session.add(user)
        return CurrentUser(id=user.id, email=user.email, role=user.role, status=user.status)

    return _make_user


@pytest.fixture
async def student(make_user):
    return await make_user(UserRole.STUDENT, name="Sam Student")


@pytest.fixture
async def alumni(make_user):
    return await make_user(UserRole.ALUMNI, name="Alex Alumni")


@pytest.fixture
async def admin(make_user):
    return await make_user(UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
async def accepted_request(mentorship, student, alumni):
    """Student -> alumni mentorship that the alumni already accepted."""
    request = await mentorship.create_request(
        student, alumni.id, MentorshipRequestType.RESUME_REVIEW, "Need help with my resume"
    )
    return await mentorship.respond(request.id, alumni, MentorshipDecision.ACCEPTED)
