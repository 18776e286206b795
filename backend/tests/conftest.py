import asyncio
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from config import settings
from main import app, attach_services
from models import Call, TranscriptionStatus, User, get_db
from models.database import create_engine, create_session_factory, init_db
from engine.job_queue import JobQueue
from services.auth_service import Authenticator
from services.call_store import CallStore
from services.transcription_service import StaticTranscriber


class FakeClock:
    """Manually advanced clock for queue eligibility tests."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += timedelta(milliseconds=milliseconds)


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02):
    """Poll an async predicate until it returns truthy."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = await predicate()
        if result:
            return result
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


# --- Database Setup ---
# Each test gets its own SQLite file so several connections can share it
@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(session_factory, clock) -> JobQueue:
    return JobQueue(
        session_factory,
        max_attempts=3,
        backoff_ms=2000,
        keep_completed=None,
        keep_failed=None,
        clock=clock,
    )


@pytest.fixture
def store(session_factory) -> CallStore:
    return CallStore(session_factory)


@pytest.fixture
def transcriber() -> StaticTranscriber:
    return StaticTranscriber(text="Transcript of call {call_id}.")


@pytest_asyncio.fixture
async def owner(session_factory) -> User:
    async with session_factory() as session:
        user = User(
            name="Owner",
            email="owner@example.com",
            hashed_password=Authenticator.hash_password("123456"),
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest.fixture
def make_call(session_factory, owner):
    """Factory inserting a call directly, bypassing the API."""

    async def _make_call(
        title: str = "Weekly sync",
        status: TranscriptionStatus = TranscriptionStatus.PENDING,
        **fields,
    ) -> str:
        async with session_factory() as session:
            call = Call(
                title=title,
                participants=fields.pop("participants", [{"name": "John Doe", "email": "john@example.com", "role": "host"}]),
                transcription_status=status,
                created_by=owner.id,
                **fields,
            )
            session.add(call)
            await session.commit()
            return call.id

    return _make_call


# --- Client Setup ---
@pytest_asyncio.fixture(scope="function")
async def client(session_factory, transcriber, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    monkeypatch.setattr(settings, "transcription_submit_delay_ms", 0)
    attach_services(app, session_factory, transcriber=transcriber)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def register(client: AsyncClient, email: str = "caller@example.com") -> dict:
    """Register a user and return Authorization headers for it."""
    response = await client.post(
        "/api/auth/register",
        json={"name": "Test User", "email": email, "password": "123456"},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest_asyncio.fixture
async def auth_headers(client) -> dict:
    return await register(client)


CALL_PAYLOAD = {
    "title": "Test Meeting",
    "participants": [{"name": "John Doe", "email": "John@Example.com", "role": "host"}],
    "notes": "Test meeting notes",
}
