import asyncio
import uuid
from collections import defaultdict
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from focusroom.database import get_db
from focusroom.dependencies import get_current_user
from focusroom.main import app
from focusroom.models import Base
from focusroom.models.user import User
from focusroom.services.auth_service import hash_password

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePubSub:
    """In-memory stand-in for redis.asyncio PubSub."""

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        for channel in channels:
            self.channels.add(channel)
            self._redis._subscribers[channel].append(self)

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels or tuple(self.channels):
            self.channels.discard(channel)
            if self in self._redis._subscribers[channel]:
                self._redis._subscribers[channel].remove(self)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """In-memory Redis mock for testing."""

    def __init__(self):
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._subscribers: dict[str, list[FakePubSub]] = defaultdict(list)
        self.published: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._store[key] = str(value)
        if ex:
            self._ttls[key] = ex

    async def setex(self, key: str, seconds: int, value: str) -> None:
        await self.set(key, value, ex=seconds)

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        subscribers = list(self._subscribers[channel])
        for pubsub in subscribers:
            pubsub._queue.put_nowait({"type": "message", "channel": channel, "data": message})
        return len(subscribers)

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


def make_user(username: str, email: str) -> User:
    return User(
        id=uuid.uuid4(),
        username=username,
        email=email,
        password_hash=hash_password("TestPass123!"),
        total_hours=0.0,
        violations=0,
        sessions_completed=0,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


async def _persist(db_session: AsyncSession, user: User) -> User:
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _persist(db_session, make_user("host", "host@example.com"))


@pytest.fixture
async def second_user(db_session: AsyncSession) -> User:
    return await _persist(db_session, make_user("friend", "friend@example.com"))


@pytest.fixture
async def third_user(db_session: AsyncSession) -> User:
    return await _persist(db_session, make_user("third", "third@example.com"))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def client(db_engine, test_user: User, fake_redis: FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_user():
        return test_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.state.redis = fake_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def act_as():
    """Switch the authenticated user for subsequent requests."""

    def _act_as(user: User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _act_as
