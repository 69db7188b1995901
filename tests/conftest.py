"""
CampusLink - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
from faker import Faker
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set testing environment before the app reads its settings
os.environ["DEBUG"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_campuslink.db"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["SMTP_USERNAME"] = ""
os.environ["SMTP_PASSWORD"] = ""

from campuslink.database import Base, get_db  # noqa: E402
from campuslink.main import app  # noqa: E402
from campuslink.models.project_post import ProjectPost  # noqa: E402
from campuslink.models.user import User, UserRole  # noqa: E402
from campuslink.routers.auth import create_access_token  # noqa: E402
from campuslink.services.team_formation import TeamFormationEngine, get_team_engine  # noqa: E402

fake = Faker()

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable ``now`` for the team-formation engine."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def team_engine(clock) -> TeamFormationEngine:
    return TeamFormationEngine(clock=clock, cooldown=timedelta(hours=1))


@pytest.fixture
async def client(session_factory, team_engine) -> AsyncGenerator[AsyncClient, None]:
    """Test client with its own session per request, like production."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_team_engine] = lambda: team_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Factory creating a persisted user."""
    async def _make_user(role: UserRole = UserRole.STUDENT) -> User:
        async with session_factory() as session:
            user = User(
                email=fake.unique.email(),
                full_name=fake.name(),
                role=role,
                institution="State University",
                is_verified=True,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_project(session_factory):
    """Factory creating a project post owned by ``creator``."""
    async def _make_project(creator: User, team_size: int = 2) -> ProjectPost:
        async with session_factory() as session:
            project = ProjectPost(
                author_id=creator.id,
                content="Looking for teammates",
                title=fake.catch_phrase(),
                description="Looking for teammates",
                skills_required_json='["Python"]',
                estimated_duration="4 weeks",
                team_size=team_size,
                members=[],
                join_requests=[],
                tasks=[],
            )
            session.add(project)
            await session.commit()
            return project

    return _make_project


@pytest.fixture
def auth_headers():
    """Build Bearer headers for a user."""
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
