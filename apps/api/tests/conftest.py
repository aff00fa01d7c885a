import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from unittest.mock import patch

from database import Base, get_db
from main import app
from models.user import User
from routers import rate_limit
from services.passwords import hash_password
from services.session_token import create_session_token
from services.site_settings import seed_default_settings


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def upload_dir(tmp_path):
    directory = tmp_path / "uploads"
    directory.mkdir()
    with patch("config.settings.UPLOAD_DIR", str(directory)):
        yield directory


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "catalog.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with maker() as session:
        await seed_default_settings(session)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker, upload_dir):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    # Settings cache lives on app state; start every test from a cold cache.
    app.state.site_settings_cache = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.state.site_settings_cache = None


@pytest.fixture
def create_user(session_maker):
    """Factory: insert an account with the given role and return (user_id, auth headers)."""

    async def _create(username: str, role: str = "user", password: str = "secret-pass"):
        async with session_maker() as session:
            user = User(
                username=username,
                email=f"{username}@example.com",
                password_hash=hash_password(password),
                role=role,
            )
            session.add(user)
            await session.commit()
            user_id = user.id
        token = create_session_token(user_id, role)["token"]
        return user_id, {"Authorization": f"Bearer {token}"}

    return _create
