"""
ImgBed Backend — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the whole suite.
How:   Environment variables are set before any `imgbed` import so the
       module-level settings and app never point at real
       infrastructure. Each test gets its own storage root and SQLite ledger.

Fixture Hierarchy (all function-scoped):
    storage_root ─┬─ file_service
                  └─ test_settings ─┬─ auth_service ─ token / auth_headers
                                    └─ app ─ client
    db_engine ─ session_factory ─┬─ db_session
                                 └─ app (get_db_session override)
    png_bytes / rgba_png_bytes / jpeg_bytes / gif_bytes / corrupt_bytes
"""

import os
import tempfile

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup (must run before imgbed is imported)
# ══════════════════════════════════════════════════════════════════════════

TEST_JWT_SECRET = "test-secret-key-for-imgbed-suite-0123456789"

_scratch = tempfile.mkdtemp(prefix="imgbed_test_")
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_scratch}/default.db"
os.environ["STORAGE_ROOT"] = os.path.join(_scratch, "uploads")
os.environ["JWT_SECRET_KEY"] = TEST_JWT_SECRET
os.environ["LOG_LEVEL"] = "WARNING"

from io import BytesIO  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from imgbed.config import Settings  # noqa: E402
from imgbed.database import create_tables, get_db_session  # noqa: E402
from imgbed.services.auth_service import AuthService  # noqa: E402
from imgbed.services.file_service import FileService  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Image Builders
# ══════════════════════════════════════════════════════════════════════════

def make_image_bytes(
    width: int = 100,
    height: int = 50,
    fmt: str = "PNG",
    mode: str = "RGB",
    color=(200, 30, 60),
) -> bytes:
    """Encode a solid-color image with a gradient stripe so pixels differ."""
    img = Image.new(mode, (width, height), color)
    for x in range(width):
        value = (x * 255) // max(width - 1, 1)
        pixel = (value, 255 - value, 128) if mode == "RGB" else (value, 255 - value, 128, 200)
        img.putpixel((x, 0), pixel)
    buffer = BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def make_animated_gif(width: int = 40, height: int = 30, frames: int = 3) -> bytes:
    colors = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]
    images = [
        Image.new("RGB", (width, height), colors[i % len(colors)]) for i in range(frames)
    ]
    buffer = BytesIO()
    images[0].save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=images[1:],
        duration=100,
        loop=0,
    )
    return buffer.getvalue()


def decode(content: bytes) -> Image.Image:
    img = Image.open(BytesIO(content))
    img.load()
    return img


@pytest.fixture
def png_bytes() -> bytes:
    """100x50 opaque RGB PNG."""
    return make_image_bytes(100, 50, "PNG")


@pytest.fixture
def rgba_png_bytes() -> bytes:
    return make_image_bytes(64, 32, "PNG", mode="RGBA", color=(10, 20, 30, 0))


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes(80, 60, "JPEG")


@pytest.fixture
def gif_bytes() -> bytes:
    """Animated 3-frame GIF."""
    return make_animated_gif()


@pytest.fixture
def corrupt_bytes() -> bytes:
    """PNG signature followed by garbage."""
    return b"\x89PNG\r\n\x1a\n" + b"definitely not an image" * 20


# ══════════════════════════════════════════════════════════════════════════
# Storage & Settings
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def file_service(storage_root) -> FileService:
    return FileService(storage_root)


@pytest.fixture
def test_settings(storage_root, tmp_path) -> Settings:
    return Settings(
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path}/ledger.db",
        storage_root=str(storage_root),
        jwt_secret_key=TEST_JWT_SECRET,
        rate_limit_requests=1000,
        log_level="WARNING",
    )


@pytest.fixture
def auth_service(test_settings) -> AuthService:
    return AuthService.from_settings(test_settings)


@pytest.fixture
def token(auth_service) -> str:
    return auth_service.create_access_token("admin")


@pytest.fixture
def auth_headers(token) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ══════════════════════════════════════════════════════════════════════════
# Ledger Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/ledger.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """
    AsyncMock standing in for AsyncSession when a test needs to script
    failures (execute raising, flush failing).
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Application & HTTP Client
# ══════════════════════════════════════════════════════════════════════════

def build_app(settings: Settings, session_factory):
    """A fresh app for `settings` whose sessions come from `session_factory`."""
    from imgbed.main import create_app

    app = create_app(settings)

    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    return app


@pytest.fixture
def app(test_settings, session_factory):
    return build_app(test_settings, session_factory)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Usage:
        async def test_health(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
