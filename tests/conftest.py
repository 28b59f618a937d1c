"""Pytest configuration and fixtures."""

from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from doctor_media.db.session import Database, get_db
from doctor_media.main import app
from doctor_media.middleware.rate_limit import limiter
from doctor_media.services.messaging import messaging_service

# In-memory SQLite, one database per test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Create a fresh test database."""
    db = Database(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    ).open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with database.session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(
    database: Database, db_session: AsyncSession
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client sharing the test session."""

    async def override_get_db():
        yield db_session

    app.state.db = database
    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.db


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def sent_codes(monkeypatch) -> list[dict]:
    """Capture consent OTPs instead of sending them."""
    sent = []

    async def fake_send_otp(channel, destination, code, doctor_name):
        sent.append({"channel": channel, "destination": destination, "code": code})
        return "masked"

    monkeypatch.setattr(messaging_service, "send_otp", fake_send_otp)
    return sent


@pytest_asyncio.fixture
async def make_headers(db_session: AsyncSession) -> Callable:
    """Factory creating an API key with the given scopes."""
    from doctor_media.auth.security import create_api_key

    async def _make(*scopes: str, name: str = "Test Key") -> dict:
        _, full_key = await create_api_key(
            db_session,
            name=name,
            owner="test",
            scopes=list(scopes),
        )
        await db_session.commit()
        return {"Authorization": f"Bearer {full_key}"}

    return _make


@pytest_asyncio.fixture
async def auth_headers(make_headers) -> dict:
    """Headers for a key holding every scope."""
    return await make_headers("intake", "review", "admin")


@pytest.fixture
def submission_payload() -> dict:
    return {
        "doctor_name": "Dr. Asha Rao",
        "doctor_email": "asha.rao@example.com",
        "doctor_phone": "98765 43210",
        "doctor_specialization": "Cardiology",
        "doctor_city": "Pune",
        "mr_name": "Vikram",
        "mr_code": "MR-042",
        "selected_languages": ["en", "hi"],
        "image_path": "submissions/20261019-abcd1234/image.jpg",
        "audio_samples": [
            {"gcsPath": "submissions/20261019-abcd1234/audio/sample_1.mp3", "duration_seconds": 75},
        ],
        "submission_prefix": "20261019-abcd1234",
    }


@pytest_asyncio.fixture
async def create_submission(client: AsyncClient, auth_headers: dict, submission_payload: dict):
    """Factory creating a submission through the API. Returns its id."""

    async def _create(**overrides) -> int:
        response = await client.post(
            "/v1/submissions/from-storage",
            headers=auth_headers,
            json={**submission_payload, **overrides},
        )
        assert response.status_code == 201, response.text
        return response.json()["submission_id"]

    return _create


@pytest_asyncio.fixture
async def verify_consent(client: AsyncClient, auth_headers: dict, sent_codes: list):
    """Run the OTP flow for a submission."""

    async def _verify(submission_id: int):
        response = await client.post(
            f"/v1/consent/{submission_id}/send-otp", headers=auth_headers, json={}
        )
        assert response.status_code == 200, response.text
        response = await client.post(
            f"/v1/consent/{submission_id}/verify",
            headers=auth_headers,
            json={"code": sent_codes[-1]["code"]},
        )
        assert response.status_code == 200, response.text

    return _verify
