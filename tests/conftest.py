"""
Test configuration and fixtures for the blood stock ledger service.
Provides a fresh in-memory database per test, an HTTP client wired to it,
and data factories for requests and donations.
"""

import os
import sys
from datetime import timedelta
from pathlib import Path
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Override environment variables before the app reads its settings
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENABLE_ADMIN"] = "false"

from app.db.base import Base  # noqa: E402
from app.dependencies import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.donation_model import Donation  # noqa: E402
from app.schemas.donation_schema import DonationStatus, ScreeningResult  # noqa: E402
from app.schemas.request_schema import BloodRequestCreate  # noqa: E402
from app.utils.clock import utcnow  # noqa: E402


@pytest.fixture
async def test_engine():
    """A private in-memory database, schema created from the models."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests each get their own session on the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                if session.in_transaction():
                    await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def actor_headers(actor_id) -> dict:
    return {"X-Actor-Id": str(actor_id)}


# --- Data Factories ---


class TestDataFactory:
    """Factory for request and donation payloads."""

    __test__ = False

    @staticmethod
    def blood_request_data(
        blood_type: str = "O+",
        quantity: int = 3,
        urgency: str = "normal",
        hours_until_due: int = 48,
    ) -> dict:
        return {
            "blood_type": blood_type,
            "quantity": quantity,
            "urgency": urgency,
            "required_by": (utcnow() + timedelta(hours=hours_until_due)).isoformat(),
            "patient_name": "Ama Mensah",
            "patient_age": 34,
            "patient_gender": "female",
            "condition": "Postpartum haemorrhage",
            "hospital_name": "Korle Bu Teaching Hospital",
            "hospital_city": "Accra",
            "hospital_contact": "+233302000000",
            "doctor_name": "Dr. Kofi Boateng",
        }

    @staticmethod
    def blood_request_create(**kwargs) -> BloodRequestCreate:
        return BloodRequestCreate(**TestDataFactory.blood_request_data(**kwargs))

    @staticmethod
    def donation_data(blood_type: str = "O+", days_ago: int = 0) -> dict:
        return {
            "donor_id": str(uuid4()),
            "blood_type": blood_type,
            "quantity_ml": 450,
            "donation_date": (utcnow() - timedelta(days=days_ago)).isoformat(),
            "center": "Accra Central Donation Centre",
        }


async def add_donation(
    db_session: AsyncSession,
    blood_type: str = "O+",
    status: DonationStatus = DonationStatus.APPROVED,
) -> Donation:
    """Insert a screened donation directly, bypassing the ledger credit."""
    now = utcnow()
    donation = Donation(
        donor_id=uuid4(),
        blood_type=blood_type,
        quantity_ml=450,
        donation_date=now,
        center="Test Centre",
        status=status,
        hemoglobin=14.0,
        hiv=ScreeningResult.NEGATIVE,
        hepatitis_b=ScreeningResult.NEGATIVE,
        hepatitis_c=ScreeningResult.NEGATIVE,
        syphilis=ScreeningResult.NEGATIVE,
        expiry_date=now + timedelta(days=35),
    )
    db_session.add(donation)
    await db_session.commit()
    return donation


async def approved_donation(client: AsyncClient, headers: dict, blood_type: str = "O-") -> str:
    """Register a donation over HTTP and approve it, crediting one unit."""
    response = await client.post(
        "/api/donations/", json=TestDataFactory.donation_data(blood_type), headers=headers
    )
    assert response.status_code == 201
    donation_id = response.json()["id"]

    response = await client.post(f"/api/donations/{donation_id}/approve", headers=headers)
    assert response.status_code == 200
    return donation_id
