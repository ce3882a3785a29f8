"""Pytest fixtures for the billing ledger test suite.

Integration tests run against a file-backed SQLite database (aiosqlite) built
with the application's own engine factory, so concurrent sessions really do
contend for the database write lock.
"""

import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.app import app
from src.database.base import Base
from src.database.engine import build_engine
from src.database.session import get_db
from src.models.enums import MemberStatus, SubscriptionStatus
from src.models.member import Member
from src.models.membership_plan import MembershipPlan
from src.models.subscription import Subscription
from src.modules.tenancy.auth import AuthenticatedUser, get_current_user
from tests.factories import ALL_INVOICE_PERMISSIONS, ORG_ID


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
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
def make_member(session_factory):
    """Insert and commit a member; returns the Member."""

    async def _make(organization_id: uuid.UUID = ORG_ID, first_name: str = "Sara") -> Member:
        async with session_factory() as session:
            member = Member(
                organization_id=organization_id,
                first_name=first_name,
                last_name="Al-Harbi",
                email=f"{first_name.lower()}@example.com",
                status=MemberStatus.ACTIVE,
            )
            session.add(member)
            await session.commit()
            return member

    return _make


@pytest.fixture
def make_plan(session_factory):
    """Insert and commit a membership plan; fee overrides are keyword arguments."""

    async def _make(organization_id: uuid.UUID = ORG_ID, **fees) -> MembershipPlan:
        values = {
            "membership_fee": Decimal("300.00"),
            "membership_fee_tax_rate": Decimal("15.00"),
            "administration_fee": Decimal("50.00"),
            "administration_fee_tax_rate": Decimal("15.00"),
            "join_fee": Decimal("100.00"),
            "join_fee_tax_rate": Decimal("15.00"),
        }
        values.update(fees)
        async with session_factory() as session:
            plan = MembershipPlan(
                organization_id=organization_id,
                name_en="Gold",
                name_ar="ذهبي",
                currency="SAR",
                **values,
            )
            session.add(plan)
            await session.commit()
            return plan

    return _make


@pytest.fixture
def make_subscription(session_factory):
    async def _make(member: Member, plan: MembershipPlan) -> Subscription:
        async with session_factory() as session:
            subscription = Subscription(
                organization_id=member.organization_id,
                member_id=member.id,
                plan_id=plan.id,
                status=SubscriptionStatus.PENDING_PAYMENT,
            )
            session.add(subscription)
            await session.commit()
            return subscription

    return _make


@pytest.fixture
def current_user() -> AuthenticatedUser:
    return AuthenticatedUser(
        id=uuid.UUID("0c0c0c0c-0000-4000-8000-000000000001"),
        email="billing@example.com",
        organization_id=ORG_ID,
        role="ADMIN",
        permissions=ALL_INVOICE_PERMISSIONS,
    )


@pytest_asyncio.fixture
async def async_client(session_factory, current_user) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the app, one committed session per request."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
