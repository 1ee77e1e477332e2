"""Pytest bootstrap configuration.

Settings are read at import time, so the environment is prepared before any
application module is imported.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE__SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE__WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime, timezone  # noqa: E402
from functools import partial  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from application.services.fee_policy_service import FeePolicyResolver, PolicyCache  # noqa: E402
from domain.fees.policy import CommissionPolicy  # noqa: E402
from infrastructure.models import Base, BookingModel, BookingRequestModel, CoachModel  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeProcessor,
    RecordingAuditSink,
    RecordingNotifier,
    StaticPolicySource,
)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        # marketplace tables included: tests own the whole database
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest_asyncio.fixture
async def marketplace(session_factory):
    """Coaches, bookings and a booking request as the marketplace app would leave them."""
    async with session_factory() as session:
        session.add_all(
            [
                CoachModel(id="coach_1", stripe_account_id="acct_coach_1"),
                CoachModel(id="coach_no_account", stripe_account_id=None),
                BookingModel(
                    id="bk_1",
                    coach_id="coach_1",
                    athlete_id="ath_1",
                    status="pending",
                    stripe_session_id="cs_test_1",
                ),
                BookingModel(
                    id="bk_legacy",
                    coach_id="coach_1",
                    athlete_id="ath_2",
                    status="completed",
                    amount_paid_cents=5000,
                    created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                ),
                BookingRequestModel(
                    id="br_1",
                    coach_id="coach_1",
                    athlete_id="ath_3",
                    status="pending",
                    amount_cents=8000,
                ),
            ]
        )
        await session.commit()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def policy_source():
    return StaticPolicySource(CommissionPolicy.build(platform_fee_percent=15.0))


@pytest.fixture
def policy_resolver(policy_source):
    return FeePolicyResolver(policy_source, PolicyCache(ttl_seconds=60))
