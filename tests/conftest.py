"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, fake Redis,
an HTTP client bound to the app, users/practitioners/cases and a fake
payout gateway.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-account-encryption")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import Base, get_db
from config.redis_client import get_redis
from services.payout.gateway import GatewayPayout
from shared.models.models import (
    BankAccount,
    CasePriority,
    CaseStatus,
    ExpertiseTag,
    LegalCase,
    Practitioner,
    PractitionerExpertise,
    PractitionerTier,
    User,
    UserRole,
    VerificationStatus,
)
from shared.utils.security import (
    create_access_token,
    encrypt_account_number,
    mask_account_number,
)


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


def naive(dt: datetime) -> datetime:
    """SQLite hands datetimes back without tzinfo."""
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


# ── Database & Redis ──────────────────────────────────────────

@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def client(session_factory, redis):
    from main import app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = lambda: redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Celery ────────────────────────────────────────────────────

class TaskRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))


@pytest.fixture(autouse=True)
def queued_tasks(monkeypatch):
    """Nothing reaches a broker; enqueued calls are recorded per task."""
    from tasks.case_tasks import check_case_acceptance_timeout
    from tasks.payout_tasks import execute_payout_task

    recorded = {"acceptance_check": TaskRecorder(), "execute_payout": TaskRecorder()}
    monkeypatch.setattr(check_case_acceptance_timeout, "apply_async", recorded["acceptance_check"])
    monkeypatch.setattr(execute_payout_task, "delay", recorded["execute_payout"])
    return recorded


# ── Users ─────────────────────────────────────────────────────

async def _make_user(db: AsyncSession, role: UserRole, name: str) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{name.lower().replace(' ', '.')}.{uuid.uuid4().hex[:6]}@example.com",
        name=name,
        role=role,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def operator(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.OPERATOR, "Ops Desk")


@pytest.fixture
async def customer(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.CUSTOMER, "Meera Rao")


@pytest.fixture
async def other_customer(db: AsyncSession) -> User:
    return await _make_user(db, UserRole.CUSTOMER, "Kiran Shah")


# ── Practitioners ─────────────────────────────────────────────

@pytest.fixture
def make_practitioner(db: AsyncSession):
    async def _make(
        name: str = "Adv. Priya Nair",
        city: str = "Bengaluru",
        tags: tuple = (ExpertiseTag.TITLE_OPINIONS,),
        status: VerificationStatus = VerificationStatus.VERIFIED,
        commission_rate: int = 20,
        rating_avg: str = "0.00",
        rating_count: int = 0,
        completed_case_count: int = 0,
        dnd_enabled: bool = False,
        with_bank_account: bool = True,
    ) -> Practitioner:
        user = await _make_user(db, UserRole.PRACTITIONER, name)
        practitioner = Practitioner(
            id=uuid.uuid4(),
            user_id=user.id,
            bar_council_number=f"KAR/{uuid.uuid4().hex[:6]}/2015",
            state_bar_council="Karnataka",
            admission_year=2015,
            city=city,
            verification_status=status,
            commission_rate=commission_rate,
            tier=PractitionerTier.PREFERRED if commission_rate <= 15 else PractitionerTier.STANDARD,
            rating_avg=Decimal(rating_avg),
            rating_count=rating_count,
            completed_case_count=completed_case_count,
            dnd_enabled=dnd_enabled,
            expertise=[PractitionerExpertise(tag=tag, position=i) for i, tag in enumerate(tags)],
        )
        db.add(practitioner)
        await db.flush()
        if with_bank_account:
            db.add(
                BankAccount(
                    practitioner_id=practitioner.id,
                    account_holder_name=name,
                    bank_name="State Bank of India",
                    ifsc="SBIN0001234",
                    account_number_masked=mask_account_number("123456789012"),
                    account_number_encrypted=encrypt_account_number("123456789012"),
                    is_default=True,
                )
            )
        await db.commit()
        await db.refresh(practitioner)
        return practitioner

    return _make


@pytest.fixture
async def practitioner(make_practitioner) -> Practitioner:
    return await make_practitioner()


@pytest.fixture
async def practitioner_user(db: AsyncSession, practitioner: Practitioner) -> User:
    return await db.get(User, practitioner.user_id)


# ── Cases ─────────────────────────────────────────────────────

@pytest.fixture
def make_case(db: AsyncSession, operator: User, customer: User):
    """Insert a case directly in the given status (bypassing the lifecycle)."""

    async def _make(
        practitioner: Practitioner,
        status: CaseStatus = CaseStatus.ASSIGNED,
        fee_amount: int = 500000,
        commission_rate: Optional[int] = None,
        customer_id: Optional[uuid.UUID] = None,
    ) -> LegalCase:
        now = datetime.now(timezone.utc)
        case = LegalCase(
            id=uuid.uuid4(),
            case_number=f"LC-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:4].upper()}",
            practitioner_id=practitioner.id,
            customer_id=customer_id or customer.id,
            assigned_by_id=operator.id,
            required_expertise=ExpertiseTag.TITLE_OPINIONS,
            city=practitioner.city,
            priority=CasePriority.NORMAL,
            status=status,
            fee_amount=fee_amount,
            commission_rate=commission_rate if commission_rate is not None else practitioner.commission_rate,
            deadline_at=now + timedelta(days=5),
            assigned_at=now,
            completed_at=now if status == CaseStatus.COMPLETED else None,
        )
        db.add(case)
        practitioner.total_assignment_count += 1
        await db.commit()
        return case

    return _make


# ── Payout Gateway ────────────────────────────────────────────

class FakeGateway:
    """In-memory stand-in for RazorpayX."""

    def __init__(self, payout_status: str = "processing", fail_with: Optional[Exception] = None):
        self.payout_status = payout_status
        self.fail_with = fail_with
        self.contacts = []
        self.fund_accounts = []
        self.payouts = []

    def create_contact(self, name: str, reference_id: str) -> str:
        self.contacts.append((name, reference_id))
        return f"cont_{len(self.contacts)}"

    def create_fund_account(self, contact_id: str, bank_details) -> str:
        self.fund_accounts.append((contact_id, bank_details))
        return f"fa_{len(self.fund_accounts)}"

    def create_payout(self, fund_account_id, amount, mode, reference_id, narration) -> GatewayPayout:
        if self.fail_with:
            raise self.fail_with
        self.payouts.append(
            {
                "fund_account_id": fund_account_id,
                "amount": amount,
                "mode": mode,
                "reference_id": reference_id,
                "narration": narration,
            }
        )
        return GatewayPayout(external_id=f"pout_{len(self.payouts)}", status=self.payout_status)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
