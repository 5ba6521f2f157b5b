"""Shared fixtures: in-memory SQLite store, fixed clock, fake providers."""
import json
import os

os.environ.setdefault("SIGNING_KEYS", json.dumps({"k1": "test-secret-k1", "k0": "test-secret-k0"}))
os.environ.setdefault("ACTIVE_KID", "k1")
os.environ.setdefault("TOKEN_ISSUER", "guestpass.test")
os.environ.setdefault("WALLET_SECRET", "test-wallet-secret")
os.environ.setdefault("PUBLIC_BASE_URL", "https://guestpass.test")
os.environ.setdefault("BUILDING_TIMEZONE", "America/Los_Angeles")
os.environ.setdefault("BUILDING_NAME", "Test Tower")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import date, datetime, timezone  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from domain.lifecycle import (  # noqa: E402
    Actor,
    EngineConfig,
    InviteRequest,
    PassLifecycleEngine,
    RegistrationSubmission,
)
from domain.models import Resident  # noqa: E402
from domain.ports import VerificationEvent, VerificationOutcome, VerificationSession  # noqa: E402
from domain.tokens import Audience, KeyRing, TokenCodec  # noqa: E402
from infrastructure.database import SqlPassStore  # noqa: E402
from infrastructure.wallet import PassCardIssuer  # noqa: E402

BASE_URL = "https://guestpass.test"
TZ = "America/Los_Angeles"
VISIT_DAY = date(2025, 6, 1)
GUEST_EMAIL = "guest@example.com"


class FakeClock:
    """Settable clock; 2025-06-01 12:00 building time by default."""

    def __init__(self, now: datetime = datetime(2025, 6, 1, 19, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def keyring():
    return KeyRing({"k1": "test-secret-k1", "k0": "test-secret-k0"}, active_kid="k1")


@pytest.fixture
def codec(keyring, clock):
    return TokenCodec(keyring, issuer="guestpass.test", wallet_secret="test-wallet-secret", clock=clock)


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    maker = sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    return SqlPassStore(maker, timeout=5.0)


@pytest.fixture
def identity():
    gateway = AsyncMock()
    gateway.create_session.return_value = VerificationSession(
        id="vs_test_123", url="https://verify.stripe.com/start/vs_test_123"
    )
    return gateway


@pytest.fixture
def notifier():
    sms = AsyncMock()
    sms.send_guest_invitation.return_value = {"sid": "SM123", "status": "queued"}
    return sms


@pytest.fixture
def wallet(codec):
    return PassCardIssuer(
        codec,
        public_base_url=BASE_URL,
        building_timezone=TZ,
        building_name="Test Tower",
        signer_url="",
    )


@pytest.fixture
def lifecycle(store, codec, identity, notifier, wallet, clock):
    return PassLifecycleEngine(
        store,
        codec,
        EngineConfig(public_base_url=BASE_URL, building_timezone=TZ),
        identity=identity,
        notifier=notifier,
        wallet=wallet,
        clock=clock,
    )


@pytest.fixture
async def resident(store):
    return await store.save_resident(Resident(
        name="Rita Resident",
        email="rita@example.com",
        unit="12B",
        is_verified=True,
    ))


@pytest.fixture
def host(resident):
    return Actor(id=str(resident.id), role="resident")


@pytest.fixture
def staff():
    return Actor(id="desk-1", role="staff")


def token_from_link(link: str) -> str:
    return link.split("token=", 1)[1]


async def invite_guest(lifecycle, resident, visit_date=VISIT_DAY, **kwargs):
    request = InviteRequest(guest_email=GUEST_EMAIL, visit_date=visit_date, floor="12", **kwargs)
    result = await lifecycle.invite(resident.id, request)
    assert result.ok, result
    return result.value


async def approved_pass(lifecycle, resident):
    """Invite, complete registration and verify; returns the approved pass."""
    invited = await invite_guest(lifecycle, resident)
    completed = await lifecycle.complete_registration(
        token_from_link(invited.completion_link),
        Audience.GUEST_PREREG,
        RegistrationSubmission(first_name="Gina", last_name="Guest", email=GUEST_EMAIL),
    )
    assert completed.ok, completed
    applied = await lifecycle.apply_verification_event(VerificationEvent(
        outcome=VerificationOutcome.VERIFIED,
        session_id=completed.value.session_id,
        pass_id=completed.value.guest_pass.id,
    ))
    assert applied.ok, applied
    return applied.value.guest_pass
