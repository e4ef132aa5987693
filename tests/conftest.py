"""Shared fixtures: SQLite test database, settings and fake provider."""

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.config import Settings
from app.db.base import Base
from app.models import CallLog, CallProvider, Reminder, ReminderStatus, User
from app.services.providers import CallResult, ProviderError

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="test",
        telephony_account_sid="AC123",
        telephony_auth_token="token",
        telephony_from_number="+15550001111",
        telephony_webhook_secret="telephony-secret",
        voice_ai_api_key="vai-key",
        voice_ai_webhook_secret="voiceai-secret",
        public_base_url="https://reminders.example.com",
        dispatch_batch_size=50,
        dispatch_interval_seconds=60,
    )


@pytest.fixture
async def session_factory(tmp_path):
    # File-backed so concurrent sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    await engine.dispose()


class FakeProvider:
    """Call provider that records requests and fails on demand."""

    def __init__(
        self,
        provider: CallProvider = CallProvider.TELEPHONY,
        fail_for: set[str] | None = None,
    ) -> None:
        self.provider = provider
        self.fail_for = fail_for or set()
        self.calls: list[tuple[str, str, str]] = []

    async def create_call(self, phone_number: str, message: str, reminder_id: str) -> CallResult:
        self.calls.append((phone_number, message, reminder_id))
        if reminder_id in self.fail_for:
            raise ProviderError(self.provider, "Failed to create call: 503")
        return CallResult(
            provider=self.provider,
            external_call_id=f"CALL{len(self.calls)}",
            provider_status="queued",
        )

    async def close(self) -> None:
        pass


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


async def create_user(session_factory, email: str = "user@example.com") -> User:
    async with session_factory() as db:
        user = User(email=email)
        db.add(user)
        await db.commit()
        return user


async def create_reminder(
    session_factory,
    user: User,
    scheduled_at: datetime = NOW - timedelta(seconds=1),
    status: ReminderStatus = ReminderStatus.SCHEDULED,
    external_call_id: str | None = None,
    message: str = "Take your medication",
) -> Reminder:
    async with session_factory() as db:
        reminder = Reminder(
            user_id=user.id,
            phone_number="+14155550100",
            message=message,
            scheduled_at=scheduled_at,
            status=status,
            external_call_id=external_call_id,
        )
        db.add(reminder)
        await db.commit()
        return reminder


async def load_reminder(session_factory, reminder_id: uuid.UUID) -> Reminder:
    async with session_factory() as db:
        result = await db.execute(select(Reminder).where(Reminder.id == reminder_id))
        return result.scalar_one()


async def load_call_logs(session_factory, reminder_id: uuid.UUID | None = None) -> list[CallLog]:
    async with session_factory() as db:
        query = select(CallLog).order_by(CallLog.received_at)
        if reminder_id is not None:
            query = query.where(CallLog.reminder_id == reminder_id)
        result = await db.execute(query)
        return list(result.scalars().all())


@pytest.fixture
async def api_client(session_factory, settings):
    """HTTP client bound to the app with the test database and providers."""
    from app.api.deps import get_telephony_client, get_voice_ai_client, limiter
    from app.db.session import get_db
    from app.main import app
    from app.services.telephony import TelephonyClient
    from app.services.voice_ai import VoiceAIClient

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_telephony_client] = lambda: TelephonyClient(settings=settings)
    app.dependency_overrides[get_voice_ai_client] = lambda: VoiceAIClient(settings=settings)
    limiter.enabled = False

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True
