import os
from datetime import datetime, timezone

# Must be set before medaccess.identity.auth is imported
os.environ.setdefault("DEV_MODE", "true")
os.environ.setdefault("DB_INIT", "true")
os.environ.setdefault("JWT_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("MEDACCESS_EXCHANGE_SECRET", "test-exchange-secret-0123456789abcdef")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from medaccess.audit.service import AuditService  # noqa: E402
from medaccess.clock import FrozenClock  # noqa: E402
from medaccess.config.settings import AccessSettings  # noqa: E402
from medaccess.database import create_engine_for_url  # noqa: E402
from medaccess.services import AccessServices, init_schema  # noqa: E402


EXCHANGE_SECRET = "unit-exchange-secret-0123456789abcdef"


@pytest_asyncio.fixture
async def session_factory():
    engine = create_engine_for_url("sqlite+aiosqlite://")
    await init_schema(engine, include_directory=True)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def clock():
    # 12:00:00 sits on a 30s step boundary
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return AccessSettings(exchange_secret=EXCHANGE_SECRET)


@pytest.fixture
def audit():
    return AuditService()


@pytest.fixture
def services(session_factory, clock, settings, audit):
    return AccessServices.build(session_factory, settings=settings, clock=clock, audit=audit)
