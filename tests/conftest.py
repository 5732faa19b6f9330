import asyncio
import inspect
import os
import tempfile
from datetime import datetime, timedelta, timezone

# Configure the environment before any application module reads config
_test_tmp_dir = tempfile.mkdtemp(prefix="maapaap_test_")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_tmp_dir}/default.db")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("OTP_DELIVERY", "log")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import Database  # noqa: E402
from errors import CacheUnavailableError  # noqa: E402
from main import create_app  # noqa: E402
from services.cache_service import InMemoryOTPCache  # noqa: E402
from services.otp_service import OTPStore  # noqa: E402
from services.session_service import SessionStore  # noqa: E402
from services.user_service import UserResolver  # noqa: E402


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingDelivery:
    def __init__(self):
        self.sent = []

    def deliver(self, identifier, channel, otp):
        self.sent.append((identifier, channel, otp))

    def last_code(self, identifier):
        for sent_to, _, otp in reversed(self.sent):
            if sent_to == identifier:
                return otp
        raise AssertionError(f"No OTP delivered to {identifier}")


class FailingCache:
    """Cache adapter that behaves like an unreachable Redis."""

    async def get(self, identifier, purpose):
        raise CacheUnavailableError("connection refused")

    async def set(self, identifier, purpose, value, ttl_seconds):
        raise CacheUnavailableError("connection refused")

    async def delete(self, identifier, purpose):
        raise CacheUnavailableError("connection refused")

    async def close(self):
        return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def otp_cache(clock):
    return InMemoryOTPCache(clock)


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def otp_store(database, otp_cache, delivery, clock):
    return OTPStore(database, otp_cache, delivery, clock=clock)


@pytest.fixture
def sessions(database, clock):
    return SessionStore(database, clock=clock)


@pytest.fixture
def users(database, clock):
    return UserResolver(database, clock=clock)


@pytest.fixture
def app(database, otp_cache, delivery, clock):
    return create_app(
        database=database,
        otp_cache=otp_cache,
        delivery=delivery,
        clock=clock,
        run_cleanup=False,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
