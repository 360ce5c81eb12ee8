import asyncio
import inspect
import os
import tempfile

# Set before sessionguard modules read the environment
_test_tmp_dir = tempfile.mkdtemp(prefix="sessionguard_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

from sessionguard.config import reset_settings_cache  # noqa: E402
from sessionguard.service.auth import SessionManager  # noqa: E402
from sessionguard.service.clock import FrozenClock  # noqa: E402
from sessionguard.service.passwords import PasswordHasher  # noqa: E402
from sessionguard.service.reset_tokens import ResetTokenStore  # noqa: E402
from sessionguard.service.revocation import RevocationList  # noqa: E402
from sessionguard.service.sessions import SessionStore  # noqa: E402
from sessionguard.service.tokens import TokenSigner  # noqa: E402
from sessionguard.storage.memory import MemoryCache, MemoryUserDirectory  # noqa: E402

TEST_SECRET = "unit-test-signing-secret-0123456789abcdef"
TEST_PASSWORD = "CorrectHorse42"


class RecordingNotifier:
    """Notifier double that remembers every reset message it was asked to send."""

    def __init__(self, result: bool = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.sent: list[tuple[str, str]] = []

    def send_reset_message(self, email: str, token: str) -> bool:
        self.sent.append((email, token))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def directory(clock):
    return MemoryUserDirectory(clock=clock)


@pytest.fixture
def hasher():
    # Cheap cost parameters keep the suite fast; the algorithm is unchanged
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def signer(clock):
    return TokenSigner(TEST_SECRET, clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(signer, cache, directory, hasher, notifier, clock):
    return SessionManager(
        signer=signer,
        sessions=SessionStore(cache, clock=clock),
        revocations=RevocationList(cache, clock=clock),
        reset_tokens=ResetTokenStore(cache, clock=clock),
        directory=directory,
        hasher=hasher,
        notifier=notifier,
    )


@pytest.fixture
def user(directory, hasher):
    return directory.create_user("alice@example.com", "Alice", hasher.hash(TEST_PASSWORD))


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
