import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="authcycle_test_")
os.environ.setdefault("STATE_DIR", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("REFRESH_COOKIE_SECURE", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authcycle.config import Settings  # noqa: E402
from authcycle.service.auth import AuthOrchestrator  # noqa: E402
from authcycle.service.codec import TokenCodec  # noqa: E402
from authcycle.service.credentials import CredentialVerifier  # noqa: E402
from authcycle.service.events import RecordingAuditSink  # noqa: E402
from authcycle.service.issuer import TokenIssuer  # noqa: E402
from authcycle.service.passwords import PasswordHasher  # noqa: E402
from authcycle.service.revoker import SessionRevoker  # noqa: E402
from authcycle.service.rotation import RefreshRotationEngine  # noqa: E402
from authcycle.service.runtime import reset_runtime_for_tests  # noqa: E402
from authcycle.storage.memory import MemoryStore  # noqa: E402

TEST_PASSWORD = "Correct-Horse-Battery-42"


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24,
    )


@pytest.fixture
def hasher():
    # Cheap argon2 parameters keep the suite fast
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def codec(settings):
    return TokenCodec(settings)


@pytest.fixture
def alice(memory_store, hasher):
    return asyncio.run(
        memory_store.create_user("alice", hasher.hash_sync(TEST_PASSWORD))
    )


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def issuer(memory_store, codec, settings):
    return TokenIssuer(memory_store, codec, settings)


@pytest.fixture
def rotation(memory_store, codec, issuer):
    return RefreshRotationEngine(memory_store, memory_store, codec, issuer)


@pytest.fixture
def revoker(memory_store, codec):
    return SessionRevoker(memory_store, codec)


@pytest.fixture
def orchestrator(memory_store, hasher, issuer, rotation, revoker, codec, audit, settings):
    return AuthOrchestrator(
        CredentialVerifier(memory_store, hasher),
        issuer,
        rotation,
        revoker,
        codec,
        audit,
        refresh_max_age_seconds=settings.refresh_token_ttl_minutes * 60,
    )


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
