import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Configure the environment before any import that might initialize the runtime
_test_key_dir = tempfile.mkdtemp(prefix="vexillum_keys_")
os.environ.setdefault("KEY_DIR", _test_key_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
# In-process rate limiting keeps tests independent of a running Redis
os.environ["REDIS_URL"] = ""
os.environ["ADMIN_EMAIL"] = ""
os.environ["ADMIN_PASSWORD"] = ""

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from vexillum.service.keys import KeyManager  # noqa: E402
from vexillum.service.passwords import CredentialVerifier  # noqa: E402
from vexillum.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture(scope="session")
def key_pair(tmp_path_factory):
    """One RSA pair for the whole session; generation is the slow part."""
    key_dir = tmp_path_factory.mktemp("signing_keys")
    return KeyManager(key_dir / "private.pem", key_dir / "public.pem").load_key_pair()


@pytest.fixture(scope="session")
def other_key_pair(tmp_path_factory):
    key_dir = tmp_path_factory.mktemp("other_signing_keys")
    return KeyManager(key_dir / "private.pem", key_dir / "public.pem").load_key_pair()


@pytest.fixture
def fast_verifier():
    """Argon2id with minimal cost parameters."""
    return CredentialVerifier(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    )


class ManualClock:
    """Settable epoch-seconds clock for expiry boundary tests."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


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
