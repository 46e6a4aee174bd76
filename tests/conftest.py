"""Pytest configuration for the identity store test suite."""

import os
import sys
import tempfile
from pathlib import Path


def _ensure_test_env() -> None:
    """Seed environment variables before config is imported."""
    os.environ.setdefault("DATA_DIR_NAME", tempfile.mkdtemp(prefix="gce-identity-"))
    os.environ.setdefault("LEGACY_CACHE_SEED_ENABLED", "true")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from core.database import build_engine, build_session_factory, init_db  # noqa: E402
from utils.credential_codec import CredentialCodec  # noqa: E402
from utils.identity_manager import IdentityManager  # noqa: E402
from utils.legacy_cache import LegacyIdentityCache  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh file-backed SQLite database with every table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="session")
def codec() -> CredentialCodec:
    """bcrypt at the minimum cost so tests stay fast."""
    return CredentialCodec(rounds=4)


@pytest.fixture
def cache() -> LegacyIdentityCache:
    return LegacyIdentityCache(ttl_seconds=60)


@pytest.fixture
def alerts() -> list:
    """Collects every AuditWriteFailure escalated by the manager."""
    return []


@pytest.fixture
def manager(session_factory, codec, cache, alerts) -> IdentityManager:
    return IdentityManager(
        session_factory,
        codec=codec,
        mirrors=[cache],
        alert_hook=alerts.append,
    )
