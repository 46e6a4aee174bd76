"""Tests for the FastAPI dependency providers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core import dependencies
from utils.identity_manager import IdentityManager
from utils.legacy_cache import CachedIdentityReader, LegacyIdentityCache


@pytest.fixture(autouse=True)
def fresh_singletons():
    dependencies.reset_dependencies()
    yield
    dependencies.reset_dependencies()


def test_manager_and_cache_are_singletons() -> None:
    """Providers return one shared manager mirroring into one shared cache."""
    manager = dependencies.get_identity_manager()
    cache = dependencies.get_legacy_cache()

    assert dependencies.get_identity_manager() is manager
    assert dependencies.get_legacy_cache() is cache
    assert cache in manager.mirrors


def test_legacy_cache_is_seeded() -> None:
    """The process-wide cache starts with the fixed seed set."""
    assert dependencies.get_legacy_cache().get("admin", "admin@gce.cm") is not None


def test_providers_resolve_in_routes() -> None:
    """The Annotated aliases resolve through FastAPI's dependency system."""
    app = FastAPI()

    @app.get("/wiring")
    def wiring(
        manager: dependencies.IdentityManagerDep,
        cache: dependencies.LegacyCacheDep,
        reader: dependencies.IdentityReaderDep,
    ):
        return {
            "manager": isinstance(manager, IdentityManager),
            "cache": isinstance(cache, LegacyIdentityCache),
            "reader": isinstance(reader, CachedIdentityReader) and reader.cache is cache,
        }

    response = TestClient(app).get("/wiring")

    assert response.status_code == 200
    assert response.json() == {"manager": True, "cache": True, "reader": True}
