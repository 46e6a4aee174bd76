"""Dependency injection module for FastAPI.

This module provides the identity store to FastAPI routes living outside
this component. The manager and the legacy cache are process-wide
singletons; the cache is registered as a mirror of the manager.
"""

from typing import Annotated

from fastapi import Depends

from core.database import async_session_factory
from utils.identity_manager import IdentityManager
from utils.legacy_cache import CachedIdentityReader, LegacyIdentityCache, build_legacy_cache

# Singletons (shared in-memory cache)
_legacy_cache_instance: LegacyIdentityCache = None
_identity_manager_instance: IdentityManager = None


def get_legacy_cache() -> LegacyIdentityCache:
    """Get the LegacyIdentityCache singleton, seeded on first use.

    Returns:
        LegacyIdentityCache instance (singleton).
    """
    global _legacy_cache_instance
    if _legacy_cache_instance is None:
        _legacy_cache_instance = build_legacy_cache()
    return _legacy_cache_instance


def get_identity_manager() -> IdentityManager:
    """Get the IdentityManager singleton.

    Returns:
        IdentityManager instance (singleton) mirroring into the legacy cache.
    """
    global _identity_manager_instance
    if _identity_manager_instance is None:
        _identity_manager_instance = IdentityManager(
            async_session_factory, mirrors=[get_legacy_cache()]
        )
    return _identity_manager_instance


def get_identity_reader(
    manager: IdentityManager = Depends(get_identity_manager),
    cache: LegacyIdentityCache = Depends(get_legacy_cache),
) -> CachedIdentityReader:
    """Get a read-through reader for read-heavy legacy call sites."""
    return CachedIdentityReader(manager, cache)


def reset_dependencies() -> None:
    """Drop the singletons so the next request builds fresh ones."""
    global _legacy_cache_instance, _identity_manager_instance
    _legacy_cache_instance = None
    _identity_manager_instance = None


# Type aliases for dependency injection
IdentityManagerDep = Annotated[IdentityManager, Depends(get_identity_manager)]
LegacyCacheDep = Annotated[LegacyIdentityCache, Depends(get_legacy_cache)]
IdentityReaderDep = Annotated[CachedIdentityReader, Depends(get_identity_reader)]
