"""Unit and integration tests for the legacy identity cache."""

import threading

import pytest

from schemas.identity import AdminProfile, Category, ExamLevel, IdentityRecord, TeacherProfile
from tests.helpers.factories import admin_request, student_request, teacher_request
from utils.legacy_cache import (
    CachedIdentityReader,
    LegacyIdentityCache,
    build_legacy_cache,
    legacy_seed_records,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _teacher(email: str = "t1@x.test", name: str = "Paul Ekane") -> IdentityRecord:
    return IdentityRecord(
        id="GCE2025-TC-1",
        email=email,
        category=Category.TEACHER,
        profile=TeacherProfile(full_name=name, school="GHS Limbe"),
    )


def test_get_is_keyed_by_partition_and_lowercased_email() -> None:
    """Lookups ignore email case and respect the partition."""
    cache = LegacyIdentityCache(ttl_seconds=60)
    cache.put(_teacher())

    assert cache.get(Category.TEACHER, "T1@X.TEST").id == "GCE2025-TC-1"
    assert cache.get(Category.ADMIN, "t1@x.test") is None
    assert cache.get_any("t1@x.test").category is Category.TEACHER


def test_entries_expire_after_ttl() -> None:
    """A cached entry reads as a miss once it is older than the TTL."""
    clock = FakeClock()
    cache = LegacyIdentityCache(ttl_seconds=30, clock=clock)
    cache.put(_teacher())

    clock.now += 29
    assert cache.get(Category.TEACHER, "t1@x.test") is not None
    clock.now += 2
    assert cache.get(Category.TEACHER, "t1@x.test") is None
    assert len(cache) == 0


def test_put_replaces_and_delete_removes() -> None:
    """put overwrites an entry; delete reports whether one existed."""
    cache = LegacyIdentityCache(ttl_seconds=60)
    cache.put(_teacher(name="Old Name"))
    cache.put(_teacher(name="New Name"))

    assert len(cache) == 1
    assert cache.get("teacher", "t1@x.test").full_name == "New Name"
    assert cache.delete("teacher", "t1@x.test") is True
    assert cache.delete("teacher", "t1@x.test") is False


def test_full_cache_evicts_oldest() -> None:
    """The oldest entry is evicted once the size limit is reached."""
    cache = LegacyIdentityCache(ttl_seconds=60, max_size=2)
    for i in range(3):
        cache.put(_teacher(email=f"t{i}@x.test"))

    assert len(cache) == 2
    assert cache.get("teacher", "t0@x.test") is None
    assert cache.get("teacher", "t2@x.test") is not None


def test_concurrent_puts_are_safe() -> None:
    """Many threads can write at once."""
    cache = LegacyIdentityCache(ttl_seconds=60)

    def writer(offset: int) -> None:
        for i in range(200):
            cache.put(_teacher(email=f"t{offset}-{i}@x.test"))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 800


def test_seed_set_loads_fixed_records() -> None:
    """The seed set is loaded at process start unless disabled."""
    seeded = build_legacy_cache(seed=True)
    empty = build_legacy_cache(seed=False)

    assert len(seeded) == len(legacy_seed_records()) == 4
    assert seeded.get(Category.ADMIN, "admin@gce.cm").profile.access_level == "super_admin"
    assert seeded.get(Category.STUDENT, "jean.fopa@student.cm", ExamLevel.A_LEVEL) is not None
    assert len(empty) == 0
    assert isinstance(seeded.get_any("admin@gce.cm").profile, AdminProfile)


@pytest.mark.asyncio
async def test_cache_never_decides_registration(manager, cache) -> None:
    """A stale cache entry neither blocks nor allows a registration."""
    cache.put(_teacher(email="ghost@x.test"))
    assert await manager.email_exists("ghost@x.test") is False
    created = await manager.create_identity(teacher_request("ghost@x.test"))
    assert created.email == "ghost@x.test"

    cache.clear()
    assert await manager.email_exists("ghost@x.test") is True


@pytest.mark.asyncio
async def test_manager_mirrors_committed_records(manager, cache) -> None:
    """The cache only receives records the store has committed."""
    student = await manager.create_identity(student_request("s1@x.test"))

    mirrored = cache.get(Category.STUDENT, "s1@x.test")
    assert mirrored.id == student.id


@pytest.mark.asyncio
async def test_failing_mirror_does_not_break_mutations(manager) -> None:
    """A broken mirror is logged and the operation still succeeds."""

    class BrokenMirror:
        def record_committed(self, record):
            raise RuntimeError("mirror down")

        def record_removed(self, record):
            raise RuntimeError("mirror down")

    manager.add_mirror(BrokenMirror())

    created = await manager.create_identity(teacher_request())
    assert await manager.find_by_id(created.id) is not None


@pytest.mark.asyncio
async def test_cached_reader_reads_through(manager) -> None:
    """Misses fall through to the store and populate the cache."""
    await manager.create_identity(teacher_request("t1@x.test"))
    cache = LegacyIdentityCache(ttl_seconds=60)
    reader = CachedIdentityReader(manager, cache)

    assert len(cache) == 0
    first = await reader.find_by_email_and_type("t1@x.test", Category.TEACHER)
    assert len(cache) == 1
    second = await reader.find_by_email("t1@x.test")

    assert first.id == second.id
    assert await reader.find_by_email("nobody@x.test") is None
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_cached_reader_never_serves_seed_records(manager) -> None:
    """Seed records are display-only; the reader answers from committed data."""
    cache = build_legacy_cache(seed=True)
    reader = CachedIdentityReader(manager, cache)

    assert cache.get_any("admin@gce.cm") is not None
    assert await reader.find_by_email("admin@gce.cm") is None
    assert await reader.find_by_email_and_type("demo.student@gce.cm", Category.STUDENT) is None

    admin = await manager.create_identity(admin_request("admin@gce.cm"))
    found = await reader.find_by_email("admin@gce.cm")

    assert found.id == admin.id
    assert cache.get(Category.ADMIN, "admin@gce.cm", committed_only=True).id == admin.id
