"""Legacy identity cache.

Synchronous, in-memory mirror of identity records for call sites that cannot
await. It is NOT the system of record: entries are written only after the
canonical store committed a mutation, and a read may lag a committed write by
at most the configured TTL. It must never be used to decide whether an email
is free to register.

Seed records are display-only: they were never committed to the canonical
store, so lookups made with ``committed_only=True`` (as CachedIdentityReader
does) skip them.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

import config
from schemas.identity import (
    AdminProfile,
    Category,
    ExamLevel,
    IdentityRecord,
    RegistrationStatus,
    StudentProfile,
    SubjectEntry,
    TeacherProfile,
    normalize_email,
)
from utils.partition_router import PROBE_ORDER, PartitionHandle, partitions_for_category, resolve_partition

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class IdentityReader(Protocol):
    """Read side of the identity store that call sites depend on."""

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        ...

    async def find_by_email_and_type(
        self,
        email: str,
        category: Union[Category, str],
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> Optional[IdentityRecord]:
        ...


def _partition_of(record: IdentityRecord) -> PartitionHandle:
    return resolve_partition(record.category, record.exam_level)


class LegacyIdentityCache:
    """TTL-bounded in-memory mirror keyed by partition and lower-cased email.

    Thread-safe; every operation is synchronous.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize LegacyIdentityCache.

        Args:
            ttl_seconds: Age after which an entry reads as a miss. Defaults
                to config.LEGACY_CACHE_TTL_SECONDS.
            max_size: Maximum number of cached entries.
            clock: Monotonic time source.
        """
        self.ttl_seconds = config.LEGACY_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[float, IdentityRecord, bool]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _key(handle: PartitionHandle, email: str) -> CacheKey:
        return handle.name, normalize_email(email)

    def _evict_oldest(self) -> None:
        """Evict oldest entry when cache is full (FIFO)."""
        if self._entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            logger.debug("Evicted legacy cache entry for partition %s", oldest_key[0])

    def _lookup(self, key: CacheKey, committed_only: bool) -> Optional[IdentityRecord]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, record, seeded = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        if seeded and committed_only:
            return None
        return record

    def get(
        self,
        category: Union[Category, str],
        email: str,
        exam_level: Optional[Union[ExamLevel, str]] = None,
        committed_only: bool = False,
    ) -> Optional[IdentityRecord]:
        """Get a cached record of a category; students without a level
        are looked up in both student partitions."""
        if exam_level is None:
            handles = partitions_for_category(category)
        else:
            handles = (resolve_partition(category, exam_level),)
        with self._lock:
            for handle in handles:
                record = self._lookup(self._key(handle, email), committed_only)
                if record is not None:
                    return record
        return None

    def get_any(self, email: str, committed_only: bool = False) -> Optional[IdentityRecord]:
        """Get a cached record from any partition, in federated probe order."""
        with self._lock:
            for handle in PROBE_ORDER:
                record = self._lookup(self._key(handle, email), committed_only)
                if record is not None:
                    return record
        return None

    def put(self, record: IdentityRecord, seeded: bool = False) -> None:
        key = self._key(_partition_of(record), record.email)
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = (self._clock(), record, seeded)

    def delete(
        self,
        category: Union[Category, str],
        email: str,
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> bool:
        """Remove a cached record. Returns whether an entry was removed."""
        key = self._key(resolve_partition(category, exam_level), email)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def seed(self, records: Iterable[IdentityRecord]) -> int:
        """Populate the cache from a fixed, display-only seed set."""
        count = 0
        for record in records:
            self.put(record, seeded=True)
            count += 1
        logger.info("Legacy identity cache seeded with %d records", count)
        return count

    # Mirror hooks, called by the identity manager after a commit

    def record_committed(self, record: IdentityRecord) -> None:
        self.put(record)

    def record_removed(self, record: IdentityRecord) -> None:
        self.delete(record.category, record.email, record.exam_level)


class CachedIdentityReader:
    """Read-through IdentityReader backed by a LegacyIdentityCache.

    Misses fall through to the canonical reader and populate the cache.
    Seed records never answer a read through this reader.
    """

    def __init__(self, source: IdentityReader, cache: LegacyIdentityCache):
        self.source = source
        self.cache = cache

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        record = self.cache.get_any(email, committed_only=True)
        if record is not None:
            return record
        record = await self.source.find_by_email(email)
        if record is not None:
            self.cache.put(record)
        return record

    async def find_by_email_and_type(
        self,
        email: str,
        category: Union[Category, str],
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> Optional[IdentityRecord]:
        record = self.cache.get(category, email, exam_level, committed_only=True)
        if record is not None:
            return record
        record = await self.source.find_by_email_and_type(email, category, exam_level)
        if record is not None:
            self.cache.put(record)
        return record


def legacy_seed_records() -> List[IdentityRecord]:
    """Fixed seed set loaded into the cache at process start."""
    confirmed = RegistrationStatus.CONFIRMED
    return [
        IdentityRecord(
            id="admin",
            email="admin@gce.cm",
            category=Category.ADMIN,
            registration_status=confirmed,
            email_verified=True,
            profile=AdminProfile(full_name="System Administrator", access_level="super_admin"),
            created_at="2025-01-01T00:00:00+00:00",
        ),
        IdentityRecord(
            id="GCE2025-ST-003421",
            email="jean.fopa@student.cm",
            category=Category.STUDENT,
            exam_level=ExamLevel.A_LEVEL,
            registration_status=confirmed,
            email_verified=True,
            profile=StudentProfile(
                full_name="Jean-Michel Fopa",
                date_of_birth="2005-03-15",
                gender="Male",
                region="South West",
                school_center_number="GBHS-001",
                candidate_number="CM2025-12345",
                subjects=[
                    SubjectEntry(code="ALG", name="English Literature", status="confirmed"),
                    SubjectEntry(code="AFR", name="French", status="confirmed"),
                    SubjectEntry(code="AMH", name="Mathematics", status="confirmed"),
                    SubjectEntry(code="APY", name="Physics", status="confirmed"),
                    SubjectEntry(code="ACY", name="Chemistry", status="confirmed"),
                ],
            ),
            created_at="2025-01-15T00:00:00+00:00",
        ),
        IdentityRecord(
            id="GCE2025-TC-001",
            email="sarah.mbeki@school.cm",
            category=Category.TEACHER,
            registration_status=confirmed,
            email_verified=True,
            profile=TeacherProfile(
                full_name="Dr. Sarah Mbeki",
                school="Government High School Yaounde",
                region="Centre",
            ),
            created_at="2025-01-10T00:00:00+00:00",
        ),
        IdentityRecord(
            id="demo-student",
            email="demo.student@gce.cm",
            category=Category.STUDENT,
            exam_level=ExamLevel.A_LEVEL,
            registration_status=confirmed,
            email_verified=True,
            profile=StudentProfile(
                full_name="Demo Student",
                date_of_birth="2000-01-01",
                gender="Female",
                region="Littoral",
                school_center_number="DEMO-001",
                candidate_number="DEMO123456",
            ),
            created_at="2025-01-01T00:00:00+00:00",
        ),
    ]


def build_legacy_cache(seed: Optional[bool] = None) -> LegacyIdentityCache:
    """Create the process-wide legacy cache, seeded unless disabled."""
    cache = LegacyIdentityCache()
    if config.LEGACY_CACHE_SEED_ENABLED if seed is None else seed:
        cache.seed(legacy_seed_records())
    return cache
