"""Blocking adapter over the asynchronous identity API.

Synchronous call sites use this adapter instead of a second implementation.
The adapter owns a private event loop running in a daemon thread and submits
every call to it with ``asyncio.run_coroutine_threadsafe``.

The wrapped manager's engine must only be used from the adapter's loop;
pooled async connections are bound to the loop that opened them.
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Coroutine, Dict, Optional, TypeVar, Union

from core.exceptions import IdentityStoreError
from schemas.audit import AuditActor
from schemas.identity import Category, ExamLevel, IdentityRecord, RegistrationRequest
from schemas.statistics import IdentityStatistics
from utils.identity_manager import IdentityManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BlockingIdentityAdapter:
    """Synchronous facade delegating to one IdentityManager."""

    def __init__(self, manager: IdentityManager, timeout: Optional[float] = 30.0):
        """Initialize BlockingIdentityAdapter and start its loop thread.

        Args:
            manager: The asynchronous identity manager.
            timeout: Seconds to wait for each call; None waits forever.
        """
        self.manager = manager
        self.timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="identity-blocking-loop", daemon=True
        )
        self._thread.start()

    def __enter__(self) -> "BlockingIdentityAdapter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._loop.is_closed()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine on the adapter's loop and wait for its result."""
        if self.closed:
            coro.close()
            raise IdentityStoreError("Blocking identity adapter is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def close(self) -> None:
        """Stop the loop thread. Pending calls are cancelled."""
        if self.closed:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        logger.debug("Blocking identity adapter closed")

    def create_identity(
        self,
        request: Union[RegistrationRequest, Dict[str, Any]],
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        return self.run(self.manager.create_identity(request, actor=actor))

    def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        return self.run(self.manager.find_by_email(email))

    def find_by_email_and_type(
        self,
        email: str,
        category: Union[Category, str],
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> Optional[IdentityRecord]:
        return self.run(self.manager.find_by_email_and_type(email, category, exam_level))

    def verify_credential(
        self,
        email: str,
        category: Union[Category, str],
        secret: str,
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> bool:
        return self.run(self.manager.verify_credential(email, category, secret, exam_level))

    def authenticate(
        self,
        email: str,
        category: Union[Category, str],
        secret: str,
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> IdentityRecord:
        return self.run(self.manager.authenticate(email, category, secret, exam_level))

    def transfer_partition(
        self,
        record_id: str,
        from_partition: str,
        to_partition: str,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        return self.run(
            self.manager.transfer_partition(record_id, from_partition, to_partition, actor=actor)
        )

    def get_statistics(self) -> IdentityStatistics:
        return self.run(self.manager.get_statistics())

    def email_exists(self, email: str) -> bool:
        return self.run(self.manager.email_exists(email))
