"""Federated identity lookup.

When the caller does not know which partition owns an email, partitions are
probed in the fixed order of ``partition_router.PROBE_ORDER``:

    o_level_students, a_level_students, teachers, examiners, admins

and the first match wins. The order is part of the contract: if the global
email invariant were ever broken, it decides which duplicate is returned.
Category-scoped lookups are preferred whenever the category is known, and
they are the only lookups used for credential verification.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.identity import PartitionColumnsMixin
from schemas.identity import Category, ExamLevel, IdentityRecord, normalize_email
from utils.converters import model_to_record
from utils.partition_router import (
    PROBE_ORDER,
    PartitionHandle,
    partitions_for_category,
    resolve_partition,
)

logger = logging.getLogger(__name__)

Located = Tuple[PartitionHandle, PartitionColumnsMixin]


async def get_row_by_email(
    session: AsyncSession, handle: PartitionHandle, email: str
) -> Optional[PartitionColumnsMixin]:
    """Fetch the row of one partition holding an email."""
    result = await session.execute(
        select(handle.model).where(handle.model.email == normalize_email(email))
    )
    return result.scalars().first()


async def get_row_by_id(
    session: AsyncSession, handle: PartitionHandle, record_id: str
) -> Optional[PartitionColumnsMixin]:
    """Fetch the row of one partition with an identifier."""
    return await session.get(handle.model, record_id)


class FederatedLookup:
    """Looks up identities across partitions."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        probe_order: Sequence[PartitionHandle] = PROBE_ORDER,
    ):
        """Initialize FederatedLookup.

        Args:
            session_factory: Factory for read-only sessions.
            probe_order: Partitions to probe, in order.
        """
        self.session_factory = session_factory
        self.probe_order = tuple(probe_order)

    def scope(
        self,
        category: Union[Category, str],
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> Tuple[PartitionHandle, ...]:
        """Partitions a category-scoped lookup is allowed to probe.

        A student without an exam level is looked up in both student
        partitions, O Level first.
        """
        if exam_level is None:
            handles = partitions_for_category(category)
            if len(handles) > 1:
                return handles
        return (resolve_partition(category, exam_level),)

    async def locate(
        self,
        email: str,
        partitions: Optional[Sequence[PartitionHandle]] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Located]:
        """Find the first partition row holding an email.

        Args:
            email: Email to look up; case-insensitive.
            partitions: Partitions to probe in order; all by default.
            session: Reuse an open session instead of opening one.

        Returns:
            (handle, row) of the first match, or None.
        """
        partitions = self.probe_order if partitions is None else tuple(partitions)
        if session is not None:
            return await self._probe(session, email, partitions)
        async with self.session_factory() as own_session:
            return await self._probe(own_session, email, partitions)

    async def _probe(
        self, session: AsyncSession, email: str, partitions: Sequence[PartitionHandle]
    ) -> Optional[Located]:
        for handle in partitions:
            row = await get_row_by_email(session, handle, email)
            if row is not None:
                return handle, row
        return None

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        """Federated lookup by email alone."""
        located = await self.locate(email)
        if located is None:
            return None
        handle, row = located
        logger.debug("Email resolved to partition %s", handle.name)
        return model_to_record(row, handle)

    async def find_by_email_and_type(
        self,
        email: str,
        category: Union[Category, str],
        exam_level: Optional[Union[ExamLevel, str]] = None,
    ) -> Optional[IdentityRecord]:
        """Category-scoped lookup by email."""
        located = await self.locate(email, self.scope(category, exam_level))
        if located is None:
            return None
        handle, row = located
        return model_to_record(row, handle)

    async def find_all_by_email(self, email: str) -> List[IdentityRecord]:
        """Every record holding an email, in probe order.

        More than one result means the email invariant is violated, e.g. by
        an interrupted transfer.
        """
        records = []
        async with self.session_factory() as session:
            for handle in self.probe_order:
                row = await get_row_by_email(session, handle, email)
                if row is not None:
                    records.append(model_to_record(row, handle))
        return records

    async def find_by_id(self, record_id: str) -> Optional[IdentityRecord]:
        """Federated lookup by identifier."""
        async with self.session_factory() as session:
            for handle in self.probe_order:
                row = await get_row_by_id(session, handle, record_id)
                if row is not None:
                    return model_to_record(row, handle)
        return None

    async def email_exists(self, email: str) -> bool:
        """Advisory existence check across all partitions."""
        return await self.locate(email) is not None
