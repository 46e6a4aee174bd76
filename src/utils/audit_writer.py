"""Audit trail writer.

Mutations enqueue their audit event into ``audit_outbox`` inside their own
unit of work. After the mutation commits, the triggering operation awaits
``flush`` which moves those events into the append-only ``audit_log``; the
insert and the outbox delete share one transaction, so every event is
written exactly once. Events left behind by a failed flush are picked up by
``drain``.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import get_session
from core.exceptions import AuditWriteFailure
from models.audit import AuditLogModel, AuditOutboxModel
from schemas.audit import AuditAction, AuditRecord
from utils.converters import audit_to_log, audit_to_outbox, model_to_audit, outbox_to_log

logger = logging.getLogger(__name__)


class AuditTrailWriter:
    """Writes and reads the immutable audit trail."""

    def __init__(self, session_factory: async_sessionmaker):
        """Initialize AuditTrailWriter.

        Args:
            session_factory: Factory for the sessions used by flush and drain.
        """
        self.session_factory = session_factory

    def enqueue(self, session: AsyncSession, record: AuditRecord) -> AuditOutboxModel:
        """Add an audit event to the caller's unit of work.

        The event ID is assigned when the caller's session flushes.
        """
        event = audit_to_outbox(record)
        session.add(event)
        return event

    async def flush(self, event_ids: Sequence[int]) -> List[AuditRecord]:
        """Move committed outbox events into the audit log.

        Args:
            event_ids: Outbox IDs to move. IDs already moved are skipped.

        Returns:
            The audit records written, in event order.

        Raises:
            AuditWriteFailure: If the events could not be persisted.
        """
        if not event_ids:
            return []
        try:
            async with get_session(self.session_factory) as session:
                result = await session.execute(
                    select(AuditOutboxModel)
                    .where(AuditOutboxModel.id.in_(list(event_ids)))
                    .order_by(AuditOutboxModel.id)
                )
                written = await self._move(session, result.scalars().all())
        except Exception as e:
            raise AuditWriteFailure(event_ids, e) from e
        return written

    async def drain(self, limit: int = 100) -> List[AuditRecord]:
        """Persist outbox events left behind by earlier failed flushes.

        Args:
            limit: Maximum number of events moved in this pass.

        Returns:
            The audit records written.

        Raises:
            AuditWriteFailure: If the pass could not be persisted. Nothing
                is moved and the events stay in the outbox.
        """
        event_ids: List[int] = []
        try:
            async with get_session(self.session_factory) as session:
                result = await session.execute(
                    select(AuditOutboxModel).order_by(AuditOutboxModel.id).limit(limit)
                )
                events = result.scalars().all()
                event_ids = [e.id for e in events]
                written = await self._move(session, events)
        except Exception as e:
            raise AuditWriteFailure(event_ids, e) from e
        if written:
            logger.info("Drained %d audit events from the outbox", len(written))
        return written

    async def _move(self, session: AsyncSession, events) -> List[AuditRecord]:
        logs = []
        for event in events:
            log = outbox_to_log(event)
            session.add(log)
            await session.delete(event)
            logs.append(log)
        await session.flush()
        return [model_to_audit(log) for log in logs]

    async def append(self, record: AuditRecord, session: Optional[AsyncSession] = None) -> AuditRecord:
        """Write an audit record directly to the audit log.

        With a session, the record joins the caller's transaction and is
        flushed ahead of the caller's later statements.
        """
        if session is not None:
            log = audit_to_log(record)
            session.add(log)
            await session.flush()
            return model_to_audit(log)
        async with get_session(self.session_factory) as own_session:
            log = audit_to_log(record)
            own_session.add(log)
            await own_session.flush()
            return model_to_audit(log)

    async def pending_count(self) -> int:
        """Number of events still waiting in the outbox."""
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(AuditOutboxModel))
            return result.scalar_one()

    async def list_records(
        self,
        record_id: Optional[str] = None,
        table_name: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """List audit records, oldest first, with optional filters."""
        query = select(AuditLogModel)
        if record_id:
            query = query.where(AuditLogModel.record_id == record_id)
        if table_name:
            query = query.where(AuditLogModel.table_name == table_name)
        if action:
            query = query.where(AuditLogModel.action == AuditAction(action).value)
        query = query.order_by(AuditLogModel.id).limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [model_to_audit(m) for m in result.scalars().all()]
