"""Partition transfer coordination.

Moves a record from one partition to another as a persisted saga:

    pending -> created -> source_deleted -> complete

``created`` is committed together with the destination row and
``source_deleted`` together with the source row's removal, so the intent
always tells which of the two recoverable states an interrupted transfer is
in: not yet transferred (``pending``) or present in both partitions
(``created``). The source row is only deleted after the destination row has
committed, so a record is never absent from both partitions.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

import pytz
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

import config
from core.database import get_session
from core.exceptions import (
    AuditWriteFailure,
    IdentityNotFoundError,
    TransferConflict,
    ValidationError,
)
from models.email_claim import EmailClaimModel
from models.transfer_intent import TransferIntentModel
from schemas.audit import AuditAction, AuditActor, AuditRecord
from schemas.identity import Category, IdentityRecord, utc_now_iso
from schemas.transfer import (
    OPEN_TRANSFER_STATES,
    ReconciliationReport,
    TransferIntent,
    TransferState,
)
from utils.audit_writer import AuditTrailWriter
from utils.converters import model_to_intent, model_to_record
from utils.federated_lookup import get_row_by_email, get_row_by_id
from utils.id_generator import new_id
from utils.partition_router import PartitionHandle, partition_by_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferOutcome:
    intent_id: str
    previous: IdentityRecord
    current: IdentityRecord


class PartitionTransferCoordinator:
    """Moves identity records between partitions of the same category."""

    def __init__(
        self,
        session_factory,
        audit_writer: AuditTrailWriter,
        on_audit_failure: Optional[Callable[[AuditWriteFailure], None]] = None,
        id_factory: Callable[[Category], str] = new_id,
    ):
        """Initialize PartitionTransferCoordinator.

        Args:
            session_factory: Async session factory.
            audit_writer: Writer the transfer's audit events go through.
            on_audit_failure: Escalation hook for audit failures.
            id_factory: Identifier generator for destination records.
        """
        self.session_factory = session_factory
        self.audit_writer = audit_writer
        self.on_audit_failure = on_audit_failure
        self.id_factory = id_factory

    async def transfer(
        self,
        record_id: str,
        from_partition: Union[str, PartitionHandle],
        to_partition: Union[str, PartitionHandle],
        actor: Optional[AuditActor] = None,
    ) -> TransferOutcome:
        """Transfer a record to another partition under a new identifier.

        Args:
            record_id: Identifier of the record in the source partition.
            from_partition: Source partition name or handle.
            to_partition: Destination partition name or handle.
            actor: Who requested the transfer; system by default.

        Returns:
            TransferOutcome with the records before and after the move.

        Raises:
            ValidationError: If the partitions are equal or of different
                categories.
            IdentityNotFoundError: If the source partition lacks the record.
            TransferConflict: If the destination already holds the email or
                an unfinished transfer of the record exists.
        """
        source = partition_by_name(from_partition)
        target = partition_by_name(to_partition)
        if source == target:
            raise ValidationError("Cannot transfer to the same partition")
        if source.category is not target.category:
            raise ValidationError(
                f"Cannot transfer a {source.category.value} record to the {target.name} partition"
            )
        actor = actor or AuditActor.system()

        # 1. read and check
        async with self.session_factory() as session:
            source_row = await get_row_by_id(session, source, record_id)
            if source_row is None:
                raise IdentityNotFoundError(record_id, source.name)
            previous = model_to_record(source_row, source)
            if await get_row_by_email(session, target, previous.email) is not None:
                raise TransferConflict(
                    previous.email, f"a record already exists in {target.name}"
                )
            open_intent = await session.execute(
                select(TransferIntentModel.id).where(
                    TransferIntentModel.source_record_id == record_id,
                    TransferIntentModel.state.in_([s.value for s in OPEN_TRANSFER_STATES]),
                )
            )
            if open_intent.first() is not None:
                raise TransferConflict(previous.email, "an unfinished transfer exists")

        # 2. persist the intent
        intent_id = uuid.uuid4().hex
        now = utc_now_iso()
        async with get_session(self.session_factory) as session:
            session.add(
                TransferIntentModel(
                    id=intent_id,
                    email=previous.email,
                    source_partition=source.name,
                    source_record_id=record_id,
                    target_partition=target.name,
                    state=TransferState.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("Transfer %s: %s -> %s started", intent_id, source.name, target.name)

        # 3. create in the destination
        try:
            current, insert_event_id = await self._create_destination(
                intent_id, source, target, record_id, actor
            )
        except IdentityNotFoundError as e:
            await self._set_state(intent_id, TransferState.ABANDONED, error=str(e))
            raise
        except IntegrityError as e:
            await self._set_state(intent_id, TransferState.ABANDONED, error=str(e.orig))
            raise TransferConflict(previous.email, f"destination {target.name} rejected the record") from e
        await self._flush_audit([insert_event_id])

        # 4. delete the source
        try:
            delete_event_id = await self._delete_source(intent_id, source, record_id, actor)
        except Exception:
            logger.error(
                "Transfer %s: %s is present in both %s and %s; run reconciliation",
                intent_id, previous.email, source.name, target.name,
            )
            raise

        # 5. audit and finish
        await self._flush_audit([delete_event_id])
        await self._set_state(intent_id, TransferState.COMPLETE)
        logger.info("Transfer %s complete: %s -> %s", intent_id, record_id, current.id)
        return TransferOutcome(intent_id=intent_id, previous=previous, current=current)

    async def _create_destination(self, intent_id, source, target, record_id, actor):
        async with get_session(self.session_factory) as session:
            source_row = await get_row_by_id(session, source, record_id)
            if source_row is None:
                raise IdentityNotFoundError(record_id, source.name)
            new_row = target.model(
                id=self.id_factory(target.category),
                email=source_row.email,
                credential_hash=source_row.credential_hash,
                security_answer_hash=source_row.security_answer_hash,
                registration_status=source_row.registration_status,
                email_verified=source_row.email_verified,
                full_name=source_row.full_name,
                region=source_row.region,
                affiliation=source_row.affiliation,
                profile=source_row.profile,
                created_at=source_row.created_at,
                updated_at=utc_now_iso(),
                last_login=source_row.last_login,
            )
            session.add(new_row)

            claim = await session.get(EmailClaimModel, source_row.email)
            if claim is None:
                session.add(
                    EmailClaimModel(
                        email=source_row.email,
                        partition=target.name,
                        record_id=new_row.id,
                        claimed_at=utc_now_iso(),
                    )
                )
            else:
                claim.partition = target.name
                claim.record_id = new_row.id

            current = model_to_record(new_row, target)
            event = self.audit_writer.enqueue(
                session,
                AuditRecord.for_mutation(target.table_name, AuditAction.INSERT, actor, new=current),
            )
            intent = await session.get(TransferIntentModel, intent_id)
            intent.state = TransferState.CREATED.value
            intent.target_record_id = new_row.id
            intent.updated_at = utc_now_iso()
            await session.flush()
            return current, event.id

    async def _delete_source(self, intent_id, source, record_id, actor) -> Optional[int]:
        async with get_session(self.session_factory) as session:
            event_id = None
            source_row = await get_row_by_id(session, source, record_id)
            if source_row is not None:
                previous = model_to_record(source_row, source)
                event = self.audit_writer.enqueue(
                    session,
                    AuditRecord.for_mutation(source.table_name, AuditAction.DELETE, actor, old=previous),
                )
                await session.delete(source_row)
            intent = await session.get(TransferIntentModel, intent_id)
            intent.state = TransferState.SOURCE_DELETED.value
            intent.updated_at = utc_now_iso()
            await session.flush()
            if source_row is not None:
                event_id = event.id
            return event_id

    async def _set_state(self, intent_id: str, state: TransferState, error: Optional[str] = None) -> None:
        async with get_session(self.session_factory) as session:
            intent = await session.get(TransferIntentModel, intent_id)
            intent.state = state.value
            intent.updated_at = utc_now_iso()
            if error is not None:
                intent.error = error

    async def _flush_audit(self, event_ids) -> None:
        try:
            await self.audit_writer.flush([i for i in event_ids if i is not None])
        except AuditWriteFailure as e:
            if self.on_audit_failure is None:
                raise
            self.on_audit_failure(e)

    async def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """Resume or close every unfinished transfer.

        - created: delete the leftover source row, audit it, complete.
        - source_deleted: complete.
        - pending for longer than TRANSFER_PENDING_TIMEOUT_SECONDS: abandon.

        Returns:
            ReconciliationReport listing intent IDs per outcome.
        """
        now = now or datetime.now(pytz.utc)
        cutoff = (now - timedelta(seconds=config.TRANSFER_PENDING_TIMEOUT_SECONDS)).isoformat()
        report = ReconciliationReport()

        async with self.session_factory() as session:
            result = await session.execute(
                select(TransferIntentModel)
                .where(TransferIntentModel.state.in_([s.value for s in OPEN_TRANSFER_STATES]))
                .order_by(TransferIntentModel.created_at)
            )
            intents = result.scalars().all()

        for intent in intents:
            state = TransferState(intent.state)
            try:
                if state is TransferState.CREATED:
                    source = partition_by_name(intent.source_partition)
                    event_id = await self._delete_source(
                        intent.id, source, intent.source_record_id, AuditActor.system()
                    )
                    await self._flush_audit([event_id])
                    await self._set_state(intent.id, TransferState.COMPLETE)
                    report.source_deleted.append(intent.id)
                elif state is TransferState.SOURCE_DELETED:
                    await self._set_state(intent.id, TransferState.COMPLETE)
                    report.completed.append(intent.id)
                elif intent.updated_at < cutoff:
                    await self._set_state(
                        intent.id, TransferState.ABANDONED, error="destination never created"
                    )
                    report.abandoned.append(intent.id)
            except Exception:
                logger.exception("Reconciliation of transfer %s failed", intent.id)
                report.failed.append(intent.id)

        logger.info(
            "Transfer reconciliation: %d source rows removed, %d completed, %d abandoned, %d failed",
            len(report.source_deleted), len(report.completed), len(report.abandoned), len(report.failed),
        )
        return report

    async def get_intent(self, intent_id: str) -> Optional[TransferIntent]:
        async with self.session_factory() as session:
            model = await session.get(TransferIntentModel, intent_id)
            return model_to_intent(model) if model is not None else None
