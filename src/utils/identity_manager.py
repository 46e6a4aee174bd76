"""Identity management.

This module provides the identity store's single asynchronous API: creating
identities in their partition, category-scoped and federated lookup,
credential verification, profile and status mutations, administrative
removal, partition transfers and statistics. Every mutation is audited and
then mirrored to any registered non-authoritative mirrors (the legacy cache).
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

import config
from core.database import get_session
from core.exceptions import (
    AccountInactiveError,
    AuditWriteFailure,
    CredentialMismatch,
    DuplicateEmailError,
    IdentityNotFoundError,
    ValidationError,
)
from core.logging_config import get_alert_logger
from models.email_claim import EmailClaimModel
from models.identity import PartitionColumnsMixin
from schemas.audit import AuditAction, AuditActor, AuditRecord
from schemas.identity import (
    Category,
    ExamLevel,
    IdentityRecord,
    RegistrationRequest,
    RegistrationStatus,
    utc_now_iso,
)
from schemas.statistics import IdentityStatistics
from schemas.transfer import ReconciliationReport
from utils.audit_writer import AuditTrailWriter
from utils.converters import apply_record_to_model, model_to_record, record_to_model
from utils.credential_codec import CredentialCodec
from utils.federated_lookup import FederatedLookup, get_row_by_id
from utils.id_generator import new_id
from utils.partition_router import (
    PROBE_ORDER,
    STUDENT_PARTITIONS,
    PartitionHandle,
    resolve_partition,
)
from utils.transfer_coordinator import PartitionTransferCoordinator

logger = logging.getLogger(__name__)

CategoryLike = Union[Category, str]
ExamLevelLike = Optional[Union[ExamLevel, str]]


class IdentityMirror(Protocol):
    """Receives committed identity changes. Never originates mutations."""

    def record_committed(self, record: IdentityRecord) -> None:
        ...

    def record_removed(self, record: IdentityRecord) -> None:
        ...


def _normalize_answer(answer: str) -> str:
    return " ".join(str(answer).split()).lower()


def _is_email_conflict(error: IntegrityError, table_name: str) -> bool:
    """Whether an IntegrityError was raised by one of the email unique constraints."""
    message = str(error.orig).lower()
    if "unique" not in message and "duplicate" not in message:
        return False
    claims = EmailClaimModel.__tablename__
    constraints = (
        # SQLite names the column
        f"{claims}.email",
        f"{table_name}.email",
        # PostgreSQL names the constraint or index
        f"{claims}_pkey",
        f"{table_name}_email_key",
        f"ix_{table_name}_email",
    )
    return any(name in message for name in constraints)


class IdentityManager:
    """Manages identity persistence and operations across all partitions."""

    def __init__(
        self,
        session_factory,
        codec: Optional[CredentialCodec] = None,
        audit_writer: Optional[AuditTrailWriter] = None,
        lookup: Optional[FederatedLookup] = None,
        id_factory: Callable[[Category], str] = new_id,
        mirrors: Iterable[IdentityMirror] = (),
        alert_hook: Optional[Callable[[AuditWriteFailure], None]] = None,
    ):
        """Initialize IdentityManager.

        Args:
            session_factory: Async SQLAlchemy session factory.
            codec: Credential codec; bcrypt at config.BCRYPT_ROUNDS by default.
            audit_writer: Audit trail writer over the same session factory.
            lookup: Federated lookup over the same session factory.
            id_factory: Identifier generator.
            mirrors: Non-authoritative mirrors notified after commits.
            alert_hook: Called with every AuditWriteFailure after logging.
        """
        self.session_factory = session_factory
        self.codec = codec or CredentialCodec()
        self.audit_writer = audit_writer or AuditTrailWriter(session_factory)
        self.lookup = lookup or FederatedLookup(session_factory)
        self.id_factory = id_factory
        self.mirrors: List[IdentityMirror] = list(mirrors)
        self.alert_hook = alert_hook
        self.transfers = PartitionTransferCoordinator(
            session_factory,
            self.audit_writer,
            on_audit_failure=self._report_audit_failure,
            id_factory=id_factory,
        )

    def add_mirror(self, mirror: IdentityMirror) -> None:
        self.mirrors.append(mirror)

    # --- internal helpers ---

    async def _hash(self, secret: str) -> str:
        return await asyncio.to_thread(self.codec.hash, secret)

    async def _verify(self, secret: str, hashed: Optional[str]) -> bool:
        return await asyncio.to_thread(self.codec.verify, secret, hashed)

    def _report_audit_failure(self, error: AuditWriteFailure) -> None:
        get_alert_logger().error(
            "Audit trail write failed; events %s remain in the outbox: %s",
            error.event_ids, error.cause,
        )
        if self.alert_hook is not None:
            self.alert_hook(error)

    async def _finish_audit(self, event_ids: List[int]) -> None:
        """Await the audit write of committed events; failures are escalated,
        never raised."""
        try:
            await self.audit_writer.flush(event_ids)
        except AuditWriteFailure as e:
            self._report_audit_failure(e)

    def _notify(self, committed: Iterable[IdentityRecord] = (), removed: Iterable[IdentityRecord] = ()) -> None:
        for mirror in self.mirrors:
            try:
                for record in removed:
                    mirror.record_removed(record)
                for record in committed:
                    mirror.record_committed(record)
            except Exception:
                logger.warning("Identity mirror %r failed to apply a change", mirror, exc_info=True)

    async def _locate_scoped(
        self, email: str, category: CategoryLike, exam_level: ExamLevelLike
    ) -> Optional[Tuple[PartitionHandle, PartitionColumnsMixin]]:
        return await self.lookup.locate(email, self.lookup.scope(category, exam_level))

    async def _mutate(
        self,
        record_id: str,
        category: CategoryLike,
        exam_level: ExamLevelLike,
        change: Callable[[IdentityRecord], IdentityRecord],
        actor: Optional[AuditActor] = None,
        credential_hash: Optional[str] = None,
        security_answer_hash: Optional[str] = None,
        audit_extra: Optional[Dict[str, Any]] = None,
    ) -> IdentityRecord:
        handle = resolve_partition(category, exam_level)
        async with get_session(self.session_factory) as session:
            row = await get_row_by_id(session, handle, record_id)
            if row is None:
                raise IdentityNotFoundError(record_id, handle.name)
            before = model_to_record(row, handle)
            after = change(before.model_copy(deep=True))
            apply_record_to_model(after, row)
            if credential_hash is not None:
                row.credential_hash = credential_hash
            if security_answer_hash is not None:
                row.security_answer_hash = security_answer_hash
            row.updated_at = utc_now_iso()

            audit = AuditRecord.for_mutation(
                handle.table_name,
                AuditAction.UPDATE,
                actor or AuditActor.from_record(before),
                old=before,
                new=after,
            )
            if audit_extra:
                audit.new_values.update(audit_extra)
            event = self.audit_writer.enqueue(session, audit)
            await session.flush()
            event_id = event.id
        await self._finish_audit([event_id])
        self._notify(committed=[after])
        return after

    # --- creation ---

    async def create_identity(
        self,
        request: Union[RegistrationRequest, Dict[str, Any]],
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        """Create a new identity in the partition of its category.

        Args:
            request: RegistrationRequest or an equivalent dict.
            actor: Who performed the registration; the new identity itself
                by default.

        Returns:
            Created IdentityRecord (without credential hashes).

        Raises:
            ValidationError: If the request is malformed.
            DuplicateEmailError: If the email is registered in any partition.
        """
        if not isinstance(request, RegistrationRequest):
            try:
                request = RegistrationRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e

        handle = resolve_partition(request.category, request.exam_level)
        email = request.email

        # Advisory; the email_claims primary key is the real guard
        if await self.lookup.email_exists(email):
            raise DuplicateEmailError(email)

        credential_hash = await self._hash(request.secret)
        security_answer_hash = None
        if request.security_answer:
            security_answer_hash = await self._hash(_normalize_answer(request.security_answer))

        record = IdentityRecord(
            id=self.id_factory(request.category),
            email=email,
            category=request.category,
            exam_level=request.exam_level,
            registration_status=request.registration_status,
            email_verified=request.email_verified,
            profile=request.profile,
        )
        try:
            async with get_session(self.session_factory) as session:
                session.add(
                    EmailClaimModel(
                        email=email,
                        partition=handle.name,
                        record_id=record.id,
                        claimed_at=record.created_at,
                    )
                )
                # Claim first so a racing duplicate fails on the global key
                await session.flush()
                session.add(record_to_model(record, handle, credential_hash, security_answer_hash))
                event = self.audit_writer.enqueue(
                    session,
                    AuditRecord.for_mutation(
                        handle.table_name,
                        AuditAction.INSERT,
                        actor or AuditActor.from_record(record),
                        new=record,
                    ),
                )
                await session.flush()
                event_id = event.id
        except IntegrityError as e:
            if _is_email_conflict(e, handle.table_name):
                raise DuplicateEmailError(email) from e
            raise

        await self._finish_audit([event_id])
        self._notify(committed=[record])
        logger.info("Created %s identity %s in %s", record.category.value, record.id, handle.name)
        return record

    # --- lookup ---

    async def find_by_email(self, email: str) -> Optional[IdentityRecord]:
        """Federated lookup; partitions probed in PROBE_ORDER."""
        return await self.lookup.find_by_email(email)

    async def find_by_email_and_type(
        self, email: str, category: CategoryLike, exam_level: ExamLevelLike = None
    ) -> Optional[IdentityRecord]:
        """Category-scoped lookup, preferred whenever the category is known."""
        return await self.lookup.find_by_email_and_type(email, category, exam_level)

    async def find_by_id(self, record_id: str) -> Optional[IdentityRecord]:
        return await self.lookup.find_by_id(record_id)

    async def email_exists(self, email: str) -> bool:
        """Advisory federated existence check. Never consults any cache."""
        return await self.lookup.email_exists(email)

    async def list_identities(
        self,
        category: CategoryLike,
        exam_level: ExamLevelLike = None,
        status: Optional[Union[RegistrationStatus, str]] = None,
    ) -> List[IdentityRecord]:
        """List identities of a category, newest first.

        Students without an exam level are listed from both partitions.
        """
        records = []
        async with self.session_factory() as session:
            for handle in self.lookup.scope(category, exam_level):
                query = select(handle.model)
                if status is not None:
                    query = query.where(
                        handle.model.registration_status == RegistrationStatus(status).value
                    )
                result = await session.execute(query)
                records.extend(model_to_record(m, handle) for m in result.scalars().all())
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def list_students_by_school(self, center_number: str) -> Dict[str, List[IdentityRecord]]:
        """Students of a school center, keyed by student partition name."""
        students = {}
        async with self.session_factory() as session:
            for handle in STUDENT_PARTITIONS:
                result = await session.execute(
                    select(handle.model).where(handle.model.affiliation == center_number)
                )
                students[handle.name] = [model_to_record(m, handle) for m in result.scalars().all()]
        return students

    # --- credentials ---

    async def _check_secret(
        self, email: str, category: CategoryLike, secret: str, exam_level: ExamLevelLike
    ) -> Optional[Tuple[PartitionHandle, PartitionColumnsMixin]]:
        located = await self._locate_scoped(email, category, exam_level)
        if located is None:
            await asyncio.to_thread(self.codec.dummy_verify, secret)
            return None
        handle, row = located
        if await self._verify(secret, row.credential_hash):
            if self.codec.needs_rehash(row.credential_hash):
                await self._upgrade_credential(handle, row, secret)
            return located
        if not self.codec.is_recognized(row.credential_hash) and self.codec.verify_legacy(
            secret, row.credential_hash
        ):
            logger.info("Upgrading legacy credential of %s", row.id)
            await self._upgrade_credential(handle, row, secret)
            return located
        return None

    async def _upgrade_credential(self, handle: PartitionHandle, row, secret: str) -> None:
        new_hash = await self._hash(secret)
        await self._mutate(
            row.id,
            handle.category,
            handle.exam_level,
            lambda record: record,
            actor=AuditActor.system(),
            credential_hash=new_hash,
            audit_extra={"credential_rehashed": True},
        )

    async def verify_credential(
        self,
        email: str,
        category: CategoryLike,
        secret: str,
        exam_level: ExamLevelLike = None,
    ) -> bool:
        """Verify a secret against the record of a category.

        Only the category-scoped lookup is used. An unknown email costs the
        same bcrypt verification as a wrong secret and is indistinguishable
        from it.
        """
        return await self._check_secret(email, category, secret, exam_level) is not None

    async def authenticate(
        self,
        email: str,
        category: CategoryLike,
        secret: str,
        exam_level: ExamLevelLike = None,
    ) -> IdentityRecord:
        """Verify a login and stamp the last-login time.

        Raises:
            CredentialMismatch: Unknown email or wrong secret.
            AccountInactiveError: The secret verified but the account is
                pending or suspended.
        """
        located = await self._check_secret(email, category, secret, exam_level)
        if located is None:
            raise CredentialMismatch()
        handle, row = located
        status = RegistrationStatus(row.registration_status)
        if status is not RegistrationStatus.CONFIRMED:
            raise AccountInactiveError(status.value)
        return await self.record_login(row.id, handle.category, handle.exam_level)

    async def verify_security_answer(
        self,
        email: str,
        category: CategoryLike,
        answer: str,
        exam_level: ExamLevelLike = None,
    ) -> bool:
        """Verify a security-question answer; case and spacing are ignored."""
        normalized = _normalize_answer(answer)
        located = await self._locate_scoped(email, category, exam_level)
        if not normalized or located is None or not located[1].security_answer_hash:
            await asyncio.to_thread(self.codec.dummy_verify, normalized)
            return False
        return await self._verify(normalized, located[1].security_answer_hash)

    async def change_secret(
        self,
        record_id: str,
        category: CategoryLike,
        new_secret: str,
        exam_level: ExamLevelLike = None,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        """Replace the credential of a record."""
        if not new_secret or len(new_secret) < 6:
            raise ValidationError("secret must be at least 6 characters")
        new_hash = await self._hash(new_secret)
        return await self._mutate(
            record_id, category, exam_level, lambda record: record,
            actor=actor, credential_hash=new_hash,
            audit_extra={"credential_changed": True},
        )

    # --- mutations ---

    async def update_profile(
        self,
        record_id: str,
        category: CategoryLike,
        changes: Dict[str, Any],
        exam_level: ExamLevelLike = None,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        """Update profile fields of a record.

        Raises:
            ValidationError: If a change names a field the category's profile
                does not have, or holds an invalid value.
        """
        if "kind" in changes:
            raise ValidationError("the profile kind cannot be changed")

        def change(record: IdentityRecord) -> IdentityRecord:
            data = record.profile.model_dump()
            data.update(changes)
            try:
                record.profile = type(record.profile).model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e
            return record

        return await self._mutate(record_id, category, exam_level, change, actor=actor)

    async def set_registration_status(
        self,
        record_id: str,
        category: CategoryLike,
        status: Union[RegistrationStatus, str],
        exam_level: ExamLevelLike = None,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        try:
            status = RegistrationStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid registration status: {status!r}") from None

        def change(record: IdentityRecord) -> IdentityRecord:
            record.registration_status = status
            return record

        return await self._mutate(record_id, category, exam_level, change, actor=actor)

    async def mark_email_verified(
        self,
        record_id: str,
        category: CategoryLike,
        exam_level: ExamLevelLike = None,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        def change(record: IdentityRecord) -> IdentityRecord:
            record.email_verified = True
            return record

        return await self._mutate(record_id, category, exam_level, change, actor=actor)

    async def record_login(
        self, record_id: str, category: CategoryLike, exam_level: ExamLevelLike = None
    ) -> IdentityRecord:
        """Stamp the last-login time of a record."""

        def change(record: IdentityRecord) -> IdentityRecord:
            record.last_login = utc_now_iso()
            return record

        return await self._mutate(record_id, category, exam_level, change)

    async def delete_identity(
        self,
        record_id: str,
        category: CategoryLike,
        exam_level: ExamLevelLike = None,
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        """Administratively remove a record.

        The DELETE audit record is written in the same transaction, ahead of
        the row removal; if it cannot be written, nothing is deleted.

        Returns:
            The removed record.
        """
        handle = resolve_partition(category, exam_level)
        async with get_session(self.session_factory) as session:
            row = await get_row_by_id(session, handle, record_id)
            if row is None:
                raise IdentityNotFoundError(record_id, handle.name)
            removed = model_to_record(row, handle)
            await self.audit_writer.append(
                AuditRecord.for_mutation(
                    handle.table_name,
                    AuditAction.DELETE,
                    actor or AuditActor.system(),
                    old=removed,
                ),
                session=session,
            )
            claim = await session.get(EmailClaimModel, row.email)
            if claim is not None and claim.record_id == record_id:
                await session.delete(claim)
            await session.delete(row)
        self._notify(removed=[removed])
        logger.info("Deleted %s identity %s from %s", removed.category.value, record_id, handle.name)
        return removed

    # --- transfers ---

    async def transfer_partition(
        self,
        record_id: str,
        from_partition: Union[str, PartitionHandle],
        to_partition: Union[str, PartitionHandle],
        actor: Optional[AuditActor] = None,
    ) -> IdentityRecord:
        """Move a record to another partition under a new identifier.

        Not atomic across partitions; see PartitionTransferCoordinator.
        """
        outcome = await self.transfers.transfer(record_id, from_partition, to_partition, actor=actor)
        self._notify(committed=[outcome.current], removed=[outcome.previous])
        return outcome.current

    async def reconcile_transfers(self) -> ReconciliationReport:
        return await self.transfers.reconcile()

    # --- audit ---

    async def drain_audit_outbox(self, limit: int = 100) -> List[AuditRecord]:
        return await self.audit_writer.drain(limit)

    async def audit_trail(
        self,
        record_id: Optional[str] = None,
        table_name: Optional[str] = None,
        action: Optional[Union[AuditAction, str]] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        return await self.audit_writer.list_records(record_id, table_name, action, limit)

    # --- statistics ---

    async def get_statistics(self) -> IdentityStatistics:
        """Count records per partition, region, affiliation and status."""
        stats = IdentityStatistics()
        async with self.session_factory() as session:
            for handle in PROBE_ORDER:
                model = handle.model
                count = (await session.execute(select(func.count()).select_from(model))).scalar_one()
                stats.by_partition[handle.name] = count
                stats.total += count
                if handle.category is Category.STUDENT:
                    stats.student_total += count

                regions = await session.execute(
                    select(model.region, func.count()).group_by(model.region)
                )
                stats.by_region[handle.name] = {
                    region or config.DEFAULT_REGION: n for region, n in regions.all()
                }

                affiliations = await session.execute(
                    select(model.affiliation, func.count()).group_by(model.affiliation)
                )
                stats.by_affiliation[handle.name] = {
                    affiliation or "Unaffiliated": n for affiliation, n in affiliations.all()
                }

                statuses = await session.execute(
                    select(model.registration_status, func.count()).group_by(model.registration_status)
                )
                for status, n in statuses.all():
                    stats.by_status[status] = stats.by_status.get(status, 0) + n
        return stats
