"""Conversions between ORM models and pydantic schemas."""

from typing import Optional

from pydantic import TypeAdapter

from models.audit import AuditLogModel, AuditOutboxModel
from models.identity import PartitionColumnsMixin
from models.transfer_intent import TransferIntentModel
from schemas.audit import AuditRecord
from schemas.identity import IdentityRecord, Profile
from schemas.transfer import TransferIntent
from utils.partition_router import PartitionHandle

_profile_adapter = TypeAdapter(Profile)


def model_to_record(model: PartitionColumnsMixin, handle: PartitionHandle) -> IdentityRecord:
    """Build the public record of a partition row. Hashes are dropped."""
    return IdentityRecord(
        id=model.id,
        email=model.email,
        category=handle.category,
        exam_level=handle.exam_level,
        registration_status=model.registration_status,
        email_verified=bool(model.email_verified),
        profile=_profile_adapter.validate_python(model.profile),
        created_at=model.created_at,
        last_login=model.last_login,
    )


def record_to_model(
    record: IdentityRecord,
    handle: PartitionHandle,
    credential_hash: str,
    security_answer_hash: Optional[str] = None,
    updated_at: Optional[str] = None,
) -> PartitionColumnsMixin:
    """Build a partition row for a record in the given partition."""
    profile = record.profile
    return handle.model(
        id=record.id,
        email=record.email,
        credential_hash=credential_hash,
        security_answer_hash=security_answer_hash,
        registration_status=record.registration_status.value,
        email_verified=record.email_verified,
        full_name=profile.full_name,
        region=profile.region,
        affiliation=profile.affiliation,
        profile=profile.model_dump(mode="json"),
        created_at=record.created_at,
        updated_at=updated_at,
        last_login=record.last_login,
    )


def apply_record_to_model(record: IdentityRecord, model: PartitionColumnsMixin) -> None:
    """Copy mutable fields of a record onto an existing row."""
    profile = record.profile
    model.registration_status = record.registration_status.value
    model.email_verified = record.email_verified
    model.full_name = profile.full_name
    model.region = profile.region
    model.affiliation = profile.affiliation
    model.profile = profile.model_dump(mode="json")
    model.last_login = record.last_login


def audit_to_outbox(record: AuditRecord) -> AuditOutboxModel:
    return AuditOutboxModel(
        table_name=record.table_name,
        record_id=record.record_id,
        action=record.action.value,
        old_values=record.old_values,
        new_values=record.new_values,
        actor_category=record.actor_category,
        actor_id=record.actor_id,
        actor_email=record.actor_email,
        timestamp=record.timestamp,
    )


def audit_to_log(record: AuditRecord, outbox_id: Optional[int] = None) -> AuditLogModel:
    return AuditLogModel(
        table_name=record.table_name,
        record_id=record.record_id,
        action=record.action.value,
        old_values=record.old_values,
        new_values=record.new_values,
        actor_category=record.actor_category,
        actor_id=record.actor_id,
        actor_email=record.actor_email,
        timestamp=record.timestamp,
        outbox_id=outbox_id,
    )


def outbox_to_log(event: AuditOutboxModel) -> AuditLogModel:
    return AuditLogModel(
        table_name=event.table_name,
        record_id=event.record_id,
        action=event.action,
        old_values=event.old_values,
        new_values=event.new_values,
        actor_category=event.actor_category,
        actor_id=event.actor_id,
        actor_email=event.actor_email,
        timestamp=event.timestamp,
        outbox_id=event.id,
    )


def model_to_audit(model: AuditLogModel) -> AuditRecord:
    return AuditRecord(
        id=model.id,
        table_name=model.table_name,
        record_id=model.record_id,
        action=model.action,
        old_values=model.old_values,
        new_values=model.new_values,
        actor_category=model.actor_category,
        actor_id=model.actor_id,
        actor_email=model.actor_email,
        timestamp=model.timestamp,
    )


def model_to_intent(model: TransferIntentModel) -> TransferIntent:
    return TransferIntent(
        id=model.id,
        email=model.email,
        source_partition=model.source_partition,
        source_record_id=model.source_record_id,
        target_partition=model.target_partition,
        target_record_id=model.target_record_id,
        state=model.state,
        error=model.error,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )
