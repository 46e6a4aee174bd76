"""Audit schema definitions.

This module defines the AuditRecord data model and the actor stamped on it.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from schemas.identity import IdentityRecord, utc_now_iso


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditActor(BaseModel):
    """Who performed a mutation."""

    category: str
    id: str
    email: str

    @classmethod
    def system(cls) -> "AuditActor":
        return cls(category="system", id="system", email="system@localhost")

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "AuditActor":
        """Self-service actor: the identity acting on its own record."""
        return cls(category=record.category.value, id=record.id, email=record.email)


class AuditRecord(BaseModel):
    """Immutable description of one mutation to an identity record."""

    id: Optional[int] = Field(default=None, description="Assigned by the audit table.")
    table_name: str
    record_id: str
    action: AuditAction
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    actor_category: str
    actor_id: str
    actor_email: str
    timestamp: str = Field(default_factory=utc_now_iso)

    @classmethod
    def for_mutation(
        cls,
        table_name: str,
        action: AuditAction,
        actor: AuditActor,
        old: Optional[IdentityRecord] = None,
        new: Optional[IdentityRecord] = None,
    ) -> "AuditRecord":
        """Build an audit record from before/after snapshots of a record."""
        subject = new if new is not None else old
        return cls(
            table_name=table_name,
            record_id=subject.id,
            action=action,
            old_values=old.model_dump(mode="json") if old is not None else None,
            new_values=new.model_dump(mode="json") if new is not None else None,
            actor_category=actor.category,
            actor_id=actor.id,
            actor_email=actor.email,
        )
