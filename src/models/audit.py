"""Audit trail database models.

audit_outbox holds events written in the same unit of work as the mutation
they describe; audit_log is the append-only trail they are moved into.
"""

from sqlalchemy import JSON, Column, Integer, String, event

from .base import Base


class AuditOutboxModel(Base):
    """Audit event waiting to be moved into the audit log."""

    __tablename__ = "audit_outbox"
    # Outbox ids are recorded in audit_log.outbox_id and must never be reused
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    action = Column(String, nullable=False)  # 'INSERT', 'UPDATE' or 'DELETE'
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    actor_category = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    actor_email = Column(String, nullable=False)
    timestamp = Column(String, nullable=False)  # ISO format string


class AuditLogModel(Base):
    """Append-only audit record. Rows are never updated or deleted."""

    __tablename__ = "audit_log"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String, nullable=False, index=True)
    record_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    actor_category = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    actor_email = Column(String, nullable=False)
    timestamp = Column(String, nullable=False)  # ISO format string
    outbox_id = Column(Integer, nullable=True, unique=True)


@event.listens_for(AuditLogModel, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise RuntimeError(f"audit_log row {target.id} is immutable")


@event.listens_for(AuditLogModel, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise RuntimeError(f"audit_log row {target.id} cannot be deleted")
