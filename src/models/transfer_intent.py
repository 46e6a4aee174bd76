"""Partition transfer intent database model."""

from sqlalchemy import Column, String, Text

from .base import Base


class TransferIntentModel(Base):
    """Persisted progress of one partition transfer."""

    __tablename__ = "partition_transfers"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)
    source_partition = Column(String, nullable=False)
    source_record_id = Column(String, nullable=False, index=True)
    target_partition = Column(String, nullable=False)
    target_record_id = Column(String, nullable=True)
    state = Column(String, nullable=False, index=True)  # see schemas.transfer.TransferState
    error = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)  # ISO format string
    updated_at = Column(String, nullable=False)  # ISO format string
