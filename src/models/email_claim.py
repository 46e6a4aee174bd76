"""Email claim database model.

One row per live email across all partitions. The primary key is the
storage-level constraint that keeps an email in at most one partition.
"""

from sqlalchemy import Column, String

from .base import Base


class EmailClaimModel(Base):
    """Email claim database model."""

    __tablename__ = "email_claims"

    email = Column(String, primary_key=True)  # lower-cased
    partition = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    claimed_at = Column(String, nullable=False)  # ISO format string
