"""Transfer intent schema definitions.

A transfer moves through pending -> created -> source_deleted -> complete.
A pending intent whose destination row never committed ends up abandoned.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TransferState(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    SOURCE_DELETED = "source_deleted"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


OPEN_TRANSFER_STATES = (
    TransferState.PENDING,
    TransferState.CREATED,
    TransferState.SOURCE_DELETED,
)


class TransferIntent(BaseModel):
    id: str
    email: str
    source_partition: str
    source_record_id: str
    target_partition: str
    target_record_id: Optional[str] = None
    state: TransferState
    error: Optional[str] = None
    created_at: str
    updated_at: str


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation pass, as lists of intent IDs."""

    source_deleted: List[str] = Field(
        default_factory=list,
        description="Intents whose leftover source row was removed.",
    )
    completed: List[str] = Field(default_factory=list)
    abandoned: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
