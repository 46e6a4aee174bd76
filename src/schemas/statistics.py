"""Statistics schema definitions."""

from typing import Dict

from pydantic import BaseModel, Field


class IdentityStatistics(BaseModel):
    """Read-only aggregation over every partition."""

    total: int = 0
    student_total: int = 0
    by_partition: Dict[str, int] = Field(
        default_factory=dict,
        description="Record count per partition name.",
    )
    by_region: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="Per partition, record count per region.",
    )
    by_affiliation: Dict[str, Dict[str, int]] = Field(
        default_factory=dict,
        description="Per partition, record count per school/center/institution.",
    )
    by_status: Dict[str, int] = Field(default_factory=dict)
