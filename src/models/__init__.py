"""ORM models. Importing this package registers every table with Base.metadata."""

from .base import Base
from .identity import (
    ALevelStudentModel,
    AdminModel,
    ExaminerModel,
    OLevelStudentModel,
    TeacherModel,
)
from .email_claim import EmailClaimModel
from .transfer_intent import TransferIntentModel
from .audit import AuditLogModel, AuditOutboxModel

__all__ = [
    "Base",
    "OLevelStudentModel",
    "ALevelStudentModel",
    "TeacherModel",
    "ExaminerModel",
    "AdminModel",
    "EmailClaimModel",
    "TransferIntentModel",
    "AuditLogModel",
    "AuditOutboxModel",
]
