"""Identity partition database models.

Each actor category lives in its own table; students are split further into
one table per exam level. All partition tables share the same columns.
"""

from sqlalchemy import JSON, Boolean, Column, String

from .base import Base


class PartitionColumnsMixin:
    """Columns common to every identity partition."""

    id = Column(String, primary_key=True, index=True)
    # Per-partition uniqueness; global uniqueness is held by email_claims
    email = Column(String, unique=True, index=True, nullable=False)
    credential_hash = Column(String, nullable=False)
    security_answer_hash = Column(String, nullable=True)
    registration_status = Column(String, nullable=False, default="pending")
    email_verified = Column(Boolean, nullable=False, default=False)
    full_name = Column(String, nullable=False)
    region = Column(String, nullable=True, index=True)
    affiliation = Column(String, nullable=True, index=True)
    profile = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)  # ISO format string
    updated_at = Column(String, nullable=True)  # ISO format string
    last_login = Column(String, nullable=True)  # ISO format string


class OLevelStudentModel(PartitionColumnsMixin, Base):
    __tablename__ = "o_level_students"


class ALevelStudentModel(PartitionColumnsMixin, Base):
    __tablename__ = "a_level_students"


class TeacherModel(PartitionColumnsMixin, Base):
    __tablename__ = "teachers"


class ExaminerModel(PartitionColumnsMixin, Base):
    __tablename__ = "examiners"


class AdminModel(PartitionColumnsMixin, Base):
    __tablename__ = "admins"
