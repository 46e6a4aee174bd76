"""Identity schema definitions.

This module defines the actor categories, the per-category profile variants,
the public IdentityRecord and the RegistrationRequest accepted by the
identity manager.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

import config

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

NOT_PROVIDED = "Not Provided"


class Category(str, Enum):
    """Closed set of actor categories."""

    STUDENT = "student"
    TEACHER = "teacher"
    EXAMINER = "examiner"
    ADMIN = "admin"


class ExamLevel(str, Enum):
    """Examination levels; each owns one student partition."""

    O_LEVEL = "O Level"
    A_LEVEL = "A Level"


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SUSPENDED = "suspended"


def normalize_email(email: str) -> str:
    """Lower-case and strip an email address for storage and lookup."""
    return email.strip().lower()


def utc_now_iso() -> str:
    return datetime.now(pytz.utc).isoformat()


class SubjectEntry(BaseModel):
    """A subject a student registered for."""

    code: str
    name: str
    status: Literal["confirmed", "pending"] = "pending"


class StudentProfile(BaseModel):
    """Profile fields of a student, shared by both exam levels."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["student"] = "student"
    full_name: str = Field(min_length=1)
    date_of_birth: str = Field(description="ISO date, e.g. 2005-03-15")
    gender: str
    region: str
    school_center_number: str = Field(description="Center number of the school the student sits at.")
    candidate_number: str
    phone_number: Optional[str] = None
    parent_guardian_name: str = NOT_PROVIDED
    parent_guardian_phone: str = NOT_PROVIDED
    parent_guardian_relation: Optional[str] = None
    emergency_contact_name: str = NOT_PROVIDED
    emergency_contact_phone: str = NOT_PROVIDED
    emergency_contact_relation: Optional[str] = None
    previous_school: str = NOT_PROVIDED
    previous_school_region: Optional[str] = None
    year_of_completion: Optional[str] = None
    security_question: str = config.DEFAULT_SECURITY_QUESTION
    national_id_number: Optional[str] = None
    place_of_birth: Optional[str] = None
    division: Optional[str] = None
    current_address: Optional[str] = None
    subjects: List[SubjectEntry] = Field(default_factory=list)
    # Carried by A Level candidates; kept across transfers either way
    o_level_results: Optional[dict] = None
    university_choices: Optional[List[str]] = None
    career_path: Optional[str] = None

    @property
    def affiliation(self) -> Optional[str]:
        return self.school_center_number


class TeacherProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["teacher"] = "teacher"
    full_name: str = Field(min_length=1)
    school: str
    region: str = config.DEFAULT_REGION
    teaching_subjects: List[str] = Field(default_factory=list)
    qualifications: List[str] = Field(default_factory=list)

    @property
    def affiliation(self) -> Optional[str]:
        return self.school


class ExaminerProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["examiner"] = "examiner"
    full_name: str = Field(min_length=1)
    specialization: str
    examining_level: Optional[ExamLevel] = None
    institution: Optional[str] = None
    region: str = config.DEFAULT_REGION
    certifications: List[str] = Field(default_factory=list)

    @property
    def affiliation(self) -> Optional[str]:
        return self.institution


class AdminProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["admin"] = "admin"
    full_name: str = Field(min_length=1)
    access_level: Literal["super_admin", "system_admin", "exam_admin", "security_admin"] = "system_admin"
    permissions: List[str] = Field(default_factory=lambda: ["read", "write"])
    region: str = config.DEFAULT_REGION

    @property
    def affiliation(self) -> Optional[str]:
        return None


Profile = Annotated[
    Union[StudentProfile, TeacherProfile, ExaminerProfile, AdminProfile],
    Field(discriminator="kind"),
]


class IdentityRecord(BaseModel):
    """Public view of a stored identity. Never carries credential hashes."""

    id: str = Field(description="Partition-scoped identifier, e.g. GCE2025-ST-...")
    email: str
    category: Category
    exam_level: Optional[ExamLevel] = Field(
        default=None,
        description="Only set for students; selects the owning partition.",
    )
    registration_status: RegistrationStatus = RegistrationStatus.PENDING
    email_verified: bool = False
    profile: Profile
    created_at: str = Field(default_factory=utc_now_iso)
    last_login: Optional[str] = None

    @property
    def full_name(self) -> str:
        return self.profile.full_name


class RegistrationRequest(BaseModel):
    """Input of a registration.

    The category and exam level are fixed here; the profile variant must
    match the category.
    """

    email: str
    secret: str = Field(min_length=6, repr=False)
    category: Category
    exam_level: Optional[ExamLevel] = None
    profile: Profile
    security_answer: Optional[str] = Field(default=None, repr=False)
    registration_status: RegistrationStatus = RegistrationStatus.CONFIRMED
    email_verified: bool = False

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = normalize_email(value)
        if not _EMAIL_PATTERN.match(value):
            raise ValueError("invalid email address")
        return value

    @field_validator("security_answer")
    @classmethod
    def check_security_answer(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.split():
            raise ValueError("security_answer must not be blank")
        return value

    @model_validator(mode="after")
    def check_category_fields(self):
        if self.profile.kind != self.category.value:
            raise ValueError(
                f"profile of kind '{self.profile.kind}' given for category '{self.category.value}'"
            )
        if self.category is Category.STUDENT:
            if self.exam_level is None:
                raise ValueError("exam_level is required for students")
            if not self.security_answer:
                raise ValueError("security_answer is required for students")
        elif self.exam_level is not None:
            raise ValueError("exam_level is only valid for students")
        return self
