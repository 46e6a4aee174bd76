"""Unit tests for database session helpers, logging and schemas."""

import json
import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

import config
from core import database
from core.logging_config import _JsonFormatter, get_alert_logger, setup_logging
from schemas.audit import AuditAction, AuditActor, AuditRecord
from schemas.identity import (
    Category,
    ExamLevel,
    IdentityRecord,
    RegistrationRequest,
    StudentProfile,
    TeacherProfile,
)
from tests.helpers.factories import student_request, teacher_request


class FakeAsyncSession:
    """Async session stub capturing commits and rollbacks."""

    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> "FakeAsyncSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


@pytest.mark.asyncio
async def test_get_session_commits_on_success() -> None:
    """get_session commits after successful usage."""
    session = FakeAsyncSession()

    async with database.get_session(lambda: session) as active_session:
        assert active_session is session

    assert session.committed is True
    assert session.rolled_back is False


@pytest.mark.asyncio
async def test_get_session_rolls_back_on_error(monkeypatch) -> None:
    """get_session rolls back when an exception is raised."""
    session = FakeAsyncSession()
    monkeypatch.setattr(database, "async_session_factory", lambda: session)

    with pytest.raises(RuntimeError, match="boom"):
        async with database.get_session():
            raise RuntimeError("boom")

    assert session.rolled_back is True
    assert session.committed is False


@pytest.mark.asyncio
async def test_check_connection(engine) -> None:
    """check_connection reports a reachable database."""
    assert await database.check_connection(engine) is True


def test_json_formatter_emits_one_object() -> None:
    """JSON log lines carry level, logger and message."""
    record = logging.LogRecord("gce_identity.test", logging.INFO, __file__, 1, "hello %s", ("there",), None)

    payload = json.loads(_JsonFormatter().format(record))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "gce_identity.test"
    assert payload["message"] == "hello there"


def test_setup_logging_keeps_alerts_visible() -> None:
    """The alerts logger stays at ERROR whatever the root level."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(level="critical", fmt="json")
        assert root.level == logging.CRITICAL
        assert isinstance(root.handlers[-1].formatter, _JsonFormatter)
        assert get_alert_logger().name == config.AUDIT_ALERT_LOGGER
        assert get_alert_logger().level == logging.ERROR
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)


def test_registration_request_normalizes_email() -> None:
    """Emails are stored lower-cased and stripped."""
    request = RegistrationRequest.model_validate(teacher_request("  Mixed@Case.TEST "))
    assert request.email == "mixed@case.test"
    assert "secret" not in repr(request)


def test_profile_union_rejects_cross_category_fields() -> None:
    """Each profile variant only accepts its own fields."""
    with pytest.raises(PydanticValidationError):
        TeacherProfile(full_name="T", school="S", candidate_number="X")
    with pytest.raises(PydanticValidationError):
        RegistrationRequest.model_validate(
            {**teacher_request(), "profile": student_request()["profile"]}
        )


def test_identity_record_selects_variant_by_kind() -> None:
    """The discriminator picks the profile class."""
    record = IdentityRecord(
        id="GCE2025-ST-1",
        email="s@x.test",
        category=Category.STUDENT,
        exam_level=ExamLevel.O_LEVEL,
        profile=student_request()["profile"],
    )
    assert isinstance(record.profile, StudentProfile)
    assert record.profile.affiliation == "GBHS-001"
    assert record.full_name == "Ngozi Tabi"


def test_audit_record_snapshots_without_secrets() -> None:
    """Audit snapshots are JSON-ready dumps of the public record."""
    record = IdentityRecord(
        id="GCE2025-TC-1",
        email="t@x.test",
        category=Category.TEACHER,
        profile=TeacherProfile(full_name="T", school="S"),
    )

    audit = AuditRecord.for_mutation("teachers", AuditAction.INSERT, AuditActor.system(), new=record)

    assert audit.record_id == "GCE2025-TC-1"
    assert audit.new_values["category"] == "teacher"
    assert audit.actor_category == "system"
    assert not any("hash" in key for key in audit.new_values)
