"""Integration tests for credential verification and login."""

import hashlib

import bcrypt
import pytest
from sqlalchemy import update

from core.database import get_session
from core.exceptions import AccountInactiveError, CredentialMismatch, ValidationError
from schemas.audit import AuditAction
from schemas.identity import Category, ExamLevel, RegistrationStatus
from tests.helpers.factories import DEFAULT_SECRET, student_request, teacher_request
from utils.partition_router import TEACHERS
from utils.federated_lookup import get_row_by_id


class CountingCodec:
    """Wraps a codec and counts dummy verifications."""

    def __init__(self, codec) -> None:
        self._codec = codec
        self.dummy_calls = 0

    def __getattr__(self, name):
        return getattr(self._codec, name)

    def dummy_verify(self, secret: str) -> bool:
        self.dummy_calls += 1
        return self._codec.dummy_verify(secret)


@pytest.mark.asyncio
async def test_verify_credential_accepts_correct_secret(manager) -> None:
    """The right secret verifies under the record's own category."""
    await manager.create_identity(student_request("s1@x.test", exam_level=ExamLevel.A_LEVEL))

    assert await manager.verify_credential("s1@x.test", Category.STUDENT, DEFAULT_SECRET) is True
    assert await manager.verify_credential(
        "S1@X.TEST", "student", DEFAULT_SECRET, exam_level="A Level"
    ) is True


@pytest.mark.asyncio
async def test_wrong_secret_and_wrong_category_look_the_same(manager, monkeypatch) -> None:
    """A wrong secret and an email from another category both return False,
    and both pay for one bcrypt verification."""
    await manager.create_identity(teacher_request("t1@x.test"))
    counting = CountingCodec(manager.codec)
    monkeypatch.setattr(manager, "codec", counting)

    wrong_secret = await manager.verify_credential("t1@x.test", Category.TEACHER, "not-it-at-all")
    other_category = await manager.verify_credential("t1@x.test", Category.ADMIN, DEFAULT_SECRET)
    unknown = await manager.verify_credential("ghost@x.test", Category.TEACHER, DEFAULT_SECRET)

    assert wrong_secret is False
    assert other_category is False
    assert unknown is False
    assert counting.dummy_calls == 2


@pytest.mark.asyncio
async def test_scoped_verification_never_uses_another_partition(manager) -> None:
    """A student secret does not verify when the caller claims the wrong level."""
    await manager.create_identity(student_request("s1@x.test", exam_level=ExamLevel.O_LEVEL))

    assert await manager.verify_credential(
        "s1@x.test", Category.STUDENT, DEFAULT_SECRET, ExamLevel.A_LEVEL
    ) is False


@pytest.mark.asyncio
async def test_legacy_sha256_credential_is_upgraded(manager, session_factory) -> None:
    """A legacy SHA-256 credential verifies once and is re-hashed with bcrypt."""
    teacher = await manager.create_identity(teacher_request("old@x.test"))
    legacy = hashlib.sha256("legacy-pass".encode("utf-8")).hexdigest()
    async with get_session(session_factory) as session:
        await session.execute(
            update(TEACHERS.model)
            .where(TEACHERS.model.id == teacher.id)
            .values(credential_hash=legacy)
        )

    assert await manager.verify_credential("old@x.test", Category.TEACHER, "legacy-pass") is True

    async with session_factory() as session:
        row = await get_row_by_id(session, TEACHERS, teacher.id)
    assert row.credential_hash.startswith("$2b$")
    assert await manager.verify_credential("old@x.test", Category.TEACHER, "legacy-pass") is True
    assert await manager.verify_credential("old@x.test", Category.TEACHER, "wrong-pass") is False

    updates = await manager.audit_trail(record_id=teacher.id, action=AuditAction.UPDATE)
    assert len(updates) == 1
    assert updates[0].actor_id == "system"
    assert updates[0].new_values["credential_rehashed"] is True
    assert "credential_hash" not in updates[0].new_values


@pytest.mark.asyncio
async def test_authenticate_stamps_last_login(manager) -> None:
    """A successful login returns the record with a fresh last-login time."""
    teacher = await manager.create_identity(teacher_request())
    assert teacher.last_login is None

    logged_in = await manager.authenticate(teacher.email, Category.TEACHER, DEFAULT_SECRET)

    assert logged_in.id == teacher.id
    assert logged_in.last_login is not None
    assert (await manager.find_by_id(teacher.id)).last_login == logged_in.last_login


@pytest.mark.asyncio
async def test_authenticate_uses_one_message_for_every_mismatch(manager) -> None:
    """Unknown email and wrong secret raise the same CredentialMismatch."""
    await manager.create_identity(teacher_request("t1@x.test"))

    with pytest.raises(CredentialMismatch) as wrong:
        await manager.authenticate("t1@x.test", Category.TEACHER, "nope-nope")
    with pytest.raises(CredentialMismatch) as unknown:
        await manager.authenticate("ghost@x.test", Category.TEACHER, "nope-nope")

    assert str(wrong.value) == str(unknown.value)


@pytest.mark.asyncio
async def test_authenticate_refuses_inactive_accounts(manager) -> None:
    """Pending accounts are refused only after the secret verified."""
    student = await manager.create_identity(
        student_request("p1@x.test", status=RegistrationStatus.PENDING)
    )

    with pytest.raises(AccountInactiveError) as excinfo:
        await manager.authenticate("p1@x.test", Category.STUDENT, DEFAULT_SECRET, ExamLevel.A_LEVEL)
    assert excinfo.value.status == "pending"

    with pytest.raises(CredentialMismatch):
        await manager.authenticate("p1@x.test", Category.STUDENT, "bad-secret", ExamLevel.A_LEVEL)
    assert (await manager.find_by_id(student.id)).last_login is None


@pytest.mark.asyncio
async def test_security_answer_ignores_case_and_spacing(manager) -> None:
    """Security answers are compared after normalization."""
    await manager.create_identity(student_request("s1@x.test"))

    assert await manager.verify_security_answer("s1@x.test", Category.STUDENT, "  blue ") is True
    assert await manager.verify_security_answer("s1@x.test", Category.STUDENT, "green") is False
    assert await manager.verify_security_answer("nobody@x.test", Category.STUDENT, "blue") is False


@pytest.mark.asyncio
async def test_change_secret_replaces_credential(manager) -> None:
    """After a secret change only the new secret verifies."""
    teacher = await manager.create_identity(teacher_request())

    await manager.change_secret(teacher.id, Category.TEACHER, "brand-new-secret")

    assert await manager.verify_credential(teacher.email, "teacher", "brand-new-secret") is True
    assert await manager.verify_credential(teacher.email, "teacher", DEFAULT_SECRET) is False
    with pytest.raises(ValidationError):
        await manager.change_secret(teacher.id, Category.TEACHER, "short")
    trail = await manager.audit_trail(record_id=teacher.id, action=AuditAction.UPDATE)
    assert [r.new_values.get("credential_changed") for r in trail] == [True]


@pytest.mark.asyncio
async def test_wrong_secret_on_legacy_hash_costs_like_unknown_email(
    manager, session_factory, monkeypatch
) -> None:
    """A mismatch against a legacy SHA-256 credential pays the same bcrypt
    work as an unknown email."""
    teacher = await manager.create_identity(teacher_request("old@x.test"))
    legacy = hashlib.sha256("legacy-pass".encode("utf-8")).hexdigest()
    async with get_session(session_factory) as session:
        await session.execute(
            update(TEACHERS.model)
            .where(TEACHERS.model.id == teacher.id)
            .values(credential_hash=legacy)
        )

    calls = []
    real_checkpw = bcrypt.checkpw

    def counting_checkpw(secret, hashed):
        matched = real_checkpw(secret, hashed)
        calls.append(hashed)
        return matched

    monkeypatch.setattr(bcrypt, "checkpw", counting_checkpw)

    assert await manager.verify_credential("old@x.test", Category.TEACHER, "wrong-pass") is False
    legacy_calls = len(calls)
    assert await manager.verify_credential("ghost@x.test", Category.TEACHER, "wrong-pass") is False
    unknown_calls = len(calls) - legacy_calls

    assert legacy_calls == unknown_calls == 1


@pytest.mark.asyncio
async def test_blank_security_answer_never_verifies(manager) -> None:
    """An empty or whitespace-only answer is a mismatch for every student."""
    await manager.create_identity(student_request("s1@x.test"))

    assert await manager.verify_security_answer("s1@x.test", Category.STUDENT, "") is False
    assert await manager.verify_security_answer("s1@x.test", Category.STUDENT, "   ") is False
