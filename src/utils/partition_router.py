"""Identity partition routing.

Maps an actor category (and, for students, an exam level) to the partition
that owns records of that kind. Every other component addresses storage
through the PartitionHandle returned here.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type, Union

from core.exceptions import InvalidCategoryError, MissingExamLevelError, PartitionNotFoundError
from models.identity import (
    ALevelStudentModel,
    AdminModel,
    ExaminerModel,
    OLevelStudentModel,
    PartitionColumnsMixin,
    TeacherModel,
)
from schemas.identity import Category, ExamLevel


@dataclass(frozen=True)
class PartitionHandle:
    """Address of one physical partition."""

    name: str
    category: Category
    exam_level: Optional[ExamLevel]
    model: Type[PartitionColumnsMixin]

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    def __str__(self) -> str:
        return self.name


O_LEVEL_STUDENTS = PartitionHandle("o_level_students", Category.STUDENT, ExamLevel.O_LEVEL, OLevelStudentModel)
A_LEVEL_STUDENTS = PartitionHandle("a_level_students", Category.STUDENT, ExamLevel.A_LEVEL, ALevelStudentModel)
TEACHERS = PartitionHandle("teachers", Category.TEACHER, None, TeacherModel)
EXAMINERS = PartitionHandle("examiners", Category.EXAMINER, None, ExaminerModel)
ADMINS = PartitionHandle("admins", Category.ADMIN, None, AdminModel)

# Federated probe order. If the email invariant is ever broken by a bug, the
# first partition in this tuple holding the email wins. Do not reorder.
PROBE_ORDER: Tuple[PartitionHandle, ...] = (
    O_LEVEL_STUDENTS,
    A_LEVEL_STUDENTS,
    TEACHERS,
    EXAMINERS,
    ADMINS,
)

STUDENT_PARTITIONS: Tuple[PartitionHandle, ...] = (O_LEVEL_STUDENTS, A_LEVEL_STUDENTS)

_BY_KEY: Dict[Tuple[Category, Optional[ExamLevel]], PartitionHandle] = {
    (handle.category, handle.exam_level): handle for handle in PROBE_ORDER
}
_BY_NAME: Dict[str, PartitionHandle] = {handle.name: handle for handle in PROBE_ORDER}


def _coerce_category(category: Union[Category, str]) -> Category:
    try:
        return Category(category)
    except ValueError:
        raise InvalidCategoryError(category) from None


def resolve_partition(
    category: Union[Category, str],
    exam_level: Optional[Union[ExamLevel, str]] = None,
) -> PartitionHandle:
    """Resolve the partition owning records of a category.

    Args:
        category: One of the four actor categories.
        exam_level: Required if and only if the category is student.

    Returns:
        The PartitionHandle for the combination.

    Raises:
        InvalidCategoryError: If the category is outside the closed set.
        MissingExamLevelError: If a student category has no exam level.
        PartitionNotFoundError: If the exam level is unknown or given for a
            non-student category.
    """
    category = _coerce_category(category)
    if category is Category.STUDENT:
        if exam_level is None:
            raise MissingExamLevelError()
        try:
            exam_level = ExamLevel(exam_level)
        except ValueError:
            raise PartitionNotFoundError(f"Unknown exam level: {exam_level!r}") from None
    elif exam_level is not None:
        raise PartitionNotFoundError(
            f"Exam level given for non-student category '{category.value}'"
        )
    return _BY_KEY[(category, exam_level)]


def partition_by_name(name: Union[str, PartitionHandle]) -> PartitionHandle:
    """Resolve a persisted partition name back to its handle."""
    if isinstance(name, PartitionHandle):
        return name
    try:
        return _BY_NAME[name]
    except KeyError:
        raise PartitionNotFoundError(f"Unknown partition: {name!r}") from None


def partitions_for_category(category: Union[Category, str]) -> Tuple[PartitionHandle, ...]:
    """All partitions of a category, in probe order."""
    category = _coerce_category(category)
    return tuple(handle for handle in PROBE_ORDER if handle.category is category)
