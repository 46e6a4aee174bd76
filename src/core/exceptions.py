"""Custom exception classes for the GCE identity store.

This module defines application-specific exceptions following Google Python
Style Guide. Backend exceptions (SQLAlchemy IntegrityError and friends) are
translated into these before they reach callers.
"""


class IdentityStoreError(Exception):
    """Base exception for all identity store errors."""

    pass


class ValidationError(IdentityStoreError):
    """Raised when input is malformed or missing required fields.

    Always raised before any persistence call.
    """

    pass


class DuplicateEmailError(IdentityStoreError):
    """Raised when an email is already registered in any partition."""

    def __init__(self, email: str):
        """Initialize the exception.

        Args:
            email: The email address that is already taken.
        """
        self.email = email
        super().__init__(f"Email '{email}' is already registered")


class PartitionNotFoundError(IdentityStoreError):
    """Raised when a category/exam level combination has no partition.

    This is a programming error, not a user-facing condition.
    """

    pass


class InvalidCategoryError(PartitionNotFoundError):
    """Raised when a category is outside the closed set."""

    def __init__(self, category: object):
        """Initialize the exception.

        Args:
            category: The rejected category value.
        """
        self.category = category
        super().__init__(f"Invalid category: {category!r}")


class MissingExamLevelError(PartitionNotFoundError):
    """Raised when a student partition is requested without an exam level."""

    def __init__(self):
        super().__init__("An exam level is required for the student category")


class IdentityNotFoundError(IdentityStoreError):
    """Raised when a mutation targets a record that does not exist."""

    def __init__(self, record_id: str, partition: str = None):
        """Initialize the exception.

        Args:
            record_id: The ID of the record that was not found.
            partition: The partition that was searched, if known.
        """
        self.record_id = record_id
        self.partition = partition
        where = f" in partition '{partition}'" if partition else ""
        super().__init__(f"Identity '{record_id}' not found{where}")


class CredentialMismatch(IdentityStoreError):
    """Raised when a credential does not verify.

    The message is identical for unknown emails and wrong secrets.
    """

    def __init__(self):
        super().__init__("Invalid credentials")


class AccountInactiveError(IdentityStoreError):
    """Raised when a verified account is pending or suspended."""

    def __init__(self, status: str):
        """Initialize the exception.

        Args:
            status: The registration status that blocks the login.
        """
        self.status = status
        super().__init__(f"Account is {status}")


class AuditWriteFailure(IdentityStoreError):
    """Raised when audit events could not be persisted.

    Non-fatal for the triggering operation; escalated to the alerting logger.
    """

    def __init__(self, event_ids, cause: Exception = None):
        """Initialize the exception.

        Args:
            event_ids: Outbox event IDs that remain unwritten.
            cause: The underlying backend error.
        """
        self.event_ids = list(event_ids)
        self.cause = cause
        super().__init__(f"Failed to write audit events {self.event_ids}: {cause}")


class TransferConflict(IdentityStoreError):
    """Raised when a transfer would double-create a record.

    Requires reconciliation; never retried automatically.
    """

    def __init__(self, email: str, reason: str):
        """Initialize the exception.

        Args:
            email: Email of the record being transferred.
            reason: Why the transfer was refused.
        """
        self.email = email
        self.reason = reason
        super().__init__(f"Transfer of '{email}' refused: {reason}")
