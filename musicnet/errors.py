"""
Error hierarchy: every failure the core surfaces to a caller.

Kinds:
  not_found         referenced user / band / post does not exist
  conflict          creation would break a uniqueness rule (username, email)
  validation        caller-supplied parameter out of contract
  business_rule     operation inconsistent with domain rules
                     (leaving a band you are not in, self-follow, ...)
  forbidden         principal may not act on this resource
  infrastructure    store / transaction / deadline / object storage failure

Idempotent edge writes (follow, like, repost, unfollow, unlike) never raise
for "already there" / "already gone"; those are successes.
"""
from enum import Enum


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    FORBIDDEN = "forbidden"
    INFRASTRUCTURE = "infrastructure"


class MusicNetError(Exception):
    """Base exception for all classified core failures."""

    code = "INTERNAL_ERROR"
    category = ErrorCategory.INFRASTRUCTURE
    http_status = 500

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict:
        body = {
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


# ─── Domain errors (4xx) ───────────────────────────────────────────────────

class NotFoundError(MusicNetError):
    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    http_status = 404

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found",
            f"{resource_type} with ID {resource_id} not found",
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(MusicNetError):
    code = "ALREADY_EXISTS"
    category = ErrorCategory.CONFLICT
    http_status = 409


class ValidationFailedError(MusicNetError):
    code = "VALIDATION_FAILED"
    category = ErrorCategory.VALIDATION
    http_status = 400

    def __init__(self, field: str, reason: str):
        super().__init__("Validation failed", f"Field '{field}': {reason}")
        self.field = field


class BusinessRuleError(MusicNetError):
    code = "BUSINESS_RULE_VIOLATION"
    category = ErrorCategory.BUSINESS_RULE
    http_status = 422


class ForbiddenError(MusicNetError):
    code = "FORBIDDEN"
    category = ErrorCategory.FORBIDDEN
    http_status = 403


# ─── Infrastructure errors (5xx, transient from the caller's view) ─────────

class InfrastructureError(MusicNetError):
    code = "INFRASTRUCTURE_ERROR"
    category = ErrorCategory.INFRASTRUCTURE
    http_status = 503


class StoreUnavailableError(InfrastructureError):
    code = "DATABASE_ERROR"


class DeadlineExceededError(InfrastructureError):
    code = "DEADLINE_EXCEEDED"
    http_status = 504

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"{operation} did not finish within {timeout:g}s",
        )
        self.operation = operation
        self.timeout = timeout


class TransactionError(InfrastructureError):
    """Begin or commit of an atomic unit failed."""

    code = "TRANSACTION_FAILED"


class TransactionRollbackError(TransactionError):
    """
    Rolling back after a failed step failed as well.

    `original` is the failure that triggered the rollback (also chained as
    __cause__); `rollback_error` is what the rollback raised. Operators read
    this as a data-consistency risk, distinct from the original failure.
    """

    code = "ROLLBACK_FAILED"
    http_status = 500

    def __init__(self, original: BaseException, rollback_error: BaseException):
        super().__init__(
            "Failed to roll back transaction",
            f"rollback error: {rollback_error!r} (original error: {original!r})",
        )
        self.original = original
        self.rollback_error = rollback_error


class ReadOnlyTransactionError(TransactionError):
    code = "READ_ONLY_VIOLATION"
    http_status = 500


class ObjectStorageError(InfrastructureError):
    code = "S3_ERROR"
