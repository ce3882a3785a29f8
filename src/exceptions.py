"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.  ``retryable`` tells
    the caller whether repeating the whole operation from scratch may succeed.
    """

    code: str = "APP_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class BusinessRuleException(AppException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class InvalidStateTransitionException(BusinessRuleException):
    """A lifecycle guard rejected the requested operation."""

    code = "INVALID_STATE_TRANSITION"


class ConcurrencyConflictException(ConflictException):
    """Another transaction changed or locked the same row first.

    Safe to retry the whole operation; a retried invoice creation claims a
    fresh sequence number.
    """

    code = "CONCURRENCY_CONFLICT"
    retryable = True


class LedgerIntegrityException(AppException):
    """Persisted ledger state contradicts an invariant (e.g. paid > total)."""

    code = "LEDGER_INTEGRITY_VIOLATION"
    status_code = 500


class RateLimitException(AppException):
    code = "RATE_LIMITED"
    status_code = 429
