"""Ledger error taxonomy.

Every error maps to one HTTP status and a stable machine-readable code.
Services raise these before touching the store; the transaction helper in
``marketpoints.database`` turns store failures into ``InternalError``.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors rendered as structured JSON responses."""

    status_code: int = 500
    code: str = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Malformed, missing or out-of-range input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(LedgerError):
    """Subject, request or withdrawal does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(LedgerError):
    """Duplicate open request or an already-processed request."""

    status_code = 409
    code = "conflict"


class InsufficientBalanceError(LedgerError):
    """Withdrawal exceeds the subject's points balance."""

    status_code = 400
    code = "insufficient_balance"


class InternalError(LedgerError):
    """Store failure. The message never carries store details."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)


class AuthenticationError(LedgerError):
    status_code = 401
    code = "not_authenticated"


class PermissionDeniedError(LedgerError):
    status_code = 403
    code = "forbidden"
