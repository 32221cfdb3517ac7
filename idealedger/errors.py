"""Error taxonomy shared by the ledger, the access gate and the API layer.

Every error carries a stable machine-readable ``kind`` and the HTTP status the
API maps it to.
"""
from __future__ import annotations


class LedgerError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(LedgerError):
    kind = "validation_error"
    status_code = 400


class EquityExceededError(ValidationError):
    kind = "equity_exceeded"


class AuthenticationError(LedgerError):
    kind = "authentication_error"
    status_code = 401


class ForbiddenError(LedgerError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(LedgerError):
    kind = "not_found"
    status_code = 404


class UserNotFoundError(NotFoundError):
    kind = "user_not_found"


class ConflictError(LedgerError):
    kind = "conflict"
    status_code = 409


class DuplicateEmailError(ConflictError):
    kind = "duplicate_email"
    status_code = 400


class ProtectedRoleError(ConflictError):
    """The idea owner's assignment can never be removed or re-kinded."""

    kind = "protected_role"


class InternalError(LedgerError):
    kind = "internal_error"
    status_code = 500
