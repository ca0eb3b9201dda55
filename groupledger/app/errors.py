"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the GroupLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Taxonomy (one subclass per failure category, each with a fixed HTTP status):
  ValidationError   422 — malformed or inconsistent input; raised before any write
  NotFound          404 — unresolved email, invite token, expense or request id
  Conflict          409 — duplicate pending request, already-member, resolved request
  Forbidden         403 — authenticated but not allowed
  PersistenceError  500 — transaction / commit / connection failure (always rolled back)

Authentication failures (401) are raised as plain AppError by the middleware.
Never conflate 401 (unauthenticated) with 403 (unauthorized).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class ValidationError(AppError):
    """Inconsistent input detected by the service layer (share sums, membership of participants)."""

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 422, field=field)


class NotFound(AppError):

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 404, field=field)


class Conflict(AppError):

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 409, field=field)


class Forbidden(AppError):

    def __init__(self, message: str, code: str = "FORBIDDEN") -> None:
        super().__init__(code, message, 403)


class PersistenceError(AppError):

    def __init__(self, message: str = "The operation could not be saved. Please try again.") -> None:
        super().__init__("PERSISTENCE_ERROR", message, 500)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# These are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"

    # ── Business Validation (422) ──────────────────────────────────────────
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    EMPTY_PARTICIPANTS         = "EMPTY_PARTICIPANTS"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    PARTIAL_SHARES             = "PARTIAL_SHARES"
    SHARE_SUM_MISMATCH         = "SHARE_SUM_MISMATCH"
    AMOUNT_TOO_SMALL_TO_SPLIT  = "AMOUNT_TOO_SMALL_TO_SPLIT"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    NOTHING_TO_UPDATE          = "NOTHING_TO_UPDATE"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    DUPLICATE_PENDING_REQUEST  = "DUPLICATE_PENDING_REQUEST"
    REQUEST_ALREADY_RESOLVED   = "REQUEST_ALREADY_RESOLVED"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    INVITE_TOKEN_NOT_FOUND     = "INVITE_TOKEN_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    REQUEST_NOT_FOUND          = "REQUEST_NOT_FOUND"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    USER_NOT_REGISTERED        = "USER_NOT_REGISTERED"    # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403
    IDENTITY_MISMATCH          = "IDENTITY_MISMATCH"      # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    PERSISTENCE_ERROR          = "PERSISTENCE_ERROR"
    INTERNAL_ERROR             = "INTERNAL_ERROR"
