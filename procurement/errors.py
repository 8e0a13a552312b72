"""Domain error taxonomy, rendered by the handler in main.py as
``{"error": {"code": ..., "message": ...}}``."""

from typing import Any, Optional


class ProcurementError(Exception):
    default_code = "INTERNAL_ERROR"
    default_message = "Unexpected error, please try again later"
    http_status = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class InvalidInputError(ProcurementError):
    default_code = "INVALID_INPUT"
    default_message = "Invalid request data"
    http_status = 400


class NotFoundError(ProcurementError):
    default_code = "NOT_FOUND"
    default_message = "Resource not found"
    http_status = 404


class InvalidStateError(ProcurementError):
    default_code = "INVALID_STATE"
    default_message = "Operation not allowed in the current state"
    http_status = 400


class PermissionDeniedError(ProcurementError):
    default_code = "INSUFFICIENT_PERMISSIONS"
    default_message = "You cannot perform this action"
    http_status = 403


class InternalError(ProcurementError):
    """Unexpected persistence failure. The message stays generic; the
    original error is kept in ``details`` for logging only."""

    default_code = "INTERNAL_ERROR"
    http_status = 500
