"""
Error taxonomy for the mentorship and messaging core.

Services raise these instead of HTTPException; ``register_exception_handlers``
turns them into structured JSON responses at the API boundary:

    {"detail": "...", "code": "MENTORSHIP_REQUEST_PENDING", "details": {...}}
"""
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class PortalError(Exception):
    """Base class for every recoverable domain error."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None, message: str | None = None):
        details = {"resource": resource}
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        super().__init__(
            message or f"{resource} not found",
            code=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            details=details,
        )


class ForbiddenError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not allowed", details: dict[str, Any] | None = None):
        super().__init__(message, code="FORBIDDEN", details=details)


class InvalidTransitionError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, current_status: str | None = None):
        details = {"current_status": current_status} if current_status else {}
        super().__init__(message, code="INVALID_TRANSITION", details=details)


class ConflictError(PortalError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, details=details)


class DuplicatePendingRequestError(ConflictError):
    def __init__(self, student_id: Any, alumni_id: Any):
        super().__init__(
            "A pending request already exists for this mentor",
            code="MENTORSHIP_REQUEST_PENDING",
            details={"student_id": str(student_id), "alumni_id": str(alumni_id)},
        )


class ConversationConflictError(ConflictError):
    def __init__(self, unique_key: str):
        super().__init__(
            "Conversation could not be created",
            code="CONVERSATION_CONFLICT",
            details={"unique_key": unique_key},
        )


class BlockedError(PortalError):
    """Moderation denies the action. The block reason is always surfaced."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        blocked_source: str | None = None,
        scope: str | None = None,
    ):
        details: dict[str, Any] = {"reason": reason}
        if blocked_source:
            details["blocked_source"] = blocked_source
        if scope:
            details["scope"] = scope
        super().__init__(message, code="BLOCKED", details=details)
        self.reason = reason
        self.blocked_source = blocked_source
        self.scope = scope


class ValidationError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


async def _portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, _portal_error_handler)
