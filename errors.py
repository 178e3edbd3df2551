"""Error taxonomy for the resource lifecycle and its HTTP mapping."""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from models import ResourceStatus


REQUEST_LOCATIONS = ("body", "query", "path")


def field_errors(errors: list[dict]) -> list[dict]:
    """Flatten pydantic error dicts to {"field", "message"} items."""
    items = []
    for err in errors:
        loc = list(err.get("loc", ()))
        if loc and loc[0] in REQUEST_LOCATIONS:
            loc = loc[1:]
        items.append({"field": ".".join(str(part) for part in loc), "message": err["msg"]})
    return items


class ResourceShareError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message}


class ValidationError(ResourceShareError):
    """Malformed creation payload."""

    status_code = 422

    def __init__(self, message: str, errors: Optional[list[dict]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "errors": self.errors}


class NotFound(ResourceShareError):
    status_code = status.HTTP_404_NOT_FOUND


class OwnershipViolation(ResourceShareError):
    """
    Caller is not the donor/receiver the operation requires.

    `reason` is for logs only; callers always get the generic message.
    """

    status_code = status.HTTP_403_FORBIDDEN
    public_message = "You are not allowed to perform this action on this resource"

    def __init__(self, reason: str) -> None:
        super().__init__(self.public_message)
        self.reason = reason


class RoleViolation(ResourceShareError):
    status_code = status.HTTP_403_FORBIDDEN


class StateConflict(ResourceShareError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: ResourceStatus) -> None:
        super().__init__(message)
        self.current_status = current_status

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "current_status": self.current_status.value}


class IdentityError(ResourceShareError):
    """Unknown, inactive or unauthenticated caller."""

    status_code = status.HTTP_401_UNAUTHORIZED


async def resource_share_error_handler(
    request: Request, exc: ResourceShareError
) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    error = ValidationError("Invalid request payload", errors=field_errors(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ResourceShareError, resource_share_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
