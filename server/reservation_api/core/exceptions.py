"""Problem Details (RFC 9457) errors raised by the reservation API."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://example.com/problems"


def problem_type(slug: str) -> str:
    return f"{PROBLEM_BASE_URI}/{slug}"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProblemDetailsException(HTTPException):
    """
    An HTTP error whose body is a Problem Details document.

    Every error the reservation core raises carries a machine readable
    ``code`` extension (``AVAILABILITY_CONFLICT``, ``ALREADY_PAID``...) next
    to the standard ``type``/``title``/``status``/``detail`` members, so
    callers can branch on the code without parsing prose.
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.title = title
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = dict(extensions or {})

        body: Dict[str, Any] = {"type": self.type_uri, "title": title, "status": status_code}
        if detail:
            body["detail"] = detail
        if instance:
            body["instance"] = instance
        body.update(self.extensions)
        self.problem_details = body

        super().__init__(status_code=status_code, detail=body, headers=headers)

    @property
    def code(self) -> Optional[str]:
        """Application-specific error code, if one was attached."""
        return self.problem_details.get("code")


class ValidationError(ProblemDetailsException):
    """Malformed input: bad dates, amounts, ids or missing fields."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        violations: Optional[List[Dict[str, str]]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_FAILED", "retryable": False}
        if violations:
            extensions["violations"] = violations
        super().__init__(400, "Validation Error", detail, problem_type("validation-error"), instance, extensions)


class AuthenticationError(ProblemDetailsException):
    """Missing, invalid or expired bearer credential.

    ``reason`` becomes the upper-cased ``code`` (``UNAUTHENTICATED``,
    ``INVALID`` or ``EXPIRED``).
    """

    def __init__(
        self,
        reason: str = "unauthenticated",
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        self.reason = reason
        super().__init__(
            401,
            "Authentication Required",
            detail,
            problem_type("authentication-required"),
            instance,
            {"code": reason.upper()},
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Authenticated, but the role or ownership check failed."""

    def __init__(
        self,
        detail: str = "Your role does not allow this operation",
        required_roles: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "FORBIDDEN"}
        if required_roles:
            extensions["required_roles"] = required_roles
        super().__init__(403, "Access Forbidden", detail, problem_type("access-forbidden"), instance, extensions)


class NotFoundError(ProblemDetailsException):
    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if detail is None:
            subject = f"{resource_type} '{resource_id}'" if resource_id else resource_type
            detail = f"No {subject} exists"

        extensions: Dict[str, Any] = {"code": "NOT_FOUND", "resource_type": resource_type}
        if resource_id:
            extensions["resource_id"] = resource_id
        super().__init__(404, "Resource Not Found", detail, problem_type("resource-not-found"), instance, extensions)


class ConflictError(ProblemDetailsException):
    """
    The request is well formed but the current state forbids it.

    Subclasses set their own ``code``; a bare ``ConflictError`` reports
    ``CONFLICT``.
    """

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "CONFLICT"}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource
        super().__init__(409, "Resource Conflict", detail, problem_type("resource-conflict"), instance, extensions)


class InternalServerError(ProblemDetailsException):
    """Unexpected failure, tagged with an ``error_id`` to find it in the logs."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        extensions = {
            "code": "INTERNAL",
            "error_id": error_id or str(uuid.uuid4()),
            "timestamp": _utc_timestamp(),
        }
        super().__init__(
            500, "Internal Server Error", detail, problem_type("internal-server-error"), instance, extensions
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.problem_details, headers=exc.headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures as 400 Problem Details."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "invalid value"),
        }
        for error in exc.errors()
    ]
    problem = ValidationError(violations=violations, instance=str(request.url.path))
    return JSONResponse(status_code=problem.status_code, content=problem.problem_details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the failure and answer with a 500 problem."""
    problem = InternalServerError(instance=str(request.url))
    logger.error(
        "Unhandled exception",
        extra={"error_id": problem.problem_details["error_id"], "path": request.url.path, "error": str(exc)},
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content=problem.problem_details)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the Problem Details handlers to an application."""
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
