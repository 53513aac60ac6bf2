"""
Domain exceptions for the task management service.

Hierarchy:
- TaskDeskError (base)
  ├── ValidationError          400
  ├── UnauthorizedError        403
  ├── NotFoundError            404
  ├── InvalidTransitionError   409
  └── InvalidStateError        409

Services raise these; the HTTP layer turns them into JSON responses with
``register_exception_handlers``.
"""
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog


class TaskDeskError(Exception):
    """Base exception for all domain errors."""

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class ValidationError(TaskDeskError):
    """Malformed or missing input. Carries field-level errors."""

    status_code = 400

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, str]]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.errors = errors or []

    @classmethod
    def from_fields(cls, field_errors: Dict[str, str]) -> "ValidationError":
        errors = [{"field": k, "message": v} for k, v in field_errors.items()]
        summary = ", ".join(f"{e['field']}: {e['message']}" for e in errors)
        return cls(f"Validation failed: {summary}", errors=errors)


class UnauthorizedError(TaskDeskError):
    """Caller lacks the role, or is not the task's assignee."""

    status_code = 403


class NotFoundError(TaskDeskError):
    """Referenced task, issue or user does not exist."""

    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity_type} not found",
            context={"entity_type": entity_type, "entity_id": str(entity_id)},
        )


class InvalidTransitionError(TaskDeskError):
    """Status transition not legal from the current status."""

    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        context = {"current_status": current_status} if current_status else None
        super().__init__(message, context=context)
        self.current_status = current_status


class InvalidStateError(TaskDeskError):
    """Operation not permitted in the entity's current state."""

    status_code = 409


def _error_body(message: str, errors: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": message}
    if errors:
        body["errors"] = errors
    return body


async def _handle_domain_error(request: Request, exc: TaskDeskError) -> JSONResponse:
    structlog.get_logger().info(
        "request_rejected",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=exc.status_code,
        **exc.context,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, getattr(exc, "errors", None)),
    )


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    summary = ", ".join(f"{e['field']}: {e['message']}" for e in errors)
    return JSONResponse(status_code=400, content=_error_body(f"Validation failed: {summary}", errors))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskDeskError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
