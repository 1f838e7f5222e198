from fastapi import Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, detail: dict | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AppError):
    """Malformed input or a violated business rule; nothing was written."""
    kind = "validation"
    status_code = 422


class ConflictError(AppError):
    """The current state forbids the action; detail carries that state."""
    kind = "conflict"
    status_code = 409


class DependencyError(AppError):
    """Menu/tax configuration could not be read; the action was abandoned."""
    kind = "dependency"
    status_code = 503


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"kind": exc.kind, "message": exc.message, "detail": exc.detail},
    )
