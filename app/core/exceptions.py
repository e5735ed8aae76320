from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class AppException(Exception):
    code = "app_error"

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_content(self) -> dict:
        return {"message": self.message, "code": self.code}


class ValidationFailed(AppException):
    """One or more fields are missing or invalid. All failures are reported together."""

    code = "validation_failed"

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"Invalid or missing fields: {fields}", status_code=400)

    def to_content(self) -> dict:
        return {**super().to_content(), "errors": self.errors}


class InvalidTimeWindow(AppException):
    code = "invalid_time_window"

    def __init__(self, message: str, rule: str):
        self.rule = rule
        super().__init__(message, status_code=400)

    def to_content(self) -> dict:
        return {**super().to_content(), "rule": self.rule}


class HostNotFound(AppException):
    code = "host_not_found"

    def __init__(self, message: str = "Host not found"):
        super().__init__(message, status_code=404)


class VisitNotFound(AppException):
    code = "visit_not_found"

    def __init__(self, message: str = "Visit not found"):
        super().__init__(message, status_code=404)


class NotPending(AppException):
    code = "not_pending"

    def __init__(self, message: str = "Visit has already been decided"):
        super().__init__(message, status_code=409)


class InvalidState(AppException):
    code = "invalid_state"

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class Unauthorized(AppException):
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized to modify this visit"):
        super().__init__(message, status_code=403)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def _app_exception_handler(_: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_content(),
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(_: Request, exc: RequestValidationError):
        errors: dict[str, str] = {}
        for item in exc.errors():
            loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
            errors[".".join(loc) or "request"] = item.get("msg", "Invalid value")
        return JSONResponse(status_code=400, content=ValidationFailed(errors).to_content())

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error", "code": "internal_error"},
        )
