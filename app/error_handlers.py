import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from domain.errors import (
    AnalysisError,
    BudgetExceededError,
    InputValidationError,
    ProfileEngineError,
    WaitTimeoutError,
)
from domain.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def status_for(exc: ProfileEngineError) -> int:
    if isinstance(exc, InputValidationError):
        return 404 if exc.not_found else 422
    if isinstance(exc, BudgetExceededError):
        return 413
    if isinstance(exc, WaitTimeoutError) or exc.transient:
        return 503
    if isinstance(exc, AnalysisError) or exc.kind == "persistent":
        return 502
    return 500


def attach_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProfileEngineError)
    async def _profile_engine_error(request: Request, exc: ProfileEngineError):
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
        body = ErrorResponse(**exc.to_dict())
        return JSONResponse(status_code=status, content=body.model_dump())

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
