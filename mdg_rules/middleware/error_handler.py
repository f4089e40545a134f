"""Structured error responses for evaluation faults and unexpected errors."""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from ..rules.errors import EvaluationFault
from .correlation import get_correlation_id

log = structlog.get_logger()


def _error_body(request: Request, error: str, message: str, **extra) -> dict:
    body = {
        "error": error,
        "message": message,
        "correlation_id": get_correlation_id(),
        "path": str(request.url.path),
    }
    body.update(extra)
    return body


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Maps exceptions escaping the routes onto JSON responses.

    EvaluationFault (record not evaluable) becomes a 422 carrying the rule ID;
    anything else becomes a 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except EvaluationFault as exc:
            log.warning("evaluation.fault", rule_id=exc.rule_id, error=exc.message, path=request.url.path)
            return JSONResponse(
                status_code=422,
                content=_error_body(request, "EvaluationFault", exc.message, rule_id=exc.rule_id),
            )
        except Exception as exc:
            log.error(
                "unhandled.exception",
                error=str(exc),
                error_type=exc.__class__.__name__,
                path=request.url.path,
                exc_info=True
            )
            return JSONResponse(
                status_code=500,
                content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
            )
