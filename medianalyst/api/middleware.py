"""
API middleware for MediAnalyst.

Provides:
- Rate limiting of the endpoints that call the generative service
- Request logging with a per-request id
- Mapping of application errors to ErrorResponse JSON
"""

import time
from typing import Callable, Optional
from uuid import uuid4

from fastapi import Request, Response, HTTPException
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from medianalyst.core.errors import MediAnalystError, AnalysisStepFailure
from medianalyst.utils.logger import get_logger, log_context

logger = get_logger("middleware")


# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)


def error_response(
    status_code: int,
    error: str,
    message: str,
    error_code: str,
    step: Optional[str] = None
) -> JSONResponse:
    """Build the JSON body shared by every error the API returns."""
    content = {"error": error, "message": message, "error_code": error_code}
    if step is not None:
        content["step"] = step
    return JSONResponse(status_code=status_code, content=content)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its status and duration.

    Each request gets an id, echoed in the X-Request-ID header and bound
    to every log line emitted while it is served.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex[:12]
        start_time = time.perf_counter()

        with log_context(request_id=request_id):
            logger.info(
                "Request received",
                method=request.method,
                path=request.url.path,
                client_ip=get_remote_address(request)
            )
            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    "Request failed",
                    path=request.url.path,
                    error=str(e),
                    process_time_ms=int((time.perf_counter() - start_time) * 1000)
                )
                raise

            elapsed = time.perf_counter() - start_time
            logger.info(
                "Request completed",
                path=request.url.path,
                status_code=response.status_code,
                process_time_ms=int(elapsed * 1000)
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence for exceptions no handler claimed.

    Internal details never reach the client.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(
                "Unhandled exception",
                path=request.url.path,
                error=str(e),
                exc_info=True
            )
            return error_response(
                500,
                "Internal Server Error",
                "An unexpected error occurred. Please try again.",
                "INTERNAL_ERROR"
            )


def setup_error_handlers(app) -> None:
    """Render application errors as ErrorResponse JSON."""

    @app.exception_handler(MediAnalystError)
    async def app_error_handler(request: Request, exc: MediAnalystError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message
        )
        return error_response(
            exc.status_code,
            type(exc).__name__,
            exc.message,
            exc.error_code,
            step=exc.step if isinstance(exc, AnalysisStepFailure) else None
        )


def setup_rate_limiting(app) -> None:
    """Attach the limiter and render rejections as ErrorResponse JSON."""
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(
            "Rate limit exceeded",
            path=request.url.path,
            client_ip=get_remote_address(request),
            limit=str(exc.detail)
        )
        return error_response(
            429,
            "Rate Limit Exceeded",
            f"Too many requests ({exc.detail}). Please wait before trying again.",
            "RATE_LIMIT_EXCEEDED"
        )
