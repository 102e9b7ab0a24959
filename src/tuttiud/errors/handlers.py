"""FastAPI exception handlers producing the `{success: false, ...}` envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tuttiud.errors.exceptions import ForbiddenError, TuttiudError
from tuttiud.logging_config import current_user_id
from tuttiud.models.common import ErrorResponse

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app."""

    @app.exception_handler(TuttiudError)
    async def tuttiud_error_handler(request: Request, exc: TuttiudError):
        trace_id = getattr(request.state, "trace_id", "unknown")
        if isinstance(exc, ForbiddenError):
            logger.warning(
                "org_access_denied",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "trace_id": trace_id,
                    "user_id": current_user_id(),
                    "reason": str(exc),
                },
            )
        elif exc.status_code >= 500:
            logger.error("request_failed code=%s path=%s", exc.code, request.url.path)
        error_response = ErrorResponse(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response.model_dump(mode="json", exclude_none=True),
        )
