"""FastAPI application receiving list change notifications."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import ConfigurationError, ListMirrorError
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger
from .routes import metrics, notifications

logger = setup_logger(__name__, context={"component": "WebhookAPI"})


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    settings = ensure_runtime_configuration(get_settings())
    logger.info(
        "Webhook receiver started; queueing to '%s'",
        settings.sync_queue,
        extra={"status": "startup"},
    )
    yield
    logger.info("Webhook receiver stopped", extra={"status": "shutdown"})


async def handle_list_mirror_error(request: Request, exc: ListMirrorError) -> JSONResponse:
    """Render service errors as JSON; misconfiguration is reported as unavailable."""

    status_code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if isinstance(exc, ConfigurationError)
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    logger.error(
        "%s on %s: %s",
        exc.__class__.__name__,
        request.url.path,
        exc,
        extra={
            "correlation_id": request.headers.get("x-correlation-id") or "-",
            "status": "error",
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": str(exc), "error_type": exc.__class__.__name__},
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title="List_Mirror Webhook",
        description="Accepts change notifications for the monitored list and queues them",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_exception_handler(ListMirrorError, handle_list_mirror_error)  # type: ignore[arg-type]
    application.include_router(notifications.router, prefix="/api", tags=["notifications"])
    application.include_router(metrics.router, tags=["monitoring"])
    return application


app = create_app()
