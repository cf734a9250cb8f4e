"""
Dev Phone API

FastAPI application serving the session gateway (and the UI, when a build is
present) for a running lifecycle controller.
"""

import logging
import webbrowser
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from devphone.api.routes import gateway
from devphone.config import Settings
from devphone.core.errors import DevPhoneError
from devphone.core.lifecycle import LifecycleController


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("twilio.http_client").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def ui_directory(settings: Settings) -> Optional[Path]:
    """Directory of the built UI, if one is configured and present."""
    if settings.ui_dir is None:
        return None
    ui_dir = Path(settings.ui_dir)
    if not (ui_dir / "index.html").exists():
        return None
    return ui_dir


def create_app(controller: LifecycleController) -> FastAPI:
    """
    Build the local web application for controller.

    Args:
        controller: Controller owning the session the API serves

    Returns:
        FastAPI application
    """
    settings = controller.settings
    ui_dir = ui_directory(settings)

    def announce() -> None:
        url = f"http://localhost:{settings.port}/"
        logger.info(f"Your local webserver is listening on port {settings.port}")

        if ui_dir is None:
            logger.info("UI files are missing; only the API is served")
        elif settings.headless:
            logger.info(f"UI is available at {url}")
        else:
            logger.info(f"Opening {url} in your browser")
            webbrowser.open(url)

        logger.info("Use ctrl-c to stop your dev-phone")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.

        Runs before the server binds its socket, so the listening
        announcement is left to the controller.
        """
        logger.info(f"Starting {settings.app_name} v{settings.version} as {controller.session.name}")
        controller.add_listening_callback(announce)
        yield
        logger.info(f"Stopping {settings.app_name}")

    app = FastAPI(
        title="Dev Phone",
        description="Local API for the dev phone UI.",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.controller = controller

    @app.exception_handler(DevPhoneError)
    async def dev_phone_exception_handler(
        request: Request,
        exc: DevPhoneError,
    ) -> JSONResponse:
        """Render dev phone errors with the remote status, or 400."""
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code or status.HTTP_400_BAD_REQUEST,
            content={"error": exc.to_dict()},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning(f"Validation error: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "message": "Validation error",
                    "detail": jsonable_errors(exc),
                },
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": {"message": str(exc), "type": type(exc).__name__}},
        )

    app.include_router(gateway.router)

    # Mounted last so API routes take precedence.
    if ui_dir is not None:
        app.mount("/", StaticFiles(directory=ui_dir, html=True), name="ui")

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the non-serializable context."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


if __name__ == "__main__":
    from devphone.cli import main

    main()
