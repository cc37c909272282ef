import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from licenselink/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from licenselink.api import auth, billing, health, licenses, webhooks
from licenselink.api.deps import Services, build_services
from licenselink.core.config import Settings, validate_config
from licenselink.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from licenselink.core.logging import configure_logging
from licenselink.core.middleware.request_id import RequestIdMiddleware
from licenselink.core.validation import validate_env


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("licenselink")
    logger.info("Starting licenselink backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("licenselink").info("Stopping licenselink backend...")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Settings and vendor clients are constructed here and stored on app.state;
    tests pass their own (with fake vendors) instead.
    """
    settings = settings or (services.settings if services else Settings())
    configure_logging(settings.ENV)
    validate_env(settings)
    validate_config(settings, strict=settings.CONFIG_STRICT)

    app = FastAPI(title="licenselink", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router)
    app.include_router(billing.router)
    app.include_router(webhooks.router)
    app.include_router(licenses.router)
    app.include_router(health.router)
    return app


if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(create_app(_settings), host="0.0.0.0", port=_settings.PORT)
