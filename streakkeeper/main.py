import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from the package directory before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from streakkeeper.core.config import settings, validate_config  # noqa: E402
from streakkeeper.core.logging import LOGGER_NAME, configure_logging  # noqa: E402
from streakkeeper.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from streakkeeper.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from streakkeeper.api import health, reconciliation, shields, streaks  # noqa: E402
from streakkeeper.features.container import get_container  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(LOGGER_NAME)
    logger.info("Starting StreakKeeper backend...")
    container = get_container()
    # Launch duties: monthly refill, then sweep days missed while closed
    container.engine.refill_shields()
    container.engine.check_missed_days()
    try:
        yield
    finally:
        logging.getLogger(LOGGER_NAME).info("Stopping StreakKeeper backend...")


app = FastAPI(title="StreakKeeper - Streak & Shield Engine", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.router)
app.include_router(streaks.router, tags=["streaks"])
app.include_router(shields.router, tags=["shields"])
app.include_router(reconciliation.router, tags=["reconciliation"])
