from __future__ import annotations

from contextlib import asynccontextmanager
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from dynaprov.api import submit
from dynaprov.api.utils import install_cors_headers, register_exception_handlers
from dynaprov.dependencies import get_request_store, get_settings
from dynaprov.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    install_cors_headers(app)
    if settings.store_backend == "sql":
        get_request_store().initialize()
    logger.info("dynaprov ready (store=%s, allowed_origin=%s)", settings.store_backend, settings.allowed_origin)
    yield


app = FastAPI(
    title="dynaprov",
    description="Service for provisioning per-request cloud resources",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    """Redirect root URL to Swagger UI docs."""
    return RedirectResponse(url="/docs")


app.include_router(submit.router)

register_exception_handlers(app)

if __name__ == "__main__":
    uvicorn.run("dynaprov.main:app", host="0.0.0.0", port=8001, log_level="info")
