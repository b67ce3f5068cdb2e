"""ASGI entry point for the membership portal payments API.

`app` serves every route under `/api`, the prefix CloudFront forwards to API
Gateway. `handler` is the Lambda entry point; `run_server` starts uvicorn for
local development.
"""

import logging

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from portal_api.exceptions import register_exception_handlers
from portal_api.middleware.correlation import CorrelationIdMiddleware
from portal_api.routes import (
    admin_payments_router,
    auth_router,
    checkout_router,
    health_router,
    payments_router,
    webhooks_router,
)
from portal_shared import __version__
from portal_shared.config import get_settings
from portal_shared.utils.logging import configure_logging

API_PREFIX = "/api"
LOCAL_DEV_ORIGIN = "http://127.0.0.1:3000"

ROUTERS: tuple[APIRouter, ...] = (
    health_router,
    checkout_router,
    payments_router,
    admin_payments_router,
    webhooks_router,
    auth_router,
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    api = FastAPI(
        title="Membership Portal Payments API",
        description="Checkout, payment reconciliation and refunds for the membership portal",
        version=__version__,
    )

    api.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url, LOCAL_DEV_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # outermost middleware
    api.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(api)

    for router in ROUTERS:
        api.include_router(router, prefix=API_PREFIX)

    logger.info("Payments API configured for %s", settings.environment)
    return api


configure_logging(logging.INFO)
app = create_app()
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Serve the API with uvicorn; reload mode needs the import string."""
    import uvicorn

    if reload:
        uvicorn.run("portal_api.main:app", host=host, port=port, reload=True, reload_dirs=["src"])
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
