"""
Travel Planner Entitlements API - Main FastAPI Application

Serves the subscription system over HTTP:
- Issuing, verifying, activating and cancelling server-held subscriptions
- Premium routes gated on a subscription bearer token
- The local device subscription through the platform providers
"""

import logging
import sys
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

# Add parent directory to path to import existing modules
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, get_settings
from subscription.entitlement_service import build_entitlement_service
from subscription.models import utc_now
from subscription.providers import build_provider_registry
from subscription.repository import InMemorySubscriptionRepository, SubscriptionRepository
from subscription.server_verification import ServerVerificationAdapter
from subscription.token_store import TokenStore
from subscription.usage_quota import UsageQuota
from web_ui.api.middleware.auth import install_auth_handlers

logger = logging.getLogger(__name__)


def configure_logging(app_settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    app_settings: Optional[Settings] = None,
    repository: Optional[SubscriptionRepository] = None,
    store: Optional[TokenStore] = None,
    clock: Callable[[], datetime] = utc_now,
) -> FastAPI:
    """
    Build the application.

    The record repository, the local token store and the clock are
    injectable; by default the repository lives in memory and the token
    store is the JSON file under STORAGE_DIR.
    """
    app_settings = app_settings or get_settings()
    configure_logging(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown events"""
        logger.info(
            f"{app_settings.APP_NAME} starting on "
            f"http://{app_settings.API_HOST}:{app_settings.API_PORT} ({app_settings.APP_ENV})"
        )
        if app_settings.ACCEPT_UNVERIFIED_MOBILE_CODES and app_settings.is_production:
            logger.warning("ACCEPT_UNVERIFIED_MOBILE_CODES is on in production; it is ignored while a server is wired")
        yield
        logger.info(f"{app_settings.APP_NAME} shutting down")

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="Subscription entitlements for the Travel Planner",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Accept",
            "Authorization",
            "Content-Type",
            "Origin",
            "User-Agent",
        ],
    )

    # Server side: record store and verification adapter
    if repository is None:
        repository = InMemorySubscriptionRepository()
    adapter = ServerVerificationAdapter(repository, clock=clock)

    # Device side: local store cached from the server's grants
    service = build_entitlement_service(
        app_settings,
        store=store,
        code_verifier=adapter.verify_mobile_code,
        clock=clock,
    )

    # Free-use counters share the device store
    quota = UsageQuota(service.store.backend, service, clock=clock)

    app.state.settings = app_settings
    app.state.repository = repository
    app.state.verification_adapter = adapter
    app.state.entitlement_service = service
    app.state.usage_quota = quota
    app.state.provider_registry = build_provider_registry(service, adapter, quota)

    install_auth_handlers(app)

    from web_ui.api.routes import subscription

    app.include_router(subscription.router, prefix="/api/v1")
    app.include_router(subscription.premium_router, prefix="/api/v1")
    app.include_router(subscription.device_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """API root endpoint"""
        return {
            "name": app_settings.APP_NAME,
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=get_settings().API_HOST, port=get_settings().API_PORT)
