import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from runchecks.api.router import app_router
from runchecks.common.config.app_config import AppConfig, config
from runchecks.common.database.database import DatabaseManager
from runchecks.common.errors import CatalogFormatError, ConfigurationError
from runchecks.config.settings import ConnectionConfig
from runchecks.integrations.email_sender import EmailSender
from runchecks.integrations.google_oauth import GoogleOAuthClient, GoogleOAuthService
from runchecks.integrations.google_sheets import CredentialsSource, GoogleSheetsStore, ServiceAccountSource
from runchecks.services.run_catalog import create_run_provider
from runchecks.services.run_check_cache import RunCheckCache
from runchecks.services.user_service import sync_superusers

logger = logging.getLogger(__name__)

SESSION_COOKIE = "bvsp.runcheck.session"
SESSION_MAX_AGE_SECONDS = 7 * 24 * 60 * 60


def _build_oauth_service(cfg: AppConfig, db: DatabaseManager) -> Optional[GoogleOAuthService]:
    try:
        client = GoogleOAuthClient.from_config(cfg)
    except ConfigurationError as e:
        logger.info("Google OAuth linking disabled: %s", e)
        return None
    return GoogleOAuthService(client=client, db=db)


def _build_store(cfg: AppConfig, oauth_service: Optional[GoogleOAuthService]) -> Optional[GoogleSheetsStore]:
    if not cfg.use_google_sheets:
        if cfg.RUN_PROVIDER == "sheets":
            logger.warning("Google Sheets provider configured but skipped outside production")
            logger.warning("Run checks will be stored in memory only")
        return None

    source: Optional[CredentialsSource] = None
    if cfg.has_service_account:
        try:
            source = ServiceAccountSource.from_config(cfg)
        except ConfigurationError as e:
            logger.error("Service account unusable: %s", e)
    if source is None:
        source = oauth_service
    if source is None:
        logger.error("No Google credentials available; run checks will be stored in memory only")
        return None

    logger.info("Google Sheets integration enabled")
    return GoogleSheetsStore(credentials_source=source, tz=cfg.tz)


def create_app(app_config: Optional[AppConfig] = None) -> FastAPI:
    cfg = app_config or config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: database, superusers, store, catalog, cache, schedulers."""

        logger.info("Starting Bear Valley Run Checks backend...")
        logger.info("Environment: %s, run provider: %s, timezone: %s", cfg.APP_ENV, cfg.RUN_PROVIDER, cfg.TIMEZONE)

        db = DatabaseManager(cfg.DATABASE_URL)
        await db.init()
        app.state.db = db

        await sync_superusers(db, cfg)

        oauth_service = _build_oauth_service(cfg, db)
        store = _build_store(cfg, oauth_service)
        app.state.oauth_service = oauth_service
        app.state.store = store

        try:
            provider = create_run_provider(cfg, store)
        except ConfigurationError:
            await db.dispose()
            raise
        try:
            await provider.initialize()
        except CatalogFormatError:
            logger.exception("Run catalog is malformed; refusing to start")
            await db.dispose()
            raise
        except Exception as e:
            # Unlinked Drive or store faults leave an empty catalog; refresh-runs loads it later.
            logger.error("Run provider failed to initialize: %s", e)
        app.state.run_provider = provider

        cache = RunCheckCache(tz=cfg.tz, store=store)
        await cache.initialize()
        app.state.cache = cache

        if oauth_service is not None:
            oauth_service.start()

        if cfg.ENABLE_LOGIN_WITHOUT_PASSWORD:
            logger.info("DEV: password-less login enabled at POST /auth/dev-login")
        if cfg.DISABLE_MAGIC_LINK:
            logger.info("DEV: magic link emails disabled")

        yield

        logger.info("Shutting down Bear Valley Run Checks backend...")
        cache.shutdown()
        if oauth_service is not None:
            oauth_service.shutdown()
        await app.state.connections.close_all()
        await db.dispose()
        logger.info("Shutdown complete")

    app = FastAPI(title="Bear Valley Run Checks", lifespan=lifespan)
    app.state.config = cfg
    app.state.connections = ConnectionConfig()
    app.state.email_sender = EmailSender.from_config(cfg)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if cfg.is_production else ["http://localhost:8080", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=cfg.SESSION_SECRET,
        session_cookie=SESSION_COOKIE,
        max_age=SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=cfg.is_production,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Rejected malformed request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.get("/health")
    async def health():
        return {"status": "ok", "provider": cfg.RUN_PROVIDER}

    app.include_router(app_router)
    return app


# Configure logging levels from the config
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

app = create_app()


# Run the app
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "runchecks.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=not config.is_production,
        log_level="info",
        access_log=False,
    )
