import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from suggestion_relay.core.config import (
    CORS_ALLOW_ORIGIN_REGEX,
    CORS_ORIGINS,
    DATABASE_URL,
    LINDY_WEBHOOK_ALLOW_ANY_ORIGIN,
)
from suggestion_relay.core.database import Base, engine
from suggestion_relay.core.logging_setup import configure_logging
from suggestion_relay.core.startup_checks import (
    apply_migrations,
    ensure_migrations_applied,
    ensure_relay_tables_exist,
    validate_lindy_settings,
    validate_database_environment,
)
from suggestion_relay.middleware.observability import ObservabilityMiddleware
from suggestion_relay.middleware.webhook_preflight import LindyWebhookPreflightMiddleware
import suggestion_relay.models  # garante que os models são importados antes do create_all

from suggestion_relay.routers.admin_lindy import router as admin_lindy_router
from suggestion_relay.routers.internal_metrics import router as internal_metrics_router
from suggestion_relay.routers.lindy_webhook import router as lindy_webhook_router
from suggestion_relay.routers.suggestions import router as suggestions_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Suggestion Relay API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
if LINDY_WEBHOOK_ALLOW_ANY_ORIGIN:
    # precisa ficar por fora do CORSMiddleware
    app.add_middleware(LindyWebhookPreflightMiddleware)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        ensure_relay_tables_exist(engine=engine)
        validate_lindy_settings()
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


# Routers
app.include_router(lindy_webhook_router)
app.include_router(suggestions_router)
app.include_router(admin_lindy_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
