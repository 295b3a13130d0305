from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from suggestion_relay.core.config import (
    DATABASE_URL,
    LINDY_SIGNATURE_POLICY,
    LINDY_SUPPRESS_OUTBOUND,
    LINDY_WEBHOOK_SECRET,
    LINDY_WEBHOOK_URL,
    SUGGESTIONS_BRIDGE,
)

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"
LINDY_PREFIX = "[LINDY]"

# colunas que o relay lê/escreve; o resto da tabela businesses pertence a outro serviço
RELAY_SCHEMA: dict[str, set[str]] = {
    "businesses": {"id", "name", "website_url", "industry", "business_type", "files_uploaded"},
    "lindy_responses": {"business_id", "question_id", "suggestions_json", "idempotency_key", "created_at"},
    "lindy_request_logs": {"business_id", "direction", "endpoint", "success", "created_at"},
}
SUPPORTED_BRIDGES = {"poll", "subscribe"}


def _runtime_env() -> str:
    return os.getenv("ENVIRONMENT", os.getenv("ENV", "dev")).strip().lower()


def validate_database_environment() -> None:
    env = _runtime_env()
    if env in {"prod", "production"} and DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def apply_migrations(*, alembic_config_path: Path) -> None:
    """Upgrade to head when AUTO_APPLY_MIGRATIONS asks for it (default: production only)."""
    env = _runtime_env()
    auto_apply_raw = os.getenv("AUTO_APPLY_MIGRATIONS", "").strip().lower()

    if auto_apply_raw in {"0", "false", "no", "off"}:
        logger.info("%s auto migration disabled by AUTO_APPLY_MIGRATIONS", MIGRATIONS_PREFIX)
        return

    should_auto_apply = auto_apply_raw in {"1", "true", "yes", "on"}
    if auto_apply_raw == "":
        should_auto_apply = env in {"prod", "production"}

    if not should_auto_apply:
        logger.info("%s auto migration skipped env=%s", MIGRATIONS_PREFIX, env)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    logger.info("%s applying migrations to head", MIGRATIONS_PREFIX)
    try:
        subprocess.run(
            [sys.executable, "-m", "alembic", "-c", str(alembic_config_path), "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        logger.critical(
            "%s migration apply failed returncode=%s stdout=%s stderr=%s",
            MIGRATIONS_PREFIX,
            exc.returncode,
            (exc.stdout or "").strip(),
            (exc.stderr or "").strip(),
        )
        raise RuntimeError("Automatic migration failed") from exc

    logger.info("%s migrations applied", MIGRATIONS_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if _runtime_env() == "test":
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    alembic_cfg = Config(str(alembic_config_path))
    script_directory = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        inspector = inspect(connection)
        if "alembic_version" not in inspector.get_table_names():
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")

        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    logger.info("%s migration state verified", MIGRATIONS_PREFIX)


def ensure_relay_tables_exist(*, engine: Engine) -> None:
    inspector = inspect(engine)
    missing_tables = sorted(table for table in RELAY_SCHEMA if not inspector.has_table(table))
    if missing_tables:
        logger.critical(
            "%s tables missing / migrations not applied missing=%s",
            MIGRATIONS_PREFIX,
            ",".join(missing_tables),
        )
        raise RuntimeError("tables missing / migrations not applied")

    for table, required in RELAY_SCHEMA.items():
        columns = {column["name"] for column in inspector.get_columns(table)}
        missing_columns = sorted(required - columns)
        if missing_columns:
            logger.critical(
                "%s table %s is missing columns=%s",
                MIGRATIONS_PREFIX,
                table,
                ",".join(missing_columns),
            )
            raise RuntimeError(f"Table {table} is missing relay columns")


def validate_lindy_settings() -> None:
    """Fail fast on settings that would break every request; warn on the rest."""
    if SUGGESTIONS_BRIDGE not in SUPPORTED_BRIDGES:
        logger.critical("%s unknown SUGGESTIONS_BRIDGE=%s", LINDY_PREFIX, SUGGESTIONS_BRIDGE)
        raise RuntimeError(f"Unknown suggestions bridge: {SUGGESTIONS_BRIDGE}")

    if LINDY_SIGNATURE_POLICY == "strict" and not LINDY_WEBHOOK_SECRET:
        logger.critical("%s strict signature policy without LINDY_WEBHOOK_SECRET", LINDY_PREFIX)
        raise RuntimeError("LINDY_SIGNATURE_POLICY=strict requires LINDY_WEBHOOK_SECRET")

    if LINDY_SUPPRESS_OUTBOUND:
        if _runtime_env() in {"prod", "production"}:
            logger.warning("%s outbound calls suppressed in production", LINDY_PREFIX)
        else:
            logger.warning("%s outbound Lindy calls suppressed; triggers are simulated", LINDY_PREFIX)
    elif not LINDY_WEBHOOK_URL:
        logger.warning("%s LINDY_WEBHOOK_URL not configured; triggers will fail", LINDY_PREFIX)

    if not LINDY_WEBHOOK_SECRET:
        logger.warning("%s LINDY_WEBHOOK_SECRET not set; callbacks are accepted unsigned", LINDY_PREFIX)

    logger.info("%s suggestions bridge=%s signature_policy=%s", LINDY_PREFIX, SUGGESTIONS_BRIDGE, LINDY_SIGNATURE_POLICY)
