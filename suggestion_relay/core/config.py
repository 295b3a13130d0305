import os

from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./suggestion_relay.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging", "homolog"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# Lindy (agente externo)
LINDY_WEBHOOK_URL = os.getenv("LINDY_WEBHOOK_URL", "").strip()
LINDY_CALLBACK_URL = os.getenv("LINDY_CALLBACK_URL", "http://localhost:8000/api/lindy/webhooks").strip()
LINDY_WEBHOOK_SECRET = os.getenv("LINDY_WEBHOOK_SECRET", "").strip()
LINDY_OUTBOUND_TIMEOUT_SECONDS = float(os.getenv("LINDY_OUTBOUND_TIMEOUT_SECONDS", "20"))

_suppress_env = os.getenv("LINDY_SUPPRESS_OUTBOUND", "").strip().lower()
if _suppress_env:
    LINDY_SUPPRESS_OUTBOUND = _suppress_env in _TRUTHY
else:
    LINDY_SUPPRESS_OUTBOUND = IS_DEV and os.getenv("SKIP_LINDY_IN_DEV", "").strip().lower() != "false"

LINDY_SIGNATURE_POLICY = os.getenv("LINDY_SIGNATURE_POLICY", "lenient").strip().lower()
if LINDY_SIGNATURE_POLICY not in {"lenient", "strict"}:
    LINDY_SIGNATURE_POLICY = "lenient"

LINDY_IDEMPOTENCY_STRATEGY = os.getenv("LINDY_IDEMPOTENCY_STRATEGY", "timestamp").strip().lower()
if LINDY_IDEMPOTENCY_STRATEGY not in {"timestamp", "content"}:
    LINDY_IDEMPOTENCY_STRATEGY = "timestamp"

LINDY_GUARD_CONCURRENT_TRIGGERS = _env_flag("LINDY_GUARD_CONCURRENT_TRIGGERS")
LINDY_INFLIGHT_TTL_SECONDS = float(os.getenv("LINDY_INFLIGHT_TTL_SECONDS", "120"))

# Entrega das sugestões para o cliente
SUGGESTIONS_BRIDGE = os.getenv("SUGGESTIONS_BRIDGE", "poll").strip().lower()
if SUGGESTIONS_BRIDGE not in {"poll", "subscribe"}:
    SUGGESTIONS_BRIDGE = "poll"
SUGGESTIONS_POLL_MAX_ATTEMPTS = int(os.getenv("SUGGESTIONS_POLL_MAX_ATTEMPTS", "10"))
SUGGESTIONS_POLL_DELAY_MS = int(os.getenv("SUGGESTIONS_POLL_DELAY_MS", "2000"))
SUGGESTIONS_SUBSCRIBE_TIMEOUT_SECONDS = float(os.getenv("SUGGESTIONS_SUBSCRIBE_TIMEOUT_SECONDS", "20"))
# o feed é só deste processo; a subscription relê o banco a cada intervalo
SUGGESTIONS_SUBSCRIBE_RECHECK_SECONDS = float(os.getenv("SUGGESTIONS_SUBSCRIBE_RECHECK_SECONDS", "2"))

ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "").strip()

# CORS
_cors_env = os.getenv("ORIGENS_CORS", os.getenv("CORS_ORIGINS", ""))
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

_cors_origin_regex_env = os.getenv("CORS_ALLOW_ORIGIN_REGEX", "").strip()
CORS_ALLOW_ORIGIN_REGEX = _cors_origin_regex_env or None

# O agente externo chama o webhook a partir da própria infraestrutura
LINDY_WEBHOOK_ALLOW_ANY_ORIGIN = _env_flag("LINDY_WEBHOOK_ALLOW_ANY_ORIGIN", "1")
