import os

from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./relay.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# Endpoints internos (fila, envio, atendimento)
INTERNAL_API_TOKEN = os.getenv("INTERNAL_API_TOKEN", "").strip()

# Evolution API
WHATSAPP_PROVIDER = os.getenv("WHATSAPP_PROVIDER", "evolution").strip().lower()
EVOLUTION_HTTP_TIMEOUT = _env_float("EVOLUTION_HTTP_TIMEOUT", 20.0)
WHATSAPP_CHANNEL = os.getenv("WHATSAPP_CHANNEL", "whatsapp").strip() or "whatsapp"

# Resolução de tenant: sem config ativa para a instância, usa a primeira empresa ativa
RELAY_TENANT_FALLBACK = _env_flag("RELAY_TENANT_FALLBACK", "1")

# "most_recent" mantém o comportamento legado (várias conversas abertas, vence a mais recente);
# "unique_per_channel" fecha as duplicadas e mantém uma aberta por (contato, canal).
CONVERSATION_OPEN_POLICY = os.getenv("CONVERSATION_OPEN_POLICY", "most_recent").strip().lower()
if CONVERSATION_OPEN_POLICY not in {"most_recent", "unique_per_channel"}:
    CONVERSATION_OPEN_POLICY = "most_recent"

# Chatbot
CHATBOT_NOT_UNDERSTOOD_PREFIX = os.getenv(
    "CHATBOT_NOT_UNDERSTOOD_PREFIX",
    "Desculpe, não entendi sua resposta.",
)
CHATBOT_FUZZY_THRESHOLD = _env_float("CHATBOT_FUZZY_THRESHOLD", 0.85)
CHATBOT_QUEUE_PRIORITY = _env_int("CHATBOT_QUEUE_PRIORITY", 5)

# Fila de saída
QUEUE_MAX_RETRIES = _env_int("QUEUE_MAX_RETRIES", 3)
QUEUE_BACKOFF_BASE_SECONDS = _env_float("QUEUE_BACKOFF_BASE_SECONDS", 30.0)
QUEUE_BACKOFF_FACTOR = _env_float("QUEUE_BACKOFF_FACTOR", 2.0)
QUEUE_BACKOFF_MAX_SECONDS = _env_float("QUEUE_BACKOFF_MAX_SECONDS", 900.0)
QUEUE_BATCH_SIZE = max(1, _env_int("QUEUE_BATCH_SIZE", 10))
QUEUE_RETENTION_HOURS = max(1, _env_int("QUEUE_RETENTION_HOURS", 24))

# CORS (painel de atendimento chamando as rotas internas)
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]
