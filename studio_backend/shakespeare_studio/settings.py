import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _csv(name: str) -> list:
    raw = os.getenv(name, "").strip()
    return [item.strip() for item in raw.split(",") if item.strip()]


OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1")
OPENAI_HEALTH_MODEL = os.getenv("OPENAI_HEALTH_MODEL", "gpt-4o-mini")
OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", "2000"))
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))

SCRIPT_RETRY_COUNT = int(os.getenv("SCRIPT_RETRY_COUNT", "2"))
SCRIPT_RETRY_BACKOFF_S = float(os.getenv("SCRIPT_RETRY_BACKOFF_S", "1.0"))

# Hosted relational store (PostgREST + storage API). Empty means in-memory.
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
VIDEO_BUCKET = os.getenv("VIDEO_BUCKET", "videos")

# External renderer. The mode picks which of the three URLs is used.
RENDER_WEBHOOK_MODE = os.getenv("RENDER_WEBHOOK_MODE", "production").strip().lower()
RENDER_WEBHOOK_URL_LOCAL = os.getenv("RENDER_WEBHOOK_URL_LOCAL", "http://localhost:8080/webhook").strip()
RENDER_WEBHOOK_URL = os.getenv("RENDER_WEBHOOK_URL", "").strip()
RENDER_WEBHOOK_URL_DEBUG = os.getenv("RENDER_WEBHOOK_URL_DEBUG", "").strip()
RENDER_WEBHOOK_TIMEOUT_S = float(os.getenv("RENDER_WEBHOOK_TIMEOUT_S", "10"))
RENDER_CALLBACK_SECRET = os.getenv("RENDER_CALLBACK_SECRET", "")
DISABLE_WEBHOOK = _flag("DISABLE_WEBHOOK")

# Feature flags
ENABLE_DIRECT_GENERATION = _flag("ENABLE_DIRECT_GENERATION", "true")
AUTH_BYPASS = _flag("AUTH_BYPASS")
AUTH_BYPASS_UID = os.getenv("AUTH_BYPASS_UID", "00000000-0000-4000-8000-000000000000")
ADMIN_UIDS = _csv("ADMIN_UIDS")

# Comma-separated list of allowed origins for CORS (e.g., "https://studio.example.com").
ALLOWED_ORIGINS = _csv("ALLOWED_ORIGINS") or ["*"]


def webhook_url() -> str:
    """Renderer endpoint for the configured mode."""
    if RENDER_WEBHOOK_MODE == "local":
        return RENDER_WEBHOOK_URL_LOCAL
    if RENDER_WEBHOOK_MODE == "debug":
        return RENDER_WEBHOOK_URL_DEBUG or RENDER_WEBHOOK_URL
    return RENDER_WEBHOOK_URL


def has_store_config() -> bool:
    return bool(SUPABASE_URL and SUPABASE_SERVICE_KEY)


def has_llm_key() -> bool:
    if not OPENAI_API_KEY:
        logger.warning("Missing API keys: OPENAI_API_KEY")
        return False
    return True
