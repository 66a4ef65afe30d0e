import os
from dotenv import load_dotenv
import logging

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Configure logging
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

if os.path.exists(env_path):
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

STORY_MODEL = os.getenv("STORY_MODEL", "gemini-3-pro-preview")
FAST_TEXT_MODEL = os.getenv("FAST_TEXT_MODEL", "gemini-3-flash-preview")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image")
IMAGE_MODEL_PRO = os.getenv("IMAGE_MODEL_PRO", "gemini-3-pro-image-preview")

# Local key-value store used when no remote KV is configured
STORE_PATH = os.getenv("STORE_PATH", os.path.join(os.path.expanduser("~"), ".storyboard", "store.json"))

HISTORY_CAPACITY = int(os.getenv("HISTORY_CAPACITY", "50"))
EXPORT_STAGGER_MS = int(os.getenv("EXPORT_STAGGER_MS", "500"))
EXPORT_DIR = os.getenv("EXPORT_DIR", os.path.join(os.getcwd(), "exports"))

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


def default_api_key() -> str:
    """Build-time/environment credential, read at call time so tests can patch it."""
    return os.getenv("GEMINI_API_KEY", "") or os.getenv("API_KEY", "")
