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


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
SCRIPT_MODEL = os.getenv("SCRIPT_MODEL", "gpt-4o-mini")
TTS_MODEL = os.getenv("TTS_MODEL", "gpt-4o-mini-tts")
TTS_VOICE = os.getenv("TTS_VOICE", "alloy")
TTS_SPEED = float(os.getenv("TTS_SPEED", "0.97"))

AUDIOFLOW_ENGINE_URL = (
    os.getenv("AUDIOFLOW_ENGINE_URL")
    or os.getenv("AUDIOFLOW_URL")
    or "https://audioflow-live.onrender.com"
).rstrip("/")
AUDIOFLOW_TIMEOUT_MS = int(os.getenv("AUDIOFLOW_TIMEOUT_MS", "120000"))

# Per-call timeouts (seconds)
SCRIPT_TIMEOUT_S = float(os.getenv("SCRIPT_TIMEOUT_S", "120"))
TTS_TIMEOUT_S = float(os.getenv("TTS_TIMEOUT_S", "120"))
PROBE_TIMEOUT_S = float(os.getenv("PROBE_TIMEOUT_S", "60"))
RENDER_TIMEOUT_S = float(os.getenv("RENDER_TIMEOUT_S", "240"))
RENDER_MIX_TIMEOUT_S = float(os.getenv("RENDER_MIX_TIMEOUT_S", "300"))

VIDEO_WIDTH = int(os.getenv("VIDEO_WIDTH", "1280"))
VIDEO_HEIGHT = int(os.getenv("VIDEO_HEIGHT", "720"))
FPS = int(os.getenv("FPS", "30"))
BACKGROUND_COLOR = os.getenv("BACKGROUND_COLOR", "black")
MUSIC_GAIN = float(os.getenv("MUSIC_GAIN", "0.35"))
# drawtext needs a usable system font, so the title card is opt-in
TITLE_OVERLAY = _flag("TITLE_OVERLAY")

MEDIA_MIN_BYTES = int(os.getenv("MEDIA_MIN_BYTES", "30000"))
MEDIA_MIN_DURATION_S = float(os.getenv("MEDIA_MIN_DURATION_S", "2.5"))
NARRATION_MIN_BYTES = int(os.getenv("NARRATION_MIN_BYTES", "1000"))

TOKEN_TTL_S = int(os.getenv("TOKEN_TTL_S", "1800"))
TOKEN_SINGLE_USE = _flag("TOKEN_SINGLE_USE")

# Silent narration stand-in when TTS fails; keeps the render path exercisable
TTS_FALLBACK = _flag("TTS_FALLBACK")
FALLBACK_AUDIO_S = float(os.getenv("FALLBACK_AUDIO_S", "10"))

SCRATCH_DIR = os.getenv("SCRATCH_DIR", "").strip()

# Comma-separated list of allowed origins for CORS (e.g., "https://app.example.com,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

def has_all_keys() -> bool:
    if not OPENAI_API_KEY:
        logger.warning("Missing API keys: OPENAI_API_KEY")
        return False
    return True
