import os
import tempfile

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# LLM configuration
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "auto")
LLM_DEFAULT_TIER = os.getenv("LLM_DEFAULT_TIER", "fast")
LLM_MODEL_FAST = os.getenv("LLM_MODEL_FAST", "")
LLM_MODEL_STANDARD = os.getenv("LLM_MODEL_STANDARD", "")
LLM_MODEL_HIGH = os.getenv("LLM_MODEL_HIGH", "")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))

# Include exception text in error bodies
DEV_MODE = _flag("DEV_MODE")

DATABASE_PATH = os.getenv("DATABASE_PATH", "asha.db")
DATABASE_URL = os.getenv("DATABASE_URL", "")
DATABASE_MAX_CONNECTIONS = int(os.getenv("DATABASE_MAX_CONNECTIONS", "5"))
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "true")

# Audio intake
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
AUDIO_MAX_BYTES = int(os.getenv("AUDIO_MAX_BYTES", str(25 * 1024 * 1024)))
AUDIO_TMP_DIR = os.getenv("AUDIO_TMP_DIR", tempfile.gettempdir())
TRANSCODE_TIMEOUT_SECONDS = float(os.getenv("TRANSCODE_TIMEOUT_SECONDS", "60"))

# Speech recognition
ASR_MODEL_ID = os.getenv("ASR_MODEL_ID", "openai/whisper-small")
ASR_DEVICE = os.getenv("ASR_DEVICE", "")
ASR_LOAD_TIMEOUT_SECONDS = float(os.getenv("ASR_LOAD_TIMEOUT_SECONDS", "600"))
ASR_INFERENCE_TIMEOUT_SECONDS = float(os.getenv("ASR_INFERENCE_TIMEOUT_SECONDS", "120"))
ASR_SERIALIZE_INFERENCE = _flag("ASR_SERIALIZE_INFERENCE", "true")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "hi")

# Alert escalation
ALERT_RISK_THRESHOLD = int(os.getenv("ALERT_RISK_THRESHOLD", "70"))
ALERT_DEDUPE_WINDOW_MINUTES = int(os.getenv("ALERT_DEDUPE_WINDOW_MINUTES", "30"))

# Caseload page used by the beneficiary resolver
CASELOAD_PAGE_SIZE = int(os.getenv("CASELOAD_PAGE_SIZE", "20"))

# GCP (optional) for responder notify intents
GCP_PROJECT_ID = os.getenv("GCP_PROJECT_ID", "")
GCP_PUBSUB_TOPIC = os.getenv("GCP_PUBSUB_TOPIC", "")
