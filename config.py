import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Paths
BASE_DIR = Path(__file__).parent
DATA_DIR = BASE_DIR / "data"
DB_PATH = Path(os.getenv("VOICECAL_DB_PATH", str(DATA_DIR / "voicecal.db")))
UPLOADS_DIR = Path(os.getenv("VOICECAL_UPLOADS_DIR", str(BASE_DIR / "uploads")))
UPLOADS_URL_PREFIX = "/uploads"
STATIC_DIR = BASE_DIR / "frontend" / "dist"

# Server
HOST = os.getenv("VOICECAL_HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "3001"))
LOG_LEVEL = os.getenv("VOICECAL_LOG_LEVEL", "INFO").upper()

# Uploads
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
ALLOWED_AUDIO_EXTENSIONS = {".webm", ".ogg", ".oga", ".opus", ".wav", ".mp3", ".m4a", ".mp4"}

# OpenAI Realtime
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_REALTIME_SESSIONS_URL = "https://api.openai.com/v1/realtime/sessions"
REALTIME_MODELS = (
    "gpt-4o-realtime-preview-2024-12-17",
    "gpt-4o-mini-realtime-preview-2024-12-17",
)
REALTIME_DEFAULT_MODEL = REALTIME_MODELS[0]
REALTIME_VOICE = os.getenv("VOICECAL_REALTIME_VOICE", "verse")
REALTIME_TIMEOUT_SECS = 15

# Whisper
WHISPER_MODEL = os.getenv("VOICECAL_WHISPER_MODEL", "base")
WHISPER_LANGUAGE = os.getenv("VOICECAL_LANGUAGE") or None  # None = autodetect
