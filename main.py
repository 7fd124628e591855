import logging
import socket
import sys

import uvicorn

import config
from db.database import Database
from processing.transcriber import Transcriber
from realtime.session_client import RealtimeSessionClient
from server.app import create_app

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("voicecal")

PORT_SEARCH_RANGE = 20


def find_available_port(start: int, end: int) -> int:
    for port in range(start, end + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((config.HOST, port))
                return port
            except OSError:
                continue
    raise RuntimeError(f"No free port between {start} and {end}")


def build_app():
    for d in [config.DATA_DIR, config.UPLOADS_DIR]:
        d.mkdir(parents=True, exist_ok=True)

    db = Database(config.DB_PATH)
    # Background transcriptions do not survive a restart
    stale = db.fail_interrupted_transcriptions("Transcription interrupted by a server restart")
    if stale:
        logger.warning("Marked %d interrupted transcription(s) as failed", stale)
    sessions = RealtimeSessionClient(
        api_key=config.OPENAI_API_KEY,
        url=config.OPENAI_REALTIME_SESSIONS_URL,
        voice=config.REALTIME_VOICE,
        timeout=config.REALTIME_TIMEOUT_SECS,
    )
    transcriber = Transcriber(
        model_size=config.WHISPER_MODEL,
        language=config.WHISPER_LANGUAGE,
    )
    if not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set; /api/openai/session will fail")

    return create_app(db, sessions, transcriber)


def main():
    try:
        port = find_available_port(config.PORT, config.PORT + PORT_SEARCH_RANGE)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    if port != config.PORT:
        logger.info("Port %d in use, using %d", config.PORT, port)

    app = build_app()
    logger.info("VoiceCal running on http://%s:%d", config.HOST, port)
    uvicorn.run(app, host=config.HOST, port=port, log_level="warning")


if __name__ == "__main__":
    main()
