import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from server.routes import create_router

logger = logging.getLogger(__name__)


def _validation_details(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


def create_app(db, sessions, transcriber, uploads_dir: Path | None = None,
               static_dir: Path | None = None) -> FastAPI:
    app = FastAPI(title="VoiceCal", version="0.1.0")

    uploads_dir = Path(uploads_dir or config.UPLOADS_DIR)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    static_dir = Path(static_dir or config.STATIC_DIR)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "details": _validation_details(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    router = create_router(db, sessions, transcriber, uploads_dir)
    app.include_router(router, prefix="/api")

    app.mount(config.UPLOADS_URL_PREFIX, StaticFiles(directory=str(uploads_dir)), name="uploads")

    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")
    else:
        logger.info("No frontend build at %s, serving the API only", static_dir)

    return app
