import logging
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pydantic
from fastapi import APIRouter, BackgroundTasks, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse

import config
from db.database import Database
from processing.transcriber import Transcriber
from realtime.session_client import (
    RealtimeConfigError,
    RealtimeSessionClient,
    RealtimeSessionError,
)
from realtime.tools import event_from_tool_arguments
from server.schemas import (
    ConversationCreate,
    ConversationUpdate,
    EventCreate,
    EventUpdate,
    NoteCreate,
    PromptCreate,
    PromptUpdate,
    PromptVersionCreate,
    ToolCallRequest,
    TranscriptionCreate,
)

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str | None, default: str = "conversation.webm") -> str:
    name = Path(filename or "").name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or default


def audio_url(file_path: str) -> str:
    return f"{config.UPLOADS_URL_PREFIX}/{file_path}"


def _with_url(rec: dict) -> dict:
    return {**rec, "url": audio_url(rec["file_path"])}


def create_router(db: Database, sessions: RealtimeSessionClient,
                  transcriber: Transcriber, uploads_dir: Path) -> APIRouter:
    router = APIRouter()
    uploads_dir = Path(uploads_dir)

    def _require_conversation(conversation_id: int) -> dict:
        conv = db.get_conversation(conversation_id)
        if not conv:
            raise HTTPException(404, "Conversation not found")
        return conv

    def _require_prompt(prompt_id: int) -> dict:
        prompt = db.get_prompt(prompt_id)
        if not prompt:
            raise HTTPException(404, "Prompt not found")
        return prompt

    def _require_audio(audio_id: int) -> dict:
        rec = db.get_audio(audio_id)
        if not rec:
            raise HTTPException(404, "Audio recording not found")
        return rec

    def _check_prompt_version(version_id: int | None):
        if version_id is not None and not db.get_prompt_version(version_id):
            raise HTTPException(400, f"Unknown prompt_version_id {version_id}")

    def _remove_file(file_path: str):
        path = uploads_dir / file_path
        if path.exists():
            path.unlink()
            logger.info("Deleted upload %s", file_path)

    # -- Health --

    @router.get("/health")
    def health():
        try:
            db.ping()
        except sqlite3.Error as e:
            logger.error("Health check failed: %s", e)
            raise HTTPException(500, "Database unavailable")
        return {"status": "ok", "whisper_model_loaded": transcriber.is_loaded}

    # -- Events --

    @router.get("/events")
    def list_events():
        return db.list_events()

    @router.post("/events", status_code=201)
    def create_event(body: EventCreate):
        return db.insert_event(body.title, body.description, body.start_time, body.end_time)

    @router.post("/events/from-tool-call", status_code=201)
    def create_event_from_tool_call(body: ToolCallRequest):
        # Arguments of a create_calendar_event call, as emitted by the model
        try:
            event = event_from_tool_arguments(body.arguments)
        except pydantic.ValidationError as e:
            raise HTTPException(400, "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ))
        except ValueError as e:
            raise HTTPException(400, str(e))
        return db.insert_event(event.title, event.description, event.start_time, event.end_time)

    @router.get("/events/{event_id}")
    def get_event(event_id: int):
        event = db.get_event(event_id)
        if not event:
            raise HTTPException(404, "Event not found")
        return event

    @router.put("/events/{event_id}")
    def update_event(event_id: int, body: EventUpdate):
        fields = body.model_dump(exclude_unset=True)
        # title and the times are NOT NULL; an explicit null leaves them alone
        for key in ("title", "start_time", "end_time"):
            if key in fields and fields[key] is None:
                del fields[key]
        event = db.update_event(event_id, **fields)
        if not event:
            raise HTTPException(404, "Event not found")
        return event

    @router.delete("/events/{event_id}")
    def delete_event(event_id: int):
        if not db.delete_event(event_id):
            raise HTTPException(404, "Event not found")
        return {"success": True}

    # -- Prompts --

    @router.get("/prompts")
    def list_prompts():
        return db.list_prompts()

    @router.post("/prompts", status_code=201)
    def create_prompt(body: PromptCreate):
        prompt = db.insert_prompt(body.name, body.description)
        if body.text:
            db.insert_prompt_version(prompt["id"], body.text)
            prompt = db.get_prompt(prompt["id"])
        return prompt

    @router.get("/prompts/{prompt_id}")
    def get_prompt(prompt_id: int):
        prompt = _require_prompt(prompt_id)
        return {**prompt, "versions": db.list_prompt_versions(prompt_id)}

    @router.put("/prompts/{prompt_id}")
    def update_prompt(prompt_id: int, body: PromptUpdate):
        fields = body.model_dump(exclude_unset=True)
        if "name" in fields and fields["name"] is None:
            del fields["name"]
        prompt = db.update_prompt(prompt_id, **fields)
        if not prompt:
            raise HTTPException(404, "Prompt not found")
        return prompt

    @router.delete("/prompts/{prompt_id}")
    def delete_prompt(prompt_id: int):
        if not db.delete_prompt(prompt_id):
            raise HTTPException(404, "Prompt not found")
        return {"success": True}

    @router.get("/prompts/{prompt_id}/versions")
    def list_prompt_versions(prompt_id: int):
        _require_prompt(prompt_id)
        return db.list_prompt_versions(prompt_id)

    @router.post("/prompts/{prompt_id}/versions", status_code=201)
    def create_prompt_version(prompt_id: int, body: PromptVersionCreate):
        _require_prompt(prompt_id)
        return db.insert_prompt_version(prompt_id, body.text)

    @router.get("/prompts/{prompt_id}/versions/{version_number}")
    def get_prompt_version(prompt_id: int, version_number: int):
        _require_prompt(prompt_id)
        version = db.get_prompt_version_by_number(prompt_id, version_number)
        if not version:
            raise HTTPException(404, "Prompt version not found")
        return version

    # -- Conversations --

    @router.get("/conversations")
    def list_conversations():
        return db.list_conversations()

    @router.post("/conversations", status_code=201)
    def create_conversation(body: ConversationCreate = ConversationCreate()):
        _check_prompt_version(body.prompt_version_id)
        return db.insert_conversation(body.title, body.prompt_version_id)

    @router.get("/conversations/{conversation_id}")
    def get_conversation(conversation_id: int):
        return _require_conversation(conversation_id)

    @router.put("/conversations/{conversation_id}")
    def update_conversation(conversation_id: int, body: ConversationUpdate):
        _require_conversation(conversation_id)
        fields = body.model_dump(exclude_unset=True)
        _check_prompt_version(fields.get("prompt_version_id"))
        conv = db.update_conversation(conversation_id, **fields)
        if not conv:
            raise HTTPException(404, "Conversation not found")
        return conv

    @router.delete("/conversations/{conversation_id}")
    def delete_conversation(conversation_id: int):
        _require_conversation(conversation_id)
        recordings = db.list_conversation_audio(conversation_id)
        db.delete_conversation(conversation_id)

        for rec in recordings:
            _remove_file(rec["file_path"])
        conv_dir = uploads_dir / "conversations" / str(conversation_id)
        if conv_dir.is_dir() and not any(conv_dir.iterdir()):
            conv_dir.rmdir()
        return {"success": True}

    # -- Audio --

    @router.get("/conversations/{conversation_id}/audio")
    def list_conversation_audio(conversation_id: int):
        _require_conversation(conversation_id)
        return [_with_url(rec) for rec in db.list_conversation_audio(conversation_id)]

    @router.post("/conversations/{conversation_id}/audio", status_code=201)
    def upload_conversation_audio(conversation_id: int, file: UploadFile = File(...)):
        _require_conversation(conversation_id)

        name = safe_filename(file.filename)
        ext = Path(name).suffix.lower()
        if ext not in config.ALLOWED_AUDIO_EXTENSIONS:
            raise HTTPException(400, f"Unsupported audio file type '{ext or name}'")

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        rel_path = Path("conversations") / str(conversation_id) / f"{stamp}_{name}"
        dest = uploads_dir / rel_path
        dest.parent.mkdir(parents=True, exist_ok=True)

        size = 0
        with open(dest, "wb") as out:
            while True:
                chunk = file.file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                size += len(chunk)
                if size > config.MAX_UPLOAD_BYTES:
                    break
                out.write(chunk)

        if size == 0 or size > config.MAX_UPLOAD_BYTES:
            dest.unlink()
            if size == 0:
                raise HTTPException(400, "Uploaded file is empty")
            raise HTTPException(400, "Uploaded file is too large")

        rec = db.insert_audio(conversation_id, rel_path.as_posix())
        logger.info("Stored %d bytes of audio for conversation %d at %s",
                    size, conversation_id, rec["file_path"])
        return _with_url(rec)

    @router.delete("/audio/{audio_id}")
    def delete_audio(audio_id: int):
        rec = _require_audio(audio_id)
        db.delete_audio(audio_id)
        _remove_file(rec["file_path"])
        return {"success": True}

    # -- Transcriptions --

    def _do_transcribe(audio_id: int, file_path: str):
        try:
            result = transcriber.transcribe(str(uploads_dir / file_path))
            db.insert_transcription(audio_id, result["text"])
            db.update_audio(audio_id, status="transcribed", error_message=None)
        except Exception as e:
            logger.error("Error transcribing audio %d: %s", audio_id, e)
            db.update_audio(audio_id, status="error", error_message=str(e))

    @router.post("/audio/{audio_id}/transcribe", status_code=202)
    def transcribe_audio(audio_id: int, background_tasks: BackgroundTasks):
        rec = _require_audio(audio_id)
        if rec["status"] == "transcribing":
            raise HTTPException(409, "Audio is already being transcribed")

        db.update_audio(audio_id, status="transcribing", error_message=None)
        background_tasks.add_task(_do_transcribe, audio_id, rec["file_path"])
        return {"status": "transcribing"}

    @router.get("/audio/{audio_id}/transcriptions")
    def list_audio_transcriptions(audio_id: int):
        _require_audio(audio_id)
        return db.list_audio_transcriptions(audio_id)

    @router.post("/audio/{audio_id}/transcriptions", status_code=201)
    def create_transcription(audio_id: int, body: TranscriptionCreate):
        _require_audio(audio_id)
        return db.insert_transcription(audio_id, body.text)

    @router.get("/conversations/{conversation_id}/transcriptions")
    def list_conversation_transcriptions(conversation_id: int):
        _require_conversation(conversation_id)
        return db.list_conversation_transcriptions(conversation_id)

    # -- Notes --

    @router.get("/conversations/{conversation_id}/notes")
    def list_conversation_notes(conversation_id: int):
        _require_conversation(conversation_id)
        return db.list_conversation_notes(conversation_id)

    @router.post("/conversations/{conversation_id}/notes", status_code=201)
    def add_conversation_note(conversation_id: int, body: NoteCreate):
        _require_conversation(conversation_id)
        timestamp = body.timestamp or datetime.now(timezone.utc).isoformat()
        return db.insert_note(conversation_id, body.content, timestamp, body.author)

    @router.delete("/notes/{note_id}")
    def delete_note(note_id: int):
        if not db.delete_note(note_id):
            raise HTTPException(404, "Note not found")
        return {"success": True}

    # -- Realtime session --

    @router.get("/openai/session")
    def create_realtime_session(model: str | None = None, instructions: str | None = None):
        model = model or config.REALTIME_DEFAULT_MODEL
        if model not in config.REALTIME_MODELS:
            raise HTTPException(400, f"Unsupported model '{model}'")

        try:
            return sessions.create_session(model, instructions=instructions)
        except RealtimeConfigError as e:
            logger.error("Realtime session unavailable: %s", e)
            raise HTTPException(500, str(e))
        except RealtimeSessionError as e:
            return JSONResponse(
                status_code=500,
                content={"error": str(e), "details": e.detail},
            )

    return router
