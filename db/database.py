import sqlite3
import threading
from pathlib import Path

from db.models import SCHEMA_SQL

EVENT_FIELDS = ("title", "description", "start_time", "end_time")
PROMPT_FIELDS = ("name", "description")
CONVERSATION_FIELDS = ("title", "prompt_version_id")
AUDIO_FIELDS = ("file_path", "status", "error_message")

_PROMPT_SELECT = """
    SELECT p.*,
           v.id             AS latest_version_id,
           v.text           AS latest_text,
           v.version_number AS latest_version_number,
           v.created_at     AS latest_version_created_at
    FROM prompts p
    LEFT JOIN prompt_versions v ON v.id = (
        SELECT id FROM prompt_versions
        WHERE prompt_id = p.id
        ORDER BY version_number DESC
        LIMIT 1
    )
"""

_CONVERSATION_SELECT = """
    SELECT c.*,
           v.prompt_id      AS prompt_id,
           v.version_number AS prompt_version_number,
           v.text           AS prompt_text
    FROM conversations c
    LEFT JOIN prompt_versions v ON v.id = c.prompt_version_id
"""


class Database:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return conn

    def _init_schema(self):
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
        except sqlite3.Error:
            conn.rollback()
            raise
        conn.commit()
        return cursor

    def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = self._get_conn().execute(sql, params)
        row = cursor.fetchone()
        return dict(row) if row else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = self._get_conn().execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    def ping(self) -> bool:
        return self.fetchone("SELECT 1 AS ok") is not None

    def _update(self, table: str, allowed: tuple, row_id: int, fields: dict) -> int:
        unknown = set(fields) - set(allowed)
        if unknown:
            raise ValueError(f"Unknown {table} columns: {', '.join(sorted(unknown))}")
        if not fields:
            return 0
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        values = list(fields.values()) + [row_id]
        cursor = self.execute(f"UPDATE {table} SET {set_clause} WHERE id = ?", tuple(values))
        return cursor.rowcount

    # -- Events --

    def insert_event(self, title: str, description: str, start_time: str, end_time: str) -> dict:
        cursor = self.execute(
            "INSERT INTO events (title, description, start_time, end_time) VALUES (?, ?, ?, ?)",
            (title, description or "", start_time, end_time),
        )
        return self.get_event(cursor.lastrowid)

    def get_event(self, event_id: int) -> dict | None:
        return self.fetchone("SELECT * FROM events WHERE id = ?", (event_id,))

    def list_events(self) -> list[dict]:
        return self.fetchall("SELECT * FROM events ORDER BY start_time, id")

    def update_event(self, event_id: int, **fields) -> dict | None:
        if "description" in fields and fields["description"] is None:
            fields["description"] = ""
        if fields and self._update("events", EVENT_FIELDS, event_id, fields) == 0:
            return None
        return self.get_event(event_id)

    def delete_event(self, event_id: int) -> bool:
        cursor = self.execute("DELETE FROM events WHERE id = ?", (event_id,))
        return cursor.rowcount > 0

    # -- Prompts --

    def insert_prompt(self, name: str, description: str = "") -> dict:
        cursor = self.execute(
            "INSERT INTO prompts (name, description) VALUES (?, ?)",
            (name, description or ""),
        )
        return self.get_prompt(cursor.lastrowid)

    def get_prompt(self, prompt_id: int) -> dict | None:
        return self.fetchone(_PROMPT_SELECT + " WHERE p.id = ?", (prompt_id,))

    def list_prompts(self) -> list[dict]:
        return self.fetchall(_PROMPT_SELECT + " ORDER BY p.name, p.id")

    def update_prompt(self, prompt_id: int, **fields) -> dict | None:
        if "description" in fields and fields["description"] is None:
            fields["description"] = ""
        if fields and self._update("prompts", PROMPT_FIELDS, prompt_id, fields) == 0:
            return None
        return self.get_prompt(prompt_id)

    def delete_prompt(self, prompt_id: int) -> bool:
        cursor = self.execute("DELETE FROM prompts WHERE id = ?", (prompt_id,))
        return cursor.rowcount > 0

    # -- Prompt versions --

    def insert_prompt_version(self, prompt_id: int, text: str) -> dict:
        # Numbering happens inside the INSERT so it is atomic per statement.
        cursor = self.execute(
            """
            INSERT INTO prompt_versions (prompt_id, text, version_number)
            SELECT ?, ?, COALESCE(MAX(version_number), 0) + 1
            FROM prompt_versions WHERE prompt_id = ?
            """,
            (prompt_id, text, prompt_id),
        )
        return self.get_prompt_version(cursor.lastrowid)

    def get_prompt_version(self, version_id: int) -> dict | None:
        return self.fetchone("SELECT * FROM prompt_versions WHERE id = ?", (version_id,))

    def get_prompt_version_by_number(self, prompt_id: int, version_number: int) -> dict | None:
        return self.fetchone(
            "SELECT * FROM prompt_versions WHERE prompt_id = ? AND version_number = ?",
            (prompt_id, version_number),
        )

    def list_prompt_versions(self, prompt_id: int) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM prompt_versions WHERE prompt_id = ? ORDER BY version_number",
            (prompt_id,),
        )

    # -- Conversations --

    def insert_conversation(self, title: str | None = None,
                            prompt_version_id: int | None = None) -> dict:
        cursor = self.execute(
            "INSERT INTO conversations (title, prompt_version_id) VALUES (?, ?)",
            (title, prompt_version_id),
        )
        return self.get_conversation(cursor.lastrowid)

    def get_conversation(self, conversation_id: int) -> dict | None:
        return self.fetchone(_CONVERSATION_SELECT + " WHERE c.id = ?", (conversation_id,))

    def list_conversations(self) -> list[dict]:
        return self.fetchall(_CONVERSATION_SELECT + " ORDER BY c.created_at DESC, c.id DESC")

    def update_conversation(self, conversation_id: int, **fields) -> dict | None:
        if fields and self._update("conversations", CONVERSATION_FIELDS, conversation_id, fields) == 0:
            return None
        return self.get_conversation(conversation_id)

    def delete_conversation(self, conversation_id: int) -> bool:
        cursor = self.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        return cursor.rowcount > 0

    # -- Audio recordings --

    def insert_audio(self, conversation_id: int, file_path: str) -> dict:
        cursor = self.execute(
            "INSERT INTO audio_recordings (conversation_id, file_path) VALUES (?, ?)",
            (conversation_id, file_path),
        )
        return self.get_audio(cursor.lastrowid)

    def get_audio(self, audio_id: int) -> dict | None:
        return self.fetchone("SELECT * FROM audio_recordings WHERE id = ?", (audio_id,))

    def list_conversation_audio(self, conversation_id: int) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM audio_recordings WHERE conversation_id = ? ORDER BY created_at, id",
            (conversation_id,),
        )

    def update_audio(self, audio_id: int, **fields) -> dict | None:
        if fields and self._update("audio_recordings", AUDIO_FIELDS, audio_id, fields) == 0:
            return None
        return self.get_audio(audio_id)

    def fail_interrupted_transcriptions(self, message: str) -> int:
        cursor = self.execute(
            "UPDATE audio_recordings SET status = 'error', error_message = ? WHERE status = 'transcribing'",
            (message,),
        )
        return cursor.rowcount

    def delete_audio(self, audio_id: int) -> bool:
        cursor = self.execute("DELETE FROM audio_recordings WHERE id = ?", (audio_id,))
        return cursor.rowcount > 0

    # -- Transcriptions --

    def insert_transcription(self, audio_id: int, text: str) -> dict:
        cursor = self.execute(
            "INSERT INTO transcriptions (audio_id, text) VALUES (?, ?)",
            (audio_id, text),
        )
        return self.fetchone("SELECT * FROM transcriptions WHERE id = ?", (cursor.lastrowid,))

    def list_audio_transcriptions(self, audio_id: int) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM transcriptions WHERE audio_id = ? ORDER BY created_at, id",
            (audio_id,),
        )

    def list_conversation_transcriptions(self, conversation_id: int) -> list[dict]:
        return self.fetchall(
            """
            SELECT t.* FROM transcriptions t
            JOIN audio_recordings a ON a.id = t.audio_id
            WHERE a.conversation_id = ?
            ORDER BY t.created_at, t.id
            """,
            (conversation_id,),
        )

    # -- Notes --

    def insert_note(self, conversation_id: int, content: str, timestamp: str,
                    author: str | None = None) -> dict:
        cursor = self.execute(
            "INSERT INTO notes (conversation_id, author, content, timestamp) VALUES (?, ?, ?, ?)",
            (conversation_id, author, content, timestamp),
        )
        return self.get_note(cursor.lastrowid)

    def get_note(self, note_id: int) -> dict | None:
        return self.fetchone("SELECT * FROM notes WHERE id = ?", (note_id,))

    def list_conversation_notes(self, conversation_id: int) -> list[dict]:
        return self.fetchall(
            "SELECT * FROM notes WHERE conversation_id = ? ORDER BY timestamp, id",
            (conversation_id,),
        )

    def delete_note(self, note_id: int) -> bool:
        cursor = self.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        return cursor.rowcount > 0
