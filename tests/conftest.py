import pytest
from fastapi.testclient import TestClient

from db.database import Database
from server.app import create_app


class FakeSessions:
    def __init__(self):
        self.calls = []

    def create_session(self, model, instructions=None):
        self.calls.append((model, instructions))
        return {
            "id": "sess_test",
            "model": model,
            "client_secret": {"value": "ek_test", "expires_at": 1700000000},
        }


class FakeTranscriber:
    def __init__(self, text="book a dentist appointment on friday", error=None):
        self.text = text
        self.error = error
        self.paths = []
        self.is_loaded = False

    def transcribe(self, audio_path):
        self.paths.append(audio_path)
        if self.error:
            raise self.error
        return {"text": self.text, "language": "en", "duration_secs": 2, "segments": []}


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "voicecal.db")
    yield database
    database.close()


@pytest.fixture
def uploads_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def sessions():
    return FakeSessions()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def client(db, sessions, transcriber, uploads_dir, tmp_path):
    app = create_app(db, sessions, transcriber, uploads_dir=uploads_dir,
                     static_dir=tmp_path / "no-frontend")
    with TestClient(app) as c:
        yield c


@pytest.fixture
def conversation(client):
    res = client.post("/api/conversations", json={"title": "Planning call"})
    assert res.status_code == 201
    return res.json()
