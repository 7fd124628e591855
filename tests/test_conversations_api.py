import config


AUDIO = ("conversation.webm", b"\x1aE\xdf\xa3 fake webm payload", "audio/webm")


def _upload(client, conversation_id, file=AUDIO):
    return client.post(f"/api/conversations/{conversation_id}/audio", files={"file": file})


def test_create_and_list_conversations(client):
    first = client.post("/api/conversations", json={"title": "First"}).json()
    second = client.post("/api/conversations", json={}).json()

    assert second["title"] is None
    ids = [c["id"] for c in client.get("/api/conversations").json()]
    assert ids == [second["id"], first["id"]]


def test_conversation_linked_to_prompt_version(client):
    prompt = client.post("/api/prompts", json={"name": "Helper", "text": "Be concise."}).json()

    res = client.post("/api/conversations", json={
        "title": "With prompt",
        "prompt_version_id": prompt["latest_version_id"],
    })
    assert res.status_code == 201
    conv = res.json()
    assert conv["prompt_version_id"] == prompt["latest_version_id"]
    assert conv["prompt_text"] == "Be concise."
    assert conv["prompt_version_number"] == 1


def test_unknown_prompt_version_is_400(client):
    res = client.post("/api/conversations", json={"prompt_version_id": 404})
    assert res.status_code == 400
    assert client.get("/api/conversations").json() == []


def test_update_conversation(client, conversation):
    res = client.put(f"/api/conversations/{conversation['id']}", json={"title": "Renamed"})
    assert res.status_code == 200
    assert res.json()["title"] == "Renamed"


def test_update_unknown_conversation_is_404(client, conversation):
    res = client.put("/api/conversations/999", json={"title": "Ghost"})
    assert res.status_code == 404
    assert client.get("/api/conversations").json() == [conversation]


def test_upload_and_list_audio(client, conversation, uploads_dir):
    res = _upload(client, conversation["id"])
    assert res.status_code == 201
    rec = res.json()

    assert rec["conversation_id"] == conversation["id"]
    assert rec["file_path"].startswith(f"conversations/{conversation['id']}/")
    assert rec["file_path"].endswith("_conversation.webm")
    assert rec["url"] == f"/uploads/{rec['file_path']}"
    assert rec["status"] == "uploaded"
    assert (uploads_dir / rec["file_path"]).read_bytes() == AUDIO[1]

    listed = client.get(f"/api/conversations/{conversation['id']}/audio").json()
    assert [a["id"] for a in listed] == [rec["id"]]
    assert listed[0]["url"] == rec["url"]

    served = client.get(rec["url"])
    assert served.status_code == 200
    assert served.content == AUDIO[1]


def test_upload_filename_is_sanitized(client, conversation):
    rec = _upload(client, conversation["id"], ("../../etc/my call.webm", b"abc", "audio/webm")).json()
    assert ".." not in rec["file_path"]
    assert rec["file_path"].endswith("_my_call.webm")


def test_upload_rejects_empty_and_unknown_types(client, conversation, uploads_dir):
    assert _upload(client, conversation["id"], ("empty.webm", b"", "audio/webm")).status_code == 400
    assert _upload(client, conversation["id"], ("notes.txt", b"hi", "text/plain")).status_code == 400
    assert client.get(f"/api/conversations/{conversation['id']}/audio").json() == []
    conv_dir = uploads_dir / "conversations" / str(conversation["id"])
    assert not conv_dir.exists() or list(conv_dir.iterdir()) == []


def test_upload_to_unknown_conversation_is_404(client):
    assert _upload(client, 999).status_code == 404


def test_notes(client, conversation):
    res = client.post(f"/api/conversations/{conversation['id']}/notes", json={
        "content": "Follow up about the invoice",
        "timestamp": "2025-03-14T15:30:00Z",
        "author": "sam",
    })
    assert res.status_code == 201
    note = res.json()
    assert note["author"] == "sam"

    res = client.post(f"/api/conversations/{conversation['id']}/notes", json={"content": "No stamp"})
    assert res.status_code == 201
    assert res.json()["timestamp"]
    assert res.json()["author"] is None

    notes = client.get(f"/api/conversations/{conversation['id']}/notes").json()
    assert len(notes) == 2

    assert client.delete(f"/api/notes/{note['id']}").json() == {"success": True}
    assert client.delete(f"/api/notes/{note['id']}").status_code == 404


def test_note_validation(client, conversation):
    url = f"/api/conversations/{conversation['id']}/notes"
    assert client.post(url, json={"content": ""}).status_code == 400
    assert client.post(url, json={"content": "x", "timestamp": "yesterday"}).status_code == 400
    assert client.post("/api/conversations/999/notes", json={"content": "x"}).status_code == 404


def test_manual_transcription(client, conversation):
    rec = _upload(client, conversation["id"]).json()

    res = client.post(f"/api/audio/{rec['id']}/transcriptions", json={"text": "hello there"})
    assert res.status_code == 201
    assert res.json()["audio_id"] == rec["id"]

    listed = client.get(f"/api/conversations/{conversation['id']}/transcriptions").json()
    assert [t["text"] for t in listed] == ["hello there"]
    assert client.get(f"/api/audio/{rec['id']}/transcriptions").json() == listed


def test_transcribe_runs_in_background(client, conversation, transcriber, uploads_dir):
    rec = _upload(client, conversation["id"]).json()

    res = client.post(f"/api/audio/{rec['id']}/transcribe")
    assert res.status_code == 202
    assert res.json() == {"status": "transcribing"}

    assert transcriber.paths == [str(uploads_dir / rec["file_path"])]
    listed = client.get(f"/api/conversations/{conversation['id']}/transcriptions").json()
    assert [t["text"] for t in listed] == [transcriber.text]
    audio = client.get(f"/api/conversations/{conversation['id']}/audio").json()[0]
    assert audio["status"] == "transcribed"


def test_transcribe_failure_is_recorded(client, conversation, transcriber):
    transcriber.error = RuntimeError("model crashed")
    rec = _upload(client, conversation["id"]).json()

    assert client.post(f"/api/audio/{rec['id']}/transcribe").status_code == 202

    audio = client.get(f"/api/conversations/{conversation['id']}/audio").json()[0]
    assert audio["status"] == "error"
    assert audio["error_message"] == "model crashed"
    assert client.get(f"/api/audio/{rec['id']}/transcriptions").json() == []


def test_transcribe_while_transcribing_is_409(client, conversation, db):
    rec = _upload(client, conversation["id"]).json()
    db.update_audio(rec["id"], status="transcribing")

    assert client.post(f"/api/audio/{rec['id']}/transcribe").status_code == 409


def test_delete_audio_removes_file_and_transcriptions(client, conversation, uploads_dir, db):
    rec = _upload(client, conversation["id"]).json()
    client.post(f"/api/audio/{rec['id']}/transcriptions", json={"text": "hi"})

    assert client.delete(f"/api/audio/{rec['id']}").json() == {"success": True}
    assert not (uploads_dir / rec["file_path"]).exists()
    assert db.list_audio_transcriptions(rec["id"]) == []
    assert client.delete(f"/api/audio/{rec['id']}").status_code == 404


def test_delete_conversation_cascades(client, conversation, uploads_dir, db):
    cid = conversation["id"]
    rec = _upload(client, cid).json()
    client.post(f"/api/audio/{rec['id']}/transcriptions", json={"text": "hi"})
    client.post(f"/api/conversations/{cid}/notes", json={"content": "remember this"})

    res = client.delete(f"/api/conversations/{cid}")
    assert res.status_code == 200

    assert client.get(f"/api/conversations/{cid}").status_code == 404
    assert client.get(f"/api/conversations/{cid}/audio").status_code == 404
    assert db.get_audio(rec["id"]) is None
    assert db.list_conversation_notes(cid) == []
    assert db.list_audio_transcriptions(rec["id"]) == []
    assert not (uploads_dir / rec["file_path"]).exists()
    assert client.delete(f"/api/conversations/{cid}").status_code == 404


def test_update_unknown_conversation_with_unknown_version_is_404(client):
    res = client.put("/api/conversations/999", json={"prompt_version_id": 12345})
    assert res.status_code == 404
    assert res.json() == {"error": "Conversation not found"}


def test_oversized_upload_is_rejected_and_removed(client, conversation, uploads_dir, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 4)

    res = _upload(client, conversation["id"], ("long.webm", b"0123456789", "audio/webm"))
    assert res.status_code == 400
    assert res.json() == {"error": "Uploaded file is too large"}
    assert client.get(f"/api/conversations/{conversation['id']}/audio").json() == []
    conv_dir = uploads_dir / "conversations" / str(conversation["id"])
    assert not conv_dir.exists() or list(conv_dir.iterdir()) == []


def test_transcribe_allowed_after_interrupted_run(client, conversation, db, transcriber):
    rec = _upload(client, conversation["id"]).json()
    db.update_audio(rec["id"], status="transcribing")
    db.fail_interrupted_transcriptions("Transcription interrupted by a server restart")

    assert client.post(f"/api/audio/{rec['id']}/transcribe").status_code == 202
    audio = client.get(f"/api/conversations/{conversation['id']}/audio").json()[0]
    assert audio["status"] == "transcribed"
    assert audio["error_message"] is None
