from datetime import datetime

from pydantic import BaseModel, field_validator


def parse_iso(value: str) -> datetime:
    # fromisoformat only accepts a trailing "Z" from 3.11 on
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _iso_timestamp(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    try:
        parse_iso(value)
    except ValueError:
        raise ValueError("must be an ISO-8601 date/time string")
    return value


class EventCreate(BaseModel):
    title: str
    description: str = ""
    start_time: str
    end_time: str

    @field_validator("title")
    @classmethod
    def check_title(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_times(cls, value: str) -> str:
        return _iso_timestamp(value)


class EventUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    start_time: str | None = None
    end_time: str | None = None

    @field_validator("title")
    @classmethod
    def check_title(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_times(cls, value: str | None) -> str | None:
        return _iso_timestamp(value)


class PromptCreate(BaseModel):
    name: str
    description: str = ""
    text: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value)


class PromptUpdate(BaseModel):
    name: str | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str | None) -> str | None:
        return None if value is None else _required_text(value)


class PromptVersionCreate(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _required_text(value)


class ConversationCreate(BaseModel):
    title: str | None = None
    prompt_version_id: int | None = None


class ConversationUpdate(BaseModel):
    title: str | None = None
    prompt_version_id: int | None = None


class TranscriptionCreate(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def check_text(cls, value: str) -> str:
        return _required_text(value)


class NoteCreate(BaseModel):
    content: str
    timestamp: str | None = None
    author: str | None = None

    @field_validator("content")
    @classmethod
    def check_content(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("timestamp")
    @classmethod
    def check_timestamp(cls, value: str | None) -> str | None:
        return _iso_timestamp(value)


class ToolCallRequest(BaseModel):
    arguments: str | dict
