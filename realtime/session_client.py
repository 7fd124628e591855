import logging

import requests

from realtime.tools import CALENDAR_EVENT_TOOL

logger = logging.getLogger(__name__)


class RealtimeConfigError(RuntimeError):
    """The server is not configured to mint realtime sessions."""


class RealtimeSessionError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, detail=None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _extract_detail(response: requests.Response):
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str):
            return error
    return body


class RealtimeSessionClient:
    """Mints ephemeral OpenAI Realtime sessions for browser clients."""

    def __init__(self, api_key: str, url: str, voice: str = "verse", timeout: float = 15):
        self.api_key = api_key
        self.url = url
        self.voice = voice
        self.timeout = timeout

    def build_payload(self, model: str, instructions: str | None = None) -> dict:
        payload = {
            "model": model,
            "voice": self.voice,
            "modalities": ["audio", "text"],
            "tools": [CALENDAR_EVENT_TOOL],
            "tool_choice": "auto",
        }
        if instructions:
            payload["instructions"] = instructions
        return payload

    def create_session(self, model: str, instructions: str | None = None) -> dict:
        if not self.api_key:
            raise RealtimeConfigError("OPENAI_API_KEY is not configured")

        try:
            response = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self.build_payload(model, instructions),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Realtime session request failed: %s", e)
            raise RealtimeSessionError("Could not reach the realtime API", detail=str(e)) from e

        if not response.ok:
            detail = _extract_detail(response)
            logger.error("Realtime session rejected (%s): %s", response.status_code, detail)
            raise RealtimeSessionError(
                "Failed to create realtime session",
                status_code=response.status_code,
                detail=detail,
            )

        try:
            return response.json()
        except ValueError as e:
            raise RealtimeSessionError(
                "Realtime API returned a non-JSON response",
                status_code=response.status_code,
                detail=response.text,
            ) from e
