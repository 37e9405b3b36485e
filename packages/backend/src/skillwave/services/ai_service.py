"""AI chatbot proxy — forwards prompts and files to Gemini generateContent.

Attachments are sent inline as base64 parts; nothing is written to disk.
"""

import base64
from typing import Optional

import httpx
import structlog

from skillwave.config import settings
from skillwave.errors import UpstreamError, ValidationError

logger = structlog.get_logger()

NO_RESPONSE = "No response from AI."
CONCISE_PREFIX = "Answer concisely and clearly: "


class AIAttachment:
    def __init__(self, data: bytes, mime_type: str, filename: str = ""):
        self.data = data
        self.mime_type = mime_type
        self.filename = filename

    def to_part(self) -> dict:
        return {
            "inlineData": {
                "data": base64.b64encode(self.data).decode("ascii"),
                "mimeType": self.mime_type,
            }
        }


class AIUnavailableError(UpstreamError):
    """No AI provider key is configured."""

    status_code = 503


class GeminiClient:
    """Thin async client for the generateContent endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-1.5-flash",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls) -> "GeminiClient":
        return cls(
            settings.gemini_api_key,
            model=settings.gemini_model,
            api_base=settings.gemini_api_base,
            timeout=settings.ai_timeout_seconds,
        )

    @staticmethod
    def build_parts(
        prompt: Optional[str], attachments: list[AIAttachment]
    ) -> list[dict]:
        parts: list[dict] = []
        if prompt:
            parts.append({"text": prompt})
        parts.extend(a.to_part() for a in attachments)
        return parts

    async def generate(
        self, prompt: Optional[str], attachments: Optional[list[AIAttachment]] = None
    ) -> str:
        """Return the first candidate's text.

        Raises:
            ValidationError: neither prompt nor attachments given
            AIUnavailableError: no API key configured
            UpstreamError: the provider failed or was unreachable
        """
        parts = self.build_parts(prompt, attachments or [])
        if not parts:
            raise ValidationError("No prompt or files provided.")
        if not self.api_key:
            raise AIUnavailableError("Gemini API key not configured.")

        url = f"{self.api_base}/models/{self.model}:generateContent"
        body = {"contents": [{"role": "user", "parts": parts}]}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                resp = await client.post(url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as e:
            logger.error("ai.request_failed", error=str(e))
            raise UpstreamError("Failed to get AI response.")

        if resp.status_code >= 400:
            message = _upstream_message(resp) or "Failed to get AI response."
            logger.error("ai.upstream_error", status=resp.status_code, error=message)
            raise UpstreamError(message)

        try:
            payload = resp.json()
        except ValueError:
            logger.error("ai.bad_response", status=resp.status_code)
            raise UpstreamError("Failed to get AI response.")

        text = _first_text(payload)
        logger.info("ai.response", model=self.model, parts=len(parts))
        return text or NO_RESPONSE


def _upstream_message(resp: httpx.Response) -> Optional[str]:
    try:
        return resp.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        return None


def _first_text(payload: dict) -> Optional[str]:
    try:
        return payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


def get_ai_client() -> GeminiClient:
    """FastAPI dependency — overridden in tests with a MockTransport client."""
    return GeminiClient.from_settings()
