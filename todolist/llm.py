"""
Hosted model client (Anthropic Messages API over HTTPS).

One explicitly constructed client serves both text prompts and image
transcription. Every failure surfaces as LLMError; callers decide whether
to fall back.
"""
import base64
import logging
from typing import Any, Dict, List, Optional

import requests

from .config import Settings
from .errors import LLMError

logger = logging.getLogger(__name__)


class ClaudeClient:
    """HTTP client for the Messages endpoint."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.base_url = settings.api_base_url.rstrip("/")
        self.api_key = settings.api_key
        self.api_version = settings.api_version
        self.text_model = settings.text_model
        self.timeout = settings.request_timeout
        self.default_max_tokens = settings.text_max_tokens
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def close(self):
        self.session.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _send(self, payload: Dict[str, Any]) -> str:
        """POST a Messages payload and return the first text block, trimmed."""
        if not self.api_key:
            raise LLMError("Model API key not configured")

        try:
            resp = self.session.post(
                f"{self.base_url}/v1/messages",
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise LLMError(f"Model service unreachable: {e}") from e

        if resp.status_code != 200:
            error_type = ""
            try:
                error_type = resp.json().get("error", {}).get("type", "")
            except ValueError:
                pass
            logger.error(f"Model error {resp.status_code} ({payload.get('model')}): {resp.text[:200]}")
            raise LLMError(
                f"Model request failed with HTTP {resp.status_code}",
                status=resp.status_code,
                error_type=error_type,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise LLMError("Model response was not JSON") from e

        content = body.get("content") or []
        if content and isinstance(content[0], dict) and content[0].get("text"):
            return content[0]["text"].strip()
        raise LLMError("No text content in model response")

    def complete(self, prompt: str, system: str = "", max_tokens: Optional[int] = None,
                 model: Optional[str] = None) -> str:
        """Single-turn text completion."""
        payload = {
            "model": model or self.text_model,
            "max_tokens": max_tokens or self.default_max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system
        return self._send(payload)

    def transcribe_image(self, image: bytes, media_type: str, instruction: str,
                         model: str, max_tokens: int = 1000) -> str:
        """Send one image plus an instruction; return the model's transcription."""
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type or "image/jpeg",
                    "data": base64.b64encode(image).decode("ascii"),
                },
            },
            {"type": "text", "text": instruction},
        ]
        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        return self._send(payload)
