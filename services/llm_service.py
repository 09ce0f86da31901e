"""Client for an OpenAI-compatible chat completions endpoint.

Every caller in the workflow supplies a deterministic fallback, so the
``*_with_fallback`` helpers are the normal entry points: they return the
fallback whenever the endpoint is unconfigured, unreachable or returns
something that cannot be parsed.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from config.settings import settings
from services.errors import ConfigurationError, LLMClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_JSON_BLOCK = re.compile(r"({[\s\S]*}|\[[\s\S]*\])")


def extract_json(text: Optional[str]) -> Any:
    """Parse JSON from a model response, tolerating fences and preamble."""

    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_FENCE.search(text) or _JSON_BLOCK.search(text)
        if not match:
            return None
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            return None


class LLMService:
    """Thin wrapper around ``POST {base_url}/chat/completions``.

    ``base_url`` includes the API version prefix, e.g.
    ``http://127.0.0.1:1234/v1``.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        url = base_url if base_url is not None else settings.llm_base_url
        if url and not url.startswith("http"):
            url = f"http://{url}"
        self.base_url = url.rstrip("/") if url else None
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self.base_url:
            raise ConfigurationError("LLM base URL not configured")
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
            return response
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            message = exc.response.text if exc.response is not None else str(exc)
            raise LLMClientError(message, status_code=status_code) from exc
        except requests.RequestException as exc:  # pragma: no cover - network failures
            raise LLMClientError(str(exc)) from exc

    @staticmethod
    def _coerce_message_content(payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if choices:
            first = choices[0] or {}
            message = first.get("message") or {}
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str):
                    return content
        for key in ("text", "response", "output", "content"):
            value = payload.get(key)
            if isinstance(value, str):
                return value
        return ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate_text(
        self,
        prompt: str,
        *,
        system: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.llm_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or settings.llm_max_tokens,
            "stream": False,
        }
        response = self._request("POST", "/chat/completions", json=payload)
        data = response.json() if response.content else {}
        text = self._coerce_message_content(data).strip()
        if not text:
            raise LLMClientError("LLM returned empty response")
        return text

    def generate_json(self, prompt: str, *, system: str = "", **kwargs) -> Any:
        instructions = f"{system}\nReturn strict JSON with no markdown fences.".strip()
        text = self.generate_text(prompt, system=instructions, **kwargs)
        parsed = extract_json(text)
        if parsed is None:
            raise LLMClientError("Failed to parse JSON from LLM response")
        return parsed

    def generate_text_with_fallback(
        self, prompt: str, fallback: Callable[[], T], *, system: str = "", **kwargs
    ):
        if not self.configured:
            return fallback()
        try:
            return self.generate_text(prompt, system=system, **kwargs)
        except (LLMClientError, ConfigurationError, ValueError) as exc:
            logger.warning("LLM text generation failed; using fallback: %s", exc)
            return fallback()

    def generate_json_with_fallback(
        self, prompt: str, fallback: Callable[[], T], *, system: str = "", **kwargs
    ):
        if not self.configured:
            return fallback()
        try:
            return self.generate_json(prompt, system=system, **kwargs)
        except (LLMClientError, ConfigurationError, ValueError) as exc:
            logger.warning("LLM JSON generation failed; using fallback: %s", exc)
            return fallback()
