from __future__ import annotations

import json
import logging
from typing import Any

import requests

from authdesk.config import ConfigError, Settings

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    pass


class InvalidJSONError(CompletionError):
    pass


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the span from the first '{' to the last '}' of a model reply.

    Models often wrap the object in prose or code fences; anything outside
    the outermost braces is ignored. A reply with no such span, an
    unparsable span, or a non-object raises InvalidJSONError.
    """
    if not isinstance(text, str):
        raise InvalidJSONError("Invalid JSON response: model content is not text")

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise InvalidJSONError("Invalid JSON response: no JSON object found")

    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise InvalidJSONError(f"Invalid JSON response: {exc.msg}") from exc

    if not isinstance(parsed, dict):
        raise InvalidJSONError("Invalid JSON response: expected a JSON object")
    return parsed


class CompletionClient:
    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self.api_key = settings.openai_api_key
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is missing. Set it in environment or .env.")
        self.session = session or requests.Session()

    def complete(
        self,
        model: str,
        user_prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> str:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.settings.completion_temperature if temperature is None else temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = self.session.post(
            f"{self.settings.openai_api_base}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
            timeout=self.settings.http_timeout_seconds,
        )
        if response.status_code >= 300:
            raise CompletionError(f"Completion API error {response.status_code}: {response.text[:500]}")

        return self._extract_text(response.json())

    def complete_json(
        self,
        model: str,
        user_prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> dict[str, Any]:
        text = self.complete(
            model,
            user_prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            json_mode=json_mode,
        )
        try:
            return extract_json_object(text)
        except InvalidJSONError:
            logger.warning("Unparsable completion content: %s", text[:1000])
            raise

    @staticmethod
    def _extract_text(api_response: dict[str, Any]) -> str:
        try:
            text = api_response["choices"][0]["message"]["content"]
            if not text:
                raise ValueError("empty model text")
            return text
        except Exception as exc:  # noqa: BLE001
            raise CompletionError(f"Failed to parse completion response: {str(api_response)[:500]}") from exc
