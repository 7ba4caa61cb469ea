from __future__ import annotations

from typing import Any

import requests

from authdesk.config import ConfigError, Settings


class RetrievalError(RuntimeError):
    pass


class RetrievalClient:
    def __init__(self, settings: Settings, session: requests.Session | None = None):
        self.settings = settings
        self.api_key = settings.ragie_api_key
        if not self.api_key:
            raise ConfigError("RAGIE_AI_API_KEY is missing. Set it in environment.")
        self.session = session or requests.Session()

    def search(self, query: str) -> dict[str, Any]:
        """Return the raw retrieval payload; chunks arrive ranked by relevance."""
        response = self.session.post(
            f"{self.settings.ragie_api_base}/retrievals",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"query": query},
            timeout=self.settings.http_timeout_seconds,
        )
        if response.status_code >= 300:
            raise RetrievalError(f"Retrieval API error {response.status_code}: {response.text[:500]}")

        payload = response.json()
        if not isinstance(payload, dict):
            raise RetrievalError("Retrieval API returned non-object JSON payload")
        return payload

    def retrieve(self, query: str) -> list[str]:
        return chunk_texts(self.search(query))


def chunk_texts(payload: dict[str, Any]) -> list[str]:
    chunks = payload.get("scored_chunks")
    if not isinstance(chunks, list):
        raise RetrievalError("Retrieval response missing scored_chunks")
    return [str(chunk.get("text", "")) for chunk in chunks if isinstance(chunk, dict)]
