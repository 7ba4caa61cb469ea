from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


load_dotenv()


class ConfigError(RuntimeError):
    pass


_ENV_NAMES = {
    "openai_api_key": "OPENAI_API_KEY",
    "ragie_api_key": "RAGIE_AI_API_KEY",
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    # Completion API (OpenAI-compatible chat completions)
    openai_api_key: str | None = None
    openai_api_base: str = "https://api.openai.com/v1"
    extract_model: str = "gpt-4"
    coding_model: str = "gpt-4o"
    completion_temperature: float = 0.7

    # Retrieval API
    ragie_api_key: str | None = None
    ragie_api_base: str = "https://api.ragie.ai"

    # Firebase
    firebase_credentials_path: str = "firebase-admin-key.json"
    firebase_project_id: str | None = None

    http_timeout_seconds: float = 120.0

    required: tuple[str, ...] = field(default=("openai_api_key", "ragie_api_key"))

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_api_base=os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1"),
            extract_model=os.getenv("COMPLETION_EXTRACT_MODEL", "gpt-4"),
            coding_model=os.getenv("COMPLETION_CODING_MODEL", "gpt-4o"),
            completion_temperature=_env_float("COMPLETION_TEMPERATURE", 0.7),
            ragie_api_key=os.getenv("RAGIE_AI_API_KEY") or None,
            ragie_api_base=os.getenv("RAGIE_API_BASE", "https://api.ragie.ai"),
            firebase_credentials_path=os.getenv("FIREBASE_CREDENTIALS_PATH", "firebase-admin-key.json"),
            firebase_project_id=os.getenv("FIREBASE_PROJECT_ID") or None,
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 120.0),
        )

    def missing_keys(self) -> list[str]:
        return [name for name in self.required if not getattr(self, name)]

    def require(self) -> None:
        """Raise ConfigError naming every required secret that is absent."""
        missing = self.missing_keys()
        if missing:
            names = ", ".join(_ENV_NAMES.get(name, name.upper()) for name in missing)
            raise ConfigError(f"Missing required configuration: {names}")
