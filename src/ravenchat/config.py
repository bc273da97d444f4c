"""Application settings, read from the environment and a JSON settings file."""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import FEATURE_MODES, STANDARD_MODE

logger = logging.getLogger(__name__)

CUSTOM_PROVIDER = "Custom API URL"
PROVIDER_URLS = {
    "OpenRouter": "https://openrouter.ai/api/v1/chat/completions",
    "Together AI": "https://api.together.xyz/v1/chat/completions",
    "Groq": "https://api.groq.com/openai/v1/chat/completions",
    CUSTOM_PROVIDER: "",
}
CHAT_COMPLETIONS_SUFFIX = "/chat/completions"


class Settings(BaseSettings):
    """User preferences and provider selection.

    Values come from ``RAVENCHAT_*`` environment variables (or a ``.env`` file)
    and can be persisted with :meth:`save` and restored with :meth:`load`.
    """

    api_key: Optional[str] = None
    provider: str = "OpenRouter"
    custom_api_url: str = ""
    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 500
    use_adaptive_tokens: bool = True
    show_reasoning: bool = True
    feature_mode: str = STANDARD_MODE
    sessions_path: Optional[Path] = None
    settings_path: Optional[Path] = None
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="RAVENCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in PROVIDER_URLS:
            raise ValueError(
                f"Unknown provider {value!r}. Expected one of: {', '.join(PROVIDER_URLS)}"
            )
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_ceiling(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_tokens must be a positive integer")
        return value

    @field_validator("feature_mode")
    @classmethod
    def _known_mode(cls, value: str) -> str:
        if value not in FEATURE_MODES:
            raise ValueError(f"Unknown feature mode {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Invalid log level: {value}")
        return level

    @property
    def api_url(self) -> str:
        """The chat-completions endpoint for the selected provider."""
        if self.provider == CUSTOM_PROVIDER:
            return self.custom_api_url
        return PROVIDER_URLS[self.provider]

    @property
    def base_url(self) -> str:
        """The API root, as expected by OpenAI-compatible SDK clients."""
        url = self.api_url.rstrip("/")
        if url.endswith(CHAT_COMPLETIONS_SUFFIX):
            url = url[: -len(CHAT_COMPLETIONS_SUFFIX)]
        return url

    def save(self, path: Union[str, Path]) -> None:
        """Writes the preferences to ``path``; the API key stays in the environment."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            self.model_dump_json(indent=2, exclude={"api_key", "settings_path"}), encoding="utf-8"
        )

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None, **overrides) -> "Settings":
        """Builds settings from the environment, a saved file and overrides.

        Raises
        ------
        ConfigurationError
            If any value fails validation or the file is not valid JSON.
        """
        values = {}
        if path is not None and Path(path).exists():
            try:
                values = json.loads(Path(path).read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Settings file {path} is not valid JSON", original_error=e
                ) from e
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(str(e), original_error=e) from e


def load_settings(**overrides) -> Settings:
    """Reads the environment, then the saved file it names in ``settings_path``."""
    settings = Settings(**overrides)
    if settings.settings_path is None:
        return settings
    logger.info("Loading saved settings from %s", settings.settings_path)
    return Settings.load(settings.settings_path, **overrides)


def configure_logging(level: str = "WARNING") -> None:
    """Installs a root handler for running the app as a program."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
