import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


MODEL_ALIASES = {
    "flash": "gemini/gemini-2.0-flash-exp",
    "flash-2.5": "gemini/gemini-2.5-flash",
    "pro": "gemini/gemini-2.5-pro",
    "sonnet": "claude-sonnet-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
    "4o": "gpt-4o",
    "4o-mini": "gpt-4o-mini",
}

DEFAULT_MODEL = MODEL_ALIASES["flash"]
SESSIONS_KEY = "chat_sessions"
SETTINGS_KEY = "chat_settings"


class ConfigError(Exception):
    pass


def resolve_model_alias(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class AppConfig:
    model: str = field(
        default_factory=lambda: resolve_model_alias(
            get_optional_env("COLLOQUY_MODEL", DEFAULT_MODEL)
        )
    )
    api_key: str | None = field(default_factory=lambda: os.environ.get("GEMINI_API_KEY") or None)
    data_dir: str = field(default_factory=lambda: get_optional_env("COLLOQUY_DATA_DIR", ".colloquy"))
    transcription_model: str = field(
        default_factory=lambda: get_optional_env("COLLOQUY_TRANSCRIPTION_MODEL", "whisper-1")
    )
    host: str = field(default_factory=lambda: get_optional_env("COLLOQUY_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _int_env("COLLOQUY_PORT", 5000))
    timeout_seconds: float = field(default_factory=lambda: _float_env("COLLOQUY_TIMEOUT", 120.0))

    @classmethod
    def from_env(cls) -> "AppConfig":
        config = cls()
        config.validate()
        return config

    def validate(self) -> None:
        if not self.model:
            raise ConfigError("model must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be positive")
        if not self.api_key:
            logger.warning("GEMINI_API_KEY is not set; requests need a custom api key")
