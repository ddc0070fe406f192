import logging
from typing import Any

from pydantic import ValidationError as SchemaError

from colloquy.config import SETTINGS_KEY
from colloquy.errors import StorageError, ValidationError
from colloquy.models import Settings
from colloquy.storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = Settings()


def _decode_settings(payload: Any) -> Settings | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise StorageError(f"expected a JSON object, got {type(payload).__name__}")
    try:
        return Settings.model_validate(payload)
    except SchemaError as e:
        raise StorageError(str(e)) from e


class SettingsStore:
    """The process-wide settings applied to every outgoing request."""

    def __init__(self, store: KeyValueStore, key: str = SETTINGS_KEY):
        self.store = store
        self.key = key

    def load(self) -> Settings:
        try:
            settings = _decode_settings(self.store.get(self.key))
        except StorageError as e:
            logger.warning(f"Stored settings are unreadable, using defaults: {e}")
            settings = None
        return settings if settings is not None else DEFAULT_SETTINGS.model_copy()

    def update(self, partial: dict[str, Any]) -> Settings:
        current = self.load().model_dump(by_alias=True)
        for key, value in (partial or {}).items():
            field = Settings.model_fields.get(key)
            current[field.alias if field and field.alias else key] = value
        try:
            merged = Settings.model_validate(current)
        except SchemaError as e:
            raise ValidationError(f"Invalid settings: {e}") from e
        self.store.set(self.key, merged.to_json())
        logger.debug(f"Updated settings: {sorted((partial or {}).keys())}")
        return merged

    def reset(self) -> Settings:
        self.store.set(self.key, DEFAULT_SETTINGS.to_json())
        return DEFAULT_SETTINGS.model_copy()
