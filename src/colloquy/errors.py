class ChatError(Exception):
    pass


class ValidationError(ChatError):
    """Input rejected before any state was touched."""


class UpstreamError(ChatError):
    """A completion, translation or transcription backend call failed."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or message


class StorageError(ChatError):
    """Persisted state could not be decoded. Never leaves the storage layer."""


class SessionNotFoundError(ChatError):
    pass
