"""Exceptions raised by the form submission and upload pipeline."""

from __future__ import annotations

from formstage.core.i18n import Translator, default_translator
from formstage.db.enums import UploadErrorCode


class FormServiceError(Exception):
    """Base exception for form pipeline errors.

    Carries a catalog key plus parameters so the HTTP layer can render the
    message in the active language.
    """

    message_key: str = "VALIDATION_FAILED"

    def __init__(self, *params: object, message_key: str | None = None):
        if message_key:
            self.message_key = message_key
        self.params = params
        super().__init__(default_translator.translate(self.message_key, *params))

    def render(self, translator: Translator | None = None) -> str:
        return (translator or default_translator).translate(self.message_key, *self.params)


# =============================================================================
# Recoverable: reported to the client, no state mutated
# =============================================================================


class UploadRejectedError(FormServiceError):
    """An incoming upload failed validation."""

    pass


class UploadTransportError(UploadRejectedError):
    """The transport reported an upload error code."""

    message_key = "FILEUPLOAD_UNABLE_TO_UPLOAD"

    def __init__(self, filename: str, code: UploadErrorCode):
        self.code = code
        super().__init__(filename, default_translator.translate(code.message_key))

    def render(self, translator: Translator | None = None) -> str:
        translator = translator or default_translator
        filename = self.params[0]
        return translator.translate(self.message_key, filename, translator.translate(self.code.message_key))


class UnsafeFilenameError(UploadRejectedError):
    """Filename failed the safety check."""

    message_key = "FILEUPLOAD_UNABLE_TO_UPLOAD"

    def __init__(self, filename: str):
        super().__init__(filename, "Bad filename")

    def render(self, translator: Translator | None = None) -> str:
        translator = translator or default_translator
        return translator.translate(self.message_key, self.params[0], translator.translate("BAD_FILENAME"))


class NoDestinationError(UploadRejectedError):
    """Destination token could not be resolved to a path."""

    message_key = "DESTINATION_NOT_SPECIFIED"


class TypeNotAcceptedError(UploadRejectedError):
    """No accept pattern matched; one reason per rejected pattern."""

    def __init__(self, reasons: list[tuple[str, tuple[object, ...]]]):
        self.reasons = reasons
        super().__init__(message_key="INVALID_FILE_EXTENSION")

    def render(self, translator: Translator | None = None) -> str:
        translator = translator or default_translator
        return "<br/>".join(translator.translate(key, *params) for key, params in self.reasons)

    def __str__(self) -> str:
        return self.render()


class FilesizeExceededError(UploadRejectedError):
    """Upload is larger than the effective size limit."""

    message_key = "EXCEEDED_FILESIZE_LIMIT"

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__()


class NonceInvalidError(FormServiceError):
    """Anti-forgery token missing or not matching the form action."""

    message_key = "NONCE_NOT_VALIDATED"


class SchemaValidationError(FormServiceError):
    """Schema validation failed; messages are grouped per field."""

    message_key = "VALIDATION_FAILED"

    def __init__(self, messages: dict[str, list[str]]):
        self.messages = messages
        super().__init__()

    def __str__(self) -> str:
        lines = [msg for field_messages in self.messages.values() for msg in field_messages]
        return "\n".join(lines) or super().__str__()


# =============================================================================
# Fatal: propagate to the caller, never retried automatically
# =============================================================================


class UploadMoveError(FormServiceError):
    """A staged file could not be moved to its destination."""

    message_key = "FILEUPLOAD_UNABLE_TO_MOVE"

    def __init__(self, filename: str, destination: str):
        self.filename = filename
        self.destination = destination
        super().__init__(f'"{filename}"', destination)


class StorageWriteError(FormServiceError):
    """The flash record could not be persisted."""

    message_key = "STORAGE_WRITE_FAILED"

    def __init__(self, uniqueid: str):
        self.uniqueid = uniqueid
        super().__init__(uniqueid)
