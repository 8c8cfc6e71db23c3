"""User-facing message catalog for form replies."""

from __future__ import annotations

from collections.abc import Mapping

DEFAULT_MESSAGES: dict[str, str] = {
    "NONCE_NOT_VALIDATED": "Oops there was a problem, please check your input and submit the form again.",
    "FILEUPLOAD_UNABLE_TO_UPLOAD": "Unable to upload file %s: %s",
    "FILEUPLOAD_UNABLE_TO_MOVE": 'Unable to move file %s to "%s"',
    "DESTINATION_NOT_SPECIFIED": "Destination not specified",
    "INVALID_MIME_TYPE": "The MIME type %s for the file %s is not an accepted.",
    "INVALID_FILE_EXTENSION": "The File Extension for the file %s is not an accepted.",
    "EXCEEDED_FILESIZE_LIMIT": "The file exceeds the maximum allowed file size",
    "BAD_FILENAME": "Bad filename",
    "VALIDATION_FAILED": "Validation failed",
    "STORAGE_WRITE_FAILED": "Unable to store the form state for %s",
    "UPLOAD_ERR_INI_SIZE": "The uploaded file exceeds the server upload size limit",
    "UPLOAD_ERR_FORM_SIZE": "The uploaded file exceeds the size limit specified in the form",
    "UPLOAD_ERR_PARTIAL": "The uploaded file was only partially uploaded",
    "UPLOAD_ERR_NO_FILE": "No file was uploaded",
    "UPLOAD_ERR_NO_TMP_DIR": "Missing a temporary folder",
    "UPLOAD_ERR_CANT_WRITE": "Failed to write file to disk",
    "UPLOAD_ERR_EXTENSION": "A server extension stopped the file upload",
}


class Translator:
    """Map message keys plus positional parameters to strings."""

    def __init__(self, messages: Mapping[str, str] | None = None):
        self.messages = dict(DEFAULT_MESSAGES)
        if messages:
            self.messages.update(messages)

    def translate(self, key: str, *params: object) -> str:
        template = self.messages.get(key, key)
        if not params:
            return template
        try:
            return template % params
        except (TypeError, ValueError):
            return f"{template} {' '.join(str(p) for p in params)}"


default_translator = Translator()
