"""Form-related enums."""

from enum import Enum, IntEnum


class FormStatus(str, Enum):
    """Outcome of the last operation on a form instance."""

    SUCCESS = "success"
    ERROR = "error"


class FormState(str, Enum):
    """Lifecycle position of a form instance within one request."""

    INITIALIZED = "initialized"
    POPULATED = "populated"
    VALIDATED = "validated"
    PROCESSED = "processed"
    COMMITTED = "committed"


class UploadErrorCode(IntEnum):
    """Transport level upload result, numbered like the classic multipart codes."""

    OK = 0
    INI_SIZE = 1
    FORM_SIZE = 2
    PARTIAL = 3
    NO_FILE = 4
    NO_TMP_DIR = 6
    CANT_WRITE = 7
    EXTENSION = 8

    @property
    def message_key(self) -> str:
        return f"UPLOAD_ERR_{self.name}"
