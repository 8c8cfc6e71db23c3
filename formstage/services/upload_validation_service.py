"""Upload policy: settings resolution and per file validation."""

from __future__ import annotations

import mimetypes
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from formstage.core.config import Settings, settings
from formstage.db.enums import UploadErrorCode
from formstage.schemas.forms import UploadSettings
from formstage.services.form_errors import (
    FilesizeExceededError,
    NoDestinationError,
    TypeNotAcceptedError,
    UnsafeFilenameError,
    UploadTransportError,
)
from formstage.services.form_events import ON_FORM_UPLOAD_SETTINGS, FormEvents, form_events
from formstage.utils.payload import random_string
from formstage.utils.request_payload import IncomingUpload

BYTES_TO_MB = 1024 * 1024
RANDOM_NAME_LENGTH = 15
DEFAULT_MIME_TYPE = "application/octet-stream"

_MIME_TYPE_ALIASES: dict[str, str] = {
    # Non-standard but commonly seen in the wild.
    "image/jpg": "image/jpeg",
}
_UNSAFE_FILENAME_CHARS = frozenset("\t\v\n\r\0\\/")


@dataclass(frozen=True)
class ValidatedUpload:
    filename: str
    path: str
    destination: str
    mime: str
    size: int


# =============================================================================
# Settings
# =============================================================================


def get_max_filesize(config: Settings | None = None, in_bytes: bool = False) -> float:
    """Effective upload ceiling.

    The form limit applies when it is set and below the system ceiling,
    otherwise the system ceiling applies. Returns megabytes unless
    ``in_bytes``; 0 means unlimited.
    """
    config = config or settings
    limit = int(config.FORM_FILES_FILESIZE * BYTES_TO_MB)
    system_limit = config.SYSTEM_UPLOAD_LIMIT
    if limit > system_limit or limit == 0:
        limit = system_limit
    if in_bytes:
        return limit
    return limit / BYTES_TO_MB


def resolve_upload_settings(
    name: str | None,
    field_properties: Mapping[str, Any] | None,
    *,
    config: Settings | None = None,
    events: FormEvents | None = None,
    post: Mapping[str, Any] | None = None,
) -> UploadSettings:
    """Merge config defaults, schema field properties and hook overrides.

    ``filesize`` is in megabytes up to and including the hook step and is
    converted to bytes afterwards.
    """
    config = config or settings
    events = events or form_events

    resolved: dict[str, Any] = {
        "destination": config.FORM_FILES_DESTINATION,
        "avoid_overwriting": config.FORM_FILES_AVOID_OVERWRITING,
        "random_name": config.FORM_FILES_RANDOM_NAME,
        "accept": list(config.FORM_FILES_ACCEPT),
        "limit": config.FORM_FILES_LIMIT,
        "filesize": get_max_filesize(config),
    }
    if isinstance(field_properties, Mapping):
        resolved.update(field_properties)
    resolved["name"] = name

    result = events.fire(ON_FORM_UPLOAD_SETTINGS, settings=dict(resolved), post=dict(post or {}))
    resolved.update(result.overrides)

    resolved["filesize"] = int(float(resolved.get("filesize") or 0) * BYTES_TO_MB)
    return UploadSettings.model_validate(resolved)


# =============================================================================
# Validation
# =============================================================================


def sniff_mime(filename: str) -> str:
    """MIME type derived from the filename only; client headers are not trusted."""
    guessed, _ = mimetypes.guess_type(filename, strict=False)
    if not guessed:
        return DEFAULT_MIME_TYPE
    guessed = guessed.lower()
    return _MIME_TYPE_ALIASES.get(guessed, guessed)


def check_filename(filename: str, dangerous_extensions: list[str] | None = None) -> bool:
    if not filename:
        return False
    if any(char in _UNSAFE_FILENAME_CHARS for char in filename):
        return False
    if filename.strip(". ") != filename:
        return False
    if ".." in filename:
        return False
    extension = os.path.splitext(filename)[1][1:].lower()
    dangerous = settings.UPLOADS_DANGEROUS_EXTENSIONS if dangerous_extensions is None else dangerous_extensions
    return extension not in {ext.lower() for ext in dangerous}


def _accept_pattern(pattern: str, case_insensitive: bool) -> re.Pattern[str]:
    expression = re.escape(pattern).replace(r"\*", ".*") + "$"
    return re.compile(expression, re.IGNORECASE if case_insensitive else 0)


def match_accept(
    filename: str,
    mime: str,
    accept: list[str],
    case_insensitive: bool = False,
) -> list[tuple[str, tuple[object, ...]]] | None:
    """Return ``None`` when accepted, else one rejection reason per pattern."""
    reasons: list[tuple[str, tuple[object, ...]]] = []
    for pattern in accept:
        if pattern == "*":
            return None
        if "/" in pattern:
            if _accept_pattern(pattern, case_insensitive).search(mime):
                return None
            reasons.append(("INVALID_MIME_TYPE", (mime, filename)))
        else:
            if _accept_pattern(pattern, case_insensitive).search(filename):
                return None
            reasons.append(("INVALID_FILE_EXTENSION", (filename,)))
    return reasons


def _random_filename(filename: str) -> str:
    extension = os.path.splitext(filename)[1]
    return random_string(RANDOM_NAME_LENGTH) + extension


def validate_upload(
    upload: IncomingUpload,
    upload_settings: UploadSettings,
    *,
    resolve_destination: Callable[[str], str | None],
    filename: str | None = None,
    case_insensitive: bool | None = None,
) -> ValidatedUpload:
    """Run the upload checks in order; the first failure raises.

    Raises an ``UploadRejectedError`` subclass. On success returns the final
    filename (random and/or timestamp prefixed as configured) and target path.
    """
    filename = filename or upload.filename

    if upload.error != UploadErrorCode.OK:
        raise UploadTransportError(filename, UploadErrorCode(upload.error))

    if not check_filename(filename):
        raise UnsafeFilenameError(filename)

    destination = (
        resolve_destination(upload_settings.destination) if upload_settings.destination else None
    )
    if not destination:
        raise NoDestinationError()

    if case_insensitive is None:
        case_insensitive = settings.FORM_FILES_ACCEPT_CASE_INSENSITIVE
    mime = sniff_mime(filename)
    reasons = match_accept(filename, mime, upload_settings.accept, case_insensitive)
    if reasons is not None:
        raise TypeNotAcceptedError(reasons)

    if upload_settings.filesize > 0 and upload.size > upload_settings.filesize:
        raise FilesizeExceededError(upload.size, upload_settings.filesize)

    if upload_settings.random_name:
        filename = _random_filename(filename)

    if upload_settings.avoid_overwriting and os.path.exists(os.path.join(destination, filename)):
        filename = f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{filename}"

    return ValidatedUpload(
        filename=filename,
        path=f"{destination.rstrip('/')}/{filename}",
        destination=destination,
        mime=mime,
        size=upload.size,
    )
