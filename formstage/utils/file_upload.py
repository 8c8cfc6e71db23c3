"""Transport level upload checks that run before the body is parsed."""

from __future__ import annotations

from os import SEEK_END
from typing import BinaryIO

from formstage.db.enums import UploadErrorCode

# Multipart boundaries and the other form fields travel with the file.
MULTIPART_OVERHEAD_BYTES = 64 * 1024


def body_size_error(
    content_length_header: str | None,
    *,
    max_size_bytes: int,
    overhead_bytes: int = MULTIPART_OVERHEAD_BYTES,
) -> UploadErrorCode:
    """Map an oversized request body to ``INI_SIZE``.

    Missing or malformed headers and an unlimited ceiling (0) pass as ``OK``;
    the per-field filesize check still runs later.
    """
    if not content_length_header or max_size_bytes <= 0:
        return UploadErrorCode.OK
    try:
        content_length = int(content_length_header)
    except (TypeError, ValueError):
        return UploadErrorCode.OK
    if content_length > max_size_bytes + overhead_bytes:
        return UploadErrorCode.INI_SIZE
    return UploadErrorCode.OK


def stream_size(stream: BinaryIO | None) -> int:
    """Byte length of a seekable upload stream; the position is preserved."""
    if stream is None:
        return 0
    position = stream.tell()
    try:
        return stream.seek(0, SEEK_END)
    finally:
        stream.seek(position)
