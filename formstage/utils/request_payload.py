"""Request payload parsing for form posts.

Browsers post form fields with bracket notation (``data[address][city]``,
``data[tags][]``). This module folds such flat multipart/urlencoded items
into nested dicts, and does the same for uploaded files, so the rest of the
pipeline only deals with plain mappings.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from fastapi import Request
from starlette.datastructures import UploadFile

from formstage.core.config import settings
from formstage.db.enums import UploadErrorCode
from formstage.utils.file_upload import body_size_error, stream_size
from formstage.utils.payload import get_path

_BRACKET_PART = re.compile(r"\[([^\[\]]*)\]")


@dataclass
class IncomingUpload:
    """One uploaded file as seen by the transport."""

    field: str
    filename: str
    stream: BinaryIO | None = None
    content_type: str | None = None
    size: int = 0
    error: UploadErrorCode = UploadErrorCode.OK


@dataclass
class FormRequest:
    """Decoded request context handed to a form instance."""

    post: dict[str, Any] = field(default_factory=dict)
    files: dict[str, Any] = field(default_factory=dict)
    url: str = ""
    session_id: str = ""
    upload_error: UploadErrorCode = UploadErrorCode.OK


def split_key(key: str) -> list[str]:
    """``data[a][b]`` -> ``["data", "a", "b"]``; malformed keys stay whole."""
    head, sep, rest = key.partition("[")
    if not sep or not head:
        return [key]
    remainder = sep + rest
    parts = [head]
    pos = 0
    for match in _BRACKET_PART.finditer(remainder):
        if match.start() != pos:
            return [key]
        parts.append(match.group(1))
        pos = match.end()
    if pos != len(remainder):
        return [key]
    return parts


def _assign(target: dict[str, Any], parts: list[str], value: Any) -> None:
    if parts[-1] == "" and len(parts) > 1:
        container = target
        for part in parts[:-2]:
            child = container.get(part)
            if not isinstance(child, dict):
                child = {}
                container[part] = child
            container = child
        existing = container.get(parts[-2])
        if not isinstance(existing, list):
            existing = [] if existing is None else [existing]
            container[parts[-2]] = existing
        existing.append(value)
        return

    current = target
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def fold_items(items: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """Fold flat ``(key, value)`` pairs with bracket keys into a nested dict."""
    folded: dict[str, Any] = {}
    for key, value in items:
        _assign(folded, split_key(key), value)
    return folded


def parse_form_body(items: Iterable[tuple[str, Any]]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split multipart items into nested post data and nested uploads."""
    fields: list[tuple[str, Any]] = []
    uploads: list[tuple[str, Any]] = []
    for key, value in items:
        if isinstance(value, UploadFile):
            uploads.append((key, value))
        else:
            fields.append((key, value))
    return fold_items(fields), fold_items(uploads)


def normalize_files(
    files: Mapping[str, Any] | None,
    key: str,
    *,
    error: UploadErrorCode = UploadErrorCode.OK,
) -> IncomingUpload:
    """Pick the single upload posted for ``key``.

    Ajax uploads always send one file at a time, so a list collapses to its
    first element.
    """
    value = get_path(files or {}, key) if key else None
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None or not getattr(value, "filename", None):
        return IncomingUpload(field=key, filename="", error=UploadErrorCode.NO_FILE)

    stream = value.file
    return IncomingUpload(
        field=key,
        filename=value.filename,
        stream=stream,
        content_type=value.content_type,
        size=stream_size(stream),
        error=error,
    )


async def build_form_request(request: Request) -> FormRequest:
    """Read the request body into a ``FormRequest``."""
    upload_error = body_size_error(
        request.headers.get("content-length"),
        max_size_bytes=settings.SYSTEM_UPLOAD_LIMIT,
    )

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.json()
        post = body if isinstance(body, dict) else {}
        files: dict[str, Any] = {}
    else:
        form = await request.form()
        post, files = parse_form_body(form.multi_items())

    return FormRequest(
        post=post,
        files=files,
        url=str(request.url),
        session_id=request.cookies.get(settings.SESSION_COOKIE_NAME, ""),
        upload_error=upload_error,
    )
