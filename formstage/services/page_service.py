"""Pages that declare forms, and destination token resolution."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from formstage.core.config import settings

logger = logging.getLogger(__name__)

PAGE_HEADER_FILENAME = "page.json"

_TOKEN_RE = re.compile(r"(@self|self@)|((?:@page|page@):(?:.*))")
_STREAM_PREFIX = "user://"


@dataclass
class Page:
    """A routable page and its header (title, forms, default data, rules)."""

    route: str
    path: str
    header: dict[str, Any] = field(default_factory=dict)
    slug: str | None = None

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = self.header.get("slug") or self.route.rstrip("/").rsplit("/", 1)[-1] or "home"

    @property
    def title(self) -> str | None:
        return self.header.get("title")

    def forms(self) -> dict[str, dict[str, Any]]:
        """Forms declared in the header, keyed by name, in declaration order."""
        declared: dict[str, dict[str, Any]] = {}
        single = self.header.get("form")
        if isinstance(single, dict):
            declared[single.get("name") or self.slug] = single
        many = self.header.get("forms")
        if isinstance(many, dict):
            for name, definition in many.items():
                if isinstance(definition, dict):
                    declared[str(name)] = definition
        return declared


class PageRegistry:
    """In-memory page index keyed by route."""

    def __init__(self, pages: list[Page] | None = None):
        self._pages: dict[str, Page] = {}
        for page in pages or []:
            self.register(page)

    @staticmethod
    def _normalize_route(route: str) -> str:
        route = "/" + route.strip("/")
        return route

    def register(self, page: Page) -> Page:
        page.route = self._normalize_route(page.route)
        self._pages[page.route] = page
        return page

    def dispatch(self, route: str) -> Page | None:
        return self._pages.get(self._normalize_route(route))

    find = dispatch

    def __len__(self) -> int:
        return len(self._pages)

    @classmethod
    def load(cls, root: str | os.PathLike[str]) -> "PageRegistry":
        """Index every directory under ``root`` that holds a ``page.json`` header."""
        registry = cls()
        base = Path(root)
        if not base.is_dir():
            logger.warning("Pages root %s does not exist", base)
            return registry

        for header_file in sorted(base.rglob(PAGE_HEADER_FILENAME)):
            try:
                header = json.loads(header_file.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping page header %s: %s", header_file, exc)
                continue
            page_dir = header_file.parent
            relative = page_dir.relative_to(base).as_posix()
            route = "/" if relative == "." else "/" + relative
            registry.register(Page(route=route, path=str(page_dir), header=header))
        return registry


def get_page_path_from_token(path: str, page: Page | None, pages: PageRegistry | None = None) -> str | None:
    """Resolve a destination token to a filesystem path.

    ``self@``/``@self`` is the current page folder, ``page@:/route`` another
    page's folder, ``user://x`` a folder under USER_ROOT; anything else is a
    path relative to ROOT_DIR. Returns ``None`` when the token cannot be
    resolved.
    """
    if not path or not isinstance(path, str):
        return None
    path = path.rstrip("/") or path

    if path.startswith(_STREAM_PREFIX):
        return os.path.join(settings.USER_ROOT, path[len(_STREAM_PREFIX):])

    match = _TOKEN_RE.search(path)
    if not match:
        if os.path.isabs(path):
            return path
        return os.path.join(settings.ROOT_DIR, path)

    if match.group(1):
        target = page
        resolved = path.replace(match.group(0), target.path.rstrip("/") if target else "")
    else:
        route = match.group(2).split(":", 1)[1]
        target = pages.find(route) if pages and route else None
        resolved = path.replace(match.group(0), target.path.rstrip("/") if target else "")

    if target is None:
        logger.warning("Destination token %s does not resolve to a page", path)
        return None
    return resolved
