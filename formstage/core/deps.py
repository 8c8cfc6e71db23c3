"""FastAPI dependencies for database access and form collaborators."""

from functools import lru_cache
from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from formstage.core.config import settings
from formstage.core.i18n import Translator, default_translator
from formstage.db.session import SessionLocal
from formstage.services.form_events import FormEvents, form_events
from formstage.services.page_service import PageRegistry

ACTOR_HEADER = "X-Authenticated-User"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache
def get_page_registry() -> PageRegistry:
    """Pages indexed once from PAGES_ROOT."""
    return PageRegistry.load(settings.PAGES_ROOT)


def get_form_events() -> FormEvents:
    return form_events


def get_translator() -> Translator:
    return default_translator


def get_actor(request: Request) -> str | None:
    """Actor reference forwarded by the authenticating proxy, if any."""
    return request.headers.get(ACTOR_HEADER) or None
