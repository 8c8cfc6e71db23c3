"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session with the staging tables created per test
- Settings pointed at a per-test filesystem (pages, staging, uploads)
- A page registry with a contact page and a form accepting uploads
- HTTPX AsyncClient over the ASGI app
"""
import os
from io import BytesIO
from typing import AsyncGenerator, Generator

import pytest

os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"

from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from formstage.core.config import settings
from formstage.core.deps import get_db, get_form_events, get_page_registry
from formstage.db import models  # noqa: F401
from formstage.db.base import Base
from formstage.db.session import SessionLocal, engine
from formstage.main import app
from formstage.services.form_events import FormEvents
from formstage.services.page_service import Page, PageRegistry
from formstage.utils.request_payload import IncomingUpload

SESSION_ID = "test-session"

CONTACT_FORM = {
    "name": "contact",
    "fields": [
        {"name": "name", "type": "text", "label": "Name", "validate": {"required": True}},
        {"name": "email", "type": "email", "label": "Email"},
        {"name": "agree", "type": "checkbox", "label": "Agree"},
        {"name": "avatar", "type": "file", "label": "Avatar", "accept": ["image/*"], "destination": "self@"},
        {"name": "docs", "type": "file", "label": "Docs", "accept": [".jpg", ".png"], "destination": "user://data/docs"},
    ],
    "process": [{"message": "Thanks"}],
}


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch) -> None:
    """Point every filesystem root at the test's tmp dir."""
    user_root = tmp_path / "user"
    monkeypatch.setattr(settings, "ROOT_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "USER_ROOT", str(user_root))
    monkeypatch.setattr(settings, "PAGES_ROOT", str(user_root / "pages"))
    monkeypatch.setattr(settings, "FLASH_TMP_DIR", str(tmp_path / "tmp" / "forms"))
    monkeypatch.setattr(settings, "NONCE_SECRET", "test-secret")


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh tables for each test; the in-memory database shares one connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


# =============================================================================
# Page Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def contact_page(tmp_path) -> Page:
    page_dir = tmp_path / "user" / "pages" / "contact"
    page_dir.mkdir(parents=True)
    return Page(
        route="/contact",
        path=str(page_dir),
        header={
            "title": "Contact",
            "data": {"name": "Guest"},
            "forms": {"contact": CONTACT_FORM},
        },
    )


@pytest.fixture(scope="function")
def pages(contact_page: Page) -> PageRegistry:
    return PageRegistry([contact_page])


@pytest.fixture(scope="function")
def events() -> FormEvents:
    return FormEvents()


# =============================================================================
# Upload helpers
# =============================================================================

def make_upload(field: str, filename: str, data: bytes = b"payload") -> IncomingUpload:
    return IncomingUpload(field=field, filename=filename, stream=BytesIO(data), size=len(data))


def png_bytes(size: tuple[int, int] = (8, 8)) -> bytes:
    from PIL import Image

    image = Image.new("RGB", size, color=(255, 0, 0))
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, pages: PageRegistry, events: FormEvents) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient for the public form endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_page_registry] = lambda: pages
    app.dependency_overrides[get_form_events] = lambda: events

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={settings.SESSION_COOKIE_NAME: SESSION_ID},
    ) as c:
        yield c

    app.dependency_overrides.clear()
