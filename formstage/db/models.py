"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, TIMESTAMP, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from formstage.db.base import Base


class FlashRecord(Base):
    """Staged uploads and partial data for one in-progress form submission."""

    __tablename__ = "form_flash"
    __table_args__ = (
        Index("idx_form_flash_form", "form_name"),
        Index("idx_form_flash_updated", "updated_at"),
    )

    uniqueid: Mapped[str] = mapped_column(String(64), primary_key=True)
    form_name: Mapped[str | None] = mapped_column(String(150), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    user: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # field -> filename -> descriptor dict
    files_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    data_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Deprecated raw temp-path queue: field -> destination -> descriptor dict
    legacy_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
