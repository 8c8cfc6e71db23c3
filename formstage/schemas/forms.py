"""Schemas for form state, ajax replies and upload settings."""

from __future__ import annotations

import json
from base64 import b64encode
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class UploadSettings(BaseModel):
    """Per field upload policy; always fully populated."""

    name: str | None = None
    destination: str | None = None
    avoid_overwriting: bool = False
    random_name: bool = False
    accept: list[str] = Field(default_factory=lambda: ["image/*"])
    limit: int = 10
    filesize: int = Field(0, ge=0, description="Bytes, 0 = unlimited")

    @field_validator("accept", mode="before")
    @classmethod
    def _coerce_accept(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("destination", mode="before")
    @classmethod
    def _blank_destination(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CropRegion(BaseModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class AjaxReply(BaseModel):
    """JSON body written by the ajax handlers."""

    status: Literal["success", "error"]
    message: str | None = None
    session: str | None = None

    @classmethod
    def success(cls) -> "AjaxReply":
        return cls(status="success")

    @classmethod
    def error(cls, message: str) -> "AjaxReply":
        return cls(status="error", message=message)

    @classmethod
    def upload_success(cls, *, url: str, path: str, field: str | None, uniqueid: str) -> "AjaxReply":
        session = json.dumps(
            {
                "sessionField": b64encode(url.encode()).decode(),
                "path": path,
                "field": field,
                "uniqueid": uniqueid,
            },
            separators=(",", ":"),
        )
        return cls(status="success", session=session)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class FormNonceRead(BaseModel):
    name: str
    value: str


class FormStateRead(BaseModel):
    name: str
    id: str
    uniqueid: str
    action: str | None = None
    nonce: FormNonceRead
    data: dict[str, Any] = Field(default_factory=dict)
    fields: dict[str, Any] = Field(default_factory=dict)


class FormSubmitResponse(BaseModel):
    status: Literal["success", "error"]
    message: str | None = None
    errors: dict[str, list[str]] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
