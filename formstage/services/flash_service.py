"""Flash store: uploads and partial data staged across requests.

One record per form ``uniqueid``. Metadata lives in the ``form_flash`` table;
staged bytes live under ``FLASH_TMP_DIR/<uniqueid>/`` until commit moves them
to their destination or ``delete()`` discards them.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, BinaryIO

from PIL import Image
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formstage.core.config import settings
from formstage.core.structured_logging import build_log_context
from formstage.db.models import FlashRecord
from formstage.schemas.forms import CropRegion
from formstage.services.form_errors import StorageWriteError
from formstage.utils.payload import random_string

logger = logging.getLogger(__name__)

TMP_NAME_LENGTH = 12
UNIQUEID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")


def is_valid_uniqueid(value: object) -> bool:
    """Form ids name a staging directory, so only a safe charset is allowed."""
    return isinstance(value, str) and UNIQUEID_PATTERN.fullmatch(value) is not None


@dataclass
class FlashFile:
    """Descriptor of one staged upload."""

    field: str
    name: str
    original_name: str
    tmp_name: str
    destination: str
    size: int = 0
    type: str | None = None
    moved: bool = False
    crop: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FlashFile":
        return cls(
            field=data["field"],
            name=data["name"],
            original_name=data.get("original_name") or data["name"],
            tmp_name=data.get("tmp_name") or "",
            destination=data.get("destination") or "",
            size=int(data.get("size") or 0),
            type=data.get("type"),
            moved=bool(data.get("moved", False)),
            crop=data.get("crop"),
        )


class FormFlash:
    """Staging record for one in-progress submission."""

    def __init__(self, db: Session, uniqueid: str, form_name: str | None = None, record: FlashRecord | None = None):
        if not is_valid_uniqueid(uniqueid):
            raise ValueError(f"Invalid form uniqueid: {uniqueid!r}")
        self.db = db
        self.uniqueid = uniqueid
        self.form_name = form_name
        self._record = record
        self.url: str | None = None
        self.user: str | None = None
        self._data: dict[str, Any] | None = None
        self._files: dict[str, dict[str, FlashFile]] = {}
        self._legacy: dict[str, dict[str, dict[str, Any]]] = {}
        # Fields whose descriptors changed since the record was loaded.
        self._touched: set[str] = set()

        if record is not None:
            self.form_name = form_name or record.form_name
            self.url = record.url
            self.user = record.user
            self._data = record.data_json
            self._legacy = dict(record.legacy_json or {})
            for field_name, files in (record.files_json or {}).items():
                self._files[field_name] = {
                    name: FlashFile.from_dict(descriptor) for name, descriptor in files.items()
                }

    @classmethod
    def open(cls, db: Session, uniqueid: str, form_name: str | None = None) -> "FormFlash":
        """Load the record for ``uniqueid`` or start an empty one (not persisted)."""
        record = db.get(FlashRecord, uniqueid)
        return cls(db, uniqueid, form_name=form_name, record=record)

    def exists(self) -> bool:
        return self._record is not None

    @property
    def tmp_dir(self) -> str:
        root = os.path.realpath(settings.FLASH_TMP_DIR)
        path = os.path.realpath(os.path.join(root, self.uniqueid))
        if os.path.dirname(path) != root:
            raise ValueError(f"Staging directory escapes {root}: {path}")
        return path

    def _log_context(self, field_name: str | None = None) -> dict[str, Any]:
        return build_log_context(form_name=self.form_name, uniqueid=self.uniqueid, field=field_name)

    # =========================================================================
    # Metadata
    # =========================================================================

    def set_url(self, url: str | None) -> "FormFlash":
        self.url = url
        return self

    def set_user(self, user: str | None) -> "FormFlash":
        self.user = user
        return self

    def get_data(self) -> dict[str, Any] | None:
        return self._data

    def set_data(self, data: Mapping[str, Any] | None) -> None:
        self._data = dict(data) if data is not None else None

    # =========================================================================
    # Files
    # =========================================================================

    def get_files_by_field(self) -> dict[str, list[FlashFile]]:
        return {field_name: list(files.values()) for field_name, files in self._files.items()}

    def get_files(self, field_name: str) -> list[FlashFile]:
        return list(self._files.get(field_name, {}).values())

    def _new_tmp_path(self) -> str:
        os.makedirs(self.tmp_dir, exist_ok=True)
        return os.path.join(self.tmp_dir, random_string(TMP_NAME_LENGTH))

    def _register(self, field_name: str, filename: str, descriptor: Mapping[str, Any], tmp_name: str,
                  size: int, crop: dict[str, float] | None = None) -> FlashFile:
        previous = self._files.get(field_name, {}).get(filename)
        if previous is not None and previous.tmp_name != tmp_name:
            self._unlink(previous.tmp_name)

        flash_file = FlashFile(
            field=field_name,
            name=filename,
            original_name=descriptor.get("original_name") or filename,
            tmp_name=tmp_name,
            destination=descriptor.get("path") or descriptor.get("destination") or "",
            size=size,
            type=descriptor.get("type"),
            crop=crop,
        )
        self._files.setdefault(field_name, {})[filename] = flash_file
        self._touched.add(field_name)
        return flash_file

    def stage_upload(self, field_name: str, filename: str, descriptor: Mapping[str, Any], source: BinaryIO) -> bool:
        """Copy ``source`` into the staging area and register it under ``field_name``."""
        tmp_name: str | None = None
        try:
            tmp_name = self._new_tmp_path()
            source.seek(0)
            with open(tmp_name, "wb") as target:
                shutil.copyfileobj(source, target)
            size = os.path.getsize(tmp_name)
        except OSError:
            logger.warning("Unable to stage upload %s", filename, extra=self._log_context(field_name), exc_info=True)
            if tmp_name:
                self._unlink(tmp_name)
            return False

        self._register(field_name, filename, descriptor, tmp_name, size)
        return True

    def stage_crop(
        self,
        field_name: str,
        filename: str,
        descriptor: Mapping[str, Any],
        source: BinaryIO,
        crop: CropRegion | Mapping[str, Any],
    ) -> bool:
        """Crop the image in ``source`` and stage the result.

        Fails on non-positive width/height, an origin outside the image, an
        unreadable image or an I/O error. The box is clamped to the image.
        """
        region = crop if isinstance(crop, CropRegion) else CropRegion.model_validate(crop)
        if region.width <= 0 or region.height <= 0:
            return False

        tmp_name: str | None = None
        try:
            source.seek(0)
            with Image.open(source) as image:
                image.load()
                width, height = image.size
                if not (0 <= region.x < width and 0 <= region.y < height):
                    return False
                box = (
                    int(region.x),
                    int(region.y),
                    min(int(region.x + region.width), width),
                    min(int(region.y + region.height), height),
                )
                cropped = image.crop(box)
                tmp_name = self._new_tmp_path()
                cropped.save(tmp_name, format=image.format or "PNG")
            size = os.path.getsize(tmp_name)
        except (OSError, ValueError):
            logger.warning("Unable to crop upload %s", filename, extra=self._log_context(field_name), exc_info=True)
            if tmp_name:
                self._unlink(tmp_name)
            return False

        self._register(field_name, filename, descriptor, tmp_name, size, crop=region.model_dump())
        return True

    def remove_file(self, filename: str, field_name: str | None = None) -> bool:
        """Drop a staged file; removing an unknown file is a no-op."""
        fields = [field_name] if field_name is not None else list(self._files)
        removed = False
        for name in fields:
            files = self._files.get(name)
            if not files or filename not in files:
                continue
            flash_file = files.pop(filename)
            self._touched.add(name)
            self._unlink(flash_file.tmp_name)
            if not files:
                del self._files[name]
            removed = True
        return removed

    def move_file(self, flash_file: FlashFile, destination: str | None = None) -> str:
        """Move a staged file to its destination and mark it moved.

        Raises ``OSError`` when the move fails; the descriptor is left as is.
        """
        target = destination or flash_file.destination
        if not target:
            raise OSError(f"No destination for {flash_file.name}")
        os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
        shutil.move(flash_file.tmp_name, target)
        flash_file.destination = target
        flash_file.moved = True
        self._touched.add(flash_file.field)
        return target

    @staticmethod
    def _unlink(path: str) -> None:
        if path and os.path.isfile(path):
            os.remove(path)

    # =========================================================================
    # Legacy raw temp-path queue
    # =========================================================================

    def get_legacy_files(self) -> dict[str, dict[str, dict[str, Any]]]:
        return {key: {dest: dict(desc) for dest, desc in files.items()} for key, files in self._legacy.items()}

    def add_legacy_file(self, field_name: str, destination: str, descriptor: Mapping[str, Any]) -> None:
        self._legacy.setdefault(field_name, {})[destination] = dict(descriptor)

    def clear_legacy_files(self) -> None:
        self._legacy = {}

    # =========================================================================
    # Persistence
    # =========================================================================

    def _files_payload(self) -> dict[str, dict[str, dict[str, Any]]]:
        return {
            field_name: {name: flash_file.to_dict() for name, flash_file in files.items()}
            for field_name, files in self._files.items()
        }

    def save(self) -> None:
        """Upsert the record.

        The stored row is re-read under a row lock and only the fields touched
        by this instance replace their stored descriptors, so requests staging
        distinct fields of the same form do not drop each other's files.
        Data and metadata are last write wins.
        """
        record = self.db.get(FlashRecord, self.uniqueid, populate_existing=True, with_for_update=True)
        if record is None:
            record = FlashRecord(uniqueid=self.uniqueid)
            self.db.add(record)

        payload = self._files_payload()
        files = dict(record.files_json or {})
        for field_name in self._touched:
            if field_name in payload:
                files[field_name] = payload[field_name]
            else:
                files.pop(field_name, None)

        record.form_name = self.form_name
        record.url = self.url
        record.user = self.user
        record.files_json = files
        record.data_json = self._data
        record.legacy_json = self._legacy or None

        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Unable to save form flash", extra=self._log_context())
            raise StorageWriteError(self.uniqueid) from exc
        self._record = record
        self._files = {
            field_name: self._files[field_name] if field_name in self._touched
            else {name: FlashFile.from_dict(descriptor) for name, descriptor in stored.items()}
            for field_name, stored in files.items()
        }
        self._touched = set()

    def delete(self) -> None:
        """Remove the record and everything staged for it."""
        record = self._record or self.db.get(FlashRecord, self.uniqueid)
        if record is not None:
            self.db.delete(record)
            try:
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Unable to delete form flash", extra=self._log_context())
                raise StorageWriteError(self.uniqueid) from exc

        shutil.rmtree(self.tmp_dir, ignore_errors=True)
        self._record = None
        self._files = {}
        self._legacy = {}
        self._data = None
        self._touched = set()
