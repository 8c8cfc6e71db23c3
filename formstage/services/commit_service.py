"""Commit stage: move staged uploads to their permanent destinations."""

from __future__ import annotations

import logging
import os
import warnings
from collections.abc import Mapping
from typing import Any

from formstage.core.i18n import Translator, default_translator
from formstage.core.structured_logging import build_log_context
from formstage.services.flash_service import FormFlash
from formstage.services.form_errors import StorageWriteError, UploadMoveError

logger = logging.getLogger(__name__)


def _target_path(name: str, default: str, field_name: str, destinations: Mapping[str, str] | None) -> str:
    directory = (destinations or {}).get(field_name)
    if directory:
        return os.path.join(directory, name)
    return default


def commit_uploads(
    flash: FormFlash,
    destinations: Mapping[str, str] | None = None,
    translator: Translator | None = None,
) -> dict[str, list[str]]:
    """Move every unmoved staged file, then delete the flash record.

    ``destinations`` maps a field to a directory overriding the resolved one.
    A failed move persists the moved flags gathered so far and raises
    ``UploadMoveError``; files already moved stay where they are.
    Returns ``field -> [final paths]`` for the files moved by this call.
    """
    translator = translator or default_translator
    moved: dict[str, list[str]] = {}

    for field_name, files in flash.get_files_by_field().items():
        for flash_file in files:
            if flash_file.moved:
                continue
            target = _target_path(flash_file.name, flash_file.destination, field_name, destinations)
            try:
                flash.move_file(flash_file, target)
            except OSError as exc:
                error = UploadMoveError(flash_file.original_name, target)
                logger.error(
                    "%s",
                    error.render(translator),
                    extra=build_log_context(form_name=flash.form_name, uniqueid=flash.uniqueid, field=field_name),
                )
                try:
                    flash.save()
                except StorageWriteError:
                    logger.warning(
                        "Moved flags for %s were not persisted",
                        flash.uniqueid,
                        extra=build_log_context(form_name=flash.form_name, uniqueid=flash.uniqueid),
                        exc_info=True,
                    )
                raise error from exc
            moved.setdefault(field_name, []).append(target)

    flash.delete()
    return moved


class LegacyUploadCommitter:
    """Deprecated commit of raw temp-path uploads.

    ``queue`` maps a field to ``destination -> descriptor`` where each
    descriptor still carries its ``tmp_name``.
    """

    def __init__(self, queue: Mapping[str, Mapping[str, Mapping[str, Any]]]):
        self.queue = queue

    def commit(
        self,
        flash: FormFlash,
        destinations: Mapping[str, str] | None = None,
        translator: Translator | None = None,
    ) -> dict[str, dict[str, dict[str, Any]]]:
        """Rename each temp file to its destination and return the file map.

        The returned map (``field -> destination -> descriptor`` without
        ``tmp_name``) is meant to be merged into the form data.
        """
        warnings.warn(
            "Legacy upload queues are deprecated; stage uploads through FormFlash instead.",
            DeprecationWarning,
            stacklevel=2,
        )
        translator = translator or default_translator
        committed: dict[str, dict[str, dict[str, Any]]] = {}

        for field_name, files in self.queue.items():
            field_files: dict[str, dict[str, Any]] = {}
            for destination, descriptor in files.items():
                target = _target_path(os.path.basename(destination), destination, field_name, destinations)
                tmp_name = descriptor.get("tmp_name") or ""
                try:
                    os.makedirs(os.path.dirname(target) or ".", exist_ok=True)
                    os.rename(tmp_name, target)
                except OSError as exc:
                    error = UploadMoveError(tmp_name, target)
                    logger.error(
                        "%s",
                        error.render(translator),
                        extra=build_log_context(uniqueid=flash.uniqueid, field=field_name),
                    )
                    raise error from exc

                sidecar = f"{tmp_name}.yaml"
                if os.path.exists(sidecar):
                    os.remove(sidecar)

                field_files[target] = {k: v for k, v in descriptor.items() if k != "tmp_name"}
            committed[field_name] = field_files

        flash.delete()
        return committed
