"""Form instance: binds a page form to request data and drives the submit pipeline."""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from formstage.core.config import Settings, settings
from formstage.core.i18n import Translator, default_translator
from formstage.core.nonce import create_nonce, verify_nonce
from formstage.core.structured_logging import build_log_context
from formstage.db.enums import FormState, FormStatus
from formstage.schemas.forms import AjaxReply, CropRegion
from formstage.services import commit_service
from formstage.services.blueprint_service import FIELD_TYPES, FormBlueprint
from formstage.services.field_normalizer import decode_data, process_fields, reconcile_fields
from formstage.services.flash_service import FlashFile, FormFlash, is_valid_uniqueid
from formstage.services.form_errors import SchemaValidationError, UploadRejectedError
from formstage.services.form_events import (
    ON_FORM_INITIALIZED,
    ON_FORM_PREPARE_VALIDATION,
    ON_FORM_PROCESSED,
    ON_FORM_STORE_UPLOADS,
    ON_FORM_VALIDATION_ERROR,
    ON_FORM_VALIDATION_PROCESSED,
    FormEvents,
    form_events,
)
from formstage.services.page_service import Page, PageRegistry, get_page_path_from_token
from formstage.services.upload_validation_service import resolve_upload_settings, validate_upload
from formstage.utils.payload import deep_merge, get_path, hyphenize, random_string, set_path
from formstage.utils.request_payload import FormRequest, normalize_files

logger = logging.getLogger(__name__)

UNIQUEID_LENGTH = 20
DEFAULT_NONCE_NAME = "form-nonce"
DEFAULT_NONCE_ACTION = "form"
FORM_NAME_KEY = "__form-name__"
UNIQUE_ID_KEY = "__unique_form_id__"


@dataclass
class FormContext:
    """Collaborators a form instance works with during one request."""

    db: Session
    request: FormRequest
    pages: PageRegistry
    events: FormEvents = field(default_factory=lambda: form_events)
    translator: Translator = field(default_factory=lambda: default_translator)
    config: Settings = field(default_factory=lambda: settings)
    user: str | None = None
    field_types: Mapping[str, Mapping[str, Any]] = field(default_factory=lambda: FIELD_TYPES)


class Form:
    """One form declared on a page.

    Built from a page and either an explicit definition, a form name or the
    first form the page declares. Data starts from the flash record when one
    exists for the ``uniqueid``, else from the page header defaults.
    """

    def __init__(
        self,
        page: Page,
        context: FormContext,
        name: str | int | None = None,
        form: Mapping[str, Any] | None = None,
    ):
        self.context = context
        self._page = page
        self._page_route = page.route

        header = page.header
        self.rules: dict[str, Any] = dict(header.get("rules") or {})
        self.header_data: dict[str, Any] = copy.deepcopy(header.get("data") or {})

        if form:
            items = copy.deepcopy(dict(form))
        else:
            forms = page.forms()
            if name:
                items = copy.deepcopy(forms.get(str(name), {}))
            else:
                first = next(iter(forms.items()), None)
                name, items = (first[0], copy.deepcopy(first[1])) if first else (None, {})

        # Page header rules win over form rules with the same name.
        if isinstance(items.get("rules"), Mapping):
            self.rules = {**items["rules"], **self.rules}

        if name and not isinstance(name, int):
            items["name"] = name
        elif not items.get("name"):
            items["name"] = page.slug
        if not items.get("id"):
            items["id"] = hyphenize(str(items["name"]))
        if not is_valid_uniqueid(items.get("uniqueid")):
            items["uniqueid"] = random_string(UNIQUEID_LENGTH)
        nonce = items.setdefault("nonce", {})
        nonce.setdefault("name", DEFAULT_NONCE_NAME)
        nonce.setdefault("action", DEFAULT_NONCE_ACTION)

        self.items: dict[str, Any] = items
        self.status = FormStatus.SUCCESS
        self.message: str | None = None
        self.errors: dict[str, list[str]] = {}
        self.state = FormState.INITIALIZED
        self.redirect: str | None = None
        self.redirect_code: int | None = None
        self._response_code: int | None = None
        self._blueprint: FormBlueprint | None = None
        self._flash: FormFlash | None = None

        flash = self.get_flash()
        self.set_all_data((flash.get_data() or {}) if flash.exists() else self.header_data)
        self.values: dict[str, Any] = {}

        self.context.events.fire(ON_FORM_INITIALIZED, form=self)

    def _log_context(self, field_name: str | None = None) -> dict[str, Any]:
        return build_log_context(
            form_name=self.name,
            uniqueid=self.uniqueid,
            field=field_name,
            route=self._page_route,
            user=self.context.user,
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def name(self) -> str:
        return self.items["name"]

    @name.setter
    def name(self, value: str) -> None:
        self.items["name"] = value

    @property
    def id(self) -> str:
        return self.items["id"]

    @property
    def uniqueid(self) -> str:
        return self.items["uniqueid"]

    @uniqueid.setter
    def uniqueid(self, value: str) -> None:
        self.items["uniqueid"] = value

    @property
    def nonce_name(self) -> str:
        return self.items["nonce"]["name"]

    @property
    def nonce_action(self) -> str:
        return self.items["nonce"]["action"]

    @property
    def action(self) -> str:
        return self.items.get("action") or self._page_route

    @property
    def data(self) -> dict[str, Any]:
        return self._data

    @property
    def blueprint(self) -> FormBlueprint:
        """Built once from the declared fields; ``set_fields`` drops the cache."""
        if self._blueprint is None:
            if "fields" in self.items:
                self.items["fields"] = process_fields(self.items["fields"] or {}, self.context.field_types)
            self._blueprint = FormBlueprint(self.name, self.items.get("fields") or {}, self.rules)
        return self._blueprint

    @property
    def fields(self) -> dict[str, dict[str, Any]]:
        return self.blueprint.fields()

    @property
    def page(self) -> Page | None:
        return self.context.pages.dispatch(self._page_route) or self._page

    @property
    def files(self) -> dict[str, list[FlashFile]]:
        return self.get_flash().get_files_by_field()

    def get_nonce(self) -> str:
        return create_nonce(self.nonce_action, self.context.request.session_id)

    def get_value(self, name: str) -> Any:
        return get_path(self.values, name)

    def value(self, name: str | None = None, fallback: bool = False) -> Any:
        """Working data value, falling back to the raw submitted one if asked."""
        if not name:
            return self._data
        found = get_path(self._data, name)
        if found is not None:
            return found
        if fallback:
            return get_path(self.values, name)
        return None

    def set_value(self, name: str | None = None, value: Any = "") -> None:
        if not name:
            return
        set_path(self.values, name, value)

    def set_data(self, name: str | None = None, value: Any = "") -> bool:
        if not name:
            return False
        set_path(self._data, name, value)
        return True

    def set_all_data(self, data: Mapping[str, Any] | None) -> None:
        self._data = copy.deepcopy(dict(data or {}))

    def set_fields(self, fields: Mapping[str, Any] | list[Any] | None = None) -> None:
        self.items["fields"] = fields or {}
        self.items.pop("field", None)
        self._blueprint = None
        self.set_all_data(self._data)

    def get_page_path_from_token(self, path: str) -> str | None:
        return get_page_path_from_token(path, self.page, self.context.pages)

    def response_code(self, code: int | None = None) -> int | None:
        if code:
            self._response_code = code
        return self._response_code

    def get_flash(self) -> FormFlash:
        if self._flash is None or self._flash.uniqueid != self.uniqueid:
            self._flash = FormFlash.open(self.context.db, self.uniqueid, form_name=self.name)
        return self._flash

    def reset(self) -> None:
        """Back to header defaults; the blueprint is rebuilt on next use."""
        self.status = FormStatus.SUCCESS
        self.message = None
        self.errors = {}
        self.redirect = self.redirect_code = None
        self._blueprint = None
        self.set_all_data(self.header_data)
        self.values = {}
        self.state = FormState.INITIALIZED
        self.context.events.fire(ON_FORM_INITIALIZED, form=self)

    # =========================================================================
    # Request handling
    # =========================================================================

    def _sync_identity(self, post: Mapping[str, Any]) -> None:
        self.name = post.get(FORM_NAME_KEY) or self.name
        uniqueid = post.get(UNIQUE_ID_KEY)
        if is_valid_uniqueid(uniqueid):
            self.uniqueid = uniqueid
        elif uniqueid:
            logger.warning("Ignoring malformed form uniqueid", extra=build_log_context(form_name=self.name))

    def _decoded_post(self) -> dict[str, Any]:
        post = dict(self.context.request.post)
        post["data"] = decode_data(post.get("data", {}))
        return post

    def _nonce_valid(self) -> bool:
        return verify_nonce(
            get_path(self.values, self.nonce_name),
            self.nonce_action,
            self.context.request.session_id,
        )

    def post(self) -> None:
        """Run the submit pipeline: nonce, merge, validate, process, commit."""
        events = self.context.events
        translator = self.context.translator
        post = self._decoded_post()
        self._sync_identity(post)

        raw = self.context.request.post
        if raw:
            self.values = post
            data = post.get("data") or {k: v for k, v in post.items() if k != "data"}

            if not self._nonce_valid():
                self.status = FormStatus.ERROR
                self.message = translator.translate("NONCE_NOT_VALIDATED")
                self.state = FormState.VALIDATED
                logger.info("Form nonce not validated", extra=self._log_context())
                events.fire(
                    ON_FORM_VALIDATION_ERROR,
                    form=self,
                    message=self.message,
                    message_key="NONCE_NOT_VALIDATED",
                    messages={},
                )
                return

            data = reconcile_fields(self.fields, data)
            self._data = deep_merge(self._data, data)
            self.state = FormState.POPULATED

        try:
            events.fire(ON_FORM_PREPARE_VALIDATION, form=self)
            self.blueprint.validate(self._data)
            self.blueprint.filter(self._data)
            events.fire(ON_FORM_VALIDATION_PROCESSED, form=self)
        except SchemaValidationError as exc:
            self.status = FormStatus.ERROR
            self.errors = exc.messages
            self.message = str(exc)
            self.state = FormState.VALIDATED
            logger.info("Form validation failed", extra=self._log_context())
            result = events.fire(
                ON_FORM_VALIDATION_ERROR,
                form=self,
                message=self.message,
                message_key=exc.message_key,
                messages=exc.messages,
            )
            if result.stop:
                return
        self.state = FormState.VALIDATED

        self._legacy_uploads(post)

        process = self.items.get("process") or []
        actions = process.items() if isinstance(process, Mapping) else _process_list(process)
        for action, params in actions:
            result = events.fire(ON_FORM_PROCESSED, form=self, action=action, params=params)
            if result.overrides.get("redirect"):
                self.redirect = result.overrides["redirect"]
                self.redirect_code = result.overrides.get("redirect_code")
            if result.stop:
                break
        self.state = FormState.PROCESSED

        self.copy_files()
        self.state = FormState.COMMITTED

    def copy_files(self) -> dict[str, list[str]]:
        """Commit staged uploads; raises ``UploadMoveError`` on a failed move."""
        flash = self.get_flash()
        moved = commit_service.commit_uploads(flash, translator=self.context.translator)
        if moved:
            logger.info("Committed %s form upload(s)", sum(len(v) for v in moved.values()), extra=self._log_context())
        return moved

    def _legacy_uploads(self, post: Mapping[str, Any]) -> None:
        flash = self.get_flash()
        queue = flash.get_legacy_files()
        if not queue:
            return

        result = self.context.events.fire(ON_FORM_STORE_UPLOADS, form=self, queue=copy.deepcopy(queue), post=post)
        replaced = result.overrides.get("queue")

        if replaced is None or replaced == queue:
            for key, files in queue.items():
                stripped = {dest: {k: v for k, v in desc.items() if k != "tmp_name"} for dest, desc in files.items()}
                self._data = deep_merge(self._data, {key: stripped})
            return

        committer = commit_service.LegacyUploadCommitter(replaced)
        committed = committer.commit(flash, translator=self.context.translator)
        for key, files in committed.items():
            self._data = deep_merge(self._data, {key: files})

    # =========================================================================
    # Ajax handlers
    # =========================================================================

    def upload_files(self) -> AjaxReply:
        """Validate one ajax upload and stage it in the flash record."""
        request = self.context.request
        translator = self.context.translator
        post = request.post

        name = post.get("name")
        task = post.get("task")
        self._sync_identity(post)

        upload_settings = resolve_upload_settings(
            name,
            self.blueprint.get_property(name),
            config=self.context.config,
            events=self.context.events,
            post=post,
        )
        data_files = request.files.get("data") if isinstance(request.files.get("data"), Mapping) else {}
        upload = normalize_files(data_files, upload_settings.name or "", error=request.upload_error)
        filename = post.get("filename") or upload.filename

        try:
            validated = validate_upload(
                upload,
                upload_settings,
                filename=filename,
                resolve_destination=self.get_page_path_from_token,
                case_insensitive=self.context.config.FORM_FILES_ACCEPT_CASE_INSENSITIVE,
            )
        except UploadRejectedError as exc:
            logger.info("Upload rejected: %s", type(exc).__name__, extra=self._log_context(upload.field))
            return AjaxReply.error(exc.render(translator))

        flash = self.get_flash()
        flash.set_url(request.url).set_user(self.context.user)
        descriptor = {
            "original_name": upload.filename,
            "path": validated.path,
            "type": validated.mime,
            "size": validated.size,
        }

        if task == "cropupload":
            success = self._stage_crop(flash, upload.field, validated.filename, descriptor, upload.stream, post.get("crop"))
        else:
            success = flash.stage_upload(upload.field, validated.filename, descriptor, upload.stream)

        if not success:
            return AjaxReply.error(translator.translate("FILEUPLOAD_UNABLE_TO_MOVE", "", flash.tmp_dir))

        flash.save()
        logger.info("Upload staged", extra=self._log_context(upload.field))
        return AjaxReply.upload_success(
            url=request.url,
            path=validated.path,
            field=upload_settings.name,
            uniqueid=self.uniqueid,
        )

    @staticmethod
    def _stage_crop(flash: FormFlash, field_name: str, filename: str, descriptor: dict[str, Any], stream: Any,
                    crop: Any) -> bool:
        try:
            if isinstance(crop, str):
                crop = json.loads(crop)
            region = CropRegion.model_validate(crop or {})
        except ValueError:
            return False
        return flash.stage_crop(field_name, filename, descriptor, stream, region)

    def files_session_remove(self) -> AjaxReply | bool:
        """Drop one staged file; ``False`` when field or filename is missing."""
        post = self.context.request.post
        field_name = post.get("name")
        filename = post.get("filename")
        if not field_name or not filename:
            return False

        self._sync_identity(post)
        flash = self.get_flash()
        if flash.remove_file(filename, field_name) or flash.exists():
            flash.save()
        return AjaxReply.success()

    def store_state(self) -> AjaxReply:
        """Merge posted data into the flash record without schema validation."""
        post = self._decoded_post()
        self._sync_identity(post)

        self.status = FormStatus.ERROR
        if self.context.request.post:
            if not verify_nonce(get_path(post, self.nonce_name), self.nonce_action, self.context.request.session_id):
                return AjaxReply(status=FormStatus.ERROR.value)

            self.values = post
            flash = self.get_flash()
            self.set_all_data(flash.get_data() or {})
            self._data = deep_merge(self._data, post.get("data") or {})
            flash.set_url(self.context.request.url).set_user(self.context.user)
            flash.set_data(self._data)
            flash.save()
            self.status = FormStatus.SUCCESS

        return AjaxReply(status=self.status.value)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": copy.deepcopy(self.items),
            "message": self.message,
            "status": self.status.value,
            "header_data": copy.deepcopy(self.header_data),
            "rules": copy.deepcopy(self.rules),
            "values": copy.deepcopy(self.values),
            "page": self._page_route,
            "name": self.name,
            "id": self.id,
            "uniqueid": self.uniqueid,
            "data": copy.deepcopy(self._data),
            "errors": copy.deepcopy(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], context: FormContext) -> "Form":
        """Rebuild a serialized form without firing ``onFormInitialized``."""
        form = cls.__new__(cls)
        form.context = context
        items = copy.deepcopy(dict(data["items"]))
        items["name"] = data.get("name") or items.get("name")
        items["id"] = data.get("id") or items.get("id")
        uniqueid = data.get("uniqueid") or items.get("uniqueid")
        items["uniqueid"] = uniqueid if is_valid_uniqueid(uniqueid) else random_string(UNIQUEID_LENGTH)
        form.items = items
        form.message = data.get("message")
        form.status = FormStatus(data.get("status") or FormStatus.SUCCESS.value)
        form.header_data = copy.deepcopy(data.get("header_data") or {})
        form.rules = copy.deepcopy(data.get("rules") or {})
        form.values = copy.deepcopy(data.get("values") or {})
        form.errors = copy.deepcopy(data.get("errors") or {})
        form._page_route = data.get("page") or "/"
        form._page = context.pages.dispatch(form._page_route)
        form._data = copy.deepcopy(data.get("data") or {})
        form.state = FormState.INITIALIZED
        form.redirect = form.redirect_code = None
        form._response_code = None
        form._blueprint = None
        form._flash = None
        return form


def _process_list(process: list[Any]) -> list[tuple[str, Any]]:
    """``[{"email": {...}}, "reset"]`` -> ``[("email", {...}), ("reset", True)]``."""
    actions: list[tuple[str, Any]] = []
    for entry in process:
        if isinstance(entry, Mapping):
            actions.extend(entry.items())
        elif isinstance(entry, str):
            actions.append((entry, True))
    return actions
