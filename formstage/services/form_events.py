"""Synchronous hook bus for form lifecycle events.

Handlers are plain callables taking the event payload as keyword arguments.
Returning ``None`` means continue; returning a ``HookResult`` may add
overrides and/or stop dispatch for the remaining handlers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

ON_FORM_INITIALIZED = "onFormInitialized"
ON_FORM_UPLOAD_SETTINGS = "onFormUploadSettings"
ON_FORM_PREPARE_VALIDATION = "onFormPrepareValidation"
ON_FORM_VALIDATION_PROCESSED = "onFormValidationProcessed"
ON_FORM_VALIDATION_ERROR = "onFormValidationError"
ON_FORM_PROCESSED = "onFormProcessed"
ON_FORM_STORE_UPLOADS = "onFormStoreUploads"

FORM_EVENTS = frozenset(
    {
        ON_FORM_INITIALIZED,
        ON_FORM_UPLOAD_SETTINGS,
        ON_FORM_PREPARE_VALIDATION,
        ON_FORM_VALIDATION_PROCESSED,
        ON_FORM_VALIDATION_ERROR,
        ON_FORM_PROCESSED,
        ON_FORM_STORE_UPLOADS,
    }
)


@dataclass(frozen=True)
class HookResult:
    stop: bool = False
    overrides: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def proceed(cls, **overrides: Any) -> "HookResult":
        return cls(stop=False, overrides=overrides)

    @classmethod
    def halt(cls, **overrides: Any) -> "HookResult":
        return cls(stop=True, overrides=overrides)


HookHandler = Callable[..., "HookResult | None"]


class FormEvents:
    """Registry of hook handlers keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = defaultdict(list)

    def register(self, name: str, handler: HookHandler) -> HookHandler:
        if name not in FORM_EVENTS:
            raise ValueError(f"Unknown form event: {name}")
        self._handlers[name].append(handler)
        return handler

    def on(self, name: str) -> Callable[[HookHandler], HookHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: HookHandler) -> HookHandler:
            return self.register(name, handler)

        return decorator

    def clear(self) -> None:
        self._handlers.clear()

    def handlers(self, name: str) -> list[HookHandler]:
        return list(self._handlers.get(name, ()))

    def fire(self, name: str, **payload: Any) -> HookResult:
        """Run handlers in registration order and fold their results."""
        overrides: dict[str, Any] = {}
        for handler in self._handlers.get(name, ()):
            result = handler(**payload)
            if result is None:
                continue
            overrides.update(result.overrides)
            if result.stop:
                logger.debug("Hook %s stopped by %r", name, handler)
                return HookResult(stop=True, overrides=overrides)
        return HookResult(stop=False, overrides=overrides)


# Process-wide bus; applications register handlers at import/startup time.
form_events = FormEvents()
