import pytest

from formstage.services.form_events import (
    ON_FORM_PROCESSED,
    ON_FORM_VALIDATION_ERROR,
    FormEvents,
    HookResult,
)


def test_handlers_run_in_registration_order_and_merge_overrides():
    events = FormEvents()
    calls = []

    @events.on(ON_FORM_PROCESSED)
    def first(**payload):
        calls.append("first")
        return HookResult.proceed(redirect="/a", redirect_code=302)

    @events.on(ON_FORM_PROCESSED)
    def second(**payload):
        calls.append("second")
        return HookResult.proceed(redirect="/b")

    result = events.fire(ON_FORM_PROCESSED, action="redirect", params="/a")

    assert calls == ["first", "second"]
    assert result.stop is False
    assert result.overrides == {"redirect": "/b", "redirect_code": 302}


def test_none_means_continue_and_stop_ends_dispatch():
    events = FormEvents()
    calls = []

    events.register(ON_FORM_VALIDATION_ERROR, lambda **payload: calls.append("noop"))
    events.register(ON_FORM_VALIDATION_ERROR, lambda **payload: HookResult.halt(reason="handled"))
    events.register(ON_FORM_VALIDATION_ERROR, lambda **payload: calls.append("never"))

    result = events.fire(ON_FORM_VALIDATION_ERROR, message="boom")

    assert calls == ["noop"]
    assert result.stop is True
    assert result.overrides == {"reason": "handled"}


def test_fire_without_handlers_continues():
    assert FormEvents().fire(ON_FORM_PROCESSED) == HookResult()


def test_unknown_event_name_is_rejected():
    with pytest.raises(ValueError):
        FormEvents().register("onSomethingElse", lambda **payload: None)
