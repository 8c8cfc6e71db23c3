"""Public form endpoints: state, ajax uploads and submission."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from formstage.core.config import settings
from formstage.core.deps import get_actor, get_db, get_form_events, get_page_registry, get_translator
from formstage.core.i18n import Translator
from formstage.core.nonce import generate_session_id
from formstage.core.rate_limit import limiter
from formstage.schemas.forms import AjaxReply, FormNonceRead, FormStateRead, FormSubmitResponse
from formstage.services.flash_service import is_valid_uniqueid
from formstage.services.form_events import FormEvents
from formstage.services.form_service import FORM_NAME_KEY, UNIQUE_ID_KEY, Form, FormContext
from formstage.services.page_service import PageRegistry
from formstage.utils.request_payload import FormRequest, build_form_request

router = APIRouter(prefix="/forms", tags=["forms-public"])


def _load_form(
    page_route: str,
    form_name: str | None,
    uniqueid: str | None,
    form_request: FormRequest,
    db: Session,
    pages: PageRegistry,
    events: FormEvents,
    translator: Translator,
    actor: str | None,
) -> Form:
    page = pages.dispatch(page_route)
    if not page:
        raise HTTPException(status_code=404, detail="Page not found")

    forms = page.forms()
    name = form_name or form_request.post.get(FORM_NAME_KEY) or next(iter(forms), None)
    if not name or name not in forms:
        raise HTTPException(status_code=404, detail="Form not found")

    definition: dict[str, Any] = dict(forms[name])
    uniqueid = uniqueid or form_request.post.get(UNIQUE_ID_KEY)
    if uniqueid and not is_valid_uniqueid(uniqueid):
        raise HTTPException(status_code=400, detail="Invalid form id")
    if uniqueid:
        definition["uniqueid"] = uniqueid

    context = FormContext(
        db=db,
        request=form_request,
        pages=pages,
        events=events,
        translator=translator,
        user=actor,
    )
    return Form(page, context, name=name, form=definition)


@router.get("/state", response_model=FormStateRead)
def get_form_state(
    request: Request,
    response: Response,
    page_route: str = Query(..., alias="page"),
    form_name: str | None = Query(None, alias="form"),
    uniqueid: str | None = Query(None),
    db: Session = Depends(get_db),
    pages: PageRegistry = Depends(get_page_registry),
    events: FormEvents = Depends(get_form_events),
    translator: Translator = Depends(get_translator),
    actor: str | None = Depends(get_actor),
):
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id:
        session_id = generate_session_id()
        response.set_cookie(
            key=settings.SESSION_COOKIE_NAME,
            value=session_id,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )

    form_request = FormRequest(url=str(request.url), session_id=session_id)
    form = _load_form(page_route, form_name, uniqueid, form_request, db, pages, events, translator, actor)
    return FormStateRead(
        name=form.name,
        id=form.id,
        uniqueid=form.uniqueid,
        action=form.action,
        nonce=FormNonceRead(name=form.nonce_name, value=form.get_nonce()),
        data=form.data,
        fields=form.fields,
    )


@router.post("/upload")
@limiter.limit(f"{settings.RATE_LIMIT_FORM_UPLOADS}/minute")
def upload_form_file(
    request: Request,
    page_route: str = Query(..., alias="page"),
    form_name: str | None = Query(None, alias="form"),
    form_request: FormRequest = Depends(build_form_request),
    db: Session = Depends(get_db),
    pages: PageRegistry = Depends(get_page_registry),
    events: FormEvents = Depends(get_form_events),
    translator: Translator = Depends(get_translator),
    actor: str | None = Depends(get_actor),
):
    form = _load_form(page_route, form_name, None, form_request, db, pages, events, translator, actor)
    reply = form.upload_files()
    return JSONResponse(reply.to_payload())


@router.post("/remove")
def remove_form_file(
    request: Request,
    page_route: str = Query(..., alias="page"),
    form_name: str | None = Query(None, alias="form"),
    form_request: FormRequest = Depends(build_form_request),
    db: Session = Depends(get_db),
    pages: PageRegistry = Depends(get_page_registry),
    events: FormEvents = Depends(get_form_events),
    translator: Translator = Depends(get_translator),
    actor: str | None = Depends(get_actor),
):
    form = _load_form(page_route, form_name, None, form_request, db, pages, events, translator, actor)
    reply = form.files_session_remove()
    if reply is False:
        raise HTTPException(status_code=400, detail="Field name and filename are required")
    return JSONResponse(reply.to_payload())


@router.post("/store-state")
def store_form_state(
    request: Request,
    page_route: str = Query(..., alias="page"),
    form_name: str | None = Query(None, alias="form"),
    form_request: FormRequest = Depends(build_form_request),
    db: Session = Depends(get_db),
    pages: PageRegistry = Depends(get_page_registry),
    events: FormEvents = Depends(get_form_events),
    translator: Translator = Depends(get_translator),
    actor: str | None = Depends(get_actor),
):
    form = _load_form(page_route, form_name, None, form_request, db, pages, events, translator, actor)
    reply: AjaxReply = form.store_state()
    return JSONResponse(reply.to_payload())


@router.post("/submit", response_model=FormSubmitResponse)
def submit_form(
    request: Request,
    page_route: str = Query(..., alias="page"),
    form_name: str | None = Query(None, alias="form"),
    form_request: FormRequest = Depends(build_form_request),
    db: Session = Depends(get_db),
    pages: PageRegistry = Depends(get_page_registry),
    events: FormEvents = Depends(get_form_events),
    translator: Translator = Depends(get_translator),
    actor: str | None = Depends(get_actor),
):
    form = _load_form(page_route, form_name, None, form_request, db, pages, events, translator, actor)
    form.post()

    if form.redirect:
        return RedirectResponse(form.redirect, status_code=form.redirect_code or 303)

    return FormSubmitResponse(
        status=form.status.value,
        message=form.message,
        errors=form.errors,
        data=form.data,
    )
