"""
Forms API router: form CRUD, publishing, public submit, submissions, CSV export,
embed HTML and the per-form analytics report
"""
import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response

from db.database import get_kv
from db.kv import KVStore
from models.base import FormCreate, FormUpdate
from routers.deps import get_collector
from services.analytics_service import FormAnalyticsCollector
from services.embed_service import render_form_html
from services.forms_service import FormsService
from services.submissions_service import SubmissionsService
from services.webhook_service import webhook_service
from utils.config import ANALYTICS_MAX_RANGE_DAYS, DAY_SECONDS, SUBMIT_RATE_LIMIT
from utils.dates import now_ms
from utils.errors import FieldValidationError
from utils.geo import submission_metadata
from utils.limiter import limiter

router = APIRouter(prefix="/forms", tags=["forms"])
logger = logging.getLogger("formpulse.forms")

DEFAULT_ANALYTICS_WINDOW_MS = 30 * DAY_SECONDS * 1000


async def _read_submission_body(request: Request) -> Dict[str, Any]:
    """Submitted data from a JSON object or a classic urlencoded/multipart form post"""
    content_type = (request.headers.get("content-type") or "").lower()
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        data: Dict[str, Any] = {}
        for key in form.keys():
            values = [v for v in form.getlist(key) if isinstance(v, str)]
            if values:
                data[key] = values if len(values) > 1 else values[0]
        return data

    try:
        body = await request.json()
    except ValueError:
        raise FieldValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise FieldValidationError("Submission body must be a JSON object")
    return body


def _csv_filename(name: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._ -]+", "_", name).strip() or "form"
    return f"{safe}-submissions.csv"


@router.get("")
async def list_forms(kv: KVStore = Depends(get_kv)):
    """List summaries of all forms"""
    forms = await FormsService.list_forms(kv)
    return {"forms": [f.model_dump(exclude_none=True) for f in forms], "count": len(forms)}


@router.post("", status_code=201)
async def create_form(payload: FormCreate, kv: KVStore = Depends(get_kv)):
    """Create a new form (unpublished)"""
    form = await FormsService.create_form(kv, payload)
    return form.model_dump(exclude_none=True)


@router.get("/{form_id}")
async def get_form(form_id: str, kv: KVStore = Depends(get_kv)):
    form = await FormsService.get_form(kv, form_id)
    return form.model_dump(exclude_none=True)


@router.put("/{form_id}")
async def update_form(form_id: str, payload: FormUpdate, kv: KVStore = Depends(get_kv)):
    form = await FormsService.update_form(kv, form_id, payload)
    return form.model_dump(exclude_none=True)


@router.delete("/{form_id}")
async def delete_form(form_id: str, kv: KVStore = Depends(get_kv)):
    """Delete a form and its submissions"""
    removed = await FormsService.delete_form(kv, form_id)
    return {"deleted": True, "submissionsRemoved": removed}


@router.post("/{form_id}/publish")
async def publish_form(form_id: str, kv: KVStore = Depends(get_kv)):
    form = await FormsService.set_published(kv, form_id, True)
    return {"id": form.id, "published": True}


@router.post("/{form_id}/unpublish")
async def unpublish_form(form_id: str, kv: KVStore = Depends(get_kv)):
    form = await FormsService.set_published(kv, form_id, False)
    return {"id": form.id, "published": False}


@router.post("/{form_id}/submit", name="submit_form")
@limiter.limit(SUBMIT_RATE_LIMIT)
async def submit_form(
    form_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    kv: KVStore = Depends(get_kv),
):
    """Public submission endpoint.

    The webhook (if configured) runs after the response is sent; its outcome
    never affects the submission.
    """
    data = await _read_submission_body(request)
    form, submission = await SubmissionsService.submit(kv, form_id, data, submission_metadata(request))

    if form.settings.webhookUrl:
        background_tasks.add_task(webhook_service.send_submission, form, submission)

    if form.settings.redirectUrl:
        return RedirectResponse(url=form.settings.redirectUrl, status_code=303)

    return {
        "success": True,
        "message": form.settings.successMessage,
        "submissionId": submission.id,
    }


@router.get("/{form_id}/submissions")
async def list_submissions(form_id: str, limit: int = Query(100, ge=1, le=1000), kv: KVStore = Depends(get_kv)):
    submissions = await SubmissionsService.list_submissions(kv, form_id, limit=limit)
    return {
        "submissions": [s.model_dump(exclude_none=True) for s in submissions],
        "count": len(submissions),
    }


@router.get("/{form_id}/submissions/{submission_id}")
async def get_submission(form_id: str, submission_id: str, kv: KVStore = Depends(get_kv)):
    submission = await SubmissionsService.get_submission(kv, form_id, submission_id)
    return submission.model_dump(exclude_none=True)


@router.delete("/{form_id}/submissions/{submission_id}")
async def delete_submission(form_id: str, submission_id: str, kv: KVStore = Depends(get_kv)):
    await SubmissionsService.delete_submission(kv, form_id, submission_id)
    return {"deleted": True}


@router.get("/{form_id}/export")
async def export_submissions(form_id: str, kv: KVStore = Depends(get_kv)):
    """Export all submissions as CSV"""
    form = await FormsService.get_form(kv, form_id)
    submissions = await SubmissionsService.list_submissions(kv, form_id, limit=None)
    csv_text = SubmissionsService.export_csv(form, submissions)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{_csv_filename(form.name)}"'},
    )


@router.get("/{form_id}/embed", response_class=HTMLResponse)
async def embed_form(form_id: str, request: Request, kv: KVStore = Depends(get_kv)):
    form = await FormsService.get_form(kv, form_id)
    if not form.published:
        return PlainTextResponse("Form is not published", status_code=404)

    submit_url = str(request.url_for("submit_form", form_id=form_id))
    tracker_url = str(request.url_for("tracker_script", form_id=form_id))
    return HTMLResponse(render_form_html(form, submit_url, tracker_url))


@router.get("/{form_id}/analytics")
async def form_analytics(
    form_id: str,
    start: Optional[int] = Query(None, description="Period start, epoch ms"),
    end: Optional[int] = Query(None, description="Period end, epoch ms"),
    kv: KVStore = Depends(get_kv),
    collector: FormAnalyticsCollector = Depends(get_collector),
):
    """Funnel, field, daily and breakdown analytics for a form (default: last 30 days)"""
    form = await FormsService.get_form(kv, form_id)
    end_ms = end if end is not None else now_ms()
    start_ms = start if start is not None else end_ms - DEFAULT_ANALYTICS_WINDOW_MS
    if start_ms > end_ms:
        raise FieldValidationError("start must not be after end", field="start")
    if end_ms - start_ms > ANALYTICS_MAX_RANGE_DAYS * DAY_SECONDS * 1000:
        raise FieldValidationError(f"Range must not exceed {ANALYTICS_MAX_RANGE_DAYS} days", field="start")

    report = await collector.get_analytics(form_id, start_ms, end_ms, form.name, form.ordered_fields())
    return report.model_dump(exclude_none=True)


@router.get("/{form_id}/analytics/submissions")
async def submission_analytics(form_id: str, kv: KVStore = Depends(get_kv)):
    """Basic stats computed from stored submissions"""
    form = await FormsService.get_form(kv, form_id)
    submissions = await SubmissionsService.list_submissions(kv, form_id, limit=None)
    return SubmissionsService.submission_summary(form, submissions)
