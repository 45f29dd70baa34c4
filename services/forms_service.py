"""
Forms service module for the key-value store
"""
import logging
import uuid
from typing import List, Optional

from pydantic import ValidationError

from db import keys
from db.kv import KVStore
from models.base import Form, FormCreate, FormSettings, FormSummary, FormUpdate
from utils.dates import now_ms
from utils.errors import FieldValidationError, NotFoundError, UpstreamFailure

logger = logging.getLogger("formpulse.forms")


def _dump(form: Form) -> str:
    return form.model_dump_json(exclude_none=True)


class FormsService:
    """Service for handling form operations against the key-value store"""

    @staticmethod
    async def list_forms(kv: KVStore) -> List[FormSummary]:
        """Summaries of every stored form, in key order"""
        summaries = []
        for name in await kv.list(keys.FORM_PREFIX):
            raw = await kv.get(name)
            if not raw:
                continue
            form = Form.model_validate_json(raw)
            summaries.append(FormSummary(
                id=form.id,
                name=form.name,
                description=form.description,
                published=form.published,
                submissions=form.submissions,
                createdAt=form.createdAt,
            ))
        return summaries

    @staticmethod
    async def get_form(kv: KVStore, form_id: str) -> Form:
        raw = await kv.get(keys.form(form_id))
        if not raw:
            raise NotFoundError("Form not found")
        return Form.model_validate_json(raw)

    @staticmethod
    async def save_form(kv: KVStore, form: Form) -> None:
        await kv.put(keys.form(form.id), _dump(form))

    @staticmethod
    async def create_form(kv: KVStore, payload: FormCreate, now: Optional[int] = None) -> Form:
        """Create a new, unpublished form with zero submissions"""
        ts = now or now_ms()
        form = Form(
            id=str(uuid.uuid4()),
            name=payload.name,
            description=payload.description,
            fields=payload.fields,
            settings=payload.settings or FormSettings(),
            createdAt=ts,
            updatedAt=ts,
            published=False,
            submissions=0,
        )
        await FormsService.save_form(kv, form)
        logger.info("form created id=%s fields=%s", form.id, len(form.fields))
        return form

    @staticmethod
    async def update_form(kv: KVStore, form_id: str, payload: FormUpdate, now: Optional[int] = None) -> Form:
        """Merge a partial update; id, createdAt, published and submissions are preserved"""
        existing = await FormsService.get_form(kv, form_id)
        changes = payload.model_dump(exclude_unset=True)

        doc = existing.model_dump()
        for key in ("name", "description", "fields"):
            if key in changes:
                doc[key] = changes[key]
        if payload.settings is not None:
            doc["settings"] = {**doc["settings"], **payload.settings}
        doc["updatedAt"] = now or now_ms()

        # The merged record must still be a loadable form
        try:
            form = Form.model_validate(doc)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            message = str(first.get("msg") or "Invalid form update")
            raise FieldValidationError(f"{field}: {message}" if field else message, field=field)
        await FormsService.save_form(kv, form)
        return form

    @staticmethod
    async def delete_form(kv: KVStore, form_id: str) -> int:
        """Delete a form and, best-effort, all of its submissions. Returns submissions removed."""
        await FormsService.get_form(kv, form_id)
        await kv.delete(keys.form(form_id))

        removed = 0
        for name in await kv.list(keys.submission_prefix(form_id)):
            try:
                await kv.delete(name)
                removed += 1
            except UpstreamFailure as e:
                logger.warning("cascade delete failed key=%s: %s", name, e)
        logger.info("form deleted id=%s submissions_removed=%s", form_id, removed)
        return removed

    @staticmethod
    async def set_published(kv: KVStore, form_id: str, published: bool, now: Optional[int] = None) -> Form:
        form = await FormsService.get_form(kv, form_id)
        form.published = published
        form.updatedAt = now or now_ms()
        await FormsService.save_form(kv, form)
        return form

    @staticmethod
    async def increment_submissions(kv: KVStore, form: Form) -> Form:
        """Bump the stored submission counter (read-modify-write on the form document)"""
        current = await FormsService.get_form(kv, form.id)
        current.submissions += 1
        await FormsService.save_form(kv, current)
        return current
