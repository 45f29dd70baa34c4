"""
Submissions service module for the key-value store
"""
import csv
import io
import logging
import uuid
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from db import keys
from db.kv import KVStore
from models.base import Form, Submission, SubmissionMetadata, sanitize_value
from models.validators import check_submission
from services.forms_service import FormsService
from utils.config import ONE_PER_USER_TTL, SUBMISSION_TTL
from utils.dates import date_key, iso_timestamp, now_ms
from utils.errors import BusinessRuleViolation, NotFoundError
from utils.geo import hash_ip

logger = logging.getLogger("formpulse.submissions")

CSV_FIXED_HEADERS = ["Submission ID", "Submitted At"]


def _csv_quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(_cell_text(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def ensure_accepting(form: Form, now: int) -> None:
    """Raise BusinessRuleViolation unless the form is published and not past its close date"""
    if not form.published:
        raise BusinessRuleViolation("Form is not accepting submissions")
    close_date = form.settings.closeDate
    if close_date and now > close_date:
        raise BusinessRuleViolation(form.settings.closedMessage or "Form is closed")


class SubmissionsService:
    """Service for handling form submissions against the key-value store"""

    @staticmethod
    async def submit(
        kv: KVStore,
        form_id: str,
        data: Dict[str, Any],
        metadata: Optional[SubmissionMetadata] = None,
        now: Optional[int] = None,
    ) -> Tuple[Form, Submission]:
        """Validate and store one submission, then bump the form's counter.

        Returns the form with its updated counter and the stored submission.
        """
        ts = now or now_ms()
        metadata = metadata or SubmissionMetadata()
        form = await FormsService.get_form(kv, form_id)
        ensure_accepting(form, ts)

        marker = None
        if form.settings.onePerUser and metadata.ip:
            marker = keys.one_per_user(form_id, hash_ip(metadata.ip))
            if await kv.get(marker):
                logger.info("duplicate submission rejected form=%s", form_id)
                raise BusinessRuleViolation("You have already submitted this form")

        # Constraints apply to the value that is stored
        clean = sanitize_value(dict(data))
        check_submission(form.ordered_fields(), clean)

        submission = Submission(
            id=str(uuid.uuid4()),
            formId=form_id,
            data=clean,
            metadata=metadata,
            createdAt=ts,
        )
        await kv.put(
            keys.submission(form_id, submission.id),
            submission.model_dump_json(exclude_none=True),
            ttl_seconds=SUBMISSION_TTL,
        )
        form = await FormsService.increment_submissions(kv, form)
        if marker:
            await kv.put(marker, str(ts), ttl_seconds=ONE_PER_USER_TTL)

        logger.info("submission stored form=%s id=%s", form_id, submission.id)
        return form, submission

    @staticmethod
    async def list_submissions(kv: KVStore, form_id: str, limit: Optional[int] = 100) -> List[Submission]:
        submissions = []
        for name in await kv.list(keys.submission_prefix(form_id), limit=limit):
            raw = await kv.get(name)
            if raw:
                submissions.append(Submission.model_validate_json(raw))
        return submissions

    @staticmethod
    async def get_submission(kv: KVStore, form_id: str, submission_id: str) -> Submission:
        raw = await kv.get(keys.submission(form_id, submission_id))
        if not raw:
            raise NotFoundError("Submission not found")
        return Submission.model_validate_json(raw)

    @staticmethod
    async def delete_submission(kv: KVStore, form_id: str, submission_id: str) -> None:
        # The form's submission counter is a lifetime total and is not decremented
        await SubmissionsService.get_submission(kv, form_id, submission_id)
        await kv.delete(keys.submission(form_id, submission_id))
        logger.info("submission deleted form=%s id=%s", form_id, submission_id)

    @staticmethod
    def export_csv(form: Form, submissions: List[Submission]) -> str:
        """CSV of submissions in the form's field order.

        The header row uses minimal quoting. In data rows the generated id and
        timestamp are written bare and every field value is quoted, with
        embedded quotes doubled.
        """
        fields = form.ordered_fields()
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="").writerow(CSV_FIXED_HEADERS + [f.label for f in fields])
        lines = [buffer.getvalue()]

        for sub in sorted(submissions, key=lambda s: (s.createdAt, s.id)):
            cells = [sub.id, iso_timestamp(sub.createdAt)]
            cells.extend(_csv_quote(_cell_text(sub.data.get(f.id))) for f in fields)
            lines.append(",".join(cells))
        return "\n".join(lines)

    @staticmethod
    def submission_summary(form: Form, submissions: List[Submission]) -> Dict[str, Any]:
        """Basic stats derived from stored submissions"""
        by_day = Counter(date_key(s.createdAt) for s in submissions)
        by_country = Counter((s.metadata.country or "unknown") for s in submissions)
        return {
            "formId": form.id,
            "formName": form.name,
            "totalSubmissions": len(submissions),
            "byDay": dict(sorted(by_day.items())),
            "byCountry": dict(by_country.most_common()),
        }
