"""
Embeddable form HTML and the client analytics tracker, rendered from Jinja2 templates
"""
import logging
import os
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from models.base import Form

logger = logging.getLogger("formpulse.embed")

template_search_paths: List[str] = [str(Path(__file__).resolve().parents[1] / "templates" / "embed")]
_env_dir = os.getenv("EMBED_TEMPLATE_DIR")
if _env_dir:
    template_search_paths.insert(0, _env_dir)

_templates_env = Environment(
    loader=FileSystemLoader(template_search_paths),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_form_html(form: Form, submit_url: str, tracker_url: Optional[str] = None) -> str:
    """Standalone HTML page for a published form, fields in order, posting to submit_url"""
    template = _templates_env.get_template("form.html")
    return template.render(
        form=form,
        fields=form.ordered_fields(),
        submit_url=submit_url,
        tracker_url=tracker_url,
    )


def render_tracker_js(form_id: str, api_url: str) -> str:
    template = _templates_env.get_template("tracker.js")
    return template.render(form_id=form_id, api_url=api_url.rstrip("/"))
