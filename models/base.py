"""
Base Pydantic models for forms and submissions.

Attribute names are the camelCase wire names, timestamps are epoch
milliseconds, and records are stored as the JSON these models dump.
"""
import html
from typing import Any, Dict, List, Literal, Optional

import bleach
import regex
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from utils.config import PATTERN_MAX_LENGTH

FieldType = Literal[
    "text",
    "email",
    "phone",
    "number",
    "textarea",
    "select",
    "radio",
    "checkbox",
    "date",
    "time",
    "file",
    "rating",
    "signature",
    "hidden",
]

CHOICE_FIELD_TYPES = ("select", "radio", "checkbox")


def sanitize_text(value: str) -> str:
    """Strip markup from user-supplied text, leaving plain text"""
    return html.unescape(bleach.clean(value.strip(), tags=set(), strip=True)).strip()


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize every string inside submitted data"""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {k: sanitize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_value(v) for v in value]
    return value


class BaseDBModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FieldValidation(BaseDBModel):
    min: Optional[float] = None
    max: Optional[float] = None
    minLength: Optional[int] = None
    maxLength: Optional[int] = None
    pattern: Optional[str] = None
    customMessage: Optional[str] = None

    @field_validator("pattern")
    def validate_pattern(cls, v):
        """Reject patterns that are oversized or do not compile"""
        if v is None or v == "":
            return None
        if len(v) > PATTERN_MAX_LENGTH:
            raise ValueError(f"Pattern must be at most {PATTERN_MAX_LENGTH} characters")
        try:
            regex.compile(v)
        except regex.error as e:
            raise ValueError(f"Invalid pattern: {e}")
        return v


class ConditionRule(BaseDBModel):
    field: str
    operator: Literal["equals", "not_equals", "contains", "greater_than", "less_than"]
    value: str


class ConditionalLogic(BaseDBModel):
    action: Literal["show", "hide", "require"]
    rules: List[ConditionRule] = Field(default_factory=list)
    logic: Literal["and", "or"] = "and"


class FormField(BaseDBModel):
    id: str = Field(min_length=1)
    type: FieldType
    label: str
    placeholder: Optional[str] = None
    required: bool = False
    validation: Optional[FieldValidation] = None
    options: Optional[List[str]] = None
    conditionalLogic: Optional[ConditionalLogic] = None
    order: int = 0

    def sanitized(self) -> "FormField":
        return self.model_copy(update={
            "label": sanitize_text(self.label),
            "placeholder": sanitize_text(self.placeholder) if self.placeholder else self.placeholder,
            "options": [sanitize_text(o) for o in self.options] if self.options else self.options,
        })


class FormSettings(BaseDBModel):
    submitButton: str = "Submit"
    successMessage: str = "Thank you for your submission!"
    redirectUrl: Optional[str] = None
    notifyEmail: Optional[str] = None
    webhookUrl: Optional[str] = None
    captcha: bool = False
    onePerUser: bool = False
    closedMessage: Optional[str] = None
    closeDate: Optional[int] = None


def _check_unique_field_ids(fields: Optional[List[FormField]]) -> None:
    if not fields:
        return
    seen = set()
    for f in fields:
        if f.id in seen:
            raise ValueError(f"Duplicate field id: {f.id}")
        seen.add(f.id)


class Form(BaseDBModel):
    id: str
    name: str
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    settings: FormSettings = Field(default_factory=FormSettings)
    createdAt: int
    updatedAt: int
    published: bool = False
    submissions: int = 0

    def ordered_fields(self) -> List[FormField]:
        """Fields in render/validation order"""
        return sorted(self.fields, key=lambda f: f.order)


class FormCreate(BaseDBModel):
    """Form creation payload"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    settings: Optional[FormSettings] = None

    @model_validator(mode="after")
    def clean(self):
        _check_unique_field_ids(self.fields)
        self.name = sanitize_text(self.name)
        if not self.name:
            raise ValueError("Missing required field: name")
        if self.description:
            self.description = sanitize_text(self.description)
        self.fields = [f.sanitized() for f in self.fields]
        return self


class FormUpdate(BaseDBModel):
    """Partial form update; settings keys merge into the stored settings"""
    name: Optional[str] = None
    description: Optional[str] = None
    fields: Optional[List[FormField]] = None
    settings: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def clean(self):
        for key in ("name", "fields"):
            if key in self.model_fields_set and getattr(self, key) is None:
                raise ValueError(f"{key} cannot be null")
        _check_unique_field_ids(self.fields)
        if self.name is not None:
            self.name = sanitize_text(self.name)
            if not self.name:
                raise ValueError("Form name cannot be empty")
        if self.description:
            self.description = sanitize_text(self.description)
        if self.fields is not None:
            self.fields = [f.sanitized() for f in self.fields]
        return self


class FormSummary(BaseDBModel):
    id: str
    name: str
    description: Optional[str] = None
    published: bool
    submissions: int
    createdAt: int


class SubmissionMetadata(BaseDBModel):
    ip: Optional[str] = None
    userAgent: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None


class Submission(BaseDBModel):
    id: str
    formId: str
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: SubmissionMetadata = Field(default_factory=SubmissionMetadata)
    createdAt: int
