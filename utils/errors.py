"""
Domain exceptions mapped to HTTP responses by the handlers registered in main.py
"""
from typing import Any, Dict, Optional


class FormpulseError(Exception):
    """Base error carrying an HTTP status and a machine-readable code"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code, "message": self.message}
        if self.field:
            body["field"] = self.field
        return body


class NotFoundError(FormpulseError):
    status_code = 404
    code = "not_found"


class FieldValidationError(FormpulseError):
    """Missing required field or failed field constraint"""

    status_code = 400
    code = "validation_error"


class BusinessRuleViolation(FormpulseError):
    """Form unpublished, closed, or otherwise not accepting the request"""

    status_code = 400
    code = "business_rule"


class UpstreamFailure(FormpulseError):
    """Storage I/O failure on the primary request path"""

    status_code = 500
    code = "upstream_failure"
