"""
Key naming scheme for everything stored in the key-value namespace.

Keys are flat, ':'-joined strings. Stored data from earlier deployments is
read back with these exact formats, so changes here are data migrations.
"""

# Forms and submissions
def form(form_id: str) -> str:
    return f"form:{form_id}"


FORM_PREFIX = "form:"


def submission(form_id: str, submission_id: str) -> str:
    return f"submission:{form_id}:{submission_id}"


def submission_prefix(form_id: str) -> str:
    return f"submission:{form_id}:"


def one_per_user(form_id: str, client_hash: str) -> str:
    return f"submitted:{form_id}:{client_hash}"


# Analytics collector (all under the analytics: namespace)
ANALYTICS = "analytics:"


def analytics(key: str) -> str:
    return f"{ANALYTICS}{key}"


def views(form_id: str, day: str) -> str:
    return f"views:{form_id}:{day}"


def starts(form_id: str, day: str) -> str:
    return f"starts:{form_id}:{day}"


def completions(form_id: str, day: str) -> str:
    return f"completions:{form_id}:{day}"


def submissions(form_id: str, day: str) -> str:
    return f"submissions:{form_id}:{day}"


def abandoned(form_id: str, day: str) -> str:
    return f"abandoned:{form_id}:{day}"


TOTAL = "total"


def device(form_id: str, device_type: str) -> str:
    return f"device:{form_id}:{device_type}"


def country(form_id: str, country_code: str) -> str:
    return f"country:{form_id}:{country_code}"


def referrer(form_id: str, host: str) -> str:
    return f"referrer:{form_id}:{host}"


def field_metric(form_id: str, field_id: str, metric: str) -> str:
    """metric is one of focuses, errors, avgTime"""
    return f"field:{form_id}:{field_id}:{metric}"


def field_errors(form_id: str, field_id: str) -> str:
    return f"errors:{form_id}:{field_id}"


def dropoff(form_id: str, field_id: str) -> str:
    return f"dropoff:{form_id}:{field_id}"


def avg_completion_time(form_id: str) -> str:
    return f"avgTime:{form_id}"


def variant_metric(form_id: str, variant: str, metric: str) -> str:
    """metric is one of completions, submissions, avgTime"""
    return f"variant:{form_id}:{variant}:{metric}"


def stored_session(form_id: str, session_id: str) -> str:
    return f"session:{form_id}:{session_id}"


# A/B tests
def abtest(test_id: str) -> str:
    return f"abtest:{test_id}"


def abtest_for_form(form_id: str) -> str:
    return f"abtest:form:{form_id}"


def abtest_assignment(test_id: str, session_id: str) -> str:
    return f"abtest:assignment:{test_id}:{session_id}"


# Conversion tracking
def conversion_event(form_id: str, session_id: str, event_type: str, timestamp: int) -> str:
    return f"event:{form_id}:{session_id}:{event_type}:{timestamp}"


def conversion_aggregate(form_id: str, day: str) -> str:
    return f"aggregate:{form_id}:{day}"


def revenue(form_id: str, day: str) -> str:
    return f"revenue:{form_id}:{day}"


def journey(customer_id: str) -> str:
    return f"journey:{customer_id}"
