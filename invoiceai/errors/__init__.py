"""
Invoice AI — Error Taxonomy
InvalidInput belongs to the aggregation core; the rest describe record source failures.
"""


class InvoiceAIError(Exception):
    """Base exception for the package."""


class InvalidInput(InvoiceAIError):
    """A record could not be aggregated (missing or unparseable created_at)."""

    def __init__(self, message: str, record_id=None):
        super().__init__(message)
        self.record_id = record_id


# ============================================================
# RECORD SOURCE FAILURES
# ============================================================
class RecordSourceError(InvoiceAIError):
    """Failure while reading or writing invoice rows."""
    status_code = 500


class Unauthorized(RecordSourceError):
    status_code = 401


class Forbidden(RecordSourceError):
    status_code = 403


class NotFound(RecordSourceError):
    status_code = 404


class TransientIO(RecordSourceError):
    """Network or upstream 5xx failure; safe to retry."""
    status_code = 502
