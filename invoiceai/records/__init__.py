"""
Invoice AI — Invoice Records & Record Sources

InvoiceRecord is the immutable, typed view of one row of the `invoices` table.
A RecordSource supplies those rows for a user; route handlers receive one as an
injected dependency so tests can hand in InMemoryRecordSource.
"""
import enum
import time
import uuid
import logging
import functools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Tuple

from invoiceai.errors import Forbidden, NotFound, TransientIO

logger = logging.getLogger(__name__)


# ============================================================
# MODELS
# ============================================================
class ComplianceStatus(str, enum.Enum):
    COMPLIANT = "compliant"
    NEEDS_REVIEW = "needs_review"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "ComplianceStatus":
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN


def to_decimal(value) -> Optional[Decimal]:
    """Lenient numeric conversion: None, empty, non-numeric and non-finite values become None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _to_float(value) -> Optional[float]:
    d = to_decimal(value)
    return float(d) if d is not None else None


@dataclass(frozen=True)
class InvoiceRecord:
    """Read-only invoice data used by analytics, risk checks and the assistant."""
    id: str
    created_at: Any
    vendor_name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    category: Optional[str] = None
    is_flagged: bool = False
    compliance_status: ComplianceStatus = ComplianceStatus.UNKNOWN
    fraud_score: Optional[float] = None
    anomaly_flags: FrozenSet[str] = frozenset()
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    currency: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    document_hash: Optional[str] = None
    risk_score: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "InvoiceRecord":
        flags = row.get("anomaly_flags") or []
        if isinstance(flags, str):
            flags = [flags]
        return cls(
            id=str(row.get("id", "")),
            created_at=row.get("created_at"),
            vendor_name=row.get("vendor_name"),
            total_amount=to_decimal(row.get("total_amount")),
            category=row.get("category"),
            is_flagged=bool(row.get("is_flagged")),
            compliance_status=ComplianceStatus.parse(row.get("compliance_status")),
            fraud_score=_to_float(row.get("fraud_score")),
            anomaly_flags=frozenset(str(f) for f in flags),
            invoice_number=row.get("invoice_number"),
            invoice_date=row.get("invoice_date"),
            currency=row.get("currency"),
            tax_amount=to_decimal(row.get("tax_amount")),
            document_hash=row.get("document_hash"),
            risk_score=row.get("risk_score"),
        )

    def to_dict(self) -> Dict[str, Any]:
        created = self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at
        return {
            "id": self.id, "vendorName": self.vendor_name,
            "invoiceNumber": self.invoice_number, "invoiceDate": self.invoice_date,
            "totalAmount": float(self.total_amount) if self.total_amount is not None else None,
            "taxAmount": float(self.tax_amount) if self.tax_amount is not None else None,
            "currency": self.currency, "category": self.category,
            "isFlagged": self.is_flagged, "complianceStatus": self.compliance_status.value,
            "riskScore": self.risk_score, "fraudScore": self.fraud_score,
            "anomalyFlags": sorted(self.anomaly_flags), "createdAt": created,
        }


# ============================================================
# RECORD SOURCE CONTRACT
# ============================================================
class RecordSource(Protocol):
    def fetch_invoices_for_user(self, user_id: str) -> List[InvoiceRecord]: ...

    def get_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]: ...

    def update_invoice(self, invoice_id: str, fields: Dict[str, Any]) -> None: ...

    def find_duplicates(self, user_id: str, document_hash: str, exclude_id: str) -> List[str]: ...

    def insert_invoice(self, row: Dict[str, Any]) -> Dict[str, Any]: ...

    def record_approval(self, user_id: str, invoice_id: str, status: str, reasons: List[str]) -> None: ...

    def upsert_payment(self, user_id: str, invoice_id: str, amount: float, currency: str) -> None: ...

    def upload_document(self, user_id: str, file_name: str, content: bytes,
                        content_type: str) -> Tuple[str, str]: ...

    def remove_document(self, path: str) -> None: ...

    def list_chat_messages(self, user_id: str) -> List[Dict[str, Any]]: ...

    def add_chat_message(self, user_id: str, role: str, content: str) -> None: ...


def retry_on_transient(retries: int = 1, backoff: float = 0.5):
    """Retry a record source call after TransientIO, sleeping backoff * 2**attempt between tries."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except TransientIO as e:
                    if attempt == retries:
                        logger.error("Giving up on %s after %d attempts: %s", func.__name__, attempt + 1, e)
                        raise
                    wait = backoff * (2 ** attempt)
                    logger.warning("Retry %d/%d for %s after %.1fs: %s", attempt + 1, retries, func.__name__, wait, e)
                    time.sleep(wait)
        return wrapper
    return decorator


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# IN-MEMORY SOURCE
# ============================================================
class InMemoryRecordSource:
    """Dict-backed RecordSource holding raw rows in the same shape as the database tables."""

    def __init__(self, invoices: Optional[List[Dict[str, Any]]] = None):
        self.invoices: List[Dict[str, Any]] = [dict(r) for r in (invoices or [])]
        self.approvals: List[Dict[str, Any]] = []
        self.payments: List[Dict[str, Any]] = []
        self.chat_messages: List[Dict[str, Any]] = []
        self.files: Dict[str, bytes] = {}

    def fetch_invoices_for_user(self, user_id: str) -> List[InvoiceRecord]:
        return [InvoiceRecord.from_row(r) for r in self.invoices if r.get("user_id") == user_id]

    def get_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
        for r in self.invoices:
            if str(r.get("id")) == invoice_id:
                if r.get("user_id") != user_id:
                    raise Forbidden("Forbidden")
                return dict(r)
        raise NotFound("Invoice not found")

    def update_invoice(self, invoice_id: str, fields: Dict[str, Any]) -> None:
        for r in self.invoices:
            if str(r.get("id")) == invoice_id:
                r.update(fields)
                return
        raise NotFound("Invoice not found")

    def find_duplicates(self, user_id: str, document_hash: str, exclude_id: str) -> List[str]:
        return [str(r["id"]) for r in self.invoices
                if r.get("user_id") == user_id and r.get("document_hash") == document_hash
                and str(r.get("id")) != exclude_id]

    def insert_invoice(self, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = {"id": str(uuid.uuid4()), "created_at": _now(), **row}
        self.invoices.append(stored)
        return dict(stored)

    def record_approval(self, user_id: str, invoice_id: str, status: str, reasons: List[str]) -> None:
        self.approvals.append({"invoice_id": invoice_id, "user_id": user_id,
                               "status": status, "reasons": list(reasons)})

    def upsert_payment(self, user_id: str, invoice_id: str, amount: float, currency: str) -> None:
        for p in self.payments:
            if p["user_id"] == user_id and p["invoice_id"] == invoice_id:
                p.update({"amount": amount, "currency": currency, "updated_at": _now()})
                return
        self.payments.append({"id": str(uuid.uuid4()), "user_id": user_id, "invoice_id": invoice_id,
                              "amount": amount, "currency": currency, "status": "draft"})

    def upload_document(self, user_id: str, file_name: str, content: bytes,
                        content_type: str) -> Tuple[str, str]:
        path = f"{user_id}/{file_name}"
        self.files[path] = content
        return path, f"memory://invoices/{path}"

    def remove_document(self, path: str) -> None:
        self.files.pop(path, None)

    def list_chat_messages(self, user_id: str) -> List[Dict[str, Any]]:
        return [dict(m) for m in self.chat_messages if m["user_id"] == user_id]

    def add_chat_message(self, user_id: str, role: str, content: str) -> None:
        self.chat_messages.append({"user_id": user_id, "role": role, "content": content,
                                   "created_at": _now()})
