"""
Invoice AI — Spend Analytics

Pure aggregation over a user's invoice records:
  - grouped sums by vendor, by calendar month ("YYYY-MM") and by category
  - next-month forecast: moving average of the trailing FORECAST_WINDOW months
  - dashboard counters and the fraud center listing

No I/O and no shared state; safe to call from any worker.
Records whose created_at is missing or unparseable are left out of the monthly
series (and listed in `skipped`) but still count towards vendor and category totals.
Pass strict=True to abort on the first such record instead.
"""
import re
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from invoiceai.config import FORECAST_WINDOW, UNKNOWN_VENDOR, UNCATEGORIZED, FRAUD_CENTER_MIN_SCORE
from invoiceai.errors import InvalidInput
from invoiceai.records import ComplianceStatus, InvoiceRecord, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")
_PG_TIMESTAMP = re.compile(r"\d{4}-\d{2}-\d{2}([ T][\d:.]+)?([+-]\d{2}(:?\d{2})?|Z)?")


@dataclass
class AggregationResult:
    by_vendor: Dict[str, Decimal]
    by_month: Dict[str, Decimal]
    by_category: Dict[str, Decimal]
    forecast_next_month: Decimal
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """JSON shape served by the spend analytics endpoint."""
        return {
            "byVendor": {k: float(v) for k, v in self.by_vendor.items()},
            "byMonth": {k: float(v) for k, v in self.by_month.items()},
            "byCategory": {k: float(v) for k, v in self.by_category.items()},
            "forecastNextMonth": float(self.forecast_next_month),
        }


# ============================================================
# GROUP KEYS
# ============================================================
def vendor_key(record: InvoiceRecord) -> str:
    name = (record.vendor_name or "").strip()
    return name or UNKNOWN_VENDOR


def category_key(record: InvoiceRecord) -> str:
    name = (record.category or "").strip()
    return name or UNCATEGORIZED


def _parse_timestamp(value) -> Optional[date]:
    if isinstance(value, (datetime, date)):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    # Postgres renders offsets as "+00"; the date part is all a month bucket needs
    if not _PG_TIMESTAMP.fullmatch(text):
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def month_key(value, record_id=None) -> str:
    """Truncate a timestamp to its "YYYY-MM" bucket, in the timestamp's own offset."""
    parsed = _parse_timestamp(value)
    if parsed is None:
        raise InvalidInput(f"created_at missing or unparseable: {value!r}", record_id=record_id)
    return f"{parsed.year:04d}-{parsed.month:02d}"


def amount_of(record: InvoiceRecord) -> Decimal:
    return to_decimal(record.total_amount) or ZERO


# ============================================================
# AGGREGATION
# ============================================================
def forecast_next_month(by_month: Dict[str, Decimal], window: int = FORECAST_WINDOW) -> Decimal:
    """Mean of the last `window` months in chronological order; 0 for an empty series."""
    if not by_month:
        return ZERO
    values = [by_month[m] for m in sorted(by_month)]
    tail = values[-max(1, window):]
    return (sum(tail, ZERO) / len(tail)).quantize(CENT, rounding=ROUND_HALF_UP)


def aggregate(records: Iterable[InvoiceRecord], strict: bool = False,
              window: int = FORECAST_WINDOW) -> AggregationResult:
    by_vendor = defaultdict(Decimal)
    by_month = defaultdict(Decimal)
    by_category = defaultdict(Decimal)
    skipped = []
    count = 0

    for record in records:
        count += 1
        try:
            month = month_key(record.created_at, record.id)
        except InvalidInput:
            if strict:
                raise
            skipped.append(record.id)
            month = None

        amount = amount_of(record)
        by_vendor[vendor_key(record)] += amount
        by_category[category_key(record)] += amount
        if month is not None:
            by_month[month] += amount

    if skipped:
        logger.warning("Left %d record(s) with bad created_at out of the monthly series: %s",
                       len(skipped), ", ".join(skipped[:10]))
    logger.debug("Aggregated %d records into %d vendors, %d months, %d categories",
                 count, len(by_vendor), len(by_month), len(by_category))

    return AggregationResult(
        by_vendor=dict(by_vendor),
        by_month=dict(by_month),
        by_category=dict(by_category),
        forecast_next_month=forecast_next_month(by_month, window),
        skipped=skipped,
    )


# ============================================================
# DASHBOARD & FRAUD CENTER
# ============================================================
def dashboard_stats(records: List[InvoiceRecord], now: datetime = None) -> dict:
    """Headline counters for the dashboard screen."""
    now = now or datetime.now(timezone.utc)
    this_month = f"{now.year:04d}-{now.month:02d}"
    in_month = 0
    for r in records:
        try:
            if month_key(r.created_at, r.id) == this_month:
                in_month += 1
        except InvalidInput:
            continue
    return {
        "totalInvoices": len(records),
        "totalAmount": float(sum((amount_of(r) for r in records), ZERO)),
        "pendingReview": sum(1 for r in records if r.compliance_status is ComplianceStatus.NEEDS_REVIEW),
        "compliantInvoices": sum(1 for r in records if r.compliance_status is ComplianceStatus.COMPLIANT),
        "flaggedInvoices": sum(1 for r in records if r.is_flagged),
        "invoicesThisMonth": in_month,
    }


def fraud_center(records: List[InvoiceRecord], min_score: float = FRAUD_CENTER_MIN_SCORE) -> List[InvoiceRecord]:
    """Invoices with a fraud score at or above min_score or any anomaly flag, newest first."""
    risky = [r for r in records if (r.fraud_score or 0) >= min_score or r.anomaly_flags]
    return sorted(risky, key=lambda r: str(r.created_at or ""), reverse=True)
