"""
Invoice AI — Risk & Compliance

Deterministic heuristics only; there is no trained fraud model.

score_invoice()   fraud score in [0, 1] + anomaly flags for a stored invoice
assess_invoice()  coarse risk level + compliance status for a freshly processed invoice
"""
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from invoiceai.config import (
    FRAUD_BASE_SCORE, FRAUD_WEIGHTS, FRAUD_FLAG_THRESHOLD, HIGH_AMOUNT_THRESHOLD,
    RISK_MEDIUM_AMOUNT, RISK_HIGH_AMOUNT, APPROVAL_STATUSES
)
from invoiceai.records import to_decimal


# ============================================================
# FRAUD SCORE
# ============================================================
def _is_suspicious_vendor(name) -> bool:
    vendor = str(name or "").strip().lower()
    return not vendor or vendor == "unknown" or "test" in vendor


def score_invoice(invoice: Dict, has_duplicate: bool) -> Tuple[float, List[str]]:
    flags = []
    if has_duplicate:
        flags.append("duplicate_document_hash")
    amount = to_decimal(invoice.get("total_amount"))
    amount = float(amount) if amount is not None else 0.0
    if amount <= 0:
        flags.append("non_positive_amount")
    if amount >= HIGH_AMOUNT_THRESHOLD:
        flags.append("high_amount")
    if _is_suspicious_vendor(invoice.get("vendor_name")):
        flags.append("suspicious_vendor")

    score = FRAUD_BASE_SCORE + sum(FRAUD_WEIGHTS[f] for f in flags)
    return round(min(1.0, max(0.0, score)), 4), flags


def risk_update(score: float, flags: List[str]) -> Dict:
    """Column values written back to the invoice after a risk check."""
    return {
        "fraud_score": score,
        "anomaly_flags": flags,
        "is_flagged": score >= FRAUD_FLAG_THRESHOLD or "duplicate_document_hash" in flags,
        "flag_reason": ", ".join(flags) if flags else None,
    }


# ============================================================
# PROCESSING ASSESSMENT
# ============================================================
def assess_invoice(total_amount, tax_amount, invoice_type=None, now: datetime = None) -> Dict:
    now = now or datetime.now(timezone.utc)
    total = to_decimal(total_amount)
    total = float(total) if total is not None else 0.0
    tax = to_decimal(tax_amount)
    tax = float(tax) if tax is not None else 0.0

    anomalies = []
    risk = "low"
    if total > RISK_MEDIUM_AMOUNT:
        risk = "medium"
    if total > RISK_HIGH_AMOUNT:
        risk = "high"
        anomalies.append("Unusually high amount")

    compliance = "compliant" if tax > 0 else "needs_review"
    checked_at = now.isoformat()
    return {
        "fraud_detection": {"risk_score": risk, "is_duplicate": False,
                            "anomalies": anomalies, "checked_at": checked_at},
        "compliance": {"compliance_status": compliance, "vat_valid": compliance == "compliant",
                       "tax_classification": "Service Tax" if invoice_type == "services" else "Goods Tax",
                       "checked_at": checked_at},
        "risk_score": risk,
        "compliance_status": compliance,
        "is_flagged": risk == "high",
        "flag_reason": ", ".join(anomalies) if anomalies else None,
    }


# ============================================================
# APPROVALS
# ============================================================
def validate_approval(status, reasons) -> Tuple[str, List[str]]:
    """Normalise an approval decision; raises ValueError on an unknown status."""
    status = status or "pending"
    if status not in APPROVAL_STATUSES:
        raise ValueError("Invalid status")
    if not isinstance(reasons, list):
        reasons = []
    return status, [str(r) for r in reasons]
