"""
Invoice AI — Payment Payloads
Builds the payment payload and the QR string the front-end renders.
"""
from datetime import datetime, timezone

from invoiceai.config import PAYMENT_METHODS, DEFAULT_PAYMENT_CURRENCY
from invoiceai.records import to_decimal


def build_payment_payload(invoice: dict, method: str = "sepa", now: datetime = None) -> dict:
    """Returns {"payload": ..., "qrString": ...}; raises ValueError for an unknown method."""
    method = (method or "sepa").lower()
    if method not in PAYMENT_METHODS:
        raise ValueError(f"Invalid method. Must be one of: {', '.join(PAYMENT_METHODS)}")
    now = now or datetime.now(timezone.utc)
    amount = to_decimal(invoice.get("total_amount"))
    amount = float(amount) if amount is not None else 0.0
    currency = invoice.get("currency") or DEFAULT_PAYMENT_CURRENCY
    invoice_id = str(invoice.get("id"))

    payload = {
        "method": method, "invoiceId": invoice_id,
        "invoiceNumber": invoice.get("invoice_number"), "vendor": invoice.get("vendor_name"),
        "amount": amount, "currency": currency,
        "dueDate": invoice.get("due_date"), "createdAt": now.isoformat(),
    }
    qr = f"PAYMENT|{method.upper()}|{invoice_id}|{amount:.2f}|{currency}"
    return {"payload": payload, "qrString": qr}
