"""
Invoice AI — Chat Assistant
Grounds the chat model in a short summary of the user's own invoices.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Union

from invoiceai.config import CHAT_MODEL, CHAT_MAX_TOKENS, CHAT_CONTEXT_LIMIT
from invoiceai.analytics import aggregate, dashboard_stats, vendor_key, amount_of
from invoiceai.analytics.presenter import top_n, format_currency
from invoiceai.llm import UpstreamError, call_model
from invoiceai.records import InvoiceRecord

SYSTEM_PROMPT = """You are Invoice AI Assistant, a helpful AI that helps users understand and analyze their invoices. You have access to the user's invoice data and can answer questions about their spending, vendors, compliance status, and more.

{context}

Guidelines:
- Be concise and helpful
- When answering questions about data, use the context provided above
- If asked about specific invoices, refer to the data above
- For reports or summaries, calculate based on the data provided
- If asked to do something you can't do (like modify invoices), explain what the user should do instead
- Be friendly and professional

If the user has no invoice data, help them understand the upload process and what features are available."""

NO_INVOICES = "USER HAS NO INVOICES YET. Encourage them to upload their first invoice."
CHAT_ROLES = {"user", "assistant"}


def build_invoice_context(records: List[InvoiceRecord], now: datetime = None) -> str:
    if not records:
        return NO_INVOICES
    recent = sorted(records, key=lambda r: str(r.created_at or ""), reverse=True)[:CHAT_CONTEXT_LIMIT]
    stats = dashboard_stats(recent, now)
    vendors = aggregate(recent).by_vendor
    lines = [
        "USER'S INVOICE DATA CONTEXT:",
        f"- Total invoices: {stats['totalInvoices']}",
        f"- Invoices this month: {stats['invoicesThisMonth']}",
        f"- Total spend: {format_currency(Decimal(str(stats['totalAmount'])))}",
        f"- Flagged/suspicious invoices: {stats['flaggedInvoices']}",
        f"- Compliant invoices: {stats['compliantInvoices']}",
        "- Top vendors by spend:",
    ]
    lines += [f"  - {name}: {format_currency(amount)}" for name, amount in top_n(vendors, 5)]
    lines += ["", "Recent invoices (last 10):"]
    for r in recent[:10]:
        lines.append(f"- {vendor_key(r)}: {format_currency(amount_of(r), r.currency or 'USD')} "
                     f"({r.compliance_status.value}, {r.risk_score or 'unknown'} risk)")
    return "\n".join(lines)


def validate_messages(messages) -> List[dict]:
    """Keep only role/content; raises ValueError on anything else."""
    if not isinstance(messages, list) or not messages:
        raise ValueError("messages must be a non-empty list")
    cleaned = []
    for m in messages:
        if not isinstance(m, dict) or m.get("role") not in CHAT_ROLES:
            raise ValueError("Each message needs a role of 'user' or 'assistant'")
        content = str(m.get("content") or "").strip()
        if not content:
            raise ValueError("Message content must not be empty")
        cleaned.append({"role": m["role"], "content": content})
    if cleaned[0]["role"] != "user" or cleaned[-1]["role"] != "user":
        raise ValueError("The conversation must start and end with a user message")
    return cleaned


def chat(client, messages: List[dict], context: str, model: str = CHAT_MODEL) -> Union[str, UpstreamError]:
    return call_model(client, model, CHAT_MAX_TOKENS, messages,
                      system=SYSTEM_PROMPT.format(context=context), temperature=0.3)
