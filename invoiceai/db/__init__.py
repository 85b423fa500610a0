"""
Invoice AI — Database Layer
Supabase-backed RecordSource. Each instance is scoped to one caller's access token
so row-level security on the hosted database decides what the user can see.
"""
import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import httpx
from postgrest.exceptions import APIError
from storage3.utils import StorageException
from supabase import Client, create_client

from invoiceai.config import SUPABASE_URL, SUPABASE_ANON_KEY, INVOICE_BUCKET, HTTP_TIMEOUT_SECONDS
from invoiceai.errors import RecordSourceError, Unauthorized, Forbidden, NotFound, TransientIO
from invoiceai.records import InvoiceRecord, retry_on_transient

logger = logging.getLogger(__name__)

# ============================================================
# ERROR TRANSLATION
# ============================================================
_AUTH_CODES = {"PGRST301", "PGRST302", "PGRST303"}


def translate_error(e: Exception) -> RecordSourceError:
    """Map supabase-py / PostgREST / transport failures onto the record source taxonomy."""
    if isinstance(e, RecordSourceError):
        return e
    if isinstance(e, APIError):
        code = str(e.code or "")
        message = e.message or str(e)
        if code == "PGRST116":
            return NotFound(message)
        if code in _AUTH_CODES or "jwt" in message.lower():
            return Unauthorized(message)
        if code == "42501":
            return Forbidden(message)
        return RecordSourceError(message)
    if isinstance(e, httpx.HTTPError):
        return TransientIO(f"Database unreachable: {e}")
    if isinstance(e, StorageException):
        return RecordSourceError(f"Storage error: {e}")
    return RecordSourceError(str(e))


def _execute(query):
    try:
        return query.execute()
    except (APIError, httpx.HTTPError) as e:
        raise translate_error(e) from e


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def safe_file_name(name: str) -> str:
    return re.sub(r"[^\w.\-]+", "_", name or "invoice")


# ============================================================
# SUPABASE RECORD SOURCE
# ============================================================
class SupabaseRecordSource:
    """RecordSource over the `invoices`, `approvals`, `payments` and `chat_messages` tables."""

    def __init__(self, access_token: str, client: Client = None,
                 url: str = SUPABASE_URL, anon_key: str = SUPABASE_ANON_KEY, bucket: str = INVOICE_BUCKET):
        if client is None:
            if not url or not anon_key:
                raise RecordSourceError("Missing SUPABASE_URL or SUPABASE_ANON_KEY")
            client = create_client(url, anon_key)
            # Lazily-built PostgREST and Storage clients pick these up on first use
            client.options.headers["Authorization"] = f"Bearer {access_token}"
            client.options.postgrest_client_timeout = HTTP_TIMEOUT_SECONDS
            client.options.storage_client_timeout = int(HTTP_TIMEOUT_SECONDS)
        self.client = client
        self.bucket = bucket

    # ── invoices ──
    @retry_on_transient()
    def fetch_invoices_for_user(self, user_id: str) -> List[InvoiceRecord]:
        res = _execute(self.client.table("invoices").select("*")
                       .eq("user_id", user_id).order("created_at", desc=True))
        rows = res.data or []
        logger.debug("Fetched %d invoices for user %s", len(rows), user_id)
        return [InvoiceRecord.from_row(r) for r in rows]

    @retry_on_transient()
    def get_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
        res = _execute(self.client.table("invoices").select("*").eq("id", invoice_id).limit(1))
        if not res.data:
            raise NotFound("Invoice not found")
        row = res.data[0]
        if row.get("user_id") != user_id:
            raise Forbidden("Forbidden")
        return row

    def update_invoice(self, invoice_id: str, fields: Dict[str, Any]) -> None:
        _execute(self.client.table("invoices").update({**fields, "updated_at": _now()}).eq("id", invoice_id))

    def find_duplicates(self, user_id: str, document_hash: str, exclude_id: str) -> List[str]:
        query = (self.client.table("invoices").select("id")
                 .eq("user_id", user_id).eq("document_hash", document_hash))
        if exclude_id:
            query = query.neq("id", exclude_id)
        res = _execute(query.order("created_at"))
        return [str(r["id"]) for r in (res.data or [])]

    def insert_invoice(self, row: Dict[str, Any]) -> Dict[str, Any]:
        res = _execute(self.client.table("invoices").insert(row))
        if not res.data:
            raise RecordSourceError("Insert returned no row")
        return res.data[0]

    # ── approvals & payments ──
    def record_approval(self, user_id: str, invoice_id: str, status: str, reasons: List[str]) -> None:
        _execute(self.client.table("approvals").insert({
            "invoice_id": invoice_id, "user_id": user_id, "status": status, "reasons": reasons}))

    def upsert_payment(self, user_id: str, invoice_id: str, amount: float, currency: str) -> None:
        existing = _execute(self.client.table("payments").select("id")
                            .eq("user_id", user_id).eq("invoice_id", invoice_id).limit(1))
        if existing.data:
            _execute(self.client.table("payments")
                     .update({"amount": amount, "currency": currency, "updated_at": _now()})
                     .eq("id", existing.data[0]["id"]))
        else:
            _execute(self.client.table("payments").insert({
                "user_id": user_id, "invoice_id": invoice_id,
                "amount": amount, "currency": currency, "status": "draft"}))

    # ── storage ──
    def upload_document(self, user_id: str, file_name: str, content: bytes,
                        content_type: str) -> Tuple[str, str]:
        path = f"{user_id}/{int(time.time() * 1000)}_{safe_file_name(file_name)}"
        bucket = self.client.storage.from_(self.bucket)
        try:
            bucket.upload(path, content, {"content-type": content_type, "cache-control": "3600", "upsert": "false"})
        except (StorageException, httpx.HTTPError) as e:
            raise translate_error(e) from e
        return path, bucket.get_public_url(path)

    def remove_document(self, path: str) -> None:
        try:
            self.client.storage.from_(self.bucket).remove([path])
        except (StorageException, httpx.HTTPError) as e:
            raise translate_error(e) from e

    # ── chat history ──
    def list_chat_messages(self, user_id: str) -> List[Dict[str, Any]]:
        res = _execute(self.client.table("chat_messages").select("role,content,created_at")
                       .eq("user_id", user_id).order("created_at"))
        return res.data or []

    def add_chat_message(self, user_id: str, role: str, content: str) -> None:
        _execute(self.client.table("chat_messages").insert(
            {"user_id": user_id, "role": role, "content": content}))
