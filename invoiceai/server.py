"""
Invoice AI — FastAPI routing layer

Every handler runs the same linear pipeline: authenticate -> fetch -> validate ->
compute -> serialise. Failures leave as {"error": ...} JSON with a matching status.
"""
import json
import hashlib
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from invoiceai.config import (
    VERSION, PORT, USE_REAL_API, CORS_ORIGINS, ALLOWED_UPLOAD_TYPES, MAX_UPLOAD_BYTES,
    FRAUD_CENTER_MIN_SCORE, TOP_N_DEFAULT, configure_logging
)
from invoiceai.errors import RecordSourceError
from invoiceai.auth import get_current_user
from invoiceai.db import SupabaseRecordSource
from invoiceai.records import RecordSource
from invoiceai.analytics import aggregate, dashboard_stats, fraud_center
from invoiceai.analytics.presenter import build_spend_summary
from invoiceai.llm import MalformedResponse, UpstreamError, get_model_client
from invoiceai.extraction import ExtractionSuccess, ExtractedFields, build_source_block, extract_fields, process_invoice_text
from invoiceai.risk import score_invoice, risk_update, assess_invoice, validate_approval
from invoiceai.esg import estimate_emissions
from invoiceai.payments import build_payment_payload
from invoiceai.assistant import build_invoice_context, validate_messages, chat

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoice AI", version=VERSION)
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True,
                   allow_methods=["GET", "POST", "OPTIONS"],
                   allow_headers=["authorization", "apikey", "content-type", "x-client-info"])


# ============================================================
# ERROR ENVELOPES
# ============================================================
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    problems = "; ".join(f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors())
    return JSONResponse({"error": f"Invalid request: {problems}"}, status_code=400)


@app.exception_handler(RecordSourceError)
async def record_source_error(request: Request, exc: RecordSourceError):
    if exc.status_code >= 500:
        logger.error("Record source failure on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc) or exc.__class__.__name__}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


def upstream_response(err: UpstreamError) -> JSONResponse:
    if err.status == 429:
        return JSONResponse({"error": "Rate limits exceeded, please try again later."}, status_code=429)
    return JSONResponse({"error": "Model API error", "status": err.status, "details": err.details},
                        status_code=502)


def extraction_response(result, meta: dict = None):
    if isinstance(result, ExtractionSuccess):
        return None
    if isinstance(result, MalformedResponse):
        return JSONResponse({"error": "Model did not return valid JSON", "raw": result.raw,
                             "meta": meta or {}}, status_code=502)
    return upstream_response(result)


# ============================================================
# DEPENDENCIES
# ============================================================
def get_record_source(user: dict = Depends(get_current_user)) -> RecordSource:
    """Record source scoped to the caller's token; overridden in tests."""
    return SupabaseRecordSource(user["token"])


# ============================================================
# REQUEST BODIES
# ============================================================
class InvoiceRef(BaseModel):
    invoiceId: str = ""


class ApprovalRequest(InvoiceRef):
    status: Optional[str] = None
    reasons: Optional[list] = None


class PaymentRequest(InvoiceRef):
    method: str = "sepa"


class VisionRequest(BaseModel):
    imageDataUrl: str = ""
    ocrText: str = ""
    fileName: str = "invoice"
    mimeType: str = "application/octet-stream"


class ProcessRequest(BaseModel):
    fileUrl: Optional[str] = None
    fileName: str = "invoice"
    fileType: str = "unknown"
    extractedText: str = ""


class ChatRequest(BaseModel):
    messages: List[dict] = Field(default_factory=list)


def _invoice_id(body: InvoiceRef) -> str:
    invoice_id = (body.invoiceId or "").strip()
    if not invoice_id:
        raise HTTPException(400, "Missing invoiceId")
    return invoice_id


# ============================================================
# ROUTES — HEALTH & ANALYTICS
# ============================================================
@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION, "modelConfigured": USE_REAL_API}


@app.get("/api/spend-analytics")
async def spend_analytics(user: dict = Depends(get_current_user),
                          source: RecordSource = Depends(get_record_source)):
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    result = aggregate(records)
    return {"ok": True, **result.to_dict()}


@app.get("/api/spend-analytics/summary")
async def spend_summary(top: int = Query(TOP_N_DEFAULT, ge=1, le=50), currency: str = "USD",
                        user: dict = Depends(get_current_user),
                        source: RecordSource = Depends(get_record_source)):
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    return build_spend_summary(aggregate(records), top, currency)


@app.get("/api/dashboard")
async def get_dashboard(user: dict = Depends(get_current_user),
                        source: RecordSource = Depends(get_record_source)):
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    return dashboard_stats(records)


@app.get("/api/invoices")
async def get_invoices(user: dict = Depends(get_current_user),
                       source: RecordSource = Depends(get_record_source)):
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    return {"invoices": [r.to_dict() for r in records]}


@app.get("/api/fraud-center")
async def get_fraud_center(min_score: float = Query(FRAUD_CENTER_MIN_SCORE, ge=0, le=1),
                           user: dict = Depends(get_current_user),
                           source: RecordSource = Depends(get_record_source)):
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    return {"invoices": [r.to_dict() for r in fraud_center(records, min_score)]}


# ============================================================
# ROUTES — UPLOAD & INVOICE ACTIONS
# ============================================================
@app.post("/api/invoices/upload")
async def upload_invoice(file: UploadFile = File(...), extracted: str = Form("{}"),
                         user: dict = Depends(get_current_user),
                         source: RecordSource = Depends(get_record_source)):
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(400, f"Unsupported file type: {content_type}")
    try:
        fields = json.loads(extracted or "{}")
    except ValueError:
        raise HTTPException(400, "Invalid JSON in extracted parameter")
    if not isinstance(fields, dict):
        raise HTTPException(400, "extracted must be a JSON object")

    content = await file.read()
    if not content:
        raise HTTPException(400, "Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(400, "File too large")

    data = ExtractedFields.from_json(fields)
    document_hash = hashlib.sha256(content).hexdigest()
    file_name = file.filename or "invoice"

    duplicates = await run_in_threadpool(source.find_duplicates, user["id"], document_hash, "")
    storage_path, file_url = await run_in_threadpool(
        source.upload_document, user["id"], file_name, content, content_type)
    try:
        row = await run_in_threadpool(source.insert_invoice, {
            "user_id": user["id"], "file_name": file_name, "file_type": content_type,
            "file_url": file_url, "storage_path": storage_path, "document_hash": document_hash,
            "vendor_name": data.vendor_name, "invoice_number": data.invoice_number,
            "invoice_date": data.invoice_date, "total_amount": data.total_amount,
            "tax_amount": data.tax_amount, "currency": data.currency,
            "is_duplicate": bool(duplicates),
        })
    except RecordSourceError:
        logger.warning("Insert failed for %s; removing uploaded object", storage_path)
        try:
            await run_in_threadpool(source.remove_document, storage_path)
        except RecordSourceError as e:
            logger.error("Could not remove orphaned object %s: %s", storage_path, e)
        raise
    logger.info("Stored invoice %s for user %s (%d bytes)", row.get("id"), user["id"], len(content))
    return {"ok": True, "invoice": row, "duplicateOf": duplicates}


@app.post("/api/risk-check")
async def risk_check(body: InvoiceRef, user: dict = Depends(get_current_user),
                     source: RecordSource = Depends(get_record_source)):
    invoice_id = _invoice_id(body)
    invoice = await run_in_threadpool(source.get_invoice, user["id"], invoice_id)
    duplicates = []
    if invoice.get("document_hash"):
        duplicates = await run_in_threadpool(source.find_duplicates, user["id"],
                                             invoice["document_hash"], invoice_id)
    score, flags = score_invoice(invoice, bool(duplicates))
    await run_in_threadpool(source.update_invoice, invoice_id, risk_update(score, flags))
    return {"ok": True, "invoiceId": invoice_id, "fraudScore": score, "anomalyFlags": flags}


@app.post("/api/set-approval")
async def set_approval(body: ApprovalRequest, user: dict = Depends(get_current_user),
                       source: RecordSource = Depends(get_record_source)):
    invoice_id = _invoice_id(body)
    try:
        status, reasons = validate_approval(body.status, body.reasons)
    except ValueError as e:
        raise HTTPException(400, str(e))
    await run_in_threadpool(source.get_invoice, user["id"], invoice_id)
    await run_in_threadpool(source.record_approval, user["id"], invoice_id, status, reasons)
    await run_in_threadpool(source.update_invoice, invoice_id,
                            {"approval": status, "approval_reasons": reasons})
    return {"ok": True, "invoiceId": invoice_id, "status": status, "reasons": reasons}


@app.post("/api/esg-map")
async def esg_map(body: InvoiceRef, user: dict = Depends(get_current_user),
                  source: RecordSource = Depends(get_record_source)):
    invoice_id = _invoice_id(body)
    invoice = await run_in_threadpool(source.get_invoice, user["id"], invoice_id)
    estimate = estimate_emissions(invoice)
    await run_in_threadpool(source.update_invoice, invoice_id, {
        "esg_category": estimate["category"], "co2e_estimate": estimate["co2e"],
        "emissions_confidence": estimate["emissionsConfidence"]})
    return {"ok": True, "invoiceId": invoice_id, **estimate}


@app.post("/api/generate-qr")
async def generate_qr(body: PaymentRequest, user: dict = Depends(get_current_user),
                      source: RecordSource = Depends(get_record_source)):
    invoice_id = _invoice_id(body)
    invoice = await run_in_threadpool(source.get_invoice, user["id"], invoice_id)
    try:
        built = build_payment_payload(invoice, body.method)
    except ValueError as e:
        raise HTTPException(400, str(e))
    payload = built["payload"]
    await run_in_threadpool(source.upsert_payment, user["id"], invoice_id,
                            payload["amount"], payload["currency"])
    await run_in_threadpool(source.update_invoice, invoice_id, {
        "payment_payload": payload, "payment_qr_string": built["qrString"]})
    return {"ok": True, "invoiceId": invoice_id, **built}


# ============================================================
# ROUTES — EXTRACTION
# ============================================================
@app.post("/api/vision-extract")
async def vision_extract(body: VisionRequest, user: dict = Depends(get_current_user),
                         client=Depends(get_model_client)):
    try:
        build_source_block(body.imageDataUrl)
    except ValueError as e:
        raise HTTPException(400, str(e))
    meta = {"fileName": body.fileName, "mimeType": body.mimeType}
    result = await run_in_threadpool(extract_fields, client, body.imageDataUrl, body.ocrText)
    failure = extraction_response(result, meta)
    if failure is not None:
        return failure
    return {**result.fields.to_dict(), "meta": meta}


@app.post("/api/process-invoice")
async def process_invoice(body: ProcessRequest, user: dict = Depends(get_current_user),
                          client=Depends(get_model_client)):
    if not body.extractedText.strip():
        raise HTTPException(400, "extractedText is required")
    result = await run_in_threadpool(process_invoice_text, client, body.extractedText,
                                     body.fileName, body.fileType)
    failure = extraction_response(result, {"fileName": body.fileName, "fileType": body.fileType})
    if failure is not None:
        return failure
    fields = result.fields
    assessment = assess_invoice(fields.total_amount, fields.tax_amount, fields.invoice_type)
    return {
        **fields.to_dict(),
        "ingestion": {"valid": True, "fileType": body.fileType, "fileName": body.fileName,
                      "timestamp": assessment["fraud_detection"]["checked_at"]},
        **assessment,
    }


# ============================================================
# ROUTES — ASSISTANT
# ============================================================
@app.get("/api/chat/messages")
async def chat_history(user: dict = Depends(get_current_user),
                       source: RecordSource = Depends(get_record_source)):
    return {"messages": await run_in_threadpool(source.list_chat_messages, user["id"])}


@app.post("/api/chat")
async def chat_reply(body: ChatRequest, user: dict = Depends(get_current_user),
                     source: RecordSource = Depends(get_record_source),
                     client=Depends(get_model_client)):
    try:
        messages = validate_messages(body.messages)
    except ValueError as e:
        raise HTTPException(400, str(e))
    records = await run_in_threadpool(source.fetch_invoices_for_user, user["id"])
    context = build_invoice_context(records)
    reply = await run_in_threadpool(chat, client, messages, context)
    if isinstance(reply, UpstreamError):
        return upstream_response(reply)

    try:
        await run_in_threadpool(source.add_chat_message, user["id"], "user", messages[-1]["content"])
        await run_in_threadpool(source.add_chat_message, user["id"], "assistant", reply)
    except RecordSourceError as e:
        logger.warning("Could not persist chat turn for user %s: %s", user["id"], e)
    return {"reply": reply}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Invoice AI v%s on port %d (model API %s)", VERSION, PORT,
                "configured" if USE_REAL_API else "not configured")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
