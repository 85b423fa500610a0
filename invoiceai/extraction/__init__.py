"""
Invoice AI — Field Extraction

Two entry points, both ending in a tagged result:
  extract_fields()        image/PDF data URL (+ optional OCR text) -> vision model
  process_invoice_text()  already-extracted document text -> text model

Result variants: ExtractionSuccess(fields) | MalformedResponse(raw) | UpstreamError(status, details).
Model output is validated once here; downstream code only sees ExtractedFields.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from invoiceai.config import (
    EXTRACTION_MODEL, EXTRACTION_MAX_TOKENS, PROCESS_MAX_TOKENS, OCR_TEXT_LIMIT
)
from invoiceai.llm import MalformedResponse, UpstreamError, call_model, extract_json_object
from invoiceai.records import to_decimal

# ============================================================
# PROMPTS
# ============================================================
VISION_PROMPT = """You are extracting invoice fields. Return ONLY valid JSON (no markdown).
Fields:
{
  "vendor_name": string|null,
  "invoice_number": string|null,
  "invoice_date": string|null,  // YYYY-MM-DD if possible
  "currency": string|null,       // ISO 4217 (EUR, USD...)
  "subtotal_amount": number|null,
  "tax_amount": number|null,
  "total_amount": number|null,
  "field_confidence": { "vendor_name": number, "invoice_number": number, "invoice_date": number, "currency": number, "subtotal_amount": number, "tax_amount": number, "total_amount": number },
  "evidence": [
    { "field": string, "page": number, "quote": string, "source": "image"|"ocr", "note": string|null }
  ]
}
Rules:
- Confidence must be 0..1
- Evidence: include at least one evidence item per extracted field when possible.
- If you cannot find evidence, set the field to null and confidence low.
OCR text (may contain errors) is below:

"""

PROCESS_PROMPT = """Extract invoice data from the text below.

Return ONLY a valid JSON object with these exact fields:
- vendor_name (string or null)
- invoice_number (string or null)
- invoice_date (YYYY-MM-DD or null)
- total_amount (number or null)
- tax_amount (number or null)
- currency (ISO 4217 code or null)
- invoice_type (services/goods/medical/other)
- language (ISO 639-1 code)

If information is missing, use null. No markdown. No explanation. Only JSON.

File name: {file_name}
File type: {file_type}

Text:
{text}"""

PROCESS_SYSTEM = "Return only valid JSON. No extra text."

INVOICE_TYPES = {"services", "goods", "medical", "other"}
IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+\-]+/[\w.+\-]+)?(?:;[\w=\-]+)*;base64,(?P<data>.+)$", re.DOTALL)


# ============================================================
# RESULT TYPES
# ============================================================
def _text(value) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _amount(value) -> Optional[float]:
    d = to_decimal(value)
    return float(d) if d is not None else None


def _confidence(value) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


@dataclass
class ExtractedFields:
    vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    currency: Optional[str] = None
    subtotal_amount: Optional[float] = None
    tax_amount: Optional[float] = None
    total_amount: Optional[float] = None
    invoice_type: Optional[str] = None
    language: Optional[str] = None
    field_confidence: Dict[str, float] = field(default_factory=dict)
    evidence: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ExtractedFields":
        currency = _text(data.get("currency"))
        invoice_type = _text(data.get("invoice_type"))
        if invoice_type is not None:
            invoice_type = invoice_type.lower()
            if invoice_type not in INVOICE_TYPES:
                invoice_type = "other"
        conf = data.get("field_confidence") if isinstance(data.get("field_confidence"), dict) else {}
        evidence = [e for e in (data.get("evidence") or []) if isinstance(e, dict)] \
            if isinstance(data.get("evidence"), list) else []
        return cls(
            vendor_name=_text(data.get("vendor_name")),
            invoice_number=_text(data.get("invoice_number")),
            invoice_date=_text(data.get("invoice_date")),
            currency=currency.upper() if currency else None,
            subtotal_amount=_amount(data.get("subtotal_amount")),
            tax_amount=_amount(data.get("tax_amount")),
            total_amount=_amount(data.get("total_amount")),
            invoice_type=invoice_type,
            language=_text(data.get("language")),
            field_confidence={str(k): _confidence(v) for k, v in conf.items()},
            evidence=evidence,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vendor_name": self.vendor_name, "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date, "currency": self.currency,
            "subtotal_amount": self.subtotal_amount, "tax_amount": self.tax_amount,
            "total_amount": self.total_amount, "invoice_type": self.invoice_type,
            "language": self.language, "field_confidence": self.field_confidence,
            "evidence": self.evidence,
        }


@dataclass(frozen=True)
class ExtractionSuccess:
    fields: ExtractedFields


ExtractionResult = Union[ExtractionSuccess, MalformedResponse, UpstreamError]


def _to_result(reply) -> ExtractionResult:
    if isinstance(reply, UpstreamError):
        return reply
    parsed = extract_json_object(reply)
    if parsed is None:
        return MalformedResponse(raw=(reply or "")[:4000])
    return ExtractionSuccess(ExtractedFields.from_json(parsed))


# ============================================================
# VISION EXTRACTION
# ============================================================
def build_source_block(image_data_url: str) -> dict:
    """Anthropic content block for a data: URL (image or PDF) or a remote http(s) image."""
    if not image_data_url or not isinstance(image_data_url, str):
        raise ValueError("imageDataUrl is required")
    if image_data_url.startswith(("http://", "https://")):
        return {"type": "image", "source": {"type": "url", "url": image_data_url}}
    m = _DATA_URL.match(image_data_url.strip())
    if not m:
        raise ValueError("imageDataUrl must be a base64 data: URL or an http(s) URL")
    mime = (m.group("mime") or "").lower()
    data = m.group("data").strip()
    if mime == "application/pdf":
        return {"type": "document", "source": {"type": "base64", "media_type": mime, "data": data}}
    return {"type": "image", "source": {"type": "base64",
                                        "media_type": mime if mime in IMAGE_TYPES else "image/png",
                                        "data": data}}


def extract_fields(client, image_data_url: str, ocr_text: str = "",
                   model: str = EXTRACTION_MODEL) -> ExtractionResult:
    block = build_source_block(image_data_url)
    prompt = VISION_PROMPT + (ocr_text or "")[:OCR_TEXT_LIMIT]
    reply = call_model(client, model, EXTRACTION_MAX_TOKENS,
                       [{"role": "user", "content": [{"type": "text", "text": prompt}, block]}])
    return _to_result(reply)


# ============================================================
# TEXT PROCESSING
# ============================================================
def process_invoice_text(client, text: str, file_name: str = "invoice", file_type: str = "unknown",
                         model: str = EXTRACTION_MODEL) -> ExtractionResult:
    prompt = PROCESS_PROMPT.format(file_name=file_name, file_type=file_type,
                                   text=(text or "")[:OCR_TEXT_LIMIT])
    reply = call_model(client, model, PROCESS_MAX_TOKENS,
                       [{"role": "user", "content": prompt}], system=PROCESS_SYSTEM, temperature=0.2)
    return _to_result(reply)
