"""
Invoice AI — Configuration & Constants
Environment variables, external service settings, scoring thresholds and logging setup.
"""
import os
import logging

# ============================================================
# SUPABASE (auth, tables, storage)
# ============================================================
SUPABASE_URL = os.environ.get("SUPABASE_URL", "").rstrip("/")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
# When set, bearer tokens are verified locally instead of calling /auth/v1/user
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "")
SUPABASE_JWT_AUDIENCE = os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated")
INVOICE_BUCKET = os.environ.get("INVOICE_BUCKET", "invoices")

# ============================================================
# MODEL API
# ============================================================
USE_REAL_API = bool(os.environ.get("ANTHROPIC_API_KEY"))
EXTRACTION_MODEL = os.environ.get("EXTRACTION_MODEL", "claude-sonnet-4-20250514")
CHAT_MODEL = os.environ.get("CHAT_MODEL", "claude-haiku-4-5-20251001")
EXTRACTION_MAX_TOKENS = 1200
PROCESS_MAX_TOKENS = 400
CHAT_MAX_TOKENS = 1024
OCR_TEXT_LIMIT = 12000

# ============================================================
# HTTP
# ============================================================
PORT = int(os.environ.get("PORT", "8000"))
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_MB", "10")) * 1024 * 1024
ALLOWED_UPLOAD_TYPES = {"application/pdf", "image/png", "image/jpeg", "image/webp", "image/gif"}

# ============================================================
# ANALYTICS
# ============================================================
FORECAST_WINDOW = int(os.environ.get("FORECAST_WINDOW", "3"))
TOP_N_DEFAULT = 5
UNKNOWN_VENDOR = "Unknown"
UNCATEGORIZED = "Uncategorized"
CHAT_CONTEXT_LIMIT = 100

# ============================================================
# RISK & COMPLIANCE
# ============================================================
FRAUD_CENTER_MIN_SCORE = float(os.environ.get("FRAUD_CENTER_MIN_SCORE", "0.3"))
FRAUD_BASE_SCORE = 0.05
FRAUD_FLAG_THRESHOLD = 0.5
FRAUD_WEIGHTS = {
    "duplicate_document_hash": 0.7,
    "non_positive_amount": 0.2,
    "high_amount": 0.2,
    "suspicious_vendor": 0.15,
}
HIGH_AMOUNT_THRESHOLD = float(os.environ.get("HIGH_AMOUNT_THRESHOLD", "10000"))
# Amount thresholds used when assessing a freshly processed invoice
RISK_MEDIUM_AMOUNT = 25000
RISK_HIGH_AMOUNT = 40000
APPROVAL_STATUSES = ("pass", "fail", "needs_info", "pending")

# ============================================================
# ESG
# ============================================================
# kg CO2e per currency unit, matched by substring of the category
ESG_FACTORS = [("travel", 0.45), ("energy", 0.60), ("it", 0.20)]
ESG_DEFAULT_FACTOR = 0.25
ESG_CONFIDENCE = 0.65

# ============================================================
# PAYMENTS
# ============================================================
PAYMENT_METHODS = ("sepa", "zakat", "custom")
DEFAULT_PAYMENT_CURRENCY = "EUR"

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "INR": "₹", "JPY": "¥", "CAD": "C$", "AUD": "A$", "CHF": "CHF ", "AED": "AED "}

# ============================================================
# LOGGING
# ============================================================
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    logger = logging.getLogger("invoiceai")
    logger.setLevel(getattr(logging, level, logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    return logger

# ============================================================
# VERSION
# ============================================================
VERSION = "1.0.0"
