"""
Invoice AI — Invoice Management Backend

Architecture:
  invoiceai/
  ├── config/      — Environment settings, thresholds, logging setup
  ├── errors/      — InvalidInput + record source failure taxonomy
  ├── records/     — InvoiceRecord model, RecordSource contract, in-memory source
  ├── db/          — Supabase-backed RecordSource (tables + storage bucket)
  ├── auth/        — Supabase session token verification
  ├── analytics/   — Spend aggregation, forecast, dashboard counters, presenter
  ├── llm/         — Model API client and failure variants
  ├── extraction/  — Vision / text field extraction with tagged results
  ├── risk/        — Fraud heuristics, compliance assessment, approvals
  ├── esg/         — Category-based CO2e estimates
  ├── payments/    — Payment payload and QR string
  ├── assistant/   — Chat assistant grounded in the user's invoices
  └── server.py    — FastAPI routing layer

Storage and auth live in the hosted database platform; extraction and chat are
calls to the hosted model API. The aggregation in analytics/ is pure and does no I/O.
"""
