"""
Invoice AI — ESG Mapping
Rough spend-based CO2e estimate from the invoice category.
"""
from invoiceai.config import ESG_FACTORS, ESG_DEFAULT_FACTOR, ESG_CONFIDENCE
from invoiceai.records import to_decimal


def emission_factor(category: str) -> float:
    """kg CO2e per currency unit; first matching substring wins."""
    c = (category or "").lower()
    for needle, factor in ESG_FACTORS:
        if needle in c:
            return factor
    return ESG_DEFAULT_FACTOR


def estimate_emissions(invoice: dict) -> dict:
    category = str(invoice.get("category") or "general").lower()
    amount = to_decimal(invoice.get("total_amount"))
    amount = float(amount) if amount is not None else 0.0
    factor = emission_factor(category)
    return {"category": category, "factor": factor,
            "co2e": round(amount * factor, 4), "emissionsConfidence": ESG_CONFIDENCE}
