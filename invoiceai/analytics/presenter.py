"""Display shaping for aggregation results: top-N lists and currency strings."""
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Tuple

from invoiceai.config import CURRENCY_SYMBOLS, TOP_N_DEFAULT
from invoiceai.analytics import AggregationResult


def currency_symbol(currency: str) -> str:
    if not currency:
        return "$"
    return CURRENCY_SYMBOLS.get(currency.upper(), currency.upper() + " ")


def format_currency(amount, currency: str = "USD") -> str:
    """1234567.891 -> "$1,234,567.89"; negatives keep the sign ahead of the symbol."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}{currency_symbol(currency)}{abs(value):,.2f}"


def top_n(mapping: Dict[str, Decimal], n: int = TOP_N_DEFAULT) -> List[Tuple[str, Decimal]]:
    """Entries by value descending, ties broken by key, truncated to n."""
    ranked = sorted(mapping.items(), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:max(0, n)]


def _entries(pairs, currency):
    return [{"name": k, "amount": float(v), "formatted": format_currency(v, currency)} for k, v in pairs]


def build_spend_summary(result: AggregationResult, n: int = TOP_N_DEFAULT, currency: str = "USD") -> dict:
    months = sorted(result.by_month.items())
    return {
        "topVendors": _entries(top_n(result.by_vendor, n), currency),
        "topCategories": _entries(top_n(result.by_category, n), currency),
        "monthly": [{"month": m, "amount": float(v), "formatted": format_currency(v, currency)}
                    for m, v in months],
        "forecastNextMonth": float(result.forecast_next_month),
        "forecastFormatted": format_currency(result.forecast_next_month, currency),
    }
