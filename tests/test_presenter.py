"""Tests for spend summary presentation."""
import unittest
from decimal import Decimal

from invoiceai.analytics import AggregationResult
from invoiceai.analytics.presenter import build_spend_summary, format_currency, top_n


class TestPresenter(unittest.TestCase):

    def test_format_currency(self):
        self.assertEqual(format_currency(Decimal("1234567.891")), "$1,234,567.89")
        self.assertEqual(format_currency(5, "EUR"), "€5.00")
        self.assertEqual(format_currency(Decimal("-12.5"), "GBP"), "-£12.50")
        self.assertEqual(format_currency(10, "SEK"), "SEK 10.00")

    def test_top_n_orders_by_value_then_name(self):
        mapping = {"b": Decimal("5"), "a": Decimal("5"), "c": Decimal("9"), "d": Decimal("1")}
        self.assertEqual(top_n(mapping, 3), [("c", Decimal("9")), ("a", Decimal("5")), ("b", Decimal("5"))])
        self.assertEqual(top_n(mapping, 0), [])

    def test_summary(self):
        result = AggregationResult(
            by_vendor={"Acme": Decimal("150"), "Globex": Decimal("200")},
            by_month={"2024-02": Decimal("250"), "2024-01": Decimal("100")},
            by_category={"Travel": Decimal("350")},
            forecast_next_month=Decimal("175.00"),
        )
        summary = build_spend_summary(result, n=1)
        self.assertEqual(summary["topVendors"], [{"name": "Globex", "amount": 200.0, "formatted": "$200.00"}])
        self.assertEqual([m["month"] for m in summary["monthly"]], ["2024-01", "2024-02"])
        self.assertEqual(summary["forecastFormatted"], "$175.00")


if __name__ == "__main__":
    unittest.main()
