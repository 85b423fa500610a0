"""Tests for spend aggregation and forecasting."""
import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from invoiceai.analytics import aggregate, forecast_next_month, month_key, dashboard_stats, fraud_center
from invoiceai.errors import InvalidInput
from invoiceai.records import ComplianceStatus, InvoiceRecord


def rec(id, vendor=None, amount=None, created="2024-01-15T10:00:00Z", category=None, **kw):
    return InvoiceRecord(id=id, vendor_name=vendor,
                         total_amount=Decimal(str(amount)) if amount is not None else None,
                         category=category, created_at=created, **kw)


class TestAggregator(unittest.TestCase):
    """Aggregator grouping behaviour."""

    def setUp(self):
        self.records = [
            rec("1", "Acme", 100, "2024-01-03T09:00:00Z", "Software"),
            rec("2", "Acme", 50, "2024-02-11T09:00:00Z", "Software"),
            rec("3", "Globex", 200, "2024-02-20T09:00:00Z", "Travel"),
        ]

    def test_example_groupings(self):
        result = aggregate(self.records)
        self.assertEqual(result.by_vendor, {"Acme": Decimal("150"), "Globex": Decimal("200")})
        self.assertEqual(result.by_month, {"2024-01": Decimal("100"), "2024-02": Decimal("250")})
        self.assertEqual(result.by_category, {"Software": Decimal("150"), "Travel": Decimal("200")})

    def test_totals_agree_across_groupings(self):
        records = self.records + [rec("4", None, None, "2023-12-31"), rec("5", "", "12.34", "2024-03-01")]
        result = aggregate(records)
        expected = sum((r.total_amount or Decimal("0") for r in records), Decimal("0"))
        self.assertEqual(sum(result.by_vendor.values()), expected)
        self.assertEqual(sum(result.by_category.values()), expected)
        self.assertEqual(sum(result.by_month.values()), expected)

    def test_missing_vendor_category_and_amount(self):
        result = aggregate([rec("1", None, None), rec("2", "  ", 10, category="")])
        self.assertEqual(result.by_vendor, {"Unknown": Decimal("10")})
        self.assertEqual(result.by_category, {"Uncategorized": Decimal("10")})
        self.assertEqual(result.by_month, {"2024-01": Decimal("10")})

    def test_keys_match_distinct_values(self):
        records = self.records + [rec("9", None, 5)]
        result = aggregate(records)
        self.assertEqual(set(result.by_vendor), {"Acme", "Globex", "Unknown"})
        self.assertEqual(set(result.by_category), {"Software", "Travel", "Uncategorized"})
        self.assertEqual(set(result.by_month), {"2024-01", "2024-02"})

    def test_empty_input(self):
        result = aggregate([])
        self.assertEqual(result.by_vendor, {})
        self.assertEqual(result.by_month, {})
        self.assertEqual(result.by_category, {})
        self.assertEqual(result.forecast_next_month, Decimal("0"))

    def test_idempotent_and_input_untouched(self):
        snapshot = list(self.records)
        first = aggregate(self.records)
        second = aggregate(self.records)
        self.assertEqual(first, second)
        self.assertEqual(self.records, snapshot)

    def test_bad_created_at_skipped_from_months_only(self):
        records = self.records + [rec("bad", "Acme", 25, "not a date", "Software"), rec("none", "Initech", 5, None)]
        result = aggregate(records)
        self.assertEqual(result.skipped, ["bad", "none"])
        self.assertEqual(result.by_vendor["Acme"], Decimal("175"))
        self.assertEqual(result.by_vendor["Initech"], Decimal("5"))
        self.assertEqual(result.by_category["Software"], Decimal("175"))
        self.assertEqual(sum(result.by_month.values()), Decimal("350"))

    def test_raw_amounts_are_coerced(self):
        records = [
            InvoiceRecord(id="1", created_at="2024-01-01", vendor_name="A", total_amount=12.5),
            InvoiceRecord(id="2", created_at="2024-01-02", vendor_name="A", total_amount="abc"),
            InvoiceRecord(id="3", created_at="2024-01-03", vendor_name="A", total_amount="7.25"),
        ]
        result = aggregate(records)
        self.assertEqual(result.by_vendor, {"A": Decimal("19.75")})
        self.assertEqual(result.by_month, {"2024-01": Decimal("19.75")})

    def test_trailing_garbage_after_date_is_skipped(self):
        result = aggregate([rec("x", "Acme", 1, "2024-01-15 not-a-time")])
        self.assertEqual(result.skipped, ["x"])
        self.assertEqual(result.by_month, {})

    def test_strict_mode_raises(self):
        with self.assertRaises(InvalidInput) as ctx:
            aggregate([rec("x", "Acme", 1, "garbage")], strict=True)
        self.assertEqual(ctx.exception.record_id, "x")

    def test_serialised_shape(self):
        payload = aggregate(self.records).to_dict()
        self.assertEqual(set(payload), {"byVendor", "byMonth", "byCategory", "forecastNextMonth"})
        self.assertEqual(payload["byMonth"], {"2024-01": 100.0, "2024-02": 250.0})
        self.assertEqual(payload["forecastNextMonth"], 175.0)


class TestMonthKey(unittest.TestCase):

    def test_accepted_formats(self):
        self.assertEqual(month_key("2024-03-05T23:59:59Z"), "2024-03")
        self.assertEqual(month_key("2024-03-05 10:00:00.123+00"), "2024-03")
        self.assertEqual(month_key("2024-11-30"), "2024-11")
        self.assertEqual(month_key(datetime(2023, 7, 1, tzinfo=timezone.utc)), "2023-07")
        self.assertEqual(month_key(date(999, 1, 1)), "0999-01")

    def test_rejected_values(self):
        for value in (None, "", "2024-13-01", "yesterday", 12345, "2024-01-15 not-a-time"):
            with self.assertRaises(InvalidInput):
                month_key(value)


class TestForecast(unittest.TestCase):
    """Forecast is the mean of the trailing three months."""

    def test_single_month_is_flat(self):
        self.assertEqual(forecast_next_month({"2024-05": Decimal("80")}), Decimal("80.00"))

    def test_uses_last_three_months_in_order(self):
        by_month = {"2024-04": Decimal("400"), "2024-01": Decimal("1000"),
                    "2024-02": Decimal("100"), "2024-03": Decimal("310")}
        self.assertEqual(forecast_next_month(by_month), Decimal("270.00"))

    def test_rounds_to_cents(self):
        by_month = {"2024-01": Decimal("1"), "2024-02": Decimal("1"), "2024-03": Decimal("2")}
        self.assertEqual(forecast_next_month(by_month), Decimal("1.33"))

    def test_monotonic_in_inputs(self):
        base = {"2024-01": Decimal("10"), "2024-02": Decimal("20"), "2024-03": Decimal("30")}
        bumped = dict(base, **{"2024-02": Decimal("50")})
        self.assertGreaterEqual(forecast_next_month(bumped), forecast_next_month(base))

    def test_custom_window(self):
        by_month = {"2024-01": Decimal("10"), "2024-02": Decimal("20")}
        self.assertEqual(forecast_next_month(by_month, window=1), Decimal("20.00"))


class TestDashboard(unittest.TestCase):

    def test_counters(self):
        records = [
            rec("1", "A", 10, "2024-05-02", compliance_status=ComplianceStatus.NEEDS_REVIEW, is_flagged=True),
            rec("2", "B", 20, "2024-05-20", compliance_status=ComplianceStatus.COMPLIANT),
            rec("3", "C", None, "2024-04-20"),
            rec("4", "D", 5, "broken"),
        ]
        stats = dashboard_stats(records, now=datetime(2024, 5, 31))
        self.assertEqual(stats["totalInvoices"], 4)
        self.assertEqual(stats["totalAmount"], 35.0)
        self.assertEqual(stats["pendingReview"], 1)
        self.assertEqual(stats["compliantInvoices"], 1)
        self.assertEqual(stats["flaggedInvoices"], 1)
        self.assertEqual(stats["invoicesThisMonth"], 2)

    def test_default_month_is_utc(self):
        created = datetime.now(timezone.utc).isoformat()
        self.assertEqual(dashboard_stats([rec("1", "A", 1, created)])["invoicesThisMonth"], 1)

    def test_fraud_center_filters_and_orders(self):
        records = [
            rec("low", created="2024-01-01", fraud_score=0.1),
            rec("old", created="2024-01-02", fraud_score=0.3),
            rec("flagged", created="2024-03-01", anomaly_flags=frozenset({"high_amount"})),
            rec("none", created="2024-04-01"),
        ]
        self.assertEqual([r.id for r in fraud_center(records)], ["flagged", "old"])
        self.assertEqual([r.id for r in fraud_center(records, min_score=0.05)], ["flagged", "old", "low"])


if __name__ == "__main__":
    unittest.main()
