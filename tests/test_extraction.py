"""Tests for model-boundary parsing and field extraction."""
import json
import unittest

import anthropic
import httpx

from invoiceai.extraction import (
    ExtractedFields, ExtractionSuccess, build_source_block, extract_fields, process_invoice_text
)
from invoiceai.llm import MalformedResponse, UpstreamError, extract_json_object

from tests.fakes import FakeModelClient

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class TestExtractJsonObject(unittest.TestCase):

    def test_plain_and_fenced(self):
        self.assertEqual(extract_json_object('{"a": 1}'), {"a": 1})
        self.assertEqual(extract_json_object('```json\n{"a": 2}\n```'), {"a": 2})

    def test_object_inside_prose(self):
        self.assertEqual(extract_json_object('Sure! {"vendor_name": "Acme"} Hope it helps.'), {"vendor_name": "Acme"})

    def test_rejects_non_objects(self):
        self.assertIsNone(extract_json_object(""))
        self.assertIsNone(extract_json_object("[1, 2]"))
        self.assertIsNone(extract_json_object("no json here"))


class TestExtractedFields(unittest.TestCase):

    def test_validation(self):
        fields = ExtractedFields.from_json({
            "vendor_name": "  Acme  ", "invoice_number": "", "currency": "eur",
            "total_amount": "119.00", "tax_amount": "abc", "invoice_type": "Consulting",
            "field_confidence": {"vendor_name": 1.7, "total_amount": "0.4", "currency": None},
            "evidence": [{"field": "vendor_name"}, "junk"],
        })
        self.assertEqual(fields.vendor_name, "Acme")
        self.assertIsNone(fields.invoice_number)
        self.assertEqual(fields.currency, "EUR")
        self.assertEqual(fields.total_amount, 119.0)
        self.assertIsNone(fields.tax_amount)
        self.assertEqual(fields.invoice_type, "other")
        self.assertEqual(fields.field_confidence, {"vendor_name": 1.0, "total_amount": 0.4, "currency": 0.0})
        self.assertEqual(fields.evidence, [{"field": "vendor_name"}])


class TestSourceBlock(unittest.TestCase):

    def test_image_and_pdf_data_urls(self):
        image = build_source_block("data:image/jpeg;base64,QUJD")
        self.assertEqual(image["type"], "image")
        self.assertEqual(image["source"], {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"})
        pdf = build_source_block("data:application/pdf;base64,JVBERi0=")
        self.assertEqual(pdf["type"], "document")

    def test_unknown_image_type_falls_back_to_png(self):
        block = build_source_block("data:image/tiff;base64,QUJD")
        self.assertEqual(block["source"]["media_type"], "image/png")

    def test_remote_url(self):
        block = build_source_block("https://example.com/invoice.png")
        self.assertEqual(block["source"], {"type": "url", "url": "https://example.com/invoice.png"})

    def test_invalid(self):
        for value in ("", "not-a-url", "data:image/png,raw"):
            with self.assertRaises(ValueError):
                build_source_block(value)


class TestExtractFields(unittest.TestCase):

    def test_success(self):
        client = FakeModelClient(json.dumps({"vendor_name": "Acme", "total_amount": 42}))
        result = extract_fields(client, "data:image/png;base64,QUJD", ocr_text="x" * 20000)
        self.assertIsInstance(result, ExtractionSuccess)
        self.assertEqual(result.fields.total_amount, 42.0)
        call = client.messages.calls[0]
        text_block = call["messages"][0]["content"][0]["text"]
        self.assertTrue(text_block.endswith("x" * 12000))
        self.assertNotIn("x" * 12001, text_block)

    def test_malformed(self):
        result = extract_fields(FakeModelClient("I could not read the invoice"), "data:image/png;base64,QUJD")
        self.assertEqual(result, MalformedResponse(raw="I could not read the invoice"))

    def test_upstream_status_error(self):
        error = anthropic.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None)
        result = extract_fields(FakeModelClient(error=error), "data:image/png;base64,QUJD")
        self.assertIsInstance(result, UpstreamError)
        self.assertEqual(result.status, 429)

    def test_connection_error(self):
        error = anthropic.APIConnectionError(request=REQUEST)
        result = process_invoice_text(FakeModelClient(error=error), "Invoice #1")
        self.assertIsInstance(result, UpstreamError)
        self.assertEqual(result.status, 502)

    def test_process_invoice_text_uses_system_prompt(self):
        client = FakeModelClient('{"vendor_name": "Globex", "invoice_type": "goods", "tax_amount": 3}')
        result = process_invoice_text(client, "Globex invoice", "a.pdf", "application/pdf")
        self.assertEqual(result.fields.invoice_type, "goods")
        call = client.messages.calls[0]
        self.assertIn("Return only valid JSON", call["system"])
        self.assertIn("File name: a.pdf", call["messages"][0]["content"])


if __name__ == "__main__":
    unittest.main()
