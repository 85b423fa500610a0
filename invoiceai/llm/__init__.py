"""
Invoice AI — Model API Boundary

Every call to the hosted model goes through call_model(), which turns SDK
exceptions into an UpstreamError value instead of letting them escape. Callers
get either the response text or an UpstreamError and branch on the type.
"""
import re
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import anthropic
from fastapi import HTTPException

from invoiceai.config import USE_REAL_API, HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamError:
    status: int
    details: str


@dataclass(frozen=True)
class MalformedResponse:
    raw: str


def get_model_client() -> anthropic.Anthropic:
    """Dependency: Anthropic client with a bounded timeout and a single SDK-level retry."""
    if not USE_REAL_API:
        raise HTTPException(500, "ANTHROPIC_API_KEY is not configured")
    return anthropic.Anthropic(timeout=HTTP_TIMEOUT_SECONDS, max_retries=1)


def call_model(client, model: str, max_tokens: int, messages: List[dict],
               system: Optional[str] = None, temperature: float = 0.0) -> Union[str, UpstreamError]:
    kwargs = {"model": model, "max_tokens": max_tokens, "messages": messages, "temperature": temperature}
    if system:
        kwargs["system"] = system
    try:
        msg = client.messages.create(**kwargs)
    except anthropic.APIStatusError as e:
        logger.error("Model API error %s: %s", e.status_code, e.message)
        return UpstreamError(e.status_code, str(e.message))
    except anthropic.APIConnectionError as e:
        logger.error("Model API unreachable: %s", e)
        return UpstreamError(502, f"Model API unreachable: {e}")
    return "".join(getattr(b, "text", "") for b in msg.content if getattr(b, "type", "text") == "text").strip()


def extract_json_object(text: str) -> Optional[dict]:
    """Pull the JSON object out of a model reply, tolerating code fences and surrounding prose."""
    if not text:
        return None
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
        cleaned = cleaned.strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
        except ValueError:
            return None
    return data if isinstance(data, dict) else None
