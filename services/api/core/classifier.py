# services/api/core/classifier.py
"""
Document classification via Groq's OpenAI-compatible chat API.

Given text already extracted from a document (OCR happens upstream), ask
the model for a document type, a title and tags. The model is asked for
JSON but does not always comply, so parsing degrades in steps:
    1. strip ``` / ```json fences and parse
    2. parse the first {...} block found anywhere in the reply
    3. fixed fallback values
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from core.errors import UpstreamFailure, ValidationFailure

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 2000

SYSTEM_PROMPT = (
    "You are a document classification assistant. Analyze the provided text and "
    "extract the document type, a suitable title, and relevant tags. Respond ONLY "
    "in valid JSON format with keys: documentType, title, and tags (array of strings). "
    "Keep tags concise and relevant."
)

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"```\s*$")
_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass
class DocumentAnalysis:
    document_type: str
    title: str
    tags: List[str] = field(default_factory=list)


FALLBACK_ANALYSIS = DocumentAnalysis("Document", "Analyzed Document", ["unclassified"])


def _from_parsed(parsed: Dict[str, Any]) -> DocumentAnalysis:
    tags = parsed.get("tags")
    return DocumentAnalysis(
        document_type=str(parsed.get("documentType") or "Unknown"),
        title=str(parsed.get("title") or "Untitled Document"),
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
    )


def _try_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_analysis_response(text: Optional[str]) -> DocumentAnalysis:
    """Turn the model reply into a DocumentAnalysis. Never raises."""
    s = (text or "{}").strip()
    if s.startswith("```"):
        s = _FENCE_END.sub("", _FENCE_START.sub("", s)).strip()

    parsed = _try_json(s)
    if parsed is not None:
        return _from_parsed(parsed)

    logger.warning("Classifier reply is not JSON, searching for an embedded object: %.120s", s)
    match = _JSON_BLOCK.search(s)
    if match:
        parsed = _try_json(match.group(0))
        if parsed is not None:
            return _from_parsed(parsed)

    logger.warning("Could not parse classifier reply, using fallback analysis")
    return DocumentAnalysis(
        FALLBACK_ANALYSIS.document_type,
        FALLBACK_ANALYSIS.title,
        list(FALLBACK_ANALYSIS.tags),
    )


class GroqClassifier:
    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.1-8b-instant",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    def _request_body(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": "Analyze this document text and provide classification:\n\n"
                    + text[:MAX_INPUT_CHARS],
                },
            ],
            "temperature": 0.3,
            "max_completion_tokens": 500,
            "top_p": 0.95,
            "stream": False,
        }

    async def analyze(self, text: str) -> DocumentAnalysis:
        if not (text or "").strip():
            raise ValidationFailure("text is required", code="MISSING_FIELD")
        if not self.api_key:
            raise UpstreamFailure("Classifier is not configured (GROQ_API_KEY missing)")

        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=self._request_body(text), headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"Classifier timeout after {self.timeout_s}s")
            raise UpstreamFailure("Classifier request timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Classifier request failed: {e}")
            raise UpstreamFailure(f"Classifier request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Classifier returned HTTP {response.status_code}: {response.text[:200]}")
            raise UpstreamFailure(f"Classifier returned HTTP {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            content = None

        analysis = parse_analysis_response(content)
        logger.info(f"Classified document as {analysis.document_type!r} ({len(analysis.tags)} tags)")
        return analysis
