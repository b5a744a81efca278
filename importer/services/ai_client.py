"""
Layout Analysis Model Client.

Async httpx client for an OpenAI-compatible chat completions endpoint.
Given a page's cleaned HTML it asks the model which selectors hold the
editable content, navigation and media of the page.

Features:
- Bearer token authentication
- Robust JSON extraction (raw text, markdown fences, first {...} span)
- Strict response shape validation
- Content-addressed response cache (SHA-256 of system|user|model)
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from asgiref.sync import sync_to_async
from django.conf import settings

from importer.models import AIResponseCache

logger = logging.getLogger(__name__)

# Characters of cleaned HTML sent to the model
MAX_HTML_CHARS = 40000

SYSTEM_PROMPT = """Role: You are a Technical Content Engineer specializing in CMS migrations.

Task: Analyze the provided HTML and identify content blocks that should be converted into editable fields.

Requirements:
1. Editable Fields: Identify headers, body text, prices and images.
2. Navigation: Extract any <nav>, <ul>, or menu-related structures into a dedicated navigation property.
3. Selectors: Prefer stable ids and semantic class names over positional selectors.
4. Format: Return the result as a single JSON object.

Schema Logic:
- content: Key-value pairs of CSS selectors and the inner HTML/text they match on this page.
- navigation: An array of objects containing label and url.
- media: Source URLs for any <img> tags found in editable areas.
{feedback_block}
RESPOND WITH ONLY VALID JSON:
{{
  "page_type": "product|article|blog_post|listing|contact|about|homepage|other",
  "content": {{
    "CSS_SELECTOR_1": "Inner HTML or text",
    "CSS_SELECTOR_2": "..."
  }},
  "navigation": [
    {{ "label": "Menu Item", "url": "/path" }}
  ],
  "media": [
    "https://example.com/image.jpg"
  ],
  "confidence": 0.9,
  "summary": "1-sentence summary of the page layout"
}}"""

FEEDBACK_BLOCK = """
CRITICAL - PREVIOUS ATTEMPT FAILED:
The following selectors were previously suggested but failed to match other pages in this group:
{feedback}
Please provide MORE RESILIENT selectors this time.
"""

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class LayoutAnalysisError(Exception):
    """The model call failed or returned something other than a layout analysis."""


@dataclass
class LayoutAnalysis:
    """Validated model answer for one sample page."""

    page_type: str
    content: Dict[str, str]
    navigation: List[Dict[str, Any]] = field(default_factory=list)
    media: List[str] = field(default_factory=list)
    confidence: float = 0.0
    summary: str = ""
    from_cache: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "LayoutAnalysis":
        """
        Validate a decoded model response.

        Raises:
            LayoutAnalysisError: when a required key is missing or mistyped
        """
        if not isinstance(payload, dict):
            raise LayoutAnalysisError(f"Expected a JSON object, got {type(payload).__name__}")

        missing = [
            key for key in ("page_type", "content", "navigation", "media", "confidence", "summary")
            if key not in payload
        ]
        if missing:
            raise LayoutAnalysisError(f"Response missing keys: {', '.join(missing)}")

        if not isinstance(payload["page_type"], str):
            raise LayoutAnalysisError("page_type must be a string")
        if not isinstance(payload["content"], dict):
            raise LayoutAnalysisError("content must be an object of selector -> value")
        if not isinstance(payload["navigation"], list):
            raise LayoutAnalysisError("navigation must be an array")
        if not isinstance(payload["media"], list):
            raise LayoutAnalysisError("media must be an array")
        try:
            confidence = float(payload["confidence"])
        except (TypeError, ValueError):
            raise LayoutAnalysisError("confidence must be a number")

        content = {
            str(selector).strip(): "" if value is None else (
                value if isinstance(value, str) else json.dumps(value)
            )
            for selector, value in payload["content"].items()
            if str(selector).strip()
        }
        return cls(
            page_type=payload["page_type"].strip() or "other",
            content=content,
            navigation=[n for n in payload["navigation"] if isinstance(n, dict)],
            media=[m for m in payload["media"] if isinstance(m, str) and m.strip()],
            confidence=max(0.0, min(1.0, confidence)),
            summary=str(payload.get("summary") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_type": self.page_type,
            "content": self.content,
            "navigation": self.navigation,
            "media": self.media,
            "confidence": self.confidence,
            "summary": self.summary,
        }


def extract_json(text: str) -> Any:
    """
    Extract a JSON document from model output.

    Tries the raw text, then a fenced markdown block, then the span from the
    first ``{`` to the last ``}``.

    Raises:
        LayoutAnalysisError: when no candidate parses
    """
    if not text or not isinstance(text, str):
        raise LayoutAnalysisError("Empty model response")

    clean = text.strip()
    try:
        return json.loads(clean)
    except ValueError:
        pass

    match = _FENCE_RE.search(clean)
    if match and match.group(1):
        try:
            return json.loads(match.group(1).strip())
        except ValueError:
            pass

    start = clean.find("{")
    end = clean.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(clean[start:end + 1])
        except ValueError:
            pass

    raise LayoutAnalysisError(f"Failed to extract valid JSON from response: {clean[:100]}...")


def prompt_hash(system_prompt: str, user_prompt: str, model: str) -> str:
    return hashlib.sha256(f"{system_prompt}|{user_prompt}|{model}".encode("utf-8")).hexdigest()


class PromptCache:
    """
    Model response cache backed by AIResponseCache.

    Passed to the client explicitly so callers (and tests) decide whether
    responses are shared.
    """

    def get(self, key: str) -> Optional[Any]:
        entry = AIResponseCache.objects.filter(prompt_hash=key).first()
        return entry.response if entry else None

    def set(self, key: str, response: Any, model: str):
        AIResponseCache.objects.update_or_create(
            prompt_hash=key, defaults={"response": response, "model": model}
        )

    async def aget(self, key: str) -> Optional[Any]:
        return await sync_to_async(self.get)(key)

    async def aset(self, key: str, response: Any, model: str):
        await sync_to_async(self.set)(key, response, model)


class LayoutAnalysisClient:
    """
    Async HTTP client for layout analysis.

    Calls ``{base_url}/chat/completions`` and returns a validated
    LayoutAnalysis or raises LayoutAnalysisError.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[PromptCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the layout analysis client.

        Args:
            base_url: API base URL (defaults to settings.AI_SERVICE_URL)
            api_key: Bearer token (defaults to settings.AI_SERVICE_TOKEN)
            model: Model name (defaults to settings.AI_MODEL)
            timeout: Request timeout in seconds (defaults to settings.AI_REQUEST_TIMEOUT)
            cache: Response cache; None disables caching
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or getattr(settings, "AI_SERVICE_URL", "")).rstrip("/")
        self.api_key = api_key if api_key is not None else getattr(settings, "AI_SERVICE_TOKEN", "")
        self.model = model or getattr(settings, "AI_MODEL", "gpt-4o")
        self.timeout = timeout or getattr(settings, "AI_REQUEST_TIMEOUT", 90)
        self.cache = cache
        self._transport = transport
        self.calls_made = 0

        self.completions_endpoint = f"{self.base_url}/chat/completions"

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_prompts(
        self,
        html: str,
        url: str = "",
        page_type_hint: Optional[str] = None,
        feedback: Optional[List[Dict[str, Any]]] = None,
    ) -> tuple:
        feedback_block = ""
        if feedback:
            feedback_block = FEEDBACK_BLOCK.format(feedback=json.dumps(feedback, indent=2))
        system_prompt = SYSTEM_PROMPT.format(feedback_block=feedback_block)

        user_lines = []
        if url:
            user_lines.append(f"Page URL: {url}")
        if page_type_hint:
            user_lines.append(f"First-pass page type: {page_type_hint}")
        user_lines.append(f"Input HTML: {(html or '')[:MAX_HTML_CHARS]}")
        return system_prompt, "\n".join(user_lines)

    async def infer(
        self,
        html: str,
        url: str = "",
        page_type_hint: Optional[str] = None,
        feedback: Optional[List[Dict[str, Any]]] = None,
    ) -> LayoutAnalysis:
        """
        Ask the model for the content regions of a sample page.

        Args:
            html: Cleaned HTML of the sample page
            url: Sample URL (context only)
            page_type_hint: Page type from first-pass extraction
            feedback: Failed selectors from earlier attempts

        Returns:
            Validated LayoutAnalysis

        Raises:
            LayoutAnalysisError: transport failure, non-200 status,
                undecodable output or wrong response shape
        """
        system_prompt, user_prompt = self.build_prompts(html, url, page_type_hint, feedback)
        key = prompt_hash(system_prompt, user_prompt, self.model)

        if self.cache is not None:
            cached = await self.cache.aget(key)
            if cached is not None:
                logger.debug(f"Layout analysis cache hit {key[:8]} for {url}")
                analysis = LayoutAnalysis.from_payload(cached)
                analysis.from_cache = True
                return analysis

        text = await self._complete(system_prompt, user_prompt, url)
        payload = extract_json(text)
        analysis = LayoutAnalysis.from_payload(payload)

        if self.cache is not None:
            await self.cache.aset(key, payload, self.model)

        logger.info(
            f"Layout analysis for {url}: {analysis.page_type} "
            f"({len(analysis.content)} regions, confidence {analysis.confidence:.2f})"
        )
        return analysis

    async def _complete(self, system_prompt: str, user_prompt: str, url: str) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }

        self.calls_made += 1
        logger.debug(f"Calling layout model {self.model} for {url} (prompt {len(user_prompt)} chars)")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.completions_endpoint,
                    json=body,
                    headers=self._get_headers(),
                )
        except httpx.TimeoutException as e:
            logger.error(f"Layout model timeout: {e}")
            raise LayoutAnalysisError(f"Request timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"Layout model connection error: {e}")
            raise LayoutAnalysisError(f"Connection error: {e}") from e

        if response.status_code != 200:
            error_msg = f"API returned status {response.status_code}: {response.text[:200]}"
            logger.warning(error_msg)
            raise LayoutAnalysisError(error_msg)

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LayoutAnalysisError(f"Unexpected completion payload: {e}") from e


def get_layout_client(cache: Optional[PromptCache] = None) -> LayoutAnalysisClient:
    """
    Factory function to get a layout analysis client configured from settings.

    Returns:
        LayoutAnalysisClient using the database-backed response cache
    """
    return LayoutAnalysisClient(cache=cache if cache is not None else PromptCache())
