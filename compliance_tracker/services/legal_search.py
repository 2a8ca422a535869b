"""
Legal research via the Tavily search API.

Builds category specific queries for Indian statutes and pulls the governing
section and penalty clause out of the search answer with regex heuristics.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core.config import Settings, get_settings


logger = logging.getLogger(__name__)

TAVILY_API_URL = "https://api.tavily.com/search"
NOT_AVAILABLE = "Information not available"


class SearchServiceError(Exception):
    """Raised when the search provider is unavailable or returns garbage."""


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    score: float = 0.0


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult] = field(default_factory=list)
    answer: str | None = None
    raw: dict[str, Any] | None = None

    @property
    def source_urls(self) -> list[str]:
        return [r.url for r in self.results if r.url][:5]


@dataclass
class LegalInfo:
    legal_section: str
    penalty_provision: str

    @property
    def found(self) -> bool:
        return self.legal_section != NOT_AVAILABLE or self.penalty_provision != NOT_AVAILABLE


# =============================================================================
# QUERY BUILDING
# =============================================================================


LEGAL_FRAMEWORKS = {
    "Income Tax": "Income Tax Act",
    "GST": "GST Act",
    "RoC": "Companies Act",
    "MCA": "Companies Act",
    "Payroll": "Labour Act",
    "Renewals": "Regulatory",
    "Others": "Regulatory",
}


def map_category_to_legal_framework(category: str) -> str:
    return LEGAL_FRAMEWORKS.get(category, "Regulatory")


def build_search_query(category: str, requirement: str) -> str:
    if category == "Income Tax":
        return f"Income Tax Act 1961 {requirement} penalty late filing section"
    if category == "GST":
        return f"GST Act 2017 {requirement} penalty late filing section"
    if category in ("RoC", "MCA"):
        return f"Companies Act 2013 {requirement} penalty MCA section"
    return f"{map_category_to_legal_framework(category)} {requirement} penalty section India"


# =============================================================================
# EXTRACTION
# =============================================================================


ANSWER_SECTION_RE = re.compile(r"Section\s+[\dA-Z]+(?:\s+of\s+[^.]+)?", re.IGNORECASE)
ANSWER_PENALTY_RE = re.compile(r"penalty[^.]*(?:₹|Rs\.?|INR)[^.]*", re.IGNORECASE)
CONTENT_SECTION_RE = re.compile(r"Section\s+[\dA-Z]+(?:\s+of\s+[^.\n]+)?", re.IGNORECASE)
CONTENT_PENALTY_RE = re.compile(r"penalty[^.\n]*(?:₹|Rs\.?|INR|rupees?)[^.\n]*", re.IGNORECASE)


def _score(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _first_match(pattern: re.Pattern, text: str) -> str | None:
    match = pattern.search(text)
    return match.group(0) if match else None


def extract_legal_info(response: SearchResponse | None) -> LegalInfo:
    """
    Pull the legal section and penalty clause out of a search response.

    The synthesized answer is tried first; if it mentions neither, the top
    result's content is used.
    """
    if response is None or not response.results:
        return LegalInfo(NOT_AVAILABLE, NOT_AVAILABLE)

    if response.answer:
        section = _first_match(ANSWER_SECTION_RE, response.answer)
        penalty = _first_match(ANSWER_PENALTY_RE, response.answer)
        if section or penalty:
            return LegalInfo(section or NOT_AVAILABLE, penalty or NOT_AVAILABLE)

    first = response.results[0]
    content = first.content or first.title or ""
    return LegalInfo(
        _first_match(CONTENT_SECTION_RE, content) or NOT_AVAILABLE,
        _first_match(CONTENT_PENALTY_RE, content) or NOT_AVAILABLE,
    )


# =============================================================================
# CLIENTS
# =============================================================================


class LegalSearchClient(ABC):
    """Abstract search provider."""

    @abstractmethod
    async def search(self, query: str, depth: str = "advanced") -> SearchResponse:
        """Run one search. Raises SearchServiceError on failure."""
        pass


class TavilySearchClient(LegalSearchClient):
    """Tavily REST client."""

    def __init__(
        self,
        api_key: str | None,
        timeout: float = 30.0,
        max_results: int = 5,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self._timeout = timeout
        self._max_results = max_results
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TavilySearchClient":
        settings = settings or get_settings()
        return cls(api_key=settings.tavily_api_key, timeout=settings.http_timeout_seconds)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str, depth: str = "advanced") -> SearchResponse:
        if not self.is_configured:
            raise SearchServiceError("Search service unavailable: TAVILY_API_KEY is not configured")

        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": depth,
            "include_answer": True,
            "include_images": False,
            "max_results": self._max_results,
        }

        try:
            if self._client is not None:
                response = await self._client.post(TAVILY_API_URL, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(TAVILY_API_URL, json=payload)
        except httpx.HTTPError as e:
            raise SearchServiceError(f"Tavily request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Tavily API error: {response.status_code} - {response.text[:200]}")
            raise SearchServiceError(f"Tavily API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise SearchServiceError("Tavily returned a non-JSON body") from e

        return self._parse_response(query, data)

    def _parse_response(self, query: str, data: Any) -> SearchResponse:
        if not isinstance(data, dict):
            raise SearchServiceError("Unexpected Tavily response shape")

        results = []
        for item in data.get("results") or []:
            if not isinstance(item, dict):
                continue
            results.append(SearchResult(
                title=str(item.get("title") or ""),
                url=str(item.get("url") or ""),
                content=str(item.get("content") or ""),
                score=_score(item.get("score")),
            ))

        answer = data.get("answer")
        return SearchResponse(
            query=data.get("query") or query,
            results=results,
            answer=answer if isinstance(answer, str) else None,
            raw=data,
        )
