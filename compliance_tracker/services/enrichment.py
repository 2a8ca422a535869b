"""
Enrichment Orchestrator: legal research and business impact per requirement.

For a list of requirements this service:
1. De-duplicates them into requirement types (cache keys)
2. Serves fresh types from legal_research_cache
3. Researches the highest-risk misses with a bounded pool of search calls
4. Asks the LLM once for the business impact of every researched type
5. Upserts each fully researched type into the cache

It always returns exactly one result per input, in input order. Anything
that could not be researched gets fallback annotations instead of an error.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import upsert_statement
from ..models import LegalResearchCache, RegulatoryRequirement, RequirementStatus
from .impact_analyzer import (
    FALLBACK_IMPACT,
    BatchImpactItem,
    BusinessImpact,
    BusinessImpactAnalyzer,
)
from .legal_search import (
    NOT_AVAILABLE,
    LegalInfo,
    LegalSearchClient,
    SearchServiceError,
    build_search_query,
    extract_legal_info,
)
from .penalty import calculate_days_delayed, calculate_exact_penalty


logger = logging.getLogger(__name__)


JURISDICTION = "IN"
REFER_TO_ACT = "Refer to Act/Rules"

CATEGORY_WEIGHTS = {
    "RoC": 1.2,
    "MCA": 1.2,
    "GST": 1.1,
    "Income Tax": 1.1,
    "Labour Law": 1.05,
}
CRITICAL_MULTIPLIER = 1.5


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class EnrichmentOptions:
    max_searches: int = 10
    concurrency: int = 3
    cache_ttl_days: int = 60

    def __post_init__(self):
        self.max_searches = max(0, self.max_searches)
        self.concurrency = max(1, self.concurrency)
        self.cache_ttl_days = max(1, self.cache_ttl_days)


@dataclass
class RequirementInput:
    """The fields of a requirement the enrichment needs."""

    id: str
    category: str
    requirement: str
    status: str
    due_date: date | None = None
    penalty: str | None = None
    is_critical: bool = False
    template_id: str | None = None

    def __post_init__(self):
        if self.template_id is not None:
            self.template_id = str(self.template_id)

    @classmethod
    def from_model(cls, req: RegulatoryRequirement) -> "RequirementInput":
        status = req.status.value if isinstance(req.status, RequirementStatus) else str(req.status)
        return cls(
            id=str(req.id),
            category=req.category,
            requirement=req.requirement,
            status=status,
            due_date=req.due_date,
            penalty=req.penalty,
            is_critical=bool(req.is_critical),
            template_id=str(req.template_id) if req.template_id else None,
        )


class EnrichmentSource(str, Enum):
    CACHE = "cache"
    FRESH = "fresh"
    FALLBACK = "fallback"


@dataclass
class EnrichedRequirement:
    requirement_id: str
    legal_section: str
    penalty_provision: str
    exact_penalty: str
    business_impact: BusinessImpact
    source: EnrichmentSource
    sources: list[str] = field(default_factory=list)


@dataclass
class _Research:
    """Outcome of one successful search."""

    cache_key: str
    query: str
    info: LegalInfo
    sources: list[str]
    raw: dict[str, Any] | None


# =============================================================================
# KEYS & PRIORITY
# =============================================================================


_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^\w\s\-/]")


def normalize_key_part(value: str | None) -> str:
    """Lower-case, collapse whitespace, drop punctuation other than ``-`` and ``/``."""
    value = _WHITESPACE_RE.sub(" ", (value or "").lower())
    return _DISALLOWED_RE.sub("", value).strip()


def build_cache_key(req: RequirementInput) -> str:
    """Requirements from the same template share research; others match on text."""
    if req.template_id:
        return f"template:{req.template_id}"
    return f"text:{normalize_key_part(req.category)}|{normalize_key_part(req.requirement)}"


def priority_score(items: list[RequirementInput], today: date | None = None) -> float:
    """Risk score of a requirement type: worst delay x category weight x criticality."""
    max_delay = 0
    critical = False
    for item in items:
        critical = critical or item.is_critical
        delay = calculate_days_delayed(item.due_date, item.status, today)
        if delay and delay > max_delay:
            max_delay = delay

    weight = CATEGORY_WEIGHTS.get(items[0].category, 1.0) if items else 1.0
    return (max_delay or 1) * weight * (CRITICAL_MULTIPLIER if critical else 1.0)


def _template_uuid(template_id: str | None) -> UUID | None:
    """Template ids from clients are free text; only real UUIDs are stored."""
    if not template_id:
        return None
    try:
        return UUID(template_id)
    except ValueError:
        logger.warning(f"Ignoring non-UUID template id {template_id!r} for cache row")
        return None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ENRICHMENT ORCHESTRATOR
# =============================================================================


class EnrichmentOrchestrator:
    """Coordinates cache, search and LLM for a batch of requirements."""

    def __init__(
        self,
        session: AsyncSession,
        search_client: LegalSearchClient,
        impact_analyzer: BusinessImpactAnalyzer,
    ):
        self._session = session
        self._search = search_client
        self._analyzer = impact_analyzer

    async def enrich(
        self,
        requirements: list[RequirementInput],
        options: EnrichmentOptions | None = None,
        today: date | None = None,
    ) -> list[EnrichedRequirement]:
        options = options or EnrichmentOptions()
        today = today or datetime.now(timezone.utc).date()
        if not requirements:
            return []

        groups: dict[str, list[RequirementInput]] = {}
        for req in requirements:
            groups.setdefault(build_cache_key(req), []).append(req)

        now = datetime.now(timezone.utc)
        cached = await self._load_cache(list(groups), now)

        misses = [key for key in groups if key not in cached]
        misses.sort(key=lambda k: priority_score(groups[k], today), reverse=True)
        to_research = misses[:options.max_searches]
        if len(misses) > len(to_research):
            logger.info(
                f"Search cap reached: researching {len(to_research)} of {len(misses)} "
                f"uncached requirement types"
            )

        research = await self._research_all(to_research, groups, options.concurrency)

        impacts = await self._analyzer.analyze_batch([
            self._impact_item(r, groups[r.cache_key]) for r in research.values()
        ])

        for key, outcome in research.items():
            if key in impacts:
                await self._store(outcome, groups[key][0], impacts[key], now, options.cache_ttl_days)

        results = [
            self._build_result(req, key, cached, research, impacts, today)
            for req, key in ((req, build_cache_key(req)) for req in requirements)
        ]

        logger.info(
            f"Enriched {len(results)} requirements ({len(groups)} types): "
            f"{len(cached)} cached, {len(research)} researched, {len(impacts)} analysed"
        )
        return results

    # =========================================================================
    # CACHE
    # =========================================================================

    async def _load_cache(self, keys: list[str], now: datetime) -> dict[str, LegalResearchCache]:
        """Fresh cache rows by key. Expired rows count as misses."""
        result = await self._session.execute(
            select(LegalResearchCache).where(LegalResearchCache.cache_key.in_(keys))
        )
        return {
            row.cache_key: row
            for row in result.scalars().all()
            if _as_utc(row.expires_at) > now
        }

    async def _store(
        self,
        outcome: _Research,
        sample: RequirementInput,
        impact: BusinessImpact,
        now: datetime,
        ttl_days: int,
    ) -> None:
        values = {
            "cache_key": outcome.cache_key,
            "template_id": _template_uuid(sample.template_id),
            "query": outcome.query,
            "jurisdiction": JURISDICTION,
            "legal_section": outcome.info.legal_section,
            "penalty_provision": outcome.info.penalty_provision,
            "sources": outcome.sources,
            "business_impact": impact.to_dict(),
            "answer_json": outcome.raw,
            "expires_at": now + timedelta(days=ttl_days),
            "updated_at": now,
        }
        try:
            async with self._session.begin_nested():
                await self._session.execute(
                    upsert_statement(self._session, LegalResearchCache, values, ["cache_key"])
                )
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Failed to cache research for {outcome.cache_key}: {e}")

    # =========================================================================
    # RESEARCH
    # =========================================================================

    async def _research_all(
        self,
        keys: list[str],
        groups: dict[str, list[RequirementInput]],
        concurrency: int,
    ) -> dict[str, _Research]:
        semaphore = asyncio.Semaphore(concurrency)

        async def research(key: str) -> _Research | None:
            async with semaphore:
                return await self._research_one(key, groups[key][0])

        outcomes = await asyncio.gather(*(research(key) for key in keys))
        return {o.cache_key: o for o in outcomes if o is not None}

    async def _research_one(self, key: str, sample: RequirementInput) -> _Research | None:
        query = build_search_query(sample.category, sample.requirement)
        try:
            response = await self._search.search(query, "advanced")
            info = extract_legal_info(response)
        except SearchServiceError as e:
            logger.error(f"Legal search failed for {key}: {e}")
            return None
        except Exception as e:
            logger.exception(f"Unexpected error researching {key}: {e}")
            return None

        return _Research(
            cache_key=key,
            query=query,
            info=info,
            sources=response.source_urls,
            raw=response.raw,
        )

    def _impact_item(self, outcome: _Research, items: list[RequirementInput]) -> BatchImpactItem:
        legal_section = outcome.info.legal_section
        if legal_section == NOT_AVAILABLE:
            legal_section = REFER_TO_ACT

        penalty = outcome.info.penalty_provision
        if penalty == NOT_AVAILABLE:
            penalty = next((i.penalty for i in items if i.penalty), REFER_TO_ACT)

        return BatchImpactItem(
            key=outcome.cache_key,
            category=items[0].category,
            requirement=items[0].requirement,
            legal_section=legal_section,
            penalty_provision=penalty,
        )

    # =========================================================================
    # OUTPUT
    # =========================================================================

    def _build_result(
        self,
        req: RequirementInput,
        key: str,
        cached: dict[str, LegalResearchCache],
        research: dict[str, _Research],
        impacts: dict[str, BusinessImpact],
        today: date,
    ) -> EnrichedRequirement:
        exact_penalty = calculate_exact_penalty(
            req.penalty, calculate_days_delayed(req.due_date, req.status, today)
        )

        if key in cached:
            row = cached[key]
            return EnrichedRequirement(
                requirement_id=req.id,
                legal_section=row.legal_section or NOT_AVAILABLE,
                penalty_provision=self._penalty_text(row.penalty_provision, req),
                exact_penalty=exact_penalty,
                business_impact=BusinessImpact.from_dict(row.business_impact),
                source=EnrichmentSource.CACHE,
                sources=list(row.sources or []),
            )

        outcome = research.get(key)
        if outcome is not None:
            impact = impacts.get(key)
            return EnrichedRequirement(
                requirement_id=req.id,
                legal_section=outcome.info.legal_section,
                penalty_provision=self._penalty_text(outcome.info.penalty_provision, req),
                exact_penalty=exact_penalty,
                business_impact=impact or FALLBACK_IMPACT,
                source=EnrichmentSource.FRESH if impact else EnrichmentSource.FALLBACK,
                sources=outcome.sources,
            )

        return EnrichedRequirement(
            requirement_id=req.id,
            legal_section=NOT_AVAILABLE,
            penalty_provision=req.penalty or NOT_AVAILABLE,
            exact_penalty=exact_penalty,
            business_impact=FALLBACK_IMPACT,
            source=EnrichmentSource.FALLBACK,
        )

    def _penalty_text(self, provision: str | None, req: RequirementInput) -> str:
        if provision and provision != NOT_AVAILABLE:
            return provision
        return req.penalty or NOT_AVAILABLE
