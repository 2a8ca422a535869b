"""
Tests for the Enrichment Orchestrator.

These tests verify:
1. OUTPUT SHAPE: One result per input, in input order, whatever fails
2. CACHE: A researched type is served from cache on the next run
3. LIMITS: The search cap and de-duplication bound external calls
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compliance_tracker.models import LegalResearchCache, RegulatoryRequirement, RequirementStatus
from compliance_tracker.services.enrichment import (
    EnrichmentOptions,
    EnrichmentOrchestrator,
    EnrichmentSource,
    RequirementInput,
    build_cache_key,
    normalize_key_part,
    priority_score,
)
from compliance_tracker.services.impact_analyzer import BusinessImpactAnalyzer, FALLBACK_IMPACT
from compliance_tracker.services.legal_search import NOT_AVAILABLE, TavilySearchClient, build_search_query

from conftest import FakeChatClient, FakeSearchClient


TODAY = date(2026, 3, 16)


def _req(
    name: str = "GSTR-3B",
    category: str = "GST",
    due_days_ago: int | None = 10,
    status: str = "overdue",
    penalty: str | None = "₹50/day, max ₹10,000",
    template_id: str | None = None,
    is_critical: bool = False,
) -> RequirementInput:
    return RequirementInput(
        id=str(uuid4()),
        category=category,
        requirement=name,
        status=status,
        due_date=TODAY - timedelta(days=due_days_ago) if due_days_ago is not None else None,
        penalty=penalty,
        is_critical=is_critical,
        template_id=template_id,
    )


def _orchestrator(session, search: FakeSearchClient, chat: FakeChatClient) -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(session, search, BusinessImpactAnalyzer(chat))


# =============================================================================
# TEST: KEYS & PRIORITY
# =============================================================================


class TestCacheKeys:
    def test_text_key_is_normalized(self):
        a = _req(name="  GSTR-3B  Monthly Return! ")
        b = _req(name="gstr-3b monthly return")
        assert build_cache_key(a) == build_cache_key(b)

    def test_template_key_wins_over_text(self):
        template_id = str(uuid4())
        assert build_cache_key(_req(template_id=template_id)) == f"template:{template_id}"

    def test_normalize_key_part_keeps_slashes_and_dashes(self):
        assert normalize_key_part("Form DIR-3 / KYC.") == "form dir-3 / kyc"

    def test_critical_and_category_raise_priority(self):
        plain = priority_score([_req(category="Others", due_days_ago=10)], TODAY)
        roc = priority_score([_req(category="RoC", due_days_ago=10)], TODAY)
        critical = priority_score([_req(category="RoC", due_days_ago=10, is_critical=True)], TODAY)
        assert plain == 10
        assert roc == 12
        assert critical == 18

    def test_not_delayed_scores_as_one_day(self):
        assert priority_score([_req(category="Others", status="upcoming")], TODAY) == 1


class TestRequirementInput:
    def test_from_model_reads_enum_status_and_template(self):
        template_id = uuid4()
        model = RegulatoryRequirement(
            id=uuid4(),
            company_id=uuid4(),
            category="GST",
            requirement="GSTR-3B",
            status=RequirementStatus.OVERDUE,
            due_date=TODAY,
            is_critical=True,
            template_id=template_id,
        )

        req = RequirementInput.from_model(model)

        assert req.status == "overdue"
        assert req.template_id == str(template_id)
        assert req.is_critical is True

    def test_uuid_template_id_is_kept_as_text(self):
        template_id = uuid4()
        req = RequirementInput(
            id="r1", category="GST", requirement="GSTR-1", status="pending", template_id=template_id
        )
        assert build_cache_key(req) == f"template:{template_id}"
        assert isinstance(req.template_id, str)


# =============================================================================
# TEST: ORCHESTRATION
# =============================================================================


class TestEnrich:
    """Full runs with fake search and LLM."""

    async def test_fresh_then_cached(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        """A researched type is cached; the second run makes no external calls."""
        orchestrator = _orchestrator(session, search_client, chat_client)
        requirements = [_req()]

        first = await orchestrator.enrich(requirements, today=TODAY)
        second = await orchestrator.enrich(requirements, today=TODAY)

        assert first[0].source == EnrichmentSource.FRESH
        assert second[0].source == EnrichmentSource.CACHE
        assert len(search_client.queries) == 1
        assert chat_client.calls == 1

        assert second[0].legal_section == first[0].legal_section
        assert second[0].business_impact == first[0].business_impact
        assert second[0].sources == ["https://example.gov.in/late-fee"]

    async def test_result_fields(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        results = await _orchestrator(session, search_client, chat_client).enrich([_req()], today=TODAY)

        result = results[0]
        assert result.legal_section.startswith("Section 47")
        assert "₹50/day" in result.penalty_provision
        assert result.exact_penalty == "₹500"
        assert result.business_impact.financial.startswith("Late fees accrue")
        assert search_client.queries == ["GST Act 2017 GSTR-3B penalty late filing section"]

    async def test_every_external_call_failing_still_returns_one_per_input(
        self,
        session: AsyncSession,
    ):
        search = FakeSearchClient(fail=True)
        chat = FakeChatClient(fail=True)
        requirements = [_req("GSTR-1"), _req("GSTR-3B"), _req("TDS Return", category="Income Tax")]

        results = await _orchestrator(session, search, chat).enrich(requirements, today=TODAY)

        assert [r.requirement_id for r in results] == [r.id for r in requirements]
        assert all(r.source == EnrichmentSource.FALLBACK for r in results)
        assert all(r.business_impact == FALLBACK_IMPACT for r in results)
        assert results[0].legal_section == NOT_AVAILABLE
        assert results[0].penalty_provision == "₹50/day, max ₹10,000"

        cached = (await session.execute(select(LegalResearchCache))).scalars().all()
        assert cached == []

    async def test_llm_failure_keeps_legal_info_but_is_not_cached(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
    ):
        chat = FakeChatClient(fail=True)
        orchestrator = _orchestrator(session, search_client, chat)

        first = await orchestrator.enrich([_req()], today=TODAY)
        assert first[0].source == EnrichmentSource.FALLBACK
        assert first[0].legal_section.startswith("Section 47")
        assert first[0].business_impact == FALLBACK_IMPACT

        # Nothing cached, so the next run researches again
        await orchestrator.enrich([_req()], today=TODAY)
        assert len(search_client.queries) == 2

    async def test_search_cap_falls_back_for_the_rest(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        """With a cap of 2, only the two riskiest types are researched."""
        requirements = [
            _req("Low Risk", category="Others", due_days_ago=1),
            _req("Critical RoC", category="RoC", due_days_ago=30, is_critical=True),
            _req("Mid GST", category="GST", due_days_ago=20),
        ]

        results = await _orchestrator(session, search_client, chat_client).enrich(
            requirements,
            EnrichmentOptions(max_searches=2),
            today=TODAY,
        )

        assert len(search_client.queries) == 2
        assert [r.source for r in results] == [
            EnrichmentSource.FALLBACK,
            EnrichmentSource.FRESH,
            EnrichmentSource.FRESH,
        ]

    async def test_duplicates_are_researched_once(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        template_id = str(uuid4())
        requirements = [
            _req("GSTR-3B", template_id=template_id),
            _req("GSTR-3B (March)", template_id=template_id),
            _req("gstr-3b"),
            _req("GSTR-3B"),
        ]

        results = await _orchestrator(session, search_client, chat_client).enrich(requirements, today=TODAY)

        assert len(results) == 4
        assert len(search_client.queries) == 2
        assert chat_client.calls == 1
        assert results[0].legal_section == results[1].legal_section

    async def test_expired_cache_entry_is_refreshed(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        orchestrator = _orchestrator(session, search_client, chat_client)
        requirement = _req()
        await orchestrator.enrich([requirement], today=TODAY)

        await session.execute(
            update(LegalResearchCache).values(
                expires_at=datetime.now(timezone.utc) - timedelta(days=1)
            )
        )

        results = await orchestrator.enrich([requirement], today=TODAY)

        assert results[0].source == EnrichmentSource.FRESH
        assert len(search_client.queries) == 2
        rows = (await session.execute(select(LegalResearchCache))).scalars().all()
        assert len(rows) == 1

    async def test_partial_llm_reply_caches_only_answered_keys(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
    ):
        skipped = _req("TDS Return", category="Income Tax")
        answered = _req("GSTR-3B")
        chat = FakeChatClient(skip_keys={build_cache_key(skipped)})

        results = await _orchestrator(session, search_client, chat).enrich([answered, skipped], today=TODAY)

        assert [r.source for r in results] == [EnrichmentSource.FRESH, EnrichmentSource.FALLBACK]
        keys = (await session.execute(select(LegalResearchCache.cache_key))).scalars().all()
        assert keys == [build_cache_key(answered)]

    async def test_empty_input(self, session: AsyncSession, search_client, chat_client):
        assert await _orchestrator(session, search_client, chat_client).enrich([]) == []
        assert search_client.queries == []
        assert chat_client.calls == 0


class RaisingSearchClient(FakeSearchClient):
    """Blows up with an unexpected error for selected queries."""

    def __init__(self, broken_queries: set[str]):
        super().__init__()
        self.broken_queries = broken_queries

    async def search(self, query: str, depth: str = "advanced"):
        if query in self.broken_queries:
            self.queries.append(query)
            raise RuntimeError("connection pool exhausted")
        return await super().search(query, depth)


class TestEnrichRobustness:
    """Bad data for one type never costs the rest of the batch."""

    async def test_non_uuid_template_id_is_enriched_and_cached(
        self,
        session: AsyncSession,
        search_client: FakeSearchClient,
        chat_client: FakeChatClient,
    ):
        requirements = [_req(template_id="gst-3b-monthly"), _req("TDS Return", category="Income Tax")]

        results = await _orchestrator(session, search_client, chat_client).enrich(requirements, today=TODAY)

        assert [r.source for r in results] == [EnrichmentSource.FRESH, EnrichmentSource.FRESH]
        row = (
            await session.execute(
                select(LegalResearchCache).where(LegalResearchCache.cache_key == "template:gst-3b-monthly")
            )
        ).scalar_one()
        assert row.template_id is None

    async def test_malformed_search_scores_do_not_abort_the_batch(
        self,
        session: AsyncSession,
        chat_client: FakeChatClient,
    ):
        payload = {
            "answer": "Section 47 of the CGST Act applies.",
            "results": [{"title": "t", "url": "https://a.example", "content": "c", "score": "n/a"}],
        }

        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
        ) as client:
            search = TavilySearchClient("tvly", client=client)
            results = await _orchestrator(session, search, chat_client).enrich(
                [_req("GSTR-1"), _req("TDS Return", category="Income Tax")],
                today=TODAY,
            )

        assert len(results) == 2
        assert all(r.source == EnrichmentSource.FRESH for r in results)
        assert results[0].sources == ["https://a.example"]

    async def test_unexpected_search_error_falls_back_for_that_type_only(
        self,
        session: AsyncSession,
        chat_client: FakeChatClient,
    ):
        broken = _req("TDS Return", category="Income Tax")
        search = RaisingSearchClient({build_search_query(broken.category, broken.requirement)})

        results = await _orchestrator(session, search, chat_client).enrich(
            [_req("GSTR-3B"), broken],
            today=TODAY,
        )

        assert [r.source for r in results] == [EnrichmentSource.FRESH, EnrichmentSource.FALLBACK]
        assert results[1].requirement_id == broken.id
        assert len(search.queries) == 2
