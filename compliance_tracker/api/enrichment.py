"""Enrichment API: legal research and business impact for requirements."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select

from ..core import SessionDep, SettingsDep
from ..models import RegulatoryRequirement
from ..schemas import (
    BusinessImpactResponse,
    EnrichedRequirementResponse,
    EnrichmentRequest,
    EnrichmentResponse,
)
from ..services.enrichment import (
    EnrichmentOptions,
    EnrichmentOrchestrator,
    EnrichmentSource,
    RequirementInput,
)
from ..services.impact_analyzer import BusinessImpactAnalyzer
from ..services.legal_search import LegalSearchClient, TavilySearchClient
from ..services.llm_client import AzureOpenAIClient


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/enrichment", tags=["enrichment"])


def get_search_client(settings: SettingsDep) -> LegalSearchClient:
    return TavilySearchClient.from_settings(settings)


def get_impact_analyzer(settings: SettingsDep) -> BusinessImpactAnalyzer:
    return BusinessImpactAnalyzer(
        AzureOpenAIClient.from_settings(settings),
        max_tokens=settings.llm_max_tokens,
    )


SearchClientDep = Annotated[LegalSearchClient, Depends(get_search_client)]
ImpactAnalyzerDep = Annotated[BusinessImpactAnalyzer, Depends(get_impact_analyzer)]


@router.post("", response_model=EnrichmentResponse)
async def enrich_requirements(
    request: EnrichmentRequest,
    session: SessionDep,
    settings: SettingsDep,
    search_client: SearchClientDep,
    analyzer: ImpactAnalyzerDep,
):
    """
    Annotate requirements with the governing legal section, penalty clause,
    accrued penalty and business impact.

    Always returns one result per requirement. Results that could not be
    researched this time carry fallback text and ``source="fallback"``.
    """
    inputs: list[RequirementInput] = []

    if request.requirement_ids:
        result = await session.execute(
            select(RegulatoryRequirement).where(
                RegulatoryRequirement.id.in_(request.requirement_ids)
            )
        )
        stored = {req.id: req for req in result.scalars().all()}
        missing = [str(i) for i in request.requirement_ids if i not in stored]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Requirements not found: {', '.join(missing[:10])}",
            )
        inputs.extend(RequirementInput.from_model(stored[i]) for i in request.requirement_ids)

    inputs.extend(
        RequirementInput(**payload.model_dump()) for payload in request.requirements
    )

    options = EnrichmentOptions(
        max_searches=(
            request.max_searches
            if request.max_searches is not None
            else settings.enrichment_max_searches
        ),
        concurrency=settings.enrichment_concurrency,
        cache_ttl_days=settings.enrichment_cache_ttl_days,
    )

    orchestrator = EnrichmentOrchestrator(session, search_client, analyzer)
    enriched = await orchestrator.enrich(inputs, options)

    counts = {source: 0 for source in EnrichmentSource}
    results = []
    for item in enriched:
        counts[item.source] += 1
        results.append(EnrichedRequirementResponse(
            requirement_id=item.requirement_id,
            legal_section=item.legal_section,
            penalty_provision=item.penalty_provision,
            exact_penalty=item.exact_penalty,
            business_impact=BusinessImpactResponse(**item.business_impact.to_dict()),
            source=item.source.value,
            sources=item.sources,
        ))

    return EnrichmentResponse(
        results=results,
        cached=counts[EnrichmentSource.CACHE],
        fresh=counts[EnrichmentSource.FRESH],
        fallback=counts[EnrichmentSource.FALLBACK],
    )
