"""
Business impact analysis for non-compliance.

One LLM call covers every requirement type in a run. The JSON object is
located even when wrapped in prose or a code fence, and each missing or
malformed field gets fixed fallback text.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any

from .llm_client import ChatCompletionClient, LLMServiceError


logger = logging.getLogger(__name__)


@dataclass
class BusinessImpact:
    financial: str
    reputation: str
    operations: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "BusinessImpact":
        """Build from stored JSON, filling gaps with fallback text."""
        data = data if isinstance(data, dict) else {}
        return cls(**{
            name: _clean(data.get(name)) or getattr(FALLBACK_IMPACT, name)
            for name in IMPACT_FIELDS
        })


IMPACT_FIELDS = ("financial", "reputation", "operations")

FALLBACK_IMPACT = BusinessImpact(
    financial="Business impact analysis unavailable. Direct financial penalty may apply.",
    reputation="Non-compliance may affect company reputation and credit rating.",
    operations="May cause operational delays and additional compliance burden.",
)


@dataclass
class BatchImpactItem:
    """One requirement type to analyse."""

    key: str
    category: str
    requirement: str
    legal_section: str
    penalty_provision: str


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class BusinessImpactAnalyzer:
    """Asks the LLM for the financial, reputational and operational impact."""

    SYSTEM_PROMPT = (
        "You are a compliance expert analyzing business impact of regulatory "
        "non-compliance in India. Provide concise, specific, and actionable insights."
    )

    def __init__(self, client: ChatCompletionClient, max_tokens: int | None = None):
        self._client = client
        self._max_tokens = max_tokens

    def build_prompt(self, items: list[BatchImpactItem]) -> str:
        lines = [
            "Analyze the business impact of non-compliance for each requirement below.",
            "",
            "For every item cover three areas, each in 2-3 sentences specific to the Indian regulatory context:",
            "1) financial: direct penalties, interest, additional costs, tax implications",
            "2) reputation: credit rating impact, business relationships, market perception, investor confidence",
            "3) operations: delays, restrictions, compliance burden, business continuity",
            "",
            "Respond with a single JSON object and nothing else. Use each item's KEY exactly as given:",
            '{"<KEY>": {"financial": "...", "reputation": "...", "operations": "..."}}',
            "",
            "ITEMS:",
        ]
        for item in items:
            lines.append(
                f"- KEY: {item.key} | Category: {item.category} | Requirement: {item.requirement} "
                f"| Legal section: {item.legal_section} | Penalty: {item.penalty_provision}"
            )
        return "\n".join(lines)

    async def analyze_batch(self, items: list[BatchImpactItem]) -> dict[str, BusinessImpact]:
        """
        Analyse all items with a single LLM call.

        Returns impacts only for keys the model answered; an unavailable or
        failing LLM yields an empty mapping.
        """
        if not items:
            return {}

        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(items)},
        ]

        try:
            reply = await self._client.complete(messages, max_tokens=self._max_tokens)
        except LLMServiceError as e:
            logger.error(f"Business impact analysis failed: {e}")
            return {}

        return parse_batch_impact(reply, [item.key for item in items])


def _extract_json_object(text: str) -> Any:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in reply")
    return json.loads(text[start:end + 1])


def parse_batch_impact(text: str, expected_keys: list[str]) -> dict[str, BusinessImpact]:
    """
    Parse the model's reply into impacts keyed by cache key.

    Unknown keys are ignored. Keys the model skipped are left out so the
    caller can fall back for them.
    """
    try:
        data = _extract_json_object(text)
    except (json.JSONDecodeError, ValueError) as e:
        logger.error(f"Failed to parse business impact reply: {e}")
        logger.debug(f"Raw reply: {text[:500]}")
        return {}

    if not isinstance(data, dict):
        logger.error("Business impact reply is not a JSON object")
        return {}

    impacts = {}
    for key in expected_keys:
        entry = data.get(key)
        if not isinstance(entry, dict):
            continue
        if not any(_clean(entry.get(name)) for name in IMPACT_FIELDS):
            continue
        impacts[key] = BusinessImpact.from_dict(entry)

    missing = len(expected_keys) - len(impacts)
    if missing:
        logger.warning(f"Business impact reply missing {missing} of {len(expected_keys)} items")
    return impacts
