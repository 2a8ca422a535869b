"""Business logic services for the compliance tracker."""

from .digest_composer import DigestComposer, FlushResult
from .email_queue import (
    Recipient,
    StatusChange,
    enqueue_status_change,
    enqueue_status_change_for_company,
    enqueue_status_change_for_recipients,
)
from .email_sender import EmailDeliveryError, EmailSender, ResendEmailSender
from .enrichment import (
    EnrichedRequirement,
    EnrichmentOptions,
    EnrichmentOrchestrator,
    EnrichmentSource,
    RequirementInput,
    build_cache_key,
)
from .impact_analyzer import BusinessImpact, BusinessImpactAnalyzer
from .kyc_client import KycClient, KycError
from .legal_search import LegalSearchClient, SearchServiceError, TavilySearchClient
from .llm_client import AzureOpenAIClient, ChatCompletionClient, LLMServiceError
from .penalty import calculate_days_delayed, calculate_exact_penalty
from .preferences import UNSUBSCRIBE_LABELS, apply_unsubscribe
from .reminder_scanner import ReminderRunResult, ReminderScanner

__all__ = [
    # Event queue & digests
    "Recipient",
    "StatusChange",
    "enqueue_status_change",
    "enqueue_status_change_for_company",
    "enqueue_status_change_for_recipients",
    "DigestComposer",
    "FlushResult",
    "ReminderScanner",
    "ReminderRunResult",
    # Email delivery
    "EmailSender",
    "ResendEmailSender",
    "EmailDeliveryError",
    # Preferences
    "UNSUBSCRIBE_LABELS",
    "apply_unsubscribe",
    # Enrichment
    "EnrichmentOrchestrator",
    "EnrichmentOptions",
    "EnrichedRequirement",
    "EnrichmentSource",
    "RequirementInput",
    "build_cache_key",
    "BusinessImpact",
    "BusinessImpactAnalyzer",
    "LegalSearchClient",
    "TavilySearchClient",
    "SearchServiceError",
    "ChatCompletionClient",
    "AzureOpenAIClient",
    "LLMServiceError",
    "calculate_days_delayed",
    "calculate_exact_penalty",
    # KYC
    "KycClient",
    "KycError",
]
