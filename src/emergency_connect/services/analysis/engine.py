"""Ordered analyzer chain with quota guards and a guaranteed fallback."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

import httpx
from pydantic import ValidationError

from emergency_connect.core.settings import Settings, settings
from emergency_connect.schemas.analysis import AnalysisResult, ConversationMessage, UrgencyResult
from emergency_connect.services.counters import CounterStore, get_counter_store
from emergency_connect.services.quota import QuotaGuard

from .base import Analyzer
from .external import ExternalAnalyzerError, GeminiAnalyzer, OpenAIAnalyzer
from .rule_based import RuleBasedAnalyzer

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", AnalysisResult, UrgencyResult)

PROVIDER_ERRORS = (
    ExternalAnalyzerError,
    httpx.HTTPError,
    ValidationError,
    ValueError,
    KeyError,
)


@dataclass
class GuardedProvider:
    """An external analyzer paired with the quota it spends."""

    analyzer: Analyzer
    quota: QuotaGuard
    timeout: float = 15.0

    @property
    def name(self) -> str:
        return self.analyzer.name


class AnalysisEngine:
    """Tries each provider in order, then the rule-based analyzer.

    A provider is skipped when its quota is exhausted. Quota is spent before
    the call, so a call that times out still counts against the budget.
    """

    def __init__(
        self,
        providers: Sequence[GuardedProvider] = (),
        fallback: RuleBasedAnalyzer | None = None,
    ) -> None:
        self.providers = list(providers)
        self.fallback = fallback or RuleBasedAnalyzer()

    async def analyze(self, messages: Sequence[ConversationMessage]) -> AnalysisResult:
        """Summarize the conversation and score its scam risk."""
        if not messages:
            return self.fallback.analyze_text(messages)
        result = await self._first_success(messages, lambda a: a.analyze, "analysis")
        return result if result is not None else self.fallback.analyze_text(messages)

    async def assess_urgency(self, messages: Sequence[ConversationMessage]) -> UrgencyResult:
        """Classify the conversation as EMERGENCY, CAUTION or SAFE."""
        if not messages:
            return self.fallback.assess_urgency_text(messages)
        result = await self._first_success(messages, lambda a: a.assess_urgency, "urgency")
        return result if result is not None else self.fallback.assess_urgency_text(messages)

    async def _first_success(
        self,
        messages: Sequence[ConversationMessage],
        pick: Callable[[Analyzer], Callable[[Sequence[ConversationMessage]], Awaitable[ResultT]]],
        kind: str,
    ) -> ResultT | None:
        for provider in self.providers:
            if not provider.quota.allowed():
                logger.info("Skipping %s %s: quota exhausted", provider.name, kind)
                continue

            provider.quota.record()
            try:
                return await asyncio.wait_for(pick(provider.analyzer)(messages), provider.timeout)
            except TimeoutError:
                logger.warning(
                    "%s %s timed out after %.1fs", provider.name, kind, provider.timeout
                )
            except PROVIDER_ERRORS as e:
                logger.warning("%s %s failed: %s", provider.name, kind, e)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Unexpected error from %s %s", provider.name, kind, exc_info=True
                )

        if self.providers:
            logger.info("Falling back to rule-based %s", kind)
        return None


def build_analysis_engine(
    config: Settings,
    store: CounterStore | None = None,
    client: httpx.AsyncClient | None = None,
) -> AnalysisEngine:
    """Resolve the configured analyzer chain.

    Unknown names and providers without an API key are left out of the chain.
    """
    store = store or get_counter_store()
    providers: list[GuardedProvider] = []

    for name in config.analyzer_chain:
        analyzer: Analyzer
        if name == "gemini":
            if not config.gemini_api_key:
                logger.info("GEMINI_API_KEY not set; gemini analyzer disabled")
                continue
            analyzer = GeminiAnalyzer(
                config.gemini_api_key,
                model=config.gemini_model,
                base_url=config.gemini_base_url,
                client=client,
                timeout=config.analyzer_timeout_seconds,
            )
        elif name == "openai":
            if not config.openai_api_key:
                logger.info("OPENAI_API_KEY not set; openai analyzer disabled")
                continue
            analyzer = OpenAIAnalyzer(
                config.openai_api_key,
                model=config.openai_model,
                base_url=config.openai_base_url,
                client=client,
                timeout=config.analyzer_timeout_seconds,
            )
        else:
            logger.warning("Unknown analyzer %r in ANALYZER_CHAIN; ignoring", name)
            continue

        quota = QuotaGuard(
            store,
            name,
            per_minute=config.quota_per_minute,
            per_day=config.quota_per_day,
            timezone=config.quota_timezone,
        )
        providers.append(GuardedProvider(analyzer, quota, config.analyzer_timeout_seconds))

    logger.info(
        "Analyzer chain: %s",
        " -> ".join([p.name for p in providers] + [RuleBasedAnalyzer.name]),
    )
    return AnalysisEngine(providers)


_ENGINE: AnalysisEngine | None = None


def get_analysis_engine() -> AnalysisEngine:
    """Return the process-wide analysis engine."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = build_analysis_engine(settings)
    return _ENGINE
