"""Synopsis synthesis.

Decision table for one entity:

    usable sources   outcome
    ──────────────   ─────────────────────────────────────────────────────
    0                insufficient, no synopsis
    < min_sources    insufficient, passthrough (longest source verbatim)
    ≥ min_sources    LLM under retry; first candidate passing validation
                     → complete; retries exhausted → failed + passthrough

A ``ConfigError`` (missing or rejected credential) is not an entity-level
outcome: it propagates so the run controller can fail the run.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from anime_spine.core.errors import AnimeSpineError, ConfigError
from anime_spine.core.logging import get_logger
from anime_spine.core.models import ProviderResponse, StageStatus
from anime_spine.enrich.llm import LLMCall, LLMConfig
from anime_spine.enrich.prompt import (
    SynthesisContext,
    build_synthesis_prompt,
    passthrough_synopsis,
    usable_synopses,
)
from anime_spine.enrich.validation import DEFAULT_RULES, ValidationRules, validate_synopsis
from anime_spine.execution.retry import RetryPolicy

logger = get_logger(__name__)

MIN_SOURCES_FOR_SYNTHESIS = 3


@dataclass
class SynthesisResult:
    status: StageStatus
    synopsis: str | None
    source_count: int
    error: str | None = None
    attempts: int = 0


@dataclass
class Synthesizer:
    """Synthesizes one synopsis per entity from provider texts.

    Attributes:
        llm_call: ``(prompt, config) -> text`` capability
        config: LLM configuration (also supplies ``max_retries``)
        min_sources: Usable sources required before calling the LLM
        rules: Candidate validation thresholds
        retry: Backoff template; ``max_retries`` is taken from ``config``
    """

    llm_call: LLMCall
    config: LLMConfig
    min_sources: int = MIN_SOURCES_FOR_SYNTHESIS
    rules: ValidationRules = DEFAULT_RULES
    retry: RetryPolicy | None = None

    def _policy(self) -> RetryPolicy:
        template = self.retry or RetryPolicy()
        return RetryPolicy(
            max_retries=self.config.max_retries,
            base_delay=template.base_delay,
            max_delay=template.max_delay,
            jitter=template.jitter,
            retry_if=template.retry_if,
            sleep=template.sleep,
        )

    def synthesize(
        self,
        responses: Sequence[ProviderResponse],
        *,
        title: str,
        type: str,
        episodes: int,
        year: int | None,
    ) -> SynthesisResult:
        synopses = usable_synopses([r.extracted.synopsis for r in responses])

        if not synopses:
            return SynthesisResult(StageStatus.INSUFFICIENT, None, 0)

        if len(synopses) < self.min_sources:
            return SynthesisResult(
                StageStatus.INSUFFICIENT, passthrough_synopsis(synopses), len(synopses)
            )

        prompt = build_synthesis_prompt(
            SynthesisContext(
                title=title,
                type=type,
                episodes=episodes,
                year=year,
                synopses=tuple(synopses),
            )
        )
        attempts = 0

        def attempt() -> str:
            nonlocal attempts
            attempts += 1
            generated = self.llm_call(prompt, self.config)
            return validate_synopsis(generated, synopses, title, self.rules)

        try:
            text = self._policy().call(attempt)
        except ConfigError:
            raise
        except AnimeSpineError as e:
            logger.info(
                "synthesis.fallback",
                title=title,
                attempts=attempts,
                reason=e.message,
            )
            return SynthesisResult(
                StageStatus.FAILED,
                passthrough_synopsis(synopses),
                len(synopses),
                error=e.message,
                attempts=attempts,
            )

        return SynthesisResult(StageStatus.COMPLETE, text, len(synopses), attempts=attempts)


__all__ = ["MIN_SOURCES_FOR_SYNTHESIS", "SynthesisResult", "Synthesizer"]
