"""Synopsis synthesis, validation and canonical embedding text."""

from anime_spine.enrich.canonical import build_canonical_text, merge_tags
from anime_spine.enrich.llm import HttpLLMClient, LLMCall, LLMConfig
from anime_spine.enrich.synthesizer import SynthesisResult, Synthesizer
from anime_spine.enrich.validation import ValidationRules, validate_synopsis

__all__ = [
    "build_canonical_text",
    "merge_tags",
    "HttpLLMClient",
    "LLMCall",
    "LLMConfig",
    "SynthesisResult",
    "Synthesizer",
    "ValidationRules",
    "validate_synopsis",
]
