"""
Shared pytest fixtures and configuration for anime-spine tests.

This module provides:
- Auto-marking of tests as ``unit`` / ``integration`` by location
- An in-memory state store per test
- Pipeline collaborators wired to in-process fakes (fetchers, LLM, embedder)

Builders and fakes themselves live in ``_support`` so test modules can
import them directly.
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Ensure the anime_spine package and the _support helpers are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from _support import FakeEmbedder, FakeLLM, fast_retry, no_sleep  # noqa: E402

from anime_spine.embed.batch import BatchEmbedder  # noqa: E402
from anime_spine.enrich.llm import LLMConfig  # noqa: E402
from anime_spine.enrich.synthesizer import Synthesizer  # noqa: E402
from anime_spine.enrich.validation import ValidationRules  # noqa: E402
from anime_spine.state.store import StateStore  # noqa: E402


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# State
# =============================================================================


@pytest.fixture
def store() -> Generator[StateStore, None, None]:
    """Fresh in-memory state store."""
    state = StateStore.open(":memory:")
    yield state
    state.close()


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path for an on-disk state store (parent directory not yet created)."""
    return tmp_path / "state" / "state.sqlite"


# =============================================================================
# Pipeline collaborators
# =============================================================================


@pytest.fixture
def retry():
    """Retry policy that never sleeps."""
    return fast_retry(max_retries=2)


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(provider="anthropic", model="test-model", api_key="sk-test", max_retries=2)


@pytest.fixture
def fake_llm() -> FakeLLM:
    """LLM returning a candidate that passes validation for 'Cowboy Bebop'."""
    from _support import good_synopsis

    return FakeLLM([good_synopsis("Cowboy Bebop")])


@pytest.fixture
def synthesizer(fake_llm: FakeLLM, llm_config: LLMConfig, retry) -> Synthesizer:
    """Synthesizer needing two usable sources (the shipped registry has two providers)."""
    return Synthesizer(
        llm_call=fake_llm,
        config=llm_config,
        min_sources=2,
        rules=ValidationRules(min_words=100, max_words=500, max_similarity=0.6),
        retry=retry,
    )


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder(dimensions=4)


@pytest.fixture
def embedder(fake_embedder: FakeEmbedder) -> BatchEmbedder:
    return BatchEmbedder(
        fake_embedder,
        batch_size=2,
        concurrency=2,
        retry=fast_retry(max_retries=1),
    )


@pytest.fixture
def sleepless():
    """A sleep replacement recording requested delays."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)
        no_sleep(seconds)

    _sleep.delays = delays
    return _sleep
