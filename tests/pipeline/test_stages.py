"""
Tests for the fetch, synthesize and embed stage executors.

Every stage is driven through ``process()`` against an in-memory store and
in-process fakes.
"""

import pytest

from _support import (
    FakeEmbedder,
    FakeFetcher,
    FakeLLM,
    fast_retry,
    long_text,
    make_entry,
    make_registry,
    make_response,
)

from anime_spine.core.errors import (
    ConfigError,
    MissingConfigError,
    NotFoundError,
    RateLimitError,
    TimeoutError,
)
from anime_spine.core.models import StageStatus
from anime_spine.core.providers import ProviderName
from anime_spine.embed.batch import BatchEmbedder
from anime_spine.enrich.synthesizer import Synthesizer
from anime_spine.execution.rate_limit import TokenBucketLimiter
from anime_spine.execution.retry import RetryPolicy
from anime_spine.pipeline.stages import EmbedStage, FetchStage, PipelineContext, SynthesizeStage
from anime_spine.reconcile.planner import FetchTask
from anime_spine.sources.base import FetcherRegistry

BOTH = (ProviderName.ANILIST, ProviderName.KITSU)


def task(entry, providers=BOTH):
    return FetchTask(entry.identity, providers)


def context(store, entries, **kwargs):
    kwargs.setdefault("fetch_retry", fast_retry())
    return PipelineContext(store=store, entries={e.identity: e for e in entries}, **kwargs)


def seed_fetched(store, entry, *synopses):
    providers = list(ProviderName)
    responses = {
        providers[i]: make_response(providers[i], str(i), synopsis=text)
        for i, text in enumerate(synopses)
    }
    store.upsert(
        entry.identity,
        responses=responses,
        synopsis_count=len(synopses),
        fetch_status=StageStatus.COMPLETE,
    )


# =============================================================================
# FETCH
# =============================================================================


class TestFetchStage:
    def test_one_provider_timing_out_does_not_fail_entity(self, store):
        """Provider A times out on every attempt, provider B answers."""
        entry = make_entry()
        kitsu_response = make_response(ProviderName.KITSU, "1", synopsis=long_text("k"))
        anilist = FakeFetcher(ProviderName.ANILIST, {"1": TimeoutError("slow")})
        kitsu = FakeFetcher(ProviderName.KITSU, {"1": kitsu_response})
        ctx = context(store, [entry], registry=make_registry(anilist, kitsu))

        (result,) = FetchStage(ctx).process([task(entry)])

        assert result.status is StageStatus.COMPLETE
        assert "anilist" in result.error
        assert len(anilist.calls) == 3
        entity = store.get(entry.identity)
        assert entity.fetch_status is StageStatus.COMPLETE
        assert entity.available_responses == [kitsu_response]
        assert entity.responses[ProviderName.ANILIST] is None
        assert entity.synopsis_count == 1
        assert entity.last_error is None

    def test_misses_everywhere_is_insufficient(self, store):
        entry = make_entry()
        registry = make_registry(
            FakeFetcher(ProviderName.ANILIST, {"1": None}),
            FakeFetcher(ProviderName.KITSU, {"1": NotFoundError("gone")}),
        )
        (result,) = FetchStage(context(store, [entry], registry=registry)).process([task(entry)])

        assert result.status is StageStatus.INSUFFICIENT
        entity = store.get(entry.identity)
        assert entity.fetch_status is StageStatus.INSUFFICIENT
        assert "kitsu" in entity.last_error

    def test_not_found_is_not_retried(self, store):
        entry = make_entry(kitsu=None)
        anilist = FakeFetcher(ProviderName.ANILIST, {"1": NotFoundError("gone")})
        ctx = context(store, [entry], registry=make_registry(anilist))
        list(FetchStage(ctx).process([task(entry, (ProviderName.ANILIST,))]))
        assert len(anilist.calls) == 1

    def test_entry_missing_from_snapshot_fails(self, store):
        ghost = make_entry("Ghost", anilist="404")
        ctx = context(store, [], registry=make_registry())
        (result,) = FetchStage(ctx).process([task(ghost)])
        assert result.status is StageStatus.FAILED
        assert store.get(ghost.identity).fetch_status is StageStatus.FAILED

    def test_rate_limit_hint_and_limiter_per_attempt(self, store, sleepless):
        entry = make_entry(kitsu=None)
        response = make_response(ProviderName.ANILIST)
        anilist = FakeFetcher(ProviderName.ANILIST, {"1": [RateLimitError(retry_after=7.0), response]})
        limiter = TokenBucketLimiter(requests=10, per_seconds=3600)
        registry = FetcherRegistry()
        registry.register(anilist, limiter)
        retry = RetryPolicy(max_retries=2, jitter=0.0, sleep=sleepless)
        ctx = context(store, [entry], registry=registry, fetch_retry=retry)

        (result,) = FetchStage(ctx).process([task(entry, (ProviderName.ANILIST,))])

        assert result.status is StageStatus.COMPLETE
        assert sleepless.delays == [7.0]
        assert limiter.available_tokens == 8

    def test_state_written_before_each_result(self, store):
        a = make_entry("A", anilist="1", kitsu=None)
        b = make_entry("B", anilist="2", kitsu=None)
        anilist = FakeFetcher(
            ProviderName.ANILIST,
            {"1": make_response(ProviderName.ANILIST, "1"), "2": make_response(ProviderName.ANILIST, "2")},
        )
        ctx = context(store, [a, b], registry=make_registry(anilist))
        stream = FetchStage(ctx).process([task(a, (ProviderName.ANILIST,)), task(b, (ProviderName.ANILIST,))])

        first = next(stream)
        assert first.entity_id == a.identity
        assert store.get(a.identity).fetch_status is StageStatus.COMPLETE
        assert store.get(b.identity) is None
        assert anilist.calls == ["1"]

        second = next(stream)
        assert second.entity_id == b.identity

    def test_config_error_propagates(self, store):
        entry = make_entry(kitsu=None)
        anilist = FakeFetcher(ProviderName.ANILIST, {"1": ConfigError("bad credentials")})
        ctx = context(store, [entry], registry=make_registry(anilist))
        with pytest.raises(ConfigError):
            list(FetchStage(ctx).process([task(entry, (ProviderName.ANILIST,))]))


# =============================================================================
# SYNTHESIZE
# =============================================================================


class TestSynthesizeStage:
    def test_complete_synthesis_stores_synopsis_and_canonical_text(self, store, synthesizer, fake_llm):
        entry = make_entry()
        seed_fetched(store, entry, long_text("one"), long_text("two"))
        ctx = context(store, [entry], synthesizer=synthesizer)

        (result,) = SynthesizeStage(ctx).process([entry.identity])

        assert result.status is StageStatus.COMPLETE
        entity = store.get(entry.identity)
        assert entity.synthesis_status is StageStatus.COMPLETE
        assert entity.synopsis == fake_llm.outputs[0]
        assert entity.canonical_text.startswith("Cowboy Bebop. ")
        assert entity.canonical_text.endswith(entity.synopsis)

    def test_two_sources_below_threshold_passthrough(self, store, llm_config, retry):
        entry = make_entry()
        shorter = long_text("short", 21)
        longer = long_text("long", 33)
        seed_fetched(store, entry, shorter, longer)
        synthesizer = Synthesizer(FakeLLM(["unused"]), llm_config, min_sources=3, retry=retry)
        ctx = context(store, [entry], synthesizer=synthesizer)

        (result,) = SynthesizeStage(ctx).process([entry.identity])

        assert result.status is StageStatus.INSUFFICIENT
        assert result.data["synopsis"] == longer
        entity = store.get(entry.identity)
        assert entity.synthesis_status is StageStatus.INSUFFICIENT
        assert entity.synopsis == longer
        assert entity.canonical_text.endswith(longer)

    def test_failed_synthesis_records_reason(self, store, llm_config, retry):
        entry = make_entry()
        seed_fetched(store, entry, long_text("one"), long_text("two"))
        synthesizer = Synthesizer(FakeLLM(["nope"]), llm_config, min_sources=2, retry=retry)
        (result,) = SynthesizeStage(context(store, [entry], synthesizer=synthesizer)).process(
            [entry.identity]
        )
        entity = store.get(entry.identity)
        assert result.status is StageStatus.FAILED
        assert entity.synthesis_status is StageStatus.FAILED
        assert "Too short" in entity.last_error
        assert entity.canonical_text

    def test_requires_complete_fetch(self, store, synthesizer):
        entry = make_entry()
        store.upsert(entry.identity, fetch_status=StageStatus.INSUFFICIENT)
        (result,) = SynthesizeStage(context(store, [entry], synthesizer=synthesizer)).process(
            [entry.identity]
        )
        assert result.status is StageStatus.FAILED
        assert "insufficient" in result.error

    def test_short_refetch_drops_earlier_text(self, store, synthesizer):
        entry = make_entry()
        store.upsert(
            entry.identity,
            fetch_status=StageStatus.INSUFFICIENT,
            synthesis_status=StageStatus.IN_PROGRESS,
            synopsis="old synopsis",
            canonical_text="Cowboy Bebop. old synopsis",
        )
        (result,) = SynthesizeStage(context(store, [entry], synthesizer=synthesizer)).process(
            [entry.identity]
        )
        entity = store.get(entry.identity)
        assert result.status is StageStatus.FAILED
        assert entity.synthesis_status is StageStatus.FAILED
        assert entity.synopsis is None
        assert entity.canonical_text is None

    def test_missing_credential_aborts(self, store, llm_config, retry):
        entry = make_entry()
        seed_fetched(store, entry, long_text("one"), long_text("two"))
        synthesizer = Synthesizer(
            FakeLLM([MissingConfigError("llm_api_key")]), llm_config, min_sources=2, retry=retry
        )
        with pytest.raises(ConfigError):
            list(SynthesizeStage(context(store, [entry], synthesizer=synthesizer)).process([entry.identity]))
        assert store.get(entry.identity).synthesis_status is StageStatus.PENDING

    def test_requires_synthesizer(self, store):
        with pytest.raises(ConfigError):
            SynthesizeStage(context(store, []))


# =============================================================================
# EMBED
# =============================================================================


def seed_text(store, entity_id, text):
    store.upsert(entity_id, synthesis_status=StageStatus.COMPLETE, canonical_text=text)


class TestEmbedStage:
    def test_vectors_saved_and_results_in_input_order(self, store):
        client = FakeEmbedder(reverse=True, delay=0.01)
        embedder = BatchEmbedder(client, batch_size=2, concurrency=3, retry=fast_retry())
        ids = [f"e{i}" for i in range(7)]
        for i, entity_id in enumerate(ids):
            seed_text(store, entity_id, "t" * (i + 1))

        results = list(EmbedStage(context(store, [], embedder=embedder)).process(ids))

        assert [r.entity_id for r in results] == ids
        assert all(r.status is StageStatus.COMPLETE for r in results)
        for i, entity_id in enumerate(ids):
            assert store.get_vector(entity_id) == client.vector_for("t" * (i + 1))
            assert store.get(entity_id).embedding_status is StageStatus.COMPLETE

    def test_missing_text_is_insufficient(self, store, embedder):
        store.upsert("a", synthesis_status=StageStatus.FAILED)
        seed_text(store, "b", "text")
        results = list(EmbedStage(context(store, [], embedder=embedder)).process(["a", "b"]))

        assert [r.status for r in results] == [StageStatus.INSUFFICIENT, StageStatus.COMPLETE]
        assert store.get("a").embedding_status is StageStatus.INSUFFICIENT
        assert store.get_vector("a") is None

    def test_index_mismatch_fails_whole_chunk(self, store):
        embedder = BatchEmbedder(FakeEmbedder(bad_index=True), batch_size=3, retry=fast_retry(0))
        for entity_id in ("a", "b"):
            seed_text(store, entity_id, entity_id * 3)

        results = list(EmbedStage(context(store, [], embedder=embedder)).process(["a", "b"]))

        assert all(r.status is StageStatus.FAILED for r in results)
        assert store.get_vector("a") is None
        assert "index mismatch" in store.get("b").last_error

    def test_only_failing_chunk_is_marked_failed(self, store):
        client = FakeEmbedder(fail_when=lambda texts: "bad" in texts)
        embedder = BatchEmbedder(client, batch_size=1, concurrency=2, retry=fast_retry(0))
        seed_text(store, "ok", "good")
        seed_text(store, "ko", "bad")

        results = {r.entity_id: r.status for r in EmbedStage(context(store, [], embedder=embedder)).process(["ok", "ko"])}

        assert results == {"ok": StageStatus.COMPLETE, "ko": StageStatus.FAILED}

    def test_unhealthy_service_aborts(self, store):
        embedder = BatchEmbedder(FakeEmbedder(healthy=False), retry=fast_retry())
        seed_text(store, "a", "text")
        with pytest.raises(ConfigError):
            list(EmbedStage(context(store, [], embedder=embedder)).process(["a"]))
        assert store.get("a").embedding_status is StageStatus.PENDING

    def test_requires_embedder(self, store):
        with pytest.raises(ConfigError):
            EmbedStage(context(store, []))
