"""Tests for batched cross-encoder reranking."""

import time

import numpy as np
import pytest

from netdoc_rag import reranker
from netdoc_rag.reranker import RerankerBatcher, score_pairs
from netdoc_rag.schemas import SearchResult


TEXTS = {"a": "pfc overview", "b": "ecn marking", "c": "nv set qos pfc", "d": "bgp neighbors"}


def _results(*ids):
    return [SearchResult(chunk_id=cid, score=1.0 / (61 + i)) for i, cid in enumerate(ids)]


class RecordingScorer:
    """Scores a pair by the position of its text in a preference list."""

    def __init__(self, preferred):
        self.preferred = preferred
        self.calls = []

    def __call__(self, pairs):
        self.calls.append(list(pairs))
        return [float(len(self.preferred) - self.preferred.index(text)) for _, text in pairs]


def _batcher(scorer, **kwargs) -> RerankerBatcher:
    kwargs.setdefault("enabled", True)
    kwargs.setdefault("timeout", 2.0)
    kwargs.setdefault("topn", 10)
    return RerankerBatcher(text_of=TEXTS.__getitem__, scorer=scorer, **kwargs)


class TestRerankerBatcher:
    async def test_single_call_for_all_sub_queries(self) -> None:
        scorer = RecordingScorer(["nv set qos pfc", "pfc overview", "bgp neighbors", "ecn marking"])
        out, degraded = await _batcher(scorer).rerank_batched_with_status(
            [_results("a", "c"), _results("b", "d")], ["enable pfc", "check ecn"]
        )
        assert degraded is False
        assert len(scorer.calls) == 1
        assert scorer.calls[0] == [
            ("enable pfc", "pfc overview"),
            ("enable pfc", "nv set qos pfc"),
            ("check ecn", "ecn marking"),
            ("check ecn", "bgp neighbors"),
        ]
        assert [r.chunk_id for r in out[0]] == ["c", "a"]
        assert [r.chunk_id for r in out[1]] == ["d", "b"]

    async def test_scores_recorded_in_debug_and_fused_score_kept(self) -> None:
        scorer = RecordingScorer(["nv set qos pfc", "pfc overview"])
        inputs = _results("a", "c")
        out = await _batcher(scorer).rerank_batched([inputs], ["q"])
        top = out[0][0]
        assert top.debug.rerank_score == pytest.approx(2.0)
        assert top.score == inputs[1].score

    async def test_only_topn_reranked(self) -> None:
        scorer = RecordingScorer(["ecn marking", "pfc overview", "nv set qos pfc"])
        out = await _batcher(scorer, topn=2).rerank_batched([_results("a", "b", "c")], ["q"])
        assert [r.chunk_id for r in out[0]] == ["b", "a", "c"]
        assert out[0][2].debug.rerank_score is None

    async def test_scorer_error_keeps_input_order(self) -> None:
        def broken(pairs):
            raise RuntimeError("model crashed")

        inputs = [_results("a", "c"), _results("b")]
        out, degraded = await _batcher(broken).rerank_batched_with_status(inputs, ["q1", "q2"])
        assert degraded is True
        assert out == inputs

    async def test_timeout_keeps_input_order(self) -> None:
        def slow(pairs):
            time.sleep(0.5)
            return [1.0] * len(pairs)

        inputs = [_results("a", "c")]
        out, degraded = await _batcher(slow, timeout=0.05).rerank_batched_with_status(inputs, ["q"])
        assert degraded is True
        assert out == inputs

    async def test_misaligned_scores_keep_input_order(self) -> None:
        inputs = [_results("a", "c")]
        out, degraded = await _batcher(lambda pairs: [1.0]).rerank_batched_with_status(inputs, ["q"])
        assert degraded is True
        assert out == inputs

    async def test_disabled_is_pass_through(self) -> None:
        scorer = RecordingScorer([])
        inputs = [_results("a", "c")]
        out, degraded = await _batcher(scorer, enabled=False).rerank_batched_with_status(inputs, ["q"])
        assert (out, degraded) == (inputs, False)
        assert scorer.calls == []

    async def test_length_mismatch_rejected(self) -> None:
        with pytest.raises(ValueError):
            await _batcher(RecordingScorer([])).rerank_batched([_results("a")], [])

    async def test_unknown_chunk_left_unscored(self) -> None:
        scorer = RecordingScorer(["nv set qos pfc", "pfc overview"])
        out, degraded = await _batcher(scorer).rerank_batched_with_status([_results("a", "gone", "c")], ["q"])
        assert degraded is False
        assert [text for _, text in scorer.calls[0]] == ["pfc overview", "nv set qos pfc"]
        assert [r.chunk_id for r in out[0]] == ["c", "a", "gone"]
        assert out[0][2].debug.rerank_score is None


class TestScorePairs:
    def test_uses_loaded_model(self, monkeypatch) -> None:
        class FakeCrossEncoder:
            def predict(self, pairs, convert_to_numpy=True):
                return np.array([float(len(p)) for _, p in pairs])

        monkeypatch.setattr(reranker, "_model", FakeCrossEncoder())
        assert score_pairs("q", ["ab", "abcd"]) == [2.0, 4.0]

    def test_empty_passages(self) -> None:
        assert score_pairs("q", []) == []
