"""Cross-encoder reranking of fused retrieval candidates.

Provides:
- _load_model: Load the configured CrossEncoder on first use.
- score_batch / score_pairs: Score (query, passage) pairs; higher is more relevant.
- RerankerBatcher: coalesce the candidate lists of several sub-queries into a single
  scoring call, then redistribute the scores and re-sort each list.

The model name, enablement, candidate depth and timeout are configured via
netdoc_rag.config.settings.
"""
import asyncio
import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from netdoc_rag.config import settings
from netdoc_rag.obs import span
from netdoc_rag.schemas import SearchResult

logger = logging.getLogger(__name__)

_model = None  # loaded on first scoring call

Pair = Tuple[str, str]


def _load_model():
    """Return the process-wide CrossEncoder, loading RERANKER_MODEL_NAME if needed."""
    global _model
    if _model is None:
        _model = _build_model(settings.RERANKER_MODEL_NAME)
    return _model


def _build_model(name: str):
    from sentence_transformers.cross_encoder import CrossEncoder

    logger.info("Loading reranker model %s", name)
    return CrossEncoder(name, trust_remote_code=True)


def score_batch(pairs: Sequence[Pair]) -> List[float]:
    """Score arbitrary (query, passage) pairs in one model call.

    Args:
        pairs: (query, passage) tuples; queries may differ between pairs.

    Returns:
        List[float]: Relevance scores aligned with the input pairs.
    """
    if not pairs:
        return []
    model = _load_model()
    return model.predict(list(pairs), convert_to_numpy=True).tolist()


def score_pairs(query: str, passages: List[str]) -> List[float]:
    """Score one query against several passages (see score_batch)."""
    return score_batch([(query, p) for p in passages])


class RerankerBatcher:
    """Batch reranking across sub-queries with a single overall timeout.

    Args:
        text_of: Resolves a chunk id to the text shown to the reranker; KeyError leaves the
            candidate unscored, after the scored ones.
        scorer: Sync batch scorer `[(query, text)] -> [float]` (default: score_batch).
        enabled: False makes rerank_batched a pass-through (default settings.RERANKER_ENABLED).
        timeout: Deadline for the whole batch in seconds (default settings.RERANK_TIMEOUT_SECONDS).
        topn: Candidates reranked per list; the rest keep their order behind them
            (default settings.RERANKER_TOPN).
    """

    def __init__(
        self,
        text_of: Callable[[str], str],
        scorer: Optional[Callable[[Sequence[Pair]], List[float]]] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        topn: Optional[int] = None,
    ):
        self.text_of = text_of
        self.scorer = scorer or score_batch
        self.enabled = settings.RERANKER_ENABLED if enabled is None else enabled
        self.timeout = settings.RERANK_TIMEOUT_SECONDS if timeout is None else timeout
        self.topn = settings.RERANKER_TOPN if topn is None else topn

    async def rerank_batched_with_status(
        self,
        candidate_sets: Sequence[Sequence[SearchResult]],
        queries: Sequence[str],
    ) -> Tuple[List[List[SearchResult]], bool]:
        """Rerank every candidate list with one scorer call.

        Args:
            candidate_sets: One fused result list per sub-query.
            queries: Sub-query text for each list (same length as candidate_sets).

        Returns:
            Tuple[List[List[SearchResult]], bool]: Reranked lists, and True when the
                scorer failed, timed out or returned misaligned scores, in which case
                every list comes back in its input order.

        Notes:
            The fused `score` is kept; the cross-encoder score goes to
            `debug.rerank_score` and decides the order of the reranked head.
        """
        if len(candidate_sets) != len(queries):
            raise ValueError("candidate_sets and queries must have the same length")
        unchanged = [list(c) for c in candidate_sets]
        if not self.enabled:
            return unchanged, False

        # (set index, position in set) for each flattened pair
        tags: List[Tuple[int, int]] = []
        pairs: List[Pair] = []
        for i, (cands, query) in enumerate(zip(candidate_sets, queries)):
            for j, r in enumerate(cands[: self.topn]):
                try:
                    text = self.text_of(r.chunk_id)
                except KeyError:
                    # e.g. an id from a shared cache that this process never stored
                    logger.debug("No text for chunk %s; left unscored", r.chunk_id)
                    continue
                tags.append((i, j))
                pairs.append((query, text))
        if not pairs:
            return unchanged, False

        loop = asyncio.get_running_loop()
        with span("rerank", {"pairs": len(pairs), "sets": len(candidate_sets)}):
            try:
                scores = await asyncio.wait_for(
                    loop.run_in_executor(None, lambda: self.scorer(pairs)), self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Rerank timed out after %.1fs; keeping fused order", self.timeout)
                return unchanged, True
            except Exception:
                logger.warning("Rerank failed; keeping fused order", exc_info=True)
                return unchanged, True

        scores = list(scores) if scores is not None else []
        if len(scores) != len(pairs) or not all(math.isfinite(float(s)) for s in scores):
            logger.warning("Reranker returned %d scores for %d pairs; keeping fused order", len(scores), len(pairs))
            return unchanged, True

        by_set: List[List[Tuple[float, int]]] = [[] for _ in candidate_sets]
        for (i, j), s in zip(tags, scores):
            by_set[i].append((float(s), j))

        out: List[List[SearchResult]] = []
        for cands, scored in zip(candidate_sets, by_set):
            scored.sort(key=lambda t: (-t[0], t[1]))
            head = [
                cands[j].model_copy(update={"debug": cands[j].debug.model_copy(update={"rerank_score": s})})
                for s, j in scored
            ]
            seen = {j for _, j in scored}
            out.append(head + [r for j, r in enumerate(cands) if j not in seen])
        logger.debug("Reranked %d pairs across %d lists", len(pairs), len(out))
        return out, False

    async def rerank_batched(
        self,
        candidate_sets: Sequence[Sequence[SearchResult]],
        queries: Sequence[str],
    ) -> List[List[SearchResult]]:
        results, _ = await self.rerank_batched_with_status(candidate_sets, queries)
        return results
