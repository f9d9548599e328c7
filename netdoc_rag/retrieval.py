"""Hybrid lexical + vector retrieval fused with Reciprocal Rank Fusion.

This module implements:
- SearchChannel: protocol of a search collaborator (`async search(query, limit)`).
- reciprocal_rank_fusion: RRF over ranked channel lists with deterministic ties.
- HybridRetriever: cache-checked, concurrent two-channel retrieval with per-channel
  timeouts, bounded retries for transient failures, intent-conditioned score floors
  and single-channel degradation.

RRF: a chunk at 1-based rank r in a channel contributes 1 / (k + r); contributions
are summed over channels. Ordering is score desc, then best rank in any channel asc,
then chunk id asc.
"""
import asyncio
import logging
import math
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from netdoc_rag.cache import MISS, make_cache_key
from netdoc_rag.config import settings
from netdoc_rag.errors import BackendError, BackendTimeout, BackendUnavailable, RetrievalFailed
from netdoc_rag.obs import span
from netdoc_rag.schemas import SearchDebug, SearchResult

logger = logging.getLogger(__name__)


class SearchChannel(Protocol):
    name: str

    async def search(self, query: str, limit: int) -> List[Tuple[str, float]]:
        ...


def reciprocal_rank_fusion(ranked: Dict[str, Sequence[Tuple[str, float]]], k: int = 60) -> List[SearchResult]:
    """Fuse ranked channel lists with Reciprocal Rank Fusion.

    Args:
        ranked: Channel name ("keyword" / "vector") -> [(chunk_id, raw score)], best first.
            Repeated ids within one channel count at their first rank only.
        k: Smoothing constant.

    Returns:
        List[SearchResult]: Fused results sorted by score desc, best channel rank asc,
            chunk id asc; debug carries each channel's raw score and rank.
    """
    contributions: Dict[str, List[float]] = {}
    debug: Dict[str, Dict[str, Any]] = {}
    best_rank: Dict[str, int] = {}
    for channel, hits in ranked.items():
        seen = set()
        rank = 0
        for chunk_id, raw in hits:
            if chunk_id in seen:
                continue
            seen.add(chunk_id)
            rank += 1
            contributions.setdefault(chunk_id, []).append(1.0 / (k + rank))
            d = debug.setdefault(chunk_id, {})
            d[f"{channel}_score"] = float(raw)
            d[f"{channel}_rank"] = rank
            best_rank[chunk_id] = min(rank, best_rank.get(chunk_id, rank))

    fused = [
        SearchResult(chunk_id=cid, score=math.fsum(parts), debug=SearchDebug(**debug[cid]))
        for cid, parts in contributions.items()
    ]
    fused.sort(key=lambda r: (-r.score, best_rank[r.chunk_id], r.chunk_id))
    return fused


class HybridRetriever:
    """Concurrent keyword + vector retrieval with RRF, caching and degradation.

    Args:
        keyword: Lexical channel (e.g. BM25Index); optional.
        vector: Vector channel (e.g. VectorIndex); optional.
        cache: QueryCache / RedisQueryCache; None disables caching.
        rrf_k: RRF smoothing constant (default settings.RRF_K).
        keyword_timeout / vector_timeout: Per-channel deadlines in seconds.
        max_attempts: Attempts per channel for transient failures (1 or 2).
    """

    def __init__(
        self,
        keyword: Optional[SearchChannel] = None,
        vector: Optional[SearchChannel] = None,
        cache=None,
        rrf_k: Optional[int] = None,
        keyword_timeout: Optional[float] = None,
        vector_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        if keyword is None and vector is None:
            raise ValueError("at least one search channel is required")
        self.channels: List[Tuple[SearchChannel, float]] = []
        if keyword is not None:
            self.channels.append((keyword, settings.KEYWORD_TIMEOUT_SECONDS if keyword_timeout is None else keyword_timeout))
        if vector is not None:
            self.channels.append((vector, settings.VECTOR_TIMEOUT_SECONDS if vector_timeout is None else vector_timeout))
        self.cache = cache
        self.rrf_k = settings.RRF_K if rrf_k is None else rrf_k
        attempts = settings.BACKEND_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.max_attempts = max(1, min(2, attempts))

    async def _run_channel(self, channel: SearchChannel, query: str, n: int, timeout: float) -> List[Tuple[str, float]]:
        """Query one channel under its own deadline; retries BackendUnavailable only."""

        async def _attempt() -> List[Tuple[str, float]]:
            try:
                hits = await asyncio.wait_for(channel.search(query, n), timeout)
            except asyncio.TimeoutError as e:
                raise BackendTimeout(channel.name, f"no answer within {timeout}s") from e
            except BackendError:
                raise
            except Exception as e:
                raise BackendUnavailable(channel.name, f"{type(e).__name__}: {e}") from e
            if hits is None:
                raise BackendUnavailable(channel.name, "returned no result list")
            return list(hits)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(BackendUnavailable),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=settings.BACKEND_RETRY_BASE_SECONDS, max=1.0, jitter=settings.BACKEND_RETRY_BASE_SECONDS
            ),
            before_sleep=lambda rs: logger.warning(
                "Retrying %s channel (attempt %d/%d)", channel.name, rs.attempt_number, self.max_attempts
            ),
            reraise=True,
        ):
            with attempt:
                return await _attempt()
        raise BackendUnavailable(channel.name, "no attempt made")

    async def retrieve_with_status(
        self,
        enhanced_query: str,
        intent: str = "general",
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
        candidates: Optional[int] = None,
        **params: Any,
    ) -> Tuple[List[SearchResult], bool]:
        """Retrieve fused results and whether they are degraded.

        Args:
            enhanced_query: Expanded search string.
            intent: Intent label selecting the minimum fused score.
            limit: Maximum results (default settings.TOP_K).
            min_score: Explicit fused-score floor; defaults to settings.min_score_for(intent).
            candidates: Hits requested from each channel (default settings.CHANNEL_CANDIDATES).
            **params: Extra values that change the result (e.g. index_version); part of the cache key.

        Returns:
            Tuple[List[SearchResult], bool]: Results, and True when a channel failed and
                the surviving channel was used alone.

        Raises:
            RetrievalFailed: When every channel failed.
        """
        limit = settings.TOP_K if limit is None else limit
        floor = settings.min_score_for(intent) if min_score is None else min_score
        n = settings.CHANNEL_CANDIDATES if candidates is None else candidates
        key = make_cache_key(
            enhanced_query,
            mode="hybrid",
            limit=limit,
            intent=intent,
            min_score=floor,
            candidates=n,
            rrf_k=self.rrf_k,
            channels=[c.name for c, _ in self.channels],
            **params,
        )

        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not MISS:
                logger.debug("Retrieval cache hit for %s", key)
                return [SearchResult.model_validate(r) for r in cached], False

        with span("retrieve", {"intent": intent, "limit": limit, "channels": len(self.channels)}):
            tasks = [
                asyncio.create_task(self._run_channel(channel, enhanced_query, n, timeout))
                for channel, timeout in self.channels
            ]
            try:
                outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            except asyncio.CancelledError:
                for t in tasks:
                    t.cancel()
                raise

        ranked: Dict[str, List[Tuple[str, float]]] = {}
        failures: List[BackendError] = []
        for (channel, _), outcome in zip(self.channels, outcomes):
            if isinstance(outcome, BackendError):
                logger.warning("Search channel %s failed: %s", channel.name, outcome)
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                ranked[channel.name] = outcome

        if not ranked:
            raise RetrievalFailed(failures)
        degraded = bool(failures)

        fused = reciprocal_rank_fusion(ranked, k=self.rrf_k)
        results = [r for r in fused if r.score >= floor][:limit]
        logger.info(
            "Retrieved %d results (fused=%d, floor=%.4f, intent=%s, degraded=%s)",
            len(results), len(fused), floor, intent, degraded,
        )

        if self.cache is not None and not degraded:
            self.cache.set(key, tuple(r.model_dump() for r in results))
        return results, degraded

    async def retrieve(
        self,
        enhanced_query: str,
        intent: str = "general",
        limit: Optional[int] = None,
        **params: Any,
    ) -> List[SearchResult]:
        """Retrieve fused, thresholded, limited results (see retrieve_with_status)."""
        results, _ = await self.retrieve_with_status(enhanced_query, intent, limit, **params)
        return results
