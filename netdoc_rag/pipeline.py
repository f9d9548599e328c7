"""End-to-end retrieval orchestration.

Provides:
- RetrievalPipeline: query understanding -> enhancement -> hybrid retrieval per
  sub-query -> batched rerank -> merge -> chunk hydration; plus document ingestion.
- build_pipeline: wire the default collaborators from settings.

Multi-clause queries ("configure X, then verify Y") are searched once as a whole
and once per clause; the reranked lists are merged round-robin so every clause
contributes near the top.
"""
import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from netdoc_rag.cache import build_query_cache
from netdoc_rag.chunking import chunk
from netdoc_rag.config import settings
from netdoc_rag.enhancer import QueryEnhancer
from netdoc_rag.indexes import BM25Index, VectorIndex
from netdoc_rag.keywords import EntityExtractor
from netdoc_rag.lexicon import Lexicon, get_lexicon
from netdoc_rag.reranker import RerankerBatcher
from netdoc_rag.retrieval import HybridRetriever
from netdoc_rag.router import IntentClassifier
from netdoc_rag.schemas import (
    ChunkType,
    IngestResponse,
    IntentResult,
    ScoredChunk,
    SearchResponse,
    SearchResult,
)
from netdoc_rag.store import ChunkStore

logger = logging.getLogger(__name__)

MAX_SUB_QUERIES = 3


def merge_round_robin(lists: Sequence[Sequence[SearchResult]]) -> List[SearchResult]:
    """Interleave ranked lists by position, keeping the first occurrence of each chunk."""
    merged: List[SearchResult] = []
    seen = set()
    depth = max((len(lst) for lst in lists), default=0)
    for pos in range(depth):
        for lst in lists:
            if pos < len(lst) and lst[pos].chunk_id not in seen:
                seen.add(lst[pos].chunk_id)
                merged.append(lst[pos])
    return merged


class RetrievalPipeline:
    """Search and ingestion over one in-memory chunk store.

    Args:
        store: Chunk arena shared with the search channels.
        retriever: Hybrid retriever over the store's channels.
        reranker: Batch reranker; None skips reranking.
        classifier / extractor / enhancer: Query understanding components.
        lexicon: Domain lexicon used when components are built here.
    """

    def __init__(
        self,
        store: ChunkStore,
        retriever: HybridRetriever,
        reranker: Optional[RerankerBatcher] = None,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[EntityExtractor] = None,
        enhancer: Optional[QueryEnhancer] = None,
        lexicon: Optional[Lexicon] = None,
    ):
        lexicon = lexicon or get_lexicon()
        self.store = store
        self.retriever = retriever
        self.reranker = reranker
        self.lexicon = lexicon
        self.classifier = classifier or IntentClassifier(lexicon=lexicon)
        self.extractor = extractor or EntityExtractor(lexicon)
        self.enhancer = enhancer or QueryEnhancer(lexicon)

    def ingest(self, document: str, doc_id: Optional[str] = None) -> IngestResponse:
        """Chunk a markdown document and store its chunks.

        Re-ingesting under the same doc_id replaces the chunks of the earlier text.

        Raises:
            ValidationError: On inconsistent chunk size settings.
            EmptyDocument: When the document has no extractable content.
        """
        chunks = chunk(document, doc_id=doc_id, lexicon=self.lexicon)
        resolved = chunks[0].metadata.doc_id or ""
        added, removed = self.store.replace_document(resolved, chunks)
        parents = sum(1 for c in chunks if c.chunk_type == ChunkType.PARENT)
        logger.info("Ingested document %s: parents=%d children=%d new=%d removed=%d",
                    resolved, parents, len(chunks) - parents, added, removed)
        return IngestResponse(
            doc_id=resolved, parents=parents, children=len(chunks) - parents, added=added, removed=removed
        )

    def _sub_queries(self, query: str, intent: IntentResult) -> List[Tuple[str, str]]:
        subs = [(query, intent.intent.value)]
        clauses = self.classifier.clause_intents(query)
        if len(clauses) > 1:
            for clause, clause_intent in clauses[: MAX_SUB_QUERIES - 1]:
                subs.append((clause, clause_intent.value))
        return subs

    async def search(self, query: str, limit: Optional[int] = None, history: Optional[Sequence[str]] = None) -> SearchResponse:
        """Answer a search request with ranked, hydrated chunks.

        Args:
            query: Raw user query.
            limit: Number of chunks to return (default settings.TOP_K).
            history: Previous conversation turns, oldest first.

        Returns:
            SearchResponse: Chunks best first, intent, the enhanced query of the whole
                query, and whether any channel or the reranker fell back.

        Raises:
            RetrievalFailed: When every search channel failed.
        """
        limit = settings.TOP_K if limit is None else limit
        intent = self.classifier.detect(query, history)
        params = self.classifier.retrieval_params(intent.intent, intent.confidence)

        subs = self._sub_queries(query, intent)
        enhanced = [self.enhancer.enhance(self.extractor.extract(q)) or q for q, _ in subs]
        logger.info("Search intent=%s (%.2f) sub_queries=%d enhanced=%r",
                    intent.intent.value, intent.confidence, len(subs), enhanced[0])

        outcomes = await asyncio.gather(*[
            self.retriever.retrieve_with_status(
                eq,
                intent=sub_intent,
                limit=max(limit, int(params["limit"])),
                min_score=params["min_score"] if sub_intent == intent.intent.value else None,
                candidates=int(params["rerank_candidates"]),
                index_version=self.store.version,
            )
            for eq, (_, sub_intent) in zip(enhanced, subs)
        ])
        lists = [results for results, _ in outcomes]
        degraded = any(d for _, d in outcomes)

        if self.reranker is not None:
            lists, rerank_degraded = await self.reranker.rerank_batched_with_status(lists, [q for q, _ in subs])
            degraded = degraded or rerank_degraded

        chunks: List[ScoredChunk] = []
        for r in merge_round_robin(lists):
            c = self.store.find(r.chunk_id)
            if c is None:
                logger.warning("Dropping result for unknown chunk %s", r.chunk_id)
                continue
            chunks.append(ScoredChunk(**c.model_dump(), score=r.score, debug=r.debug))
            if len(chunks) >= limit:
                break
        return SearchResponse(chunks=chunks, intent=intent, enhanced_query=enhanced[0], degraded=degraded)


def _rerank_text(store: ChunkStore, chunk_id: str) -> str:
    c = store.get(chunk_id)
    trail = " > ".join(c.metadata.breadcrumbs)
    return f"{trail}\n{c.content}" if trail else c.content


def build_pipeline(store: Optional[ChunkStore] = None) -> RetrievalPipeline:
    """Create a pipeline with BM25, optional OpenAI vectors, the configured cache and reranker."""
    store = store or ChunkStore()
    lexicon = get_lexicon()
    vector = None
    if settings.VECTOR_ENABLED and settings.OPENAI_API_KEY:
        vector = VectorIndex(store)
    else:
        logger.info("Vector channel disabled; keyword search only")
    retriever = HybridRetriever(keyword=BM25Index(store, lexicon), vector=vector, cache=build_query_cache())
    reranker = RerankerBatcher(text_of=lambda cid: _rerank_text(store, cid))
    return RetrievalPipeline(store, retriever, reranker=reranker, lexicon=lexicon)
