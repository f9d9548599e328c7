"""In-memory search channels over the chunk store.

Provides:
- bm25_tokens: CJK-aware tokenizer (content terms; Chinese runs as character bigrams).
- BM25Index: lexical channel using rank_bm25 BM25Okapi.
- VectorIndex: embedding channel using cosine similarity (numpy) over vectors from
  an injected embedder (OpenAI by default).

Both channels expose `async search(query, limit) -> [(chunk_id, score)]`, best
first, and rebuild lazily when the chunk store grows. The CPU/network work runs in
the default executor so the event loop stays free.
"""
import asyncio
import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from rank_bm25 import BM25Okapi

from netdoc_rag.lexicon import Lexicon, get_lexicon, is_cjk
from netdoc_rag.store import ChunkStore

logger = logging.getLogger(__name__)

Hit = Tuple[str, float]


def bm25_tokens(text: str, lexicon: Optional[Lexicon] = None) -> List[str]:
    """Tokens for BM25: content terms, with CJK terms longer than two chars as bigrams.

    Args:
        text: Query or chunk text.
        lexicon: Lexicon providing stop-words (default: bundled lexicon).

    Returns:
        List[str]: Tokens (repeats kept, as term frequency matters to BM25).
    """
    lex = lexicon or get_lexicon()
    out: List[str] = []
    for term in lex.content_terms(text):
        if is_cjk(term) and len(term) > 2:
            out.extend(term[i:i + 2] for i in range(len(term) - 1))
        else:
            out.append(term)
    return out


def _doc_tokens(text: str, lexicon: Lexicon) -> List[str]:
    # content_terms dedupes per text; re-count repeats per line for term frequency
    out: List[str] = []
    for line in text.splitlines():
        out.extend(bm25_tokens(line, lexicon))
    return out


class BM25Index:
    """Lexical search channel over every chunk in a ChunkStore."""

    name = "keyword"

    def __init__(self, store: ChunkStore, lexicon: Optional[Lexicon] = None):
        self.store = store
        self.lexicon = lexicon or get_lexicon()
        self._lock = threading.Lock()
        self._version = -1
        self._ids: List[str] = []
        self._token_sets: List[set] = []
        self._bm25: Optional[BM25Okapi] = None

    def _ensure_index(self) -> None:
        with self._lock:
            if self._version == self.store.version:
                return
            ids: List[str] = []
            corpus: List[List[str]] = []
            for c in self.store:
                ids.append(c.id)
                corpus.append(_doc_tokens(c.content, self.lexicon) or [""])
            self._ids = ids
            self._token_sets = [set(toks) for toks in corpus]
            self._bm25 = BM25Okapi(corpus) if corpus else None
            self._version = self.store.version
            logger.info("Built BM25 index over %d chunks (store version %d)", len(ids), self._version)

    def search_sync(self, query: str, limit: int) -> List[Hit]:
        """Rank chunks sharing at least one token with the query by BM25 score.

        Args:
            query: Search string (typically the enhanced query).
            limit: Maximum number of hits.

        Returns:
            List[Hit]: (chunk_id, score) pairs, best first, ties by chunk id.
        """
        self._ensure_index()
        q_tokens = bm25_tokens(query, self.lexicon)
        if not q_tokens or self._bm25 is None:
            return []
        q_set = set(q_tokens)
        scores = self._bm25.get_scores(q_tokens)
        hits = [
            (cid, float(s))
            for cid, s, toks in zip(self._ids, scores, self._token_sets)
            if toks & q_set
        ]
        hits.sort(key=lambda h: (-h[1], h[0]))
        return hits[:limit]

    async def search(self, query: str, limit: int) -> List[Hit]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.search_sync(query, limit))


class VectorIndex:
    """Embedding search channel: cosine similarity between query and chunk vectors.

    Args:
        store: Chunk store to index.
        embed_texts: Batch embedder for chunk contents.
        embed_query: Single-text embedder for queries.
    """

    name = "vector"

    def __init__(
        self,
        store: ChunkStore,
        embed_texts: Optional[Callable[[Sequence[str]], List[List[float]]]] = None,
        embed_query: Optional[Callable[[str], List[float]]] = None,
    ):
        if embed_texts is None or embed_query is None:
            from netdoc_rag import embedding

            embed_texts = embed_texts or embedding.embed_texts
            embed_query = embed_query or embedding.embed_query
        self.store = store
        self._embed_texts = embed_texts
        self._embed_query = embed_query
        self._lock = threading.Lock()
        self._ids: List[str] = []
        self._matrix: Optional[np.ndarray] = None

    @staticmethod
    def _normalize(m: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(m, axis=-1, keepdims=True)
        norms[norms == 0] = 1.0
        return m / norms

    def _sync(self) -> None:
        """Drop vectors of retired chunks and embed chunks added since the last sync."""
        with self._lock:
            current = list(self.store)
            live = {c.id for c in current}
            if self._matrix is not None and any(cid not in live for cid in self._ids):
                rows = [i for i, cid in enumerate(self._ids) if cid in live]
                self._ids = [self._ids[i] for i in rows]
                self._matrix = self._matrix[rows] if rows else None
            known = set(self._ids)
            pending = [c for c in current if c.id not in known]
            if not pending:
                return
            vectors = np.asarray(self._embed_texts([c.content for c in pending]), dtype=np.float32)
            if vectors.ndim != 2 or vectors.shape[0] != len(pending):
                raise ValueError(f"embedder returned {vectors.shape} for {len(pending)} texts")
            vectors = self._normalize(vectors)
            self._matrix = vectors if self._matrix is None else np.vstack([self._matrix, vectors])
            self._ids.extend(c.id for c in pending)
            logger.info("Embedded %d new chunks (total=%d)", len(pending), len(self._ids))

    def search_sync(self, query: str, limit: int) -> List[Hit]:
        self._sync()
        if self._matrix is None or not self._ids:
            return []
        q = self._normalize(np.asarray(self._embed_query(query), dtype=np.float32))
        sims = self._matrix @ q
        order = sorted(range(len(self._ids)), key=lambda i: (-float(sims[i]), self._ids[i]))
        return [(self._ids[i], float(sims[i])) for i in order[:limit]]

    async def search(self, query: str, limit: int) -> List[Hit]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.search_sync(query, limit))
