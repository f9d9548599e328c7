"""OpenAI embeddings for the vector search channel.

Provides:
- get_client: Process-wide OpenAI client built from OPENAI_API_KEY.
- embed_texts: Embed chunk contents in request batches of EMBEDDING_BATCH_SIZE.
- embed_query: Embed one query string.

Vectors are produced by the remote service; VectorIndex only normalizes and
compares them.
"""
import logging
from typing import List, Optional, Sequence

from openai import OpenAI

from netdoc_rag.config import settings

logger = logging.getLogger(__name__)

_client: Optional[OpenAI] = None


def get_client() -> OpenAI:
    """Create the OpenAI client on first use and reuse it afterwards."""
    global _client
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def _create(batch: Sequence[str]) -> List[List[float]]:
    resp = get_client().embeddings.create(model=settings.OPENAI_EMBEDDING_MODEL, input=list(batch))
    # the API may return items out of request order
    return [item.embedding for item in sorted(resp.data, key=lambda item: item.index)]


def embed_texts(texts: Sequence[str]) -> List[List[float]]:
    """Embed chunk texts with the configured embedding model.

    Args:
        texts: Chunk contents, in store order.

    Returns:
        List[List[float]]: One vector per text, aligned with `texts`.
    """
    if not texts:
        return []
    step = max(1, settings.EMBEDDING_BATCH_SIZE)
    vectors: List[List[float]] = []
    for start in range(0, len(texts), step):
        vectors.extend(_create(texts[start:start + step]))
    logger.debug("Embedded %d chunk texts with %s", len(texts), settings.OPENAI_EMBEDDING_MODEL)
    return vectors


def embed_query(query: str) -> List[float]:
    return _create([query])[0]
