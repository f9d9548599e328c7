"""In-memory chunk arena.

Chunks are immutable and stored once under their stable id. New chunks are appended;
only replace_document retires chunks (the earlier text of an edited document).
Parent/child links are id references resolved through the store, never object pointers.
"""
import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from netdoc_rag.schemas import Chunk, ChunkType

logger = logging.getLogger(__name__)


class ChunkStore:
    """Chunk arena keyed by chunk id.

    Notes:
        add_many is all-or-nothing: a batch whose children reference an unknown
        parent is rejected before anything is stored. Re-adding an existing id is
        a no-op (ids are deterministic, so re-ingesting a document is idempotent).
        The version counter changes whenever the stored set of chunks does.
    """

    def __init__(self):
        self._chunks: Dict[str, Chunk] = {}
        self._order: List[str] = []
        self._lock = threading.Lock()
        self.version = 0

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self._chunks

    def __iter__(self) -> Iterator[Chunk]:
        with self._lock:
            snapshot = [self._chunks[cid] for cid in self._order]
        return iter(snapshot)

    def get(self, chunk_id: str) -> Chunk:
        """Return the chunk for an id.

        Raises:
            KeyError: If the id is unknown.
        """
        return self._chunks[chunk_id]

    def find(self, chunk_id: str) -> Optional[Chunk]:
        return self._chunks.get(chunk_id)

    def parent_of(self, chunk: Chunk) -> Optional[Chunk]:
        return self._chunks.get(chunk.parent_id) if chunk.parent_id else None

    def children_of(self, parent_id: str) -> List[Chunk]:
        return [c for c in self if c.parent_id == parent_id]

    def add_many(self, chunks: List[Chunk]) -> int:
        """Append a batch of chunks.

        Args:
            chunks: Chunks of one chunking run (parents before their children).

        Returns:
            int: Number of newly stored chunks.

        Raises:
            ValueError: If a child references a parent absent from both the batch and the store.
        """
        batch_parents = {c.id for c in chunks if c.chunk_type == ChunkType.PARENT}
        with self._lock:
            for c in chunks:
                if c.chunk_type == ChunkType.CHILD and c.parent_id not in batch_parents and c.parent_id not in self._chunks:
                    raise ValueError(f"chunk {c.id} references unknown parent {c.parent_id}")
            added = 0
            for c in chunks:
                if c.id in self._chunks:
                    continue
                self._chunks[c.id] = c
                self._order.append(c.id)
                added += 1
            if added:
                self.version += 1
        logger.debug("Stored %d new chunks (total=%d, version=%d)", added, len(self._order), self.version)
        return added

    def replace_document(self, doc_id: str, chunks: List[Chunk]) -> Tuple[int, int]:
        """Store the chunks of a document and retire chunks of its earlier versions.

        Chunks of `doc_id` whose ids are absent from `chunks` are removed, so a
        re-ingested, edited document never serves its old text. Re-ingesting an
        unchanged document is a no-op.

        Returns:
            Tuple[int, int]: (newly stored, removed) chunk counts.

        Raises:
            ValueError: If a chunk belongs to another document, or a child references
                a parent absent from the batch.
        """
        keep = {c.id for c in chunks}
        parents = {c.id for c in chunks if c.chunk_type == ChunkType.PARENT}
        for c in chunks:
            if c.metadata.doc_id != doc_id:
                raise ValueError(f"chunk {c.id} belongs to {c.metadata.doc_id!r}, not {doc_id!r}")
            if c.chunk_type == ChunkType.CHILD and c.parent_id not in parents:
                raise ValueError(f"chunk {c.id} references unknown parent {c.parent_id}")
        with self._lock:
            stale = [cid for cid in self._order if self._chunks[cid].metadata.doc_id == doc_id and cid not in keep]
            for cid in stale:
                del self._chunks[cid]
            if stale:
                dropped = set(stale)
                self._order = [cid for cid in self._order if cid not in dropped]
            added = 0
            for c in chunks:
                if c.id in self._chunks:
                    continue
                self._chunks[c.id] = c
                self._order.append(c.id)
                added += 1
            if added or stale:
                self.version += 1
        if stale:
            logger.info("Replaced document %s: removed=%d added=%d", doc_id, len(stale), added)
        return added, len(stale)
