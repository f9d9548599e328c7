"""Markdown documentation ingestor.

Reads .md files from a file or directory, chunks them into parent/child passages
and either loads them into a RetrievalPipeline's store or, from the command line,
reports chunk statistics per file.

Chunking:
- Uses netdoc_rag.chunking.chunk with settings.MAX_PARENT_SIZE, MAX_CHILD_SIZE
  and CHUNK_OVERLAP (overridable on the command line)
- doc_id is the file path relative to the ingested root, so re-ingesting a file
  yields the same chunk ids

Usage:
  python -m netdoc_rag.ingestion.ingest_markdown docs/ --max-child-size 400
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from netdoc_rag.chunking import chunk, chunk_stats
from netdoc_rag.errors import EmptyDocument

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIXES = (".md", ".markdown")


def iter_markdown_files(root: Path) -> Iterator[Tuple[str, str]]:
    """Yield (doc_id, text) for each markdown file under root, in sorted path order."""
    if root.is_file():
        yield root.name, root.read_text(encoding="utf-8")
        return
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix.lower() in MARKDOWN_SUFFIXES:
            yield path.relative_to(root).as_posix(), path.read_text(encoding="utf-8")


def ingest_directory(pipeline, path: str) -> Dict[str, int]:
    """Load every markdown file under path into the pipeline's store.

    Empty files are skipped with a warning; other errors propagate.

    Returns:
        Dict[str, int]: files, skipped, parents, children, added, removed.
    """
    root = Path(path)
    if not root.exists():
        raise FileNotFoundError(f"docs path not found: {path}")
    totals = {"files": 0, "skipped": 0, "parents": 0, "children": 0, "added": 0, "removed": 0}
    for doc_id, text in iter_markdown_files(root):
        try:
            res = pipeline.ingest(text, doc_id=doc_id)
        except EmptyDocument:
            logger.warning("Skipping %s: no extractable content", doc_id)
            totals["skipped"] += 1
            continue
        totals["files"] += 1
        totals["parents"] += res.parents
        totals["children"] += res.children
        totals["added"] += res.added
        totals["removed"] += res.removed
    logger.info("Ingested %d files from %s (%d skipped)", totals["files"], path, totals["skipped"])
    return totals


def chunk_files(
    path: str,
    max_parent_size: Optional[int] = None,
    max_child_size: Optional[int] = None,
    overlap_size: Optional[int] = None,
) -> List[Dict[str, object]]:
    """Chunk every markdown file under path and return per-file statistics."""
    report: List[Dict[str, object]] = []
    for doc_id, text in iter_markdown_files(Path(path)):
        try:
            chunks = chunk(text, max_parent_size, max_child_size, overlap_size, doc_id=doc_id)
        except EmptyDocument:
            logger.warning("Skipping %s: no extractable content", doc_id)
            continue
        stats = chunk_stats(chunks)
        logger.debug("File %s => %s", doc_id, stats)
        report.append({"doc_id": doc_id, **stats})
    return report


def main():
    parser = argparse.ArgumentParser(description="Chunk markdown documentation and print chunk statistics.")
    parser.add_argument("path", help="Markdown file or directory of .md files")
    parser.add_argument("--max-parent-size", type=int, default=None, help="Parent size limit in characters")
    parser.add_argument("--max-child-size", type=int, default=None, help="Child window size in characters")
    parser.add_argument("--overlap", type=int, default=None, help="Child overlap in characters")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger.info("Chunking markdown under %s", args.path)

    try:
        report = chunk_files(args.path, args.max_parent_size, args.max_child_size, args.overlap)
    except Exception:
        logger.exception("Chunking failed for %s", args.path)
        raise
    for row in report:
        print(json.dumps(row, ensure_ascii=False))
    total = sum(int(r["total"]) for r in report)
    print(f"[CHUNK-MD] {args.path} -> {len(report)} files, {total} chunks")


if __name__ == "__main__":
    main()
