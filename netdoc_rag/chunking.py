"""Structure-aware markdown chunking into parent/child passages.

Provides:
- parse_blocks: split markdown into ordered structural blocks (headings, paragraphs,
  fenced code, pipe/HTML tables, lists, blockquotes).
- chunk: build the header-nesting tree and emit one parent chunk per section, plus
  sliding-window child chunks for parents larger than max_parent_size.
- chunk_stats: counts and size statistics for a chunking run.

Invariants:
- No emitted chunk has empty trimmed content; whitespace-only blocks never become units.
- Fenced code blocks, tables and blockquotes are atomic: a child window never cuts one.
- Ids are derived from a stable hash of the caller doc_id (if any) and the document
  text, so the same input always yields the same ids and an edited document gets new ones.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from netdoc_rag.config import settings
from netdoc_rag.errors import EmptyDocument, ValidationError
from netdoc_rag.lexicon import Lexicon, get_lexicon
from netdoc_rag.schemas import Chunk, ChunkMetadata, ChunkType
from netdoc_rag.utils import (
    estimate_tokens,
    html_table_rows,
    is_table_line,
    is_table_separator,
    markdown_table_rows,
    stable_doc_id,
    table_rows_to_text,
)

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
FENCE_PATTERN = re.compile(r"^\s*(`{3,}|~{3,})")
HR_PATTERN = re.compile(r"^\s*([-*_])(?:\s*\1){2,}\s*$")
BULLET_PATTERN = re.compile(r"^(\s*)(?:[-*+]|\d+[.)])\s+")
SENTENCE_SPLIT = re.compile(r"(?<=[。！？；!?;.])\s+|(?<=[。！？；])")
COMMAND_LINE = re.compile(
    r"^\s*(?:\$\s*|sudo\s+)?((?:nv|netq|vtysh|net|ip|show)\s+[^\n`]+)", re.MULTILINE | re.IGNORECASE
)


@dataclass
class Block:
    """One structural markdown block.

    Attributes:
        kind: heading | paragraph | code | table | list | blockquote.
        text: Normalized text (tables already flattened to column=value rows).
        level: Heading level (1..6); 0 for non-heading blocks.
        title: Heading title text.
        items: List item texts, each a window unit of its own.
    """
    kind: str
    text: str
    level: int = 0
    title: str = ""
    items: List[str] = field(default_factory=list)

    @property
    def atomic(self) -> bool:
        return self.kind in ("code", "table", "blockquote")


@dataclass
class _Section:
    level: int
    title: str
    heading: str
    breadcrumbs: List[str]
    blocks: List[Block] = field(default_factory=list)


def _strip_frontmatter(text: str) -> str:
    m = FRONTMATTER_PATTERN.match(text)
    return text[m.end():] if m else text


def _starts_block(lines: List[str], i: int) -> bool:
    """True when line i opens a non-paragraph block."""
    line = lines[i]
    s = line.strip()
    return bool(
        HEADING_PATTERN.match(s)
        or FENCE_PATTERN.match(line)
        or s.startswith(">")
        or HR_PATTERN.match(line)
        or BULLET_PATTERN.match(line)
        or s.lower().startswith("<table")
        or (is_table_line(line) and i + 1 < len(lines) and is_table_separator(lines[i + 1]))
    )


def parse_blocks(text: str) -> List[Block]:
    """Parse markdown into ordered structural blocks.

    YAML front matter and horizontal rules are dropped, and so is every block whose
    text is whitespace only.

    Args:
        text: Raw markdown document.

    Returns:
        List[Block]: Blocks in document order.
    """
    lines = _strip_frontmatter(text.replace("\r\n", "\n").replace("\r", "\n")).split("\n")
    blocks: List[Block] = []
    i = 0
    n = len(lines)
    while i < n:
        line = lines[i]
        stripped = line.strip()

        if not stripped:
            i += 1
            continue

        fence = FENCE_PATTERN.match(line)
        if fence:
            marker = fence.group(1)
            code = [line]
            i += 1
            while i < n:
                code.append(lines[i])
                i += 1
                if lines[i - 1].strip().startswith(marker[0] * len(marker)):
                    break
            blocks.append(Block("code", "\n".join(code).strip()))
            continue

        heading = HEADING_PATTERN.match(stripped)
        if heading:
            blocks.append(Block("heading", stripped, level=len(heading.group(1)), title=heading.group(2).strip()))
            i += 1
            continue

        if is_table_line(line) and i + 1 < n and is_table_separator(lines[i + 1]):
            table: List[str] = []
            while i < n and (is_table_line(lines[i]) or is_table_separator(lines[i])):
                table.append(lines[i])
                i += 1
            header, rows = markdown_table_rows(table)
            flat = table_rows_to_text(header, rows) or " | ".join(c for c in header if c)
            blocks.append(Block("table", flat))
            continue

        if stripped.lower().startswith("<table"):
            html = [line]
            i += 1
            while "</table>" not in html[-1].lower() and i < n:
                html.append(lines[i])
                i += 1
            header, rows = html_table_rows("\n".join(html))
            blocks.append(Block("table", table_rows_to_text(header, rows)))
            continue

        if HR_PATTERN.match(line):
            i += 1
            continue

        bullet = BULLET_PATTERN.match(line)
        if bullet:
            base = len(bullet.group(1))
            items: List[List[str]] = []
            while i < n:
                cur = lines[i]
                m = BULLET_PATTERN.match(cur)
                indent = len(cur) - len(cur.lstrip())
                if m and len(m.group(1)) <= base:
                    items.append([cur.rstrip()])
                elif cur.strip() and (indent > base or m):
                    items[-1].append(cur.rstrip())
                elif not cur.strip():
                    nxt = next((ln for ln in lines[i + 1:] if ln.strip()), "")
                    nxt_indent = len(nxt) - len(nxt.lstrip())
                    if not nxt or not (BULLET_PATTERN.match(nxt) or nxt_indent > base):
                        break
                else:
                    break
                i += 1
            texts = ["\n".join(it).strip() for it in items]
            texts = [t for t in texts if t]
            if texts:
                blocks.append(Block("list", "\n".join(texts), items=texts))
            continue

        if stripped.startswith(">"):
            quote: List[str] = []
            while i < n:
                cur = lines[i].strip()
                if cur.startswith(">"):
                    quote.append(lines[i].rstrip())
                elif not cur and i + 1 < n and lines[i + 1].strip().startswith(">"):
                    quote.append("")
                else:
                    break
                i += 1
            body = "\n".join(quote).strip()
            if body.strip("> \n"):
                blocks.append(Block("blockquote", body))
            continue

        para = [line]
        i += 1
        while i < n and lines[i].strip() and not _starts_block(lines, i):
            para.append(lines[i])
            i += 1
        body = "\n".join(para).strip()
        if body:
            blocks.append(Block("paragraph", body))

    return [b for b in blocks if b.text.strip()]


def _build_sections(blocks: List[Block]) -> List[_Section]:
    """Group blocks into sections; pre-heading content lands in a level-0 root."""
    sections: List[_Section] = []
    root = _Section(level=0, title="", heading="", breadcrumbs=[])
    stack: List[Tuple[int, str]] = []
    current = root
    for b in blocks:
        if b.kind == "heading":
            while stack and stack[-1][0] >= b.level:
                stack.pop()
            stack.append((b.level, b.title))
            current = _Section(level=b.level, title=b.title, heading=b.text, breadcrumbs=[t for _, t in stack])
            sections.append(current)
        else:
            current.blocks.append(b)
    if root.blocks:
        sections.insert(0, root)
    return sections


def _split_sentences(text: str, limit: int) -> List[str]:
    """Split an oversized paragraph on sentence ends, merging short sentences up to limit."""
    parts = [p.strip() for p in SENTENCE_SPLIT.split(text) if p and p.strip()]
    out: List[str] = []
    for p in parts:
        if out and len(out[-1]) + 1 + len(p) <= limit:
            out[-1] = f"{out[-1]} {p}"
        else:
            out.append(p)
    return out or [text]


def _units(section: _Section, blocks: List[Block], child_size: int) -> List[str]:
    """Window units of a section: the heading line, list items, atomic blocks, paragraphs."""
    units: List[str] = [section.heading] if section.heading else []
    for b in blocks:
        if b.kind == "list":
            units.extend(b.items)
        elif b.kind == "paragraph" and len(b.text) > child_size:
            units.extend(_split_sentences(b.text, child_size))
        else:
            units.append(b.text)
    return [u for u in units if u.strip()]


def _windows(units: List[str], size: int, overlap: int) -> List[str]:
    """Sliding window over whole units.

    A window takes units while the joined length stays within size (at least one
    unit, so an oversized atomic block forms its own window). The next window starts
    at the trailing units of the previous one that fit within overlap characters,
    and always at least one unit further than the previous start.
    """
    windows: List[str] = []
    start = 0
    n = len(units)
    while start < n:
        end = start
        length = 0
        while end < n:
            add = len(units[end]) + (2 if end > start else 0)
            if end > start and length + add > size:
                break
            length += add
            end += 1
        windows.append("\n\n".join(units[start:end]))
        if end >= n:
            break
        back = end
        carried = 0
        while back - 1 > start:
            add = len(units[back - 1]) + (2 if carried else 0)
            if carried + add > overlap:
                break
            carried += add
            back -= 1
        start = back
    return windows


def _summary(content: str, breadcrumbs: List[str], lexicon: Lexicon) -> str:
    parts: List[str] = []
    if breadcrumbs:
        parts.append(breadcrumbs[-1])
    commands = [m.group(1).strip()[:80] for m in COMMAND_LINE.finditer(content)]
    if commands:
        parts.append("commands: " + ", ".join(commands[:2]))
    terms = lexicon.find_terms(content)
    if terms:
        parts.append("terms: " + ", ".join(t.upper() if t.isascii() else t for t in terms[:4]))
    return " | ".join(parts)


def _validate_sizes(max_parent_size: int, max_child_size: int, overlap_size: int) -> None:
    if max_parent_size <= 0 or max_child_size <= 0:
        raise ValidationError(
            f"chunk sizes must be positive (parent={max_parent_size}, child={max_child_size})"
        )
    if overlap_size < 0:
        raise ValidationError(f"overlap must not be negative (overlap={overlap_size})")
    if max_child_size > max_parent_size:
        raise ValidationError(
            f"max_child_size ({max_child_size}) exceeds max_parent_size ({max_parent_size})"
        )
    if overlap_size >= max_child_size:
        raise ValidationError(
            f"overlap_size ({overlap_size}) must be smaller than max_child_size ({max_child_size})"
        )


def chunk(
    document: str,
    max_parent_size: Optional[int] = None,
    max_child_size: Optional[int] = None,
    overlap_size: Optional[int] = None,
    doc_id: Optional[str] = None,
    lexicon: Optional[Lexicon] = None,
) -> List[Chunk]:
    """Split a markdown document into a two-level parent/child chunk hierarchy.

    Each header node becomes a parent whose content is its header line, its own
    blocks, and the non-header content of its descendant sections. Pre-header
    content becomes a root parent with empty breadcrumbs. Parents longer than
    max_parent_size are additionally split into children with a block-aligned
    sliding window of max_child_size characters and overlap_size characters of
    backward overlap.

    Args:
        document: Markdown text.
        max_parent_size: Parent size limit in characters (default settings.MAX_PARENT_SIZE).
        max_child_size: Child window size in characters (default settings.MAX_CHILD_SIZE).
        overlap_size: Backward overlap in characters (default settings.CHUNK_OVERLAP).
        doc_id: Optional caller id; otherwise the document text seeds the ids.
        lexicon: Lexicon used for parent summaries (default: bundled lexicon).

    Returns:
        List[Chunk]: Parents in document order, each followed by its children.

    Raises:
        ValidationError: On non-positive sizes, child > parent, or overlap >= child.
        EmptyDocument: When the document has no extractable content.
    """
    max_parent_size = settings.MAX_PARENT_SIZE if max_parent_size is None else max_parent_size
    max_child_size = settings.MAX_CHILD_SIZE if max_child_size is None else max_child_size
    overlap_size = settings.CHUNK_OVERLAP if overlap_size is None else overlap_size
    _validate_sizes(max_parent_size, max_child_size, overlap_size)

    if not document or not document.strip():
        raise EmptyDocument("document is empty")
    blocks = parse_blocks(document)
    if not blocks:
        raise EmptyDocument("document has no extractable content")

    lexicon = lexicon or get_lexicon()
    doc_key = doc_id or stable_doc_id(document)
    prefix = stable_doc_id(f"{doc_key}\n{document}")[:12]
    sections = _build_sections(blocks)

    chunks: List[Chunk] = []
    for idx, sec in enumerate(sections):
        own = list(sec.blocks)
        if sec.level > 0:
            for sub in sections[idx + 1:]:
                if sub.level <= sec.level:
                    break
                own.extend(sub.blocks)

        units = _units(sec, own, max_child_size)
        content = "\n\n".join(units).strip()
        if not content:
            continue

        parent_id = f"{prefix}-p{idx}"
        children: List[str] = []
        if len(content) > max_parent_size:
            children = [w for w in _windows(units, max_child_size, overlap_size) if w.strip()]

        chunks.append(
            Chunk(
                id=parent_id,
                chunk_type=ChunkType.PARENT,
                content=content,
                metadata=ChunkMetadata(
                    breadcrumbs=list(sec.breadcrumbs),
                    header=sec.breadcrumbs[-1] if sec.breadcrumbs else None,
                    summary=_summary(content, sec.breadcrumbs, lexicon),
                    token_estimate=estimate_tokens(content),
                    total_children=len(children) or None,
                    doc_id=doc_key,
                ),
            )
        )
        for j, text in enumerate(children):
            chunks.append(
                Chunk(
                    id=f"{parent_id}-c{j}",
                    chunk_type=ChunkType.CHILD,
                    content=text,
                    parent_id=parent_id,
                    metadata=ChunkMetadata(
                        breadcrumbs=list(sec.breadcrumbs),
                        header=sec.breadcrumbs[-1] if sec.breadcrumbs else None,
                        token_estimate=estimate_tokens(text),
                        child_index=j,
                        total_children=len(children),
                        doc_id=doc_key,
                    ),
                )
            )

    if not chunks:
        raise EmptyDocument("document has no extractable content")
    logger.debug("Chunked document %s: blocks=%d sections=%d chunks=%d", prefix, len(blocks), len(sections), len(chunks))
    return chunks


def chunk_stats(chunks: List[Chunk]) -> Dict[str, float]:
    """Counts and size statistics for a list of chunks.

    Returns:
        Dict[str, float]: parents, children, total, avg_parent_chars, avg_child_chars,
            max_chars, total_tokens.
    """
    parents = [c for c in chunks if c.chunk_type == ChunkType.PARENT]
    children = [c for c in chunks if c.chunk_type == ChunkType.CHILD]

    def _avg(cs: List[Chunk]) -> float:
        return round(sum(len(c.content) for c in cs) / len(cs), 1) if cs else 0.0

    return {
        "parents": len(parents),
        "children": len(children),
        "total": len(chunks),
        "avg_parent_chars": _avg(parents),
        "avg_child_chars": _avg(children),
        "max_chars": max((len(c.content) for c in chunks), default=0),
        "total_tokens": sum(c.metadata.token_estimate for c in chunks),
    }
