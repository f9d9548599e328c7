"""Utility helpers for ids, table normalization, and size estimates.

This module provides:
- stable_doc_id: stable SHA-1 based identifier for documents
- table_rows_to_text: flatten header + rows into "column=value" lines
- markdown_table_rows / html_table_rows: cell extraction from pipe tables and
  raw HTML tables (BeautifulSoup)
- estimate_tokens: rough token estimate for mixed Chinese/English text
- normalize_ws: collapse whitespace runs
"""
import re
import hashlib
from typing import List, Tuple

from bs4 import BeautifulSoup

_CJK_CHAR = re.compile(r"[\u4e00-\u9fff]")
_TABLE_SEPARATOR = re.compile(r"^\|?[\s\-:|]+\|?$")


def stable_doc_id(s: str) -> str:
    """Compute a stable 40-char SHA-1 hex identifier for a string.

    Args:
        s: Input string (document text, path, or caller-supplied id).

    Returns:
        str: First 40 hex characters of the SHA-1 digest.
    """
    return hashlib.sha1(s.encode("utf-8")).hexdigest()[:40]


def normalize_ws(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def estimate_tokens(text: str) -> int:
    """Estimate tokens: ~2 characters per token for Chinese, ~4 for everything else."""
    if not text:
        return 0
    cjk = len(_CJK_CHAR.findall(text))
    other = len(text) - cjk
    return -(-(cjk * 2 + other) // 4)


def is_table_line(line: str) -> bool:
    t = line.strip()
    return len(t) > 1 and t.startswith("|") and t.endswith("|")


def is_table_separator(line: str) -> bool:
    t = line.strip()
    return t.startswith("|") and "-" in t and bool(_TABLE_SEPARATOR.match(t))


def _split_row(line: str) -> List[str]:
    t = line.strip()
    if t.startswith("|"):
        t = t[1:]
    if t.endswith("|"):
        t = t[:-1]
    return [c.strip() for c in t.split("|")]


def markdown_table_rows(lines: List[str]) -> Tuple[List[str], List[List[str]]]:
    """Split pipe-table lines into (header cells, body rows); separator rows are skipped."""
    if not lines:
        return [], []
    header = _split_row(lines[0])
    rows = [_split_row(ln) for ln in lines[1:] if not is_table_separator(ln)]
    return header, [r for r in rows if any(r)]


def html_table_rows(html: str) -> Tuple[List[str], List[List[str]]]:
    """Extract (header cells, body rows) from raw HTML table markup.

    Header cells come from <th> elements; rows are <tr> elements that contain <td>
    cells. Cell text is whitespace-collapsed and HTML entities are decoded.

    Args:
        html: Markup containing a <table> element.

    Returns:
        Tuple[List[str], List[List[str]]]: Header cells (possibly empty) and rows.
    """
    soup = BeautifulSoup(html, "lxml")
    header = [th.get_text(" ", strip=True) for th in soup.find_all("th")]
    rows: List[List[str]] = []
    for tr in soup.find_all("tr"):
        cells = [normalize_ws(td.get_text(" ", strip=True)) for td in tr.find_all("td")]
        if cells:
            rows.append(cells)
    if not header and not rows:
        text = normalize_ws(soup.get_text(" ", strip=True))
        if text:
            rows = [[text]]
    return header, rows


def table_rows_to_text(header: List[str], rows: List[List[str]]) -> str:
    """Flatten a table to one line per row of "column=value" pairs.

    Rows whose cell count does not match the header fall back to "cell | cell".

    Args:
        header: Column names.
        rows: Body rows.

    Returns:
        str: Newline-joined row descriptions; empty when there are no rows.
    """
    lines: List[str] = []
    for cells in rows:
        if header and len(header) == len(cells):
            lines.append(", ".join(f"{h}={c}" for h, c in zip(header, cells)))
        else:
            lines.append(" | ".join(cells))
    return "\n".join(ln for ln in lines if ln.strip())
