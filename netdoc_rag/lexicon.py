"""Data-driven lexicon shared by query understanding, expansion, and chunk summaries.

Provides:
- Lexicon: immutable view over the YAML tables (topics, vendors, CLI allow-list,
  action/target cues, stop-words) plus the shared tokenizer.
- load_lexicon: parse a lexicon YAML file.
- get_lexicon: process-wide lexicon loaded once from settings.LEXICON_PATH or the
  bundled netdoc_rag/data/lexicon.yaml.
- content_terms: tokenize text into non-stopword terms with the default lexicon.

Tests inject alternate dictionaries with Lexicon.from_dict instead of editing
the bundled file.
"""
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple

import yaml

from netdoc_rag.config import settings

DEFAULT_LEXICON_PATH = Path(__file__).parent / "data" / "lexicon.yaml"

# Lowercased ASCII terms keep dotted/slashed/colon forms whole (ip addresses,
# interface names like swp1s0, version strings).
_TOKEN_RE = re.compile(r"[a-z0-9]+(?:[./:_-][a-z0-9]+)*|[\u4e00-\u9fff]+")
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")


def is_cjk(s: str) -> bool:
    """Return True when the string contains at least one CJK ideograph."""
    return bool(_CJK_RE.search(s))


def term_pattern(term: str) -> str:
    """Regex source matching a lexicon term inside lowercased text.

    ASCII terms must sit on alphanumeric boundaries (so "red" never matches
    "configured"); CJK terms match as plain substrings since Chinese text has
    no word delimiters. Inner spaces match any whitespace run.
    """
    body = r"\s+".join(re.escape(part) for part in term.lower().split())
    if is_cjk(term):
        return body
    return rf"(?<![a-z0-9]){body}(?![a-z0-9])"


def alternation(terms) -> Optional[Pattern[str]]:
    """Compile terms into one longest-first alternation, or None when empty."""
    ordered = sorted({t.lower() for t in terms}, key=lambda t: (-len(t), t))
    if not ordered:
        return None
    return re.compile("|".join(f"(?:{term_pattern(t)})" for t in ordered))


@dataclass(frozen=True)
class Lexicon:
    """Immutable lexicon tables.

    Attributes:
        topics: Topic name -> synonym list, in declaration order.
        vendors: Vendor name -> alias list.
        config_actions: Generic configuration-action synonyms.
        cli_terms: CLI surface form (English or Chinese alias) -> canonical command.
        command_actions: Canonical verb -> action.
        action_cues: Action -> cue words, in precedence order.
        command_targets: Target -> cue words, in precedence order.
        stopwords: Union of generic (per language) and domain-generic stop-words.
        version: Table version from the YAML file.
    """
    topics: Dict[str, Tuple[str, ...]]
    vendors: Dict[str, Tuple[str, ...]]
    config_actions: Tuple[str, ...]
    cli_terms: Dict[str, str]
    command_actions: Dict[str, str]
    action_cues: Dict[str, Tuple[str, ...]]
    command_targets: Dict[str, Tuple[str, ...]]
    stopwords: FrozenSet[str]
    version: int = 1
    _cjk_stopwords: Tuple[str, ...] = field(default=(), repr=False, compare=False)
    _term_re: Optional[Pattern[str]] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        cjk = sorted((w for w in self.stopwords if is_cjk(w)), key=lambda w: (-len(w), w))
        object.__setattr__(self, "_cjk_stopwords", tuple(cjk))
        terms = alternation(t for synonyms in self.topics.values() for t in synonyms)
        object.__setattr__(self, "_term_re", terms)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lexicon":
        """Build a Lexicon from the parsed YAML mapping.

        Args:
            data: Mapping with the keys of data/lexicon.yaml; missing tables are empty.

        Returns:
            Lexicon: Lowercased, immutable tables.
        """
        def _lower_map(m):
            return {str(k).lower(): tuple(str(v).lower() for v in (vals or [])) for k, vals in (m or {}).items()}

        stop_tables = data.get("stopwords") or {}
        stopwords = set()
        for words in stop_tables.values():
            stopwords.update(str(w).lower() for w in (words or []))

        return cls(
            topics=_lower_map(data.get("topics")),
            vendors=_lower_map(data.get("vendors")),
            config_actions=tuple(str(w).lower() for w in (data.get("config_actions") or [])),
            cli_terms={str(k).lower(): str(v).lower() for k, v in (data.get("cli_terms") or {}).items()},
            command_actions={str(k).lower(): str(v).lower() for k, v in (data.get("command_actions") or {}).items()},
            action_cues=_lower_map(data.get("action_cues")),
            command_targets=_lower_map(data.get("command_targets")),
            stopwords=frozenset(stopwords),
            version=int(data.get("version", 1)),
        )

    def is_stopword(self, token: str) -> bool:
        return token.lower() in self.stopwords

    def _split_cjk(self, run: str) -> List[str]:
        """Cut a CJK run at stop-word occurrences (longest stop-word first)."""
        pieces: List[str] = []
        buf: List[str] = []
        i = 0
        while i < len(run):
            hit = next((w for w in self._cjk_stopwords if run.startswith(w, i)), None)
            if hit:
                pieces.append("".join(buf))
                buf = []
                i += len(hit)
            else:
                buf.append(run[i])
                i += 1
        pieces.append("".join(buf))
        return [p for p in pieces if len(p) >= 2 and p not in self.stopwords]

    def content_terms(self, text: str) -> List[str]:
        """Tokenize text into duplicate-free, non-stopword terms in first-seen order.

        ASCII tokens of length >= 2 are kept unless they are stop-words; CJK runs are
        split at stop-word occurrences and pieces of length >= 2 are kept. Applying
        the tokenizer to one of its own terms returns that term unchanged.

        Args:
            text: Arbitrary query or document text.

        Returns:
            List[str]: Lowercased terms.
        """
        out: List[str] = []
        seen = set()
        for tok in _TOKEN_RE.findall(text.lower()):
            if is_cjk(tok):
                pieces = self._split_cjk(tok)
            else:
                pieces = [tok] if len(tok) >= 2 and tok not in self.stopwords else []
            for p in pieces:
                if p not in seen:
                    seen.add(p)
                    out.append(p)
        return out

    def topic_of(self, term: str) -> Optional[str]:
        term = term.lower()
        for topic, synonyms in self.topics.items():
            if term in synonyms:
                return topic
        return None

    def vendor_of(self, alias: str) -> Optional[str]:
        alias = alias.lower()
        for vendor, aliases in self.vendors.items():
            if alias in aliases:
                return vendor
        return None

    def find_terms(self, text: str) -> List[str]:
        """Technical terms (topic synonyms) present in text, in order of appearance."""
        if self._term_re is None:
            return []
        out: List[str] = []
        for m in self._term_re.finditer(text.lower()):
            term = re.sub(r"\s+", " ", m.group(0))
            if term not in out:
                out.append(term)
        return out


def load_lexicon(path: Optional[str] = None) -> Lexicon:
    """Load a lexicon YAML file.

    Args:
        path: File path; defaults to the bundled data/lexicon.yaml.

    Returns:
        Lexicon: Parsed tables.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    p = Path(path) if path else DEFAULT_LEXICON_PATH
    with p.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    return Lexicon.from_dict(data)


@lru_cache(maxsize=1)
def get_lexicon() -> Lexicon:
    """Return the process-wide lexicon, loaded once."""
    return load_lexicon(settings.LEXICON_PATH or None)


def content_terms(text: str, lexicon: Optional[Lexicon] = None) -> List[str]:
    """Tokenize text with the given (or default) lexicon; see Lexicon.content_terms."""
    return (lexicon or get_lexicon()).content_terms(text)
