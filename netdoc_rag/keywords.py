"""Entity and keyword extraction for network-configuration queries.

Provides:
- EntityExtractor.extract: precedence-ordered extraction of CIDR blocks, bare IPv4,
  IPv6, CLI commands, technical terms (grouped by topic and vendor) and remaining
  content tokens into an ExtractedEntities record.
- extract: module-level convenience using the default lexicon.

Each stage blanks the spans it consumes before the next stage runs, so one span
is never reported twice (an address inside a CIDR block is never also a bare IPv4).
"""
import ipaddress
import logging
import re
from typing import Dict, List, Optional, Tuple

from netdoc_rag.lexicon import Lexicon, alternation, get_lexicon
from netdoc_rag.schemas import CommandInfo, ExtractedEntities, NetworkAddress, SemanticGroup

logger = logging.getLogger(__name__)

_OCTET = r"(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)"
_QUAD = rf"{_OCTET}(?:\.{_OCTET}){{3}}"

CIDR_RE = re.compile(rf"(?<![\d.])({_QUAD})/(3[0-2]|[12]?\d)(?!\d)")
IPV4_RE = re.compile(rf"(?<![\d.])({_QUAD})(?!\d|\.\d|/\d)")
IPV6_RE = re.compile(r"(?<![0-9a-f:])((?:[0-9a-f]{0,4}:){2,7}[0-9a-f]{0,4})(?:/(\d{1,3}))?(?![0-9a-f:])", re.IGNORECASE)


def _blank(text: str, start: int, end: int) -> str:
    return text[:start] + " " * (end - start) + text[end:]


def _dedupe(items) -> List[str]:
    seen = set()
    out: List[str] = []
    for it in items:
        if it and it not in seen:
            seen.add(it)
            out.append(it)
    return out


class EntityExtractor:
    """Extracts structured entities and keywords using a (injectable) lexicon."""

    def __init__(self, lexicon: Optional[Lexicon] = None):
        self.lexicon = lexicon or get_lexicon()
        self._cli_re = alternation(self.lexicon.cli_terms.keys())
        self._term_re = alternation(
            [t for terms in self.lexicon.topics.values() for t in terms]
            + [a for aliases in self.lexicon.vendors.values() for a in aliases]
        )
        self._action_res = [(action, alternation(cues)) for action, cues in self.lexicon.action_cues.items()]
        self._target_res = [(target, alternation(cues)) for target, cues in self.lexicon.command_targets.items()]

    def _addresses(self, text: str) -> Tuple[List[NetworkAddress], str]:
        found: List[NetworkAddress] = []
        seen = set()

        for m in list(CIDR_RE.finditer(text)):
            addr = m.group(0)
            if addr not in seen:
                seen.add(addr)
                found.append(NetworkAddress(address=addr, type="cidr", mask=m.group(2)))
            text = _blank(text, m.start(), m.end())

        for m in list(IPV4_RE.finditer(text)):
            addr = m.group(1)
            if addr not in seen:
                seen.add(addr)
                found.append(NetworkAddress(address=addr, type="ipv4"))
            text = _blank(text, m.start(), m.end())

        for m in list(IPV6_RE.finditer(text)):
            raw, prefix = m.group(1).lower(), m.group(2)
            if raw.count(":") == len(raw):
                continue
            try:
                ipaddress.IPv6Address(raw)
            except ValueError:
                continue
            if prefix is not None and int(prefix) > 128:
                continue
            addr = f"{raw}/{prefix}" if prefix is not None else raw
            if addr not in seen:
                seen.add(addr)
                found.append(NetworkAddress(address=addr, type="ipv6", mask=prefix))
            text = _blank(text, m.start(), m.end())

        return found, text

    def _first_cue(self, table, query: str, default: str) -> str:
        for name, rx in table:
            if rx is not None and rx.search(query):
                return name
        return default

    def _commands(self, text: str, query: str) -> Tuple[List[CommandInfo], List[str], str]:
        if self._cli_re is None:
            return [], [], text
        query_action = self._first_cue(self._action_res, query, "show")
        target = self._first_cue(self._target_res, query, "general")
        commands: List[CommandInfo] = []
        spans: List[str] = []
        for m in list(self._cli_re.finditer(text)):
            surface = re.sub(r"\s+", " ", m.group(0))
            canonical = self.lexicon.cli_terms.get(surface, surface)
            spans.extend([surface, canonical])
            if all(c.command != canonical for c in commands):
                action = self.lexicon.command_actions.get(canonical, query_action)
                commands.append(CommandInfo(command=canonical, action=action, target=target))
            text = _blank(text, m.start(), m.end())
        return commands, spans, text

    def _terms(self, text: str) -> Tuple[List[SemanticGroup], List[str], str]:
        if self._term_re is None:
            return [], [], text
        groups: Dict[str, List[str]] = {}
        spans: List[str] = []
        for m in list(self._term_re.finditer(text)):
            term = re.sub(r"\s+", " ", m.group(0))
            topic = self.lexicon.topic_of(term)
            group = topic if topic is not None else "vendor"
            if term not in groups.setdefault(group, []):
                groups[group].append(term)
            spans.append(term)
            text = _blank(text, m.start(), m.end())
        semantic = [
            SemanticGroup(type=name, elements=elements, confidence=min(1.0, 0.5 + 0.25 * (len(elements) - 1)))
            for name, elements in groups.items()
        ]
        return semantic, spans, text

    def extract(self, query: str) -> ExtractedEntities:
        """Extract entities and keywords from a query.

        Precedence: CIDR, bare IPv4, IPv6, CLI allow-list, technical terms and vendors,
        then remaining non-stopword tokens of length >= 2.

        Args:
            query: Raw user query (Chinese, English, or mixed).

        Returns:
            ExtractedEntities: Addresses, commands and semantic groups with their
                structured detail, plus an ordered duplicate-free keyword list that
                also covers every content term of the query.
        """
        lowered = (query or "").lower()
        addresses, rest = self._addresses(lowered)
        commands, command_spans, rest = self._commands(rest, lowered)
        groups, term_spans, rest = self._terms(rest)
        remaining = self.lexicon.content_terms(rest)

        keywords = _dedupe(
            [a.address for a in addresses]
            + command_spans
            + term_spans
            + remaining
            + self.lexicon.content_terms(lowered)
        )
        logger.debug(
            "Extracted entities: addresses=%d commands=%d groups=%d keywords=%d",
            len(addresses), len(commands), len(groups), len(keywords),
        )
        return ExtractedEntities(
            keywords=keywords,
            network_addresses=addresses,
            commands=commands,
            semantic_groups=groups,
        )


_default_extractor: Optional[EntityExtractor] = None


def extract(query: str) -> ExtractedEntities:
    """Extract with a shared default EntityExtractor."""
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = EntityExtractor()
    return _default_extractor.extract(query)
