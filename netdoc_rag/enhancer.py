"""Query expansion from extracted entities.

Provides:
- QueryEnhancer.enhance: build one lexically richer search string from an
  ExtractedEntities record.
- enhance: module-level convenience using the default lexicon.

Emission order (duplicates dropped, first occurrence wins):
1. network addresses verbatim
2. command tokens
3. the full synonym set of every matched technical topic
4. all aliases of every detected vendor
5. generic configuration-action synonyms
6. the raw keyword list

Because every keyword (and therefore every content term of the query) is emitted,
the enhanced string's content terms are a superset of the query's.
"""
from typing import List, Optional

from netdoc_rag.lexicon import Lexicon, get_lexicon
from netdoc_rag.schemas import ExtractedEntities


class QueryEnhancer:
    def __init__(self, lexicon: Optional[Lexicon] = None):
        self.lexicon = lexicon or get_lexicon()

    def enhance(self, entities: ExtractedEntities) -> str:
        """Expand extracted entities into one space-joined search string.

        Args:
            entities: Output of EntityExtractor.extract.

        Returns:
            str: Enhanced query; never empty, since the configuration-action synonyms are always appended.
        """
        parts: List[str] = []
        parts.extend(a.address for a in entities.network_addresses)
        parts.extend(c.command for c in entities.commands)

        for group in entities.semantic_groups:
            if group.type in self.lexicon.topics:
                parts.extend(self.lexicon.topics[group.type])

        for group in entities.semantic_groups:
            if group.type in self.lexicon.topics:
                continue
            for alias in group.elements:
                vendor = self.lexicon.vendor_of(alias)
                if vendor is not None:
                    parts.extend(self.lexicon.vendors[vendor])

        parts.extend(self.lexicon.config_actions)
        parts.extend(entities.keywords)

        seen = set()
        out: List[str] = []
        for p in parts:
            p = p.strip()
            if p and p not in seen:
                seen.add(p)
                out.append(p)
        return " ".join(out)


_default_enhancer: Optional[QueryEnhancer] = None


def enhance(entities: ExtractedEntities) -> str:
    """Enhance with a shared default QueryEnhancer."""
    global _default_enhancer
    if _default_enhancer is None:
        _default_enhancer = QueryEnhancer()
    return _default_enhancer.enhance(entities)
