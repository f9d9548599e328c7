"""Pydantic data model and API schemas.

Defines the records exchanged between pipeline stages and the public contracts
used by the FastAPI endpoints:
- Chunk / ChunkMetadata: parent/child passages produced by the chunker.
- NetworkAddress, CommandInfo, SemanticGroup, ExtractedEntities: query entities.
- IntentContext, IntentResult: intent classification output.
- SearchDebug, SearchResult: fused retrieval results.
- ValidationResult: grounding check of a generated answer.
- SearchRequest/SearchResponse, ValidateRequest, IngestRequest/IngestResponse.
"""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkType(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class Intent(str, Enum):
    """Query intent categories."""
    COMMAND = "command"
    TROUBLESHOOT = "troubleshoot"
    CONFIGURATION = "configuration"
    EXPLANATION = "explanation"
    COMPARISON = "comparison"
    PERFORMANCE = "performance"
    BEST_PRACTICE = "best_practice"
    VERIFICATION = "verification"
    QUESTION = "question"
    GENERAL = "general"


class ChunkMetadata(BaseModel):
    """Structural context attached to a chunk.

    Attributes:
        breadcrumbs: Ancestor header titles, ending with the chunk's own section title.
        header: Title of the section the chunk belongs to, if any.
        summary: Short digest (section, commands, technical terms) for parents.
        token_estimate: Rough token count (CJK ~2 chars/token, other ~4 chars/token).
        child_index: Position of a child within its parent.
        total_children: Number of children of the parent.
        doc_id: Identifier of the source document.
    """
    model_config = ConfigDict(frozen=True)

    breadcrumbs: List[str] = Field(default_factory=list)
    header: Optional[str] = None
    summary: str = ""
    token_estimate: int = 0
    child_index: Optional[int] = None
    total_children: Optional[int] = None
    doc_id: Optional[str] = None


class Chunk(BaseModel):
    """A contiguous unit of document text stored for retrieval."""
    model_config = ConfigDict(frozen=True)

    id: str
    chunk_type: ChunkType
    content: str
    parent_id: Optional[str] = None
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class NetworkAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    type: Literal["cidr", "ipv4", "ipv6"]
    mask: Optional[str] = None


class CommandInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str
    action: Literal["configure", "show", "enable", "disable", "delete"]
    target: str


class SemanticGroup(BaseModel):
    """Topic-level match (e.g. flow_control, vendor) with a confidence in [0, 1]."""
    model_config = ConfigDict(frozen=True)

    type: str
    elements: List[str]
    confidence: float = Field(ge=0.0, le=1.0)


class ExtractedEntities(BaseModel):
    """Entities and keywords extracted from one query.

    Attributes:
        keywords: Duplicate-free keywords in first-seen order.
        network_addresses: CIDR / IPv4 / IPv6 addresses, CIDR first.
        commands: CLI verbs/nouns with inferred action and target.
        semantic_groups: Technical-term topics matched in the query.
    """
    model_config = ConfigDict(frozen=True)

    keywords: List[str] = Field(default_factory=list)
    network_addresses: List[NetworkAddress] = Field(default_factory=list)
    commands: List[CommandInfo] = Field(default_factory=list)
    semantic_groups: List[SemanticGroup] = Field(default_factory=list)


class IntentContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_error: bool = False
    has_command: bool = False
    has_parameter: bool = False
    complexity: Literal["simple", "medium", "complex"] = "simple"


class IntentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)
    sub_intents: List[Intent] = Field(default_factory=list)
    context: IntentContext = Field(default_factory=IntentContext)


class SearchDebug(BaseModel):
    """Per-channel evidence behind a fused score."""
    keyword_score: Optional[float] = None
    vector_score: Optional[float] = None
    keyword_rank: Optional[int] = None
    vector_rank: Optional[int] = None
    rerank_score: Optional[float] = None


class SearchResult(BaseModel):
    chunk_id: str
    score: float
    debug: SearchDebug = Field(default_factory=SearchDebug)


class ValidationResult(BaseModel):
    is_valid: bool
    suspicious_commands: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class SearchRequest(BaseModel):
    """Request body for the /search endpoint.

    Attributes:
        query: The user query.
        limit: Maximum number of chunks to return.
        history: Recent conversation turns, oldest first.
    """
    query: str = Field(..., min_length=1, description="User query")
    limit: Optional[int] = Field(default=None, ge=1, le=100)
    history: List[str] = Field(default_factory=list)


class ScoredChunk(Chunk):
    """A chunk enriched with its retrieval score and channel evidence."""
    score: float
    debug: Optional[SearchDebug] = None


class SearchResponse(BaseModel):
    """Response body for /search.

    Attributes:
        chunks: Ranked chunks, best first.
        intent: Classified intent of the query.
        enhanced_query: Expanded query string sent to the search channels.
        degraded: True when a channel or the reranker failed and a fallback was used.
    """
    chunks: List[ScoredChunk]
    intent: Optional[IntentResult] = None
    enhanced_query: str = ""
    degraded: bool = False


class ValidateRequest(BaseModel):
    answer: str
    references: List[str] = Field(default_factory=list)


class IngestRequest(BaseModel):
    document: str = Field(..., description="Markdown document text")
    doc_id: Optional[str] = None


class IngestResponse(BaseModel):
    """Outcome of ingesting one document.

    Attributes:
        doc_id: Identifier the chunks were stored under.
        parents / children: Chunk counts of the document as chunked.
        added: Chunks newly stored; 0 when the same text was already ingested.
        removed: Chunks of an earlier version of the document that were retired.
    """
    doc_id: str
    parents: int
    children: int
    added: int = 0
    removed: int = 0
