"""Retrieval core for network-device documentation question answering.

Submodules overview:
- main: FastAPI application exposing /health, /search, /validate and /documents.
- config: Application settings and environment variable loading.
- schemas: Pydantic data model and request/response contracts.
- errors: Error taxonomy (validation, empty documents, backend and retrieval failures).
- chunking: Structure-aware markdown chunking into parent/child passages.
- lexicon: Domain vocabulary (topics, vendors, CLI terms, stop-words) and tokenization.
- router: Rule-based intent classification.
- keywords: Network address, command and technical-term extraction.
- enhancer: Query expansion from extracted entities.
- store: Append-only in-memory chunk arena.
- indexes: BM25 and embedding search channels over the store.
- embedding: OpenAI embedding helpers.
- retrieval: Hybrid retrieval with Reciprocal Rank Fusion.
- cache: Query result caching (in-memory LRU+TTL or Redis).
- reranker: Cross-encoder reranking, batched across sub-queries.
- grounding: Command grounding checks for generated answers.
- pipeline: End-to-end search and ingestion orchestration.
- ingestion: Markdown ingestion helpers and CLI.
- obs: Observability utilities (tracing/spans).
- utils: General-purpose helper functions.
"""
