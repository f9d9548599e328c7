"""
Shared test fixtures for the retrieval core test suite.

Provides: sample markdown documents, a populated chunk store, fake search channels,
a controllable clock, and a keyword-only pipeline.
"""

import asyncio
from typing import List, Optional, Tuple

import pytest

from netdoc_rag.chunking import chunk
from netdoc_rag.indexes import BM25Index
from netdoc_rag.lexicon import get_lexicon
from netdoc_rag.pipeline import RetrievalPipeline
from netdoc_rag.retrieval import HybridRetriever
from netdoc_rag.store import ChunkStore


SAMPLE_DOC = """---
title: Cumulus QoS
---
# PFC 配置指南

本文介绍如何在 Cumulus Linux 上配置 PFC（Priority Flow Control）。

## 启用 PFC

使用以下命令启用 PFC：

```
nv set qos pfc default-global switch-priority 3
nv config apply
```

## 验证 PFC

nv show qos pfc

# ACL 配置

访问控制列表（ACL）用于过滤流量。

## 允许网段

nv set acl acl_1 rule 10 match ip source-ip 192.168.1.0/24
"""


class FakeChannel:
    """Scriptable search channel recording its calls."""

    def __init__(
        self,
        name: str,
        hits: Optional[List[Tuple[str, float]]] = None,
        delay: float = 0.0,
        exc: Optional[Exception] = None,
    ):
        self.name = name
        self.hits = hits or []
        self.delay = delay
        self.exc = exc
        self.calls = 0
        self.cancelled = False

    async def search(self, query: str, limit: int) -> List[Tuple[str, float]]:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.exc is not None:
            raise self.exc
        return self.hits[:limit]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def lexicon():
    return get_lexicon()


@pytest.fixture
def sample_doc() -> str:
    return SAMPLE_DOC


@pytest.fixture
def store() -> ChunkStore:
    s = ChunkStore()
    s.add_many(chunk(SAMPLE_DOC, doc_id="cumulus-qos.md"))
    return s


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def keyword_pipeline(store, lexicon) -> RetrievalPipeline:
    retriever = HybridRetriever(keyword=BM25Index(store, lexicon), cache=None)
    return RetrievalPipeline(store, retriever, reranker=None, lexicon=lexicon)
