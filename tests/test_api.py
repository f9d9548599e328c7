"""HTTP surface tests using FastAPI's TestClient with an in-memory pipeline."""

import pytest
from fastapi.testclient import TestClient

from netdoc_rag.indexes import BM25Index
from netdoc_rag.main import app, get_pipeline
from netdoc_rag.pipeline import RetrievalPipeline
from netdoc_rag.retrieval import HybridRetriever
from netdoc_rag.store import ChunkStore

from tests.conftest import SAMPLE_DOC, FakeChannel


@pytest.fixture
def pipeline(lexicon) -> RetrievalPipeline:
    store = ChunkStore()
    return RetrievalPipeline(store, HybridRetriever(keyword=BM25Index(store, lexicon)), lexicon=lexicon)


@pytest.fixture
def client(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "chunks": 0}


def test_ingest_then_search(client) -> None:
    created = client.post("/documents", json={"document": SAMPLE_DOC, "doc_id": "qos.md"})
    assert created.status_code == 201
    assert created.json()["doc_id"] == "qos.md"
    assert created.json()["parents"] >= 4

    response = client.post("/search", json={"query": "如何配置访问控制列表允许192.168.1.0/24网段", "limit": 2})
    assert response.status_code == 200
    body = response.json()
    assert 0 < len(body["chunks"]) <= 2
    assert body["intent"]["intent"] == "configuration"
    assert body["degraded"] is False
    top = body["chunks"][0]
    assert {"id", "content", "score", "debug", "metadata"} <= set(top)
    assert top["debug"]["keyword_rank"] == 1


def test_reingest_reports_replaced_chunks(client, pipeline) -> None:
    first = client.post("/documents", json={"document": "# A\nold text about pfc", "doc_id": "guide.md"}).json()
    assert (first["added"], first["removed"]) == (1, 0)
    second = client.post("/documents", json={"document": "# A\nnew text about ecn", "doc_id": "guide.md"}).json()
    assert (second["added"], second["removed"]) == (1, 1)
    assert [c.content for c in pipeline.store] == ["# A\n\nnew text about ecn"]


def test_empty_document_is_bad_request(client) -> None:
    response = client.post("/documents", json={"document": "   "})
    assert response.status_code == 400


def test_empty_query_rejected(client) -> None:
    assert client.post("/search", json={"query": ""}).status_code == 422


def test_search_with_no_documents_returns_empty(client) -> None:
    response = client.post("/search", json={"query": "pfc"})
    assert response.status_code == 200
    assert response.json()["chunks"] == []


def test_total_retrieval_failure_is_503(lexicon) -> None:
    store = ChunkStore()
    failing = RetrievalPipeline(
        store, HybridRetriever(keyword=FakeChannel("keyword", exc=RuntimeError("down")), max_attempts=1), lexicon=lexicon
    )
    app.dependency_overrides[get_pipeline] = lambda: failing
    try:
        response = TestClient(app).post("/search", json={"query": "pfc"})
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 503


def test_validate(client) -> None:
    response = client.post("/validate", json={"answer": "执行命令：nv commit", "references": ["nv config apply"]})
    assert response.status_code == 200
    assert response.json() == {"is_valid": False, "suspicious_commands": ["nv commit"], "warnings": []}
