"""Tests for the chunk store, search channels and the end-to-end pipeline."""

import pytest

from netdoc_rag.chunking import chunk
from netdoc_rag.errors import EmptyDocument, RetrievalFailed
from netdoc_rag.indexes import BM25Index, VectorIndex, bm25_tokens
from netdoc_rag.ingestion.ingest_markdown import chunk_files, ingest_directory
from netdoc_rag.pipeline import RetrievalPipeline, merge_round_robin
from netdoc_rag.reranker import RerankerBatcher
from netdoc_rag.retrieval import HybridRetriever
from netdoc_rag.router import IntentClassifier, Rule
from netdoc_rag.schemas import ChunkType, Intent, SearchResult
from netdoc_rag.store import ChunkStore

from tests.conftest import SAMPLE_DOC, FakeChannel


ACL_QUERY = "如何配置访问控制列表允许192.168.1.0/24网段"


def _keyword_vector(text: str):
    t = text.lower()
    return [float(t.count("pfc")), float(t.count("acl")), 0.001]


class TestChunkStore:
    def test_rejects_orphan_children(self) -> None:
        chunks = chunk("# A\n" + "word " * 100, max_parent_size=100, max_child_size=50, overlap_size=10)
        children = [c for c in chunks if c.chunk_type == ChunkType.CHILD]
        with pytest.raises(ValueError):
            ChunkStore().add_many(children)

    def test_re_adding_is_idempotent(self) -> None:
        store = ChunkStore()
        chunks = chunk(SAMPLE_DOC)
        assert store.add_many(chunks) == len(chunks)
        version = store.version
        assert store.add_many(chunks) == 0
        assert store.version == version

    def test_parent_and_children_lookup(self) -> None:
        store = ChunkStore()
        store.add_many(chunk("# A\n" + "word " * 100, max_parent_size=100, max_child_size=50, overlap_size=10))
        child = next(c for c in store if c.chunk_type == ChunkType.CHILD)
        parent = store.parent_of(child)
        assert parent is not None
        assert child in store.children_of(parent.id)
        with pytest.raises(KeyError):
            store.get("missing")

    def test_replace_document_retires_old_text(self) -> None:
        store = ChunkStore()
        assert store.replace_document("guide.md", chunk("# A\nold text about pfc", doc_id="guide.md")) == (1, 0)
        store.add_many(chunk("# B\nother guide", doc_id="other.md"))
        version = store.version
        new = chunk("# A\nnew text about ecn", doc_id="guide.md")
        assert store.replace_document("guide.md", new) == (1, 1)
        assert store.version > version
        assert sorted(c.content for c in store) == ["# A\n\nnew text about ecn", "# B\n\nother guide"]
        assert store.replace_document("guide.md", new) == (0, 0)

    def test_replace_document_rejects_foreign_chunks(self) -> None:
        with pytest.raises(ValueError):
            ChunkStore().replace_document("guide.md", chunk("# A\ntext", doc_id="other.md"))


class TestSearchChannels:
    def test_bm25_only_returns_matching_chunks(self, store, lexicon) -> None:
        hits = BM25Index(store, lexicon).search_sync("acl 192.168.1.0", 10)
        assert hits
        assert all("192.168.1.0" in store.get(cid).content or "ACL" in store.get(cid).content for cid, _ in hits)

    def test_bm25_no_overlap_is_empty(self, store, lexicon) -> None:
        assert BM25Index(store, lexicon).search_sync("vxlan evpn", 10) == []

    def test_bm25_sees_new_chunks(self, store, lexicon) -> None:
        index = BM25Index(store, lexicon)
        assert index.search_sync("vxlan", 10) == []
        store.add_many(chunk("# VXLAN\nvxlan vni mapping", doc_id="vxlan.md"))
        assert index.search_sync("vxlan", 10)

    def test_chinese_bigrams(self, lexicon) -> None:
        assert bm25_tokens("访问控制", lexicon) == ["访问", "问控", "控制"]

    async def test_vector_index_ranks_by_cosine(self, store) -> None:
        index = VectorIndex(store, embed_texts=lambda texts: [_keyword_vector(t) for t in texts], embed_query=_keyword_vector)
        hits = await index.search("acl", 2)
        assert "acl" in store.get(hits[0][0]).content.lower()
        assert hits[0][1] >= hits[1][1]

    async def test_vector_index_drops_replaced_chunks(self, lexicon) -> None:
        store = ChunkStore()
        pipeline = RetrievalPipeline(store, HybridRetriever(keyword=BM25Index(store, lexicon)), lexicon=lexicon)
        index = VectorIndex(store, embed_texts=lambda texts: [_keyword_vector(t) for t in texts], embed_query=_keyword_vector)
        pipeline.ingest("# A\nacl rules", doc_id="guide.md")
        assert len(await index.search("acl", 5)) == 1
        pipeline.ingest("# A\npfc priorities", doc_id="guide.md")
        hits = await index.search("pfc", 5)
        assert [store.get(cid).content for cid, _ in hits] == ["# A\n\npfc priorities"]


class TestPipeline:
    async def test_acl_query_finds_acl_section(self, keyword_pipeline) -> None:
        response = await keyword_pipeline.search(ACL_QUERY, limit=3)
        assert response.chunks
        assert response.chunks[0].metadata.breadcrumbs[0] == "ACL 配置"
        assert response.intent.intent.value == "configuration"
        assert response.enhanced_query.startswith("192.168.1.0/24")
        assert response.degraded is False
        assert response.chunks[0].debug.keyword_rank == 1

    async def test_limit_respected(self, keyword_pipeline) -> None:
        response = await keyword_pipeline.search("pfc acl 配置", limit=2)
        assert len(response.chunks) <= 2

    async def test_failed_vector_channel_marks_degraded(self, store, lexicon) -> None:
        retriever = HybridRetriever(
            keyword=BM25Index(store, lexicon),
            vector=FakeChannel("vector", exc=RuntimeError("embedding service down")),
            max_attempts=1,
        )
        response = await RetrievalPipeline(store, retriever, lexicon=lexicon).search(ACL_QUERY)
        assert response.degraded is True
        assert response.chunks

    async def test_total_failure_raises(self, store, lexicon) -> None:
        retriever = HybridRetriever(keyword=FakeChannel("keyword", exc=RuntimeError("down")), max_attempts=1)
        with pytest.raises(RetrievalFailed):
            await RetrievalPipeline(store, retriever, lexicon=lexicon).search("pfc")

    async def test_reranker_reorders(self, store, lexicon) -> None:
        def prefer_verification(pairs):
            return [1.0 if "nv show qos pfc" in text else 0.0 for _, text in pairs]

        reranker = RerankerBatcher(
            text_of=lambda cid: store.get(cid).content, scorer=prefer_verification, enabled=True, timeout=2.0
        )
        retriever = HybridRetriever(keyword=BM25Index(store, lexicon))
        pipeline = RetrievalPipeline(store, retriever, reranker=reranker, lexicon=lexicon)
        response = await pipeline.search("pfc 配置", limit=5)
        assert "nv show qos pfc" in response.chunks[0].content
        assert response.chunks[0].debug.rerank_score == pytest.approx(1.0)

    def test_ingest(self, lexicon) -> None:
        store = ChunkStore()
        pipeline = RetrievalPipeline(store, HybridRetriever(keyword=BM25Index(store, lexicon)), lexicon=lexicon)
        res = pipeline.ingest(SAMPLE_DOC, doc_id="qos.md")
        assert res.doc_id == "qos.md"
        assert res.parents == len(store) - res.children
        with pytest.raises(EmptyDocument):
            pipeline.ingest("   ")

    async def test_reingesting_edited_document_serves_new_text(self, lexicon) -> None:
        store = ChunkStore()
        pipeline = RetrievalPipeline(store, HybridRetriever(keyword=BM25Index(store, lexicon)), lexicon=lexicon)
        first = pipeline.ingest("# A\nold text about pfc", doc_id="guide.md")
        assert (first.added, first.removed) == (1, 0)
        second = pipeline.ingest("# A\nnew text about ecn", doc_id="guide.md")
        assert (second.added, second.removed) == (1, 1)
        assert [c.content for c in store] == ["# A\n\nnew text about ecn"]
        assert all("old text" not in c.content for c in (await pipeline.search("pfc text")).chunks)
        again = pipeline.ingest("# A\nnew text about ecn", doc_id="guide.md")
        assert (again.added, again.removed) == (0, 0)

    async def test_sub_queries_reuse_clause_intents(self, store, lexicon) -> None:
        ranked = []

        def is_setting(q: str) -> bool:
            ranked.append(q)
            return "pfc" in q

        classifier = IntentClassifier(rules=[Rule(Intent.CONFIGURATION, is_setting, 1.0, "pfc")], lexicon=lexicon)
        pipeline = RetrievalPipeline(
            store, HybridRetriever(keyword=BM25Index(store, lexicon)), classifier=classifier, lexicon=lexicon
        )
        await pipeline.search("启用 pfc 然后 验证 acl")
        assert sorted(ranked) == sorted(["启用 pfc 然后 验证 acl", "启用 pfc", "验证 acl"])

    def test_merge_round_robin(self) -> None:
        first = [SearchResult(chunk_id=c, score=0.1) for c in ("a", "b", "c")]
        second = [SearchResult(chunk_id=c, score=0.1) for c in ("d", "a")]
        assert [r.chunk_id for r in merge_round_robin([first, second])] == ["a", "d", "b", "c"]


class TestMarkdownIngestion:
    def test_ingest_directory(self, tmp_path, lexicon) -> None:
        (tmp_path / "qos.md").write_text(SAMPLE_DOC, encoding="utf-8")
        (tmp_path / "empty.md").write_text("   \n", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("# ignored", encoding="utf-8")
        store = ChunkStore()
        pipeline = RetrievalPipeline(store, HybridRetriever(keyword=BM25Index(store, lexicon)), lexicon=lexicon)
        totals = ingest_directory(pipeline, str(tmp_path))
        assert totals["files"] == 1
        assert totals["skipped"] == 1
        assert totals["parents"] + totals["children"] == len(store)

    def test_missing_directory(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            ingest_directory(None, str(tmp_path / "nope"))

    def test_chunk_files_report(self, tmp_path) -> None:
        (tmp_path / "qos.md").write_text(SAMPLE_DOC, encoding="utf-8")
        report = chunk_files(str(tmp_path))
        assert [r["doc_id"] for r in report] == ["qos.md"]
        assert report[0]["parents"] >= 4


class TestEmbeddingAdapter:
    def test_batches_and_restores_order(self, monkeypatch) -> None:
        from types import SimpleNamespace

        from netdoc_rag import embedding

        calls = []

        def create(model, input):
            calls.append(list(input))
            data = [SimpleNamespace(index=i, embedding=[float(len(t))]) for i, t in enumerate(input)]
            return SimpleNamespace(data=list(reversed(data)))

        fake = SimpleNamespace(embeddings=SimpleNamespace(create=create))
        monkeypatch.setattr(embedding, "_client", fake)
        monkeypatch.setattr(embedding.settings, "EMBEDDING_BATCH_SIZE", 2)
        assert embedding.embed_texts(["a", "bb", "ccc"]) == [[1.0], [2.0], [3.0]]
        assert calls == [["a", "bb"], ["ccc"]]
        assert embedding.embed_query("abcd") == [4.0]
        assert embedding.embed_texts([]) == []
