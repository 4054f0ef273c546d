"""
Tests para rag/ingest — Chunking, construcción de índice y búsqueda FAISS.

Se usa un embedder falso (bag of words sobre un vocabulario fijo) para
no descargar modelos: el índice FAISS y los archivos del store son reales.
"""

import json

import numpy as np
import pytest

import rag.query.retriever as retriever_module
from rag.ingest.build_index import IndexBuilder, build_agent_index
from rag.ingest.chunker import chunk_text, extract_sections, load_documents, process_documents
from rag.query.retriever import FAISSVectorSearch

VOCAB = ("refund", "shipping", "warranty")


class FakeEmbedder:
    """Vector = conteo de cada palabra del vocabulario (+ un sesgo), normalizado."""

    def __init__(self, model_name=None):
        self.model_name = model_name

    def get_sentence_embedding_dimension(self):
        return len(VOCAB) + 1

    def encode(self, texts, **kwargs):
        vectors = []
        for text in texts:
            low = text.lower()
            vec = [float(low.count(word)) for word in VOCAB] + [0.1]
            vectors.append(vec)
        arr = np.array(vectors, dtype="float32")
        return arr / np.linalg.norm(arr, axis=1, keepdims=True)


@pytest.fixture
def docs_dir(tmp_path):
    docs = tmp_path / "knowledge" / "acme" / "support-bot"
    docs.mkdir(parents=True)
    (docs / "refunds.md").write_text(
        "# Refunds\nRefunds are processed within 5 days of the refund request.\n",
        encoding="utf-8",
    )
    (docs / "shipping.txt").write_text("Shipping takes 3 business days.\n", encoding="utf-8")
    (docs / "notes.pdf").write_text("ignored", encoding="utf-8")
    return docs


class TestChunker:
    def test_load_documents_filters_suffixes(self, docs_dir):
        names = [d["filename"] for d in load_documents(docs_dir)]
        assert names == ["refunds.md", "shipping.txt"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_documents(tmp_path / "nope")

    def test_extract_sections_by_header(self):
        content = "Intro text\n# Title\nBody one\n## Sub\nBody two"
        sections = extract_sections(content, "faq.md")
        assert [s["header"] for s in sections] == ["faq.md", "Title", "Sub"]
        assert sections[2]["level"] == 2
        assert sections[2]["text"] == "Body two"

    def test_short_text_single_chunk(self):
        assert chunk_text("short text", chunk_size=100) == ["short text"]

    def test_long_text_overlaps(self):
        text = " ".join(f"word{i}" for i in range(200))
        chunks = chunk_text(text, chunk_size=100, overlap=20)
        assert len(chunks) > 1
        assert all(len(c) <= 100 for c in chunks)
        # Cada chunk comparte el inicio con el final del anterior
        assert chunks[1].split()[0] in chunks[0]

    def test_invalid_overlap(self):
        with pytest.raises(ValueError):
            chunk_text("x" * 50, chunk_size=10, overlap=10)

    def test_process_documents_metadata(self, docs_dir):
        chunks = process_documents(docs_dir)
        assert [c["id"] for c in chunks] == list(range(len(chunks)))
        refund = chunks[0]
        assert refund["metadata"]["source"] == "refunds.md"
        assert refund["metadata"]["section"] == "Refunds"
        assert refund["metadata"]["chunk_index"] == 0


class TestBuildAndSearch:
    def test_build_agent_index_writes_store(self, tmp_path, docs_dir):
        store = tmp_path / "store"
        metadata = build_agent_index(
            "acme", "support-bot", store, docs_dir=docs_dir,
            builder=IndexBuilder(model_name="fake", model=FakeEmbedder()),
        )

        agent_store = store / "acme" / "support-bot"
        assert (agent_store / "faiss.index").exists()
        assert (agent_store / "chunks.pkl").exists()
        saved = json.loads((agent_store / "metadata.json").read_text(encoding="utf-8"))
        assert saved["total_vectors"] == 2
        assert saved["index_type"] == "IndexFlatIP"
        assert metadata["documents_indexed"] == ["refunds.md", "shipping.txt"]

    def test_empty_docs_dir_raises(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(ValueError):
            build_agent_index(
                "acme", "support-bot", tmp_path / "store", docs_dir=empty,
                builder=IndexBuilder(model_name="fake", model=FakeEmbedder()),
            )

    def test_search_returns_similar_passages(self, tmp_path, docs_dir, monkeypatch):
        store = tmp_path / "store"
        build_agent_index(
            "acme", "support-bot", store, docs_dir=docs_dir,
            builder=IndexBuilder(model_name="fake", model=FakeEmbedder()),
        )
        monkeypatch.setattr(retriever_module, "SentenceTransformer", FakeEmbedder)

        search = FAISSVectorSearch(store, model_name="fake")
        passages = search.search("support-bot", "acme", "refund policy", limit=5, threshold=0.3)

        assert len(passages) == 1
        assert passages[0].source_id == "refunds.md#0"
        assert 0.9 < passages[0].similarity <= 1.0
        assert search.total_vectors() == 2

    def test_search_unknown_agent_is_empty(self, tmp_path, monkeypatch):
        monkeypatch.setattr(retriever_module, "SentenceTransformer", FakeEmbedder)
        search = FAISSVectorSearch(tmp_path, model_name="fake")
        assert search.search("ghost", "acme", "refund") == []
