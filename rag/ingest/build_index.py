"""
Build Index - Construye el índice FAISS de un agente.

Este módulo:
1. Procesa los documentos de knowledge/<company_id>/<agent_id>/ en chunks
2. Genera embeddings normalizados con sentence-transformers
3. Crea un IndexFlatIP (producto interno = similitud coseno)
4. Guarda índice, chunks y metadata en <VECTOR_STORE_DIR>/<company_id>/<agent_id>/

Uso:
    python -m rag.ingest.build_index <company_id> <agent_id> [chunk_size] [overlap]
"""

import json
import logging
import pickle
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import faiss
import numpy as np
from sentence_transformers import SentenceTransformer

from rag.ingest.chunker import process_documents
from rag.query.retriever import DEFAULT_EMBEDDING_MODEL

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
KNOWLEDGE_DIR = PROJECT_ROOT / "knowledge"

logger = logging.getLogger(__name__)


class IndexBuilder:
    """Construye y guarda el índice FAISS de un agente"""

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, model=None):
        """
        Args:
            model_name: Nombre del modelo de sentence-transformers
            model: Modelo ya cargado (opcional, útil en tests)
        """
        self.model_name = model_name
        if model is None:
            logger.info(f"Cargando modelo de embeddings: {model_name}")
            model = SentenceTransformer(model_name)
        self.model = model
        self.dimension = self.model.get_sentence_embedding_dimension()

    def generate_embeddings(self, chunks: List[Dict]) -> np.ndarray:
        texts = [chunk["text"] for chunk in chunks]
        embeddings = self.model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            batch_size=32,
        )
        logger.info(f"Embeddings generados: {embeddings.shape}")
        return np.asarray(embeddings, dtype="float32")

    def build_index(self, embeddings: np.ndarray) -> faiss.Index:
        index = faiss.IndexFlatIP(self.dimension)
        index.add(embeddings)
        logger.info(f"Índice construido con {index.ntotal} vectores")
        return index

    def save_index(
        self,
        index: faiss.Index,
        chunks: List[Dict],
        output_dir: Path,
        company_id: str,
        agent_id: str,
    ) -> Dict:
        """
        Guarda faiss.index, chunks.pkl y metadata.json.

        Returns:
            La metadata escrita
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        faiss.write_index(index, str(output_dir / "faiss.index"))
        with open(output_dir / "chunks.pkl", "wb") as f:
            pickle.dump(chunks, f)

        metadata = {
            "company_id": company_id,
            "agent_id": agent_id,
            "created_at": datetime.now().isoformat(),
            "model_name": self.model_name,
            "embedding_dimension": self.dimension,
            "total_chunks": len(chunks),
            "total_vectors": index.ntotal,
            "documents_indexed": sorted(
                {chunk["metadata"]["source"] for chunk in chunks}
            ),
            "index_type": "IndexFlatIP",
        }
        with open(output_dir / "metadata.json", "w", encoding="utf-8") as f:
            json.dump(metadata, f, indent=2, ensure_ascii=False)

        logger.info(f"Índice guardado en {output_dir}")
        return metadata


def build_agent_index(
    company_id: str,
    agent_id: str,
    store_dir: Path,
    docs_dir: Path = None,
    chunk_size: int = 800,
    overlap: int = 100,
    builder: IndexBuilder = None,
) -> Dict:
    """
    Construye el índice de un agente de punta a punta.

    Raises:
        FileNotFoundError: Si no existe el directorio de documentos
        ValueError: Si no hay chunks para indexar
    """
    docs_dir = Path(docs_dir) if docs_dir else KNOWLEDGE_DIR / company_id / agent_id
    chunks = process_documents(docs_dir, chunk_size=chunk_size, overlap=overlap)
    if not chunks:
        raise ValueError(f"No hay documentos para indexar en {docs_dir}")

    builder = builder or IndexBuilder()
    embeddings = builder.generate_embeddings(chunks)
    index = builder.build_index(embeddings)

    output_dir = Path(store_dir) / company_id / agent_id
    return builder.save_index(index, chunks, output_dir, company_id, agent_id)


if __name__ == "__main__":
    from api.config import get_settings

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) < 3:
        print(
            "Uso: python -m rag.ingest.build_index "
            "<company_id> <agent_id> [chunk_size] [overlap]"
        )
        sys.exit(1)

    settings = get_settings()
    metadata = build_agent_index(
        company_id=sys.argv[1],
        agent_id=sys.argv[2],
        store_dir=settings.vector_store_path,
        chunk_size=int(sys.argv[3]) if len(sys.argv) > 3 else 800,
        overlap=int(sys.argv[4]) if len(sys.argv) > 4 else 100,
        builder=IndexBuilder(settings.EMBEDDING_MODEL),
    )
    print(
        f"✅ {metadata['total_chunks']} chunks de "
        f"{len(metadata['documents_indexed'])} documentos indexados"
    )
