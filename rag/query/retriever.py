"""
Retriever - Recupera conocimiento del agente con fallback en vivo.

Este módulo:
1. FAISSVectorSearch: búsqueda densa por agente (índice FAISS por company/agent)
2. KnowledgeRetriever: consulta el backend vectorial, calcula la confianza
   y, si no alcanza, dispara el live fetch y mezcla los snippets
3. Cualquier error de búsqueda se trata como "sin conocimiento"
"""

import logging
import pickle
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import faiss
import numpy as np
from sentence_transformers import SentenceTransformer

from agent.errors import RetrievalError
from rag.query.confidence import (
    ConfidenceResult,
    ConfidenceScorer,
    ConfidenceTier,
    KnowledgePassage,
    tier_rank,
)

# Modelo multilingüe por defecto (soporta español, inglés, y 50+ idiomas)
DEFAULT_EMBEDDING_MODEL = "paraphrase-multilingual-MiniLM-L12-v2"

# Score mínimo que se asume cuando el fallback encontró contenido
FALLBACK_SCORE_FLOOR = 0.5

logger = logging.getLogger(__name__)


class VectorSearch(Protocol):
    def search(
        self,
        agent_id: str,
        company_id: str,
        query: str,
        limit: int = 5,
        threshold: float = 0.3,
    ) -> List[KnowledgePassage]: ...


class LiveFetch(Protocol):
    def fetch(
        self,
        agent_id: str,
        company_id: str,
        query: str,
        max_urls: int = 2,
        timeout_ms: int = 2000,
    ) -> Dict[str, List[str]]: ...


class FAISSVectorSearch:
    """Búsqueda vectorial FAISS con un store por (company_id, agent_id)"""

    def __init__(self, store_dir: Path, model_name: str = None):
        """
        Args:
            store_dir: Directorio raíz de stores (<store>/<company>/<agent>/)
            model_name: Modelo de sentence-transformers
        """
        self.store_dir = Path(store_dir)
        self.model_name = model_name or DEFAULT_EMBEDDING_MODEL

        logger.info(f"Cargando modelo de embeddings: {self.model_name}")
        self.model = SentenceTransformer(self.model_name)

        self._stores: Dict[Tuple[str, str], Tuple[faiss.Index, List[Dict]]] = {}
        self._load_lock = threading.Lock()

    def _store(self, agent_id: str, company_id: str):
        key = (company_id, agent_id)
        with self._load_lock:
            if key in self._stores:
                return self._stores[key]

            agent_dir = self.store_dir / company_id / agent_id
            index_path = agent_dir / "faiss.index"
            chunks_path = agent_dir / "chunks.pkl"

            if not index_path.exists() or not chunks_path.exists():
                logger.info(f"Sin índice para agente {agent_id} ({company_id})")
                return None

            index = faiss.read_index(str(index_path))
            with open(chunks_path, "rb") as f:
                chunks = pickle.load(f)

            if len(chunks) != index.ntotal:
                logger.warning(
                    f"Número de chunks ({len(chunks)}) "
                    f"no coincide con vectores en índice ({index.ntotal})"
                )

            self._stores[key] = (index, chunks)
            logger.info(f"Índice de {agent_id} cargado ({index.ntotal} vectores)")
            return self._stores[key]

    def total_vectors(self) -> int:
        """Vectores de todos los stores ya cargados (para health check)."""
        return sum(index.ntotal for index, _ in self._stores.values())

    def search(
        self,
        agent_id: str,
        company_id: str,
        query: str,
        limit: int = 5,
        threshold: float = 0.3,
    ) -> List[KnowledgePassage]:
        """
        Recupera los pasajes más similares a la query.

        El índice es de producto interno sobre embeddings normalizados,
        por lo que el score es la similitud coseno (recortada a [0, 1]).
        """
        store = self._store(agent_id, company_id)
        if store is None:
            return []
        index, chunks = store

        query_embedding = self.model.encode(
            [query], convert_to_numpy=True, normalize_embeddings=True
        ).astype("float32")
        similarities, indices = index.search(query_embedding, limit)

        passages = []
        for sim, idx in zip(similarities[0], indices[0]):
            # idx == -1 significa que no hay más vectores
            if idx == -1 or idx >= len(chunks):
                continue
            similarity = float(np.clip(sim, 0.0, 1.0))
            if similarity < threshold:
                continue
            chunk = chunks[idx]
            metadata = chunk.get("metadata", {})
            passages.append(
                KnowledgePassage(
                    text=chunk.get("text", ""),
                    source_id=f"{metadata.get('source', 'document')}#{metadata.get('chunk_index', idx)}",
                    similarity=similarity,
                )
            )
        return passages


@dataclass
class RetrievalResult:
    """Conocimiento mezclado de un turno + confianza efectiva."""

    passages: List[KnowledgePassage]
    confidence: ConfidenceResult
    fallback_snippets: List[str] = field(default_factory=list)
    fallback_used: bool = False

    @property
    def has_knowledge(self) -> bool:
        return bool(self.passages or self.fallback_snippets)

    def context_text(self) -> str:
        """Texto de conocimiento para el prompt ("" si no hay nada)."""
        parts = [f"[{p.source_id}]\n{p.text}" for p in self.passages]
        parts.extend(self.fallback_snippets)
        return "\n\n".join(parts)


class KnowledgeRetriever:
    """Orquesta búsqueda vectorial + fallback en vivo"""

    def __init__(
        self,
        vector_search: VectorSearch,
        live_fetch: Optional[LiveFetch] = None,
        scorer: ConfidenceScorer = None,
        limit: int = 5,
        similarity_threshold: float = 0.3,
        fallback_threshold: float = 0.5,
        fallback_max_urls: int = 2,
        fallback_timeout_ms: int = 2000,
        max_fallback_snippets: int = 4,
    ):
        self._vector_search = vector_search
        self._live_fetch = live_fetch
        self.scorer = scorer or ConfidenceScorer()
        self.limit = limit
        self.similarity_threshold = similarity_threshold
        self.fallback_threshold = fallback_threshold
        self.fallback_max_urls = fallback_max_urls
        self.fallback_timeout_ms = fallback_timeout_ms
        self.max_fallback_snippets = max_fallback_snippets

    def retrieve(
        self,
        agent_id: str,
        company_id: str,
        query: str,
        limit: int = None,
        similarity_threshold: float = None,
    ) -> RetrievalResult:
        """
        Recupera conocimiento para una query.

        Args:
            agent_id: ID del agente
            company_id: ID de la empresa dueña del agente
            query: Mensaje del usuario
            limit: Override de cantidad de pasajes
            similarity_threshold: Override del umbral de similitud

        Returns:
            RetrievalResult (nunca lanza: los errores equivalen a vacío)
        """
        limit = limit or self.limit
        if similarity_threshold is None:
            similarity_threshold = self.similarity_threshold

        try:
            passages = self._search(agent_id, company_id, query, limit, similarity_threshold)
        except RetrievalError as e:
            logger.warning(f"Búsqueda vectorial falló ({agent_id}): {e}")
            passages = []

        confidence = self.scorer.score(passages)
        logger.info(
            f"Retrieval {agent_id}: {confidence.passage_count} pasajes, "
            f"score={confidence.score:.2f} tier={confidence.tier.value}"
        )

        if passages and confidence.score >= self.fallback_threshold:
            return RetrievalResult(passages=passages, confidence=confidence)

        try:
            snippets = self._fetch(agent_id, company_id, query)
        except RetrievalError as e:
            logger.warning(f"Live fetch falló ({agent_id}): {e}")
            snippets = []

        snippets = snippets[: self.max_fallback_snippets]
        if not snippets:
            return RetrievalResult(passages=passages, confidence=confidence)

        boosted = self.boost_confidence(confidence, len(snippets))
        logger.info(
            f"Fallback aportó {len(snippets)} snippets → "
            f"score={boosted.score:.2f} tier={boosted.tier.value}"
        )
        return RetrievalResult(
            passages=passages,
            confidence=boosted,
            fallback_snippets=snippets,
            fallback_used=True,
        )

    def boost_confidence(
        self, confidence: ConfidenceResult, snippet_count: int
    ) -> ConfidenceResult:
        """
        Confianza efectiva cuando el fallback encontró contenido.

        El score sube a un piso de 0.5 (no se promedia) y el tier se
        recalcula con la tabla normal, acotado entre low y medium.
        """
        score = max(confidence.score, FALLBACK_SCORE_FLOOR)
        tier = self.scorer.tier_for(score, confidence.passage_count + snippet_count)

        if tier_rank(tier) > tier_rank(ConfidenceTier.MEDIUM):
            tier = ConfidenceTier.MEDIUM
        if tier_rank(tier) < tier_rank(ConfidenceTier.LOW):
            tier = ConfidenceTier.LOW

        return ConfidenceResult(
            score=score,
            tier=tier,
            passage_count=confidence.passage_count,
            mean_similarity=confidence.mean_similarity,
            snippet_count=snippet_count,
        )

    def _search(self, agent_id, company_id, query, limit, threshold):
        try:
            return list(
                self._vector_search.search(
                    agent_id, company_id, query, limit=limit, threshold=threshold
                )
            )
        except Exception as e:
            raise RetrievalError(str(e)) from e

    def _fetch(self, agent_id, company_id, query) -> List[str]:
        if self._live_fetch is None:
            return []
        try:
            result = self._live_fetch.fetch(
                agent_id,
                company_id,
                query,
                max_urls=self.fallback_max_urls,
                timeout_ms=self.fallback_timeout_ms,
            )
        except Exception as e:
            raise RetrievalError(str(e)) from e
        return list((result or {}).get("snippets", []))
