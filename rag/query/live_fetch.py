"""
Live Fetch - Búsqueda en vivo sobre las URLs de conocimiento del agente.

Se usa como fallback cuando el índice vectorial no alcanza:
1. Rankea las URLs del agente por términos de la query (url +2, título +3)
2. Descarga como máximo `max_urls` páginas con timeout corto
3. Quita el HTML y se queda con oraciones que contienen términos
4. No persiste nada: los snippets son solo para este turno
"""

import logging
import re
from typing import Callable, Dict, List, Optional

import httpx

from agent.models import AgentProfile

logger = logging.getLogger(__name__)


MAX_PAGE_CHARS = 18000
MAX_SENTENCES_PER_PAGE = 200
MAX_SNIPPETS = 6

_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"(?<=\.)\s+")
_TERM_RE = re.compile(r"\W+")


def strip_html(html: str) -> str:
    """Convierte HTML en texto plano (sin scripts ni estilos)."""
    text = _SCRIPT_RE.sub(" ", html)
    text = _STYLE_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


def query_terms(query: str) -> List[str]:
    return [t for t in _TERM_RE.split((query or "").lower()) if t]


def rank_urls(knowledge_urls: List[Dict[str, str]], terms: List[str]) -> List[str]:
    """Ordena las URLs por coincidencias con la query, sin duplicados."""
    scored = []
    for item in knowledge_urls:
        url = item.get("url")
        if not isinstance(url, str) or not url:
            continue
        low_url = url.lower()
        title = (item.get("title") or "").lower()
        score = sum(
            (2 if t in low_url else 0) + (3 if t in title else 0) for t in terms
        )
        scored.append((score, url))

    # sort estable: a igual score se respeta el orden configurado
    scored.sort(key=lambda s: s[0], reverse=True)

    unique: List[str] = []
    for _, url in scored:
        if url not in unique:
            unique.append(url)
    return unique


class LiveFetcher:
    """Fallback de búsqueda en vivo sobre las URLs del agente"""

    def __init__(
        self,
        agent_lookup: Callable[[str, str], Optional[AgentProfile]],
        client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            agent_lookup: Función (agent_id, company_id) → AgentProfile
            client: Cliente httpx (se inyecta en tests)
        """
        self._agent_lookup = agent_lookup
        self._client = client or httpx.Client(follow_redirects=True)

    def fetch(
        self,
        agent_id: str,
        company_id: str,
        query: str,
        max_urls: int = 2,
        timeout_ms: int = 2000,
    ) -> Dict[str, List[str]]:
        """
        Busca snippets relevantes en las URLs de conocimiento del agente.

        Returns:
            Dict con:
            - snippets: textos "Source: <url>\\n<oración>"
            - sources: URLs que aportaron snippets
        """
        agent = self._agent_lookup(agent_id, company_id)
        if agent is None:
            return {"snippets": [], "sources": []}

        terms = query_terms(query)
        urls = rank_urls(agent.knowledge_urls, terms)[:max_urls]
        if not urls:
            return {"snippets": [], "sources": []}

        pages = []
        for url in urls:
            try:
                html = self._get(url, timeout_ms / 1000.0)
            except httpx.HTTPError as e:
                logger.warning(f"Live fetch falló para {url}: {e}")
                continue
            pages.append((url, strip_html(html)[:MAX_PAGE_CHARS]))

        snippets: List[str] = []
        sources: List[str] = []
        for url, text in pages:
            for sentence in _SENTENCE_RE.split(text)[:MAX_SENTENCES_PER_PAGE]:
                low = sentence.lower()
                if any(t in low for t in terms):
                    snippets.append(f"Source: {url}\n{sentence}")
                    if url not in sources:
                        sources.append(url)
                    if len(snippets) >= MAX_SNIPPETS:
                        break
            if len(snippets) >= MAX_SNIPPETS:
                break

        logger.info(
            f"Live fetch: {len(pages)}/{len(urls)} páginas, {len(snippets)} snippets"
        )
        return {"snippets": snippets, "sources": sources}

    def _get(self, url: str, timeout_s: float) -> str:
        response = self._client.get(url, timeout=timeout_s)
        response.raise_for_status()
        return response.text

    def close(self) -> None:
        self._client.close()
