"""
Chunker - Divide los documentos de conocimiento de un agente en chunks.

Este módulo se encarga de:
1. Cargar documentos .md / .txt de knowledge/<company_id>/<agent_id>/
2. Separar el markdown en secciones por headers
3. Dividir cada sección con ventana deslizante y overlap
4. Preservar metadata (archivo fuente, sección, índice de chunk)
"""

import logging
import re
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".md", ".txt")

_HEADER_RE = re.compile(r"^(#{1,3})\s+(.+)$")


def load_documents(docs_dir: Path) -> List[Dict[str, str]]:
    """
    Carga los documentos de conocimiento de un agente.

    Returns:
        Lista de {filename, content}, ordenada por nombre
    """
    docs_dir = Path(docs_dir)
    if not docs_dir.exists():
        raise FileNotFoundError(f"Directorio no encontrado: {docs_dir}")

    documents = []
    for file_path in sorted(docs_dir.iterdir()):
        if file_path.suffix.lower() not in SUPPORTED_SUFFIXES:
            continue
        content = file_path.read_text(encoding="utf-8")
        if content.strip():
            documents.append({"filename": file_path.name, "content": content})

    logger.info(f"Cargados {len(documents)} documentos desde {docs_dir}")
    return documents


def extract_sections(content: str, filename: str) -> List[Dict]:
    """Secciones por header markdown (#, ##, ###); el nombre del archivo es la sección inicial."""
    sections = []
    header, level, lines = filename, 0, []

    def flush():
        text = "\n".join(lines).strip()
        if text:
            sections.append(
                {"header": header, "level": level, "text": text, "source": filename}
            )

    for line in content.split("\n"):
        match = _HEADER_RE.match(line)
        if match:
            flush()
            header, level, lines = match.group(2).strip(), len(match.group(1)), []
        else:
            lines.append(line)
    flush()

    return sections


def chunk_text(text: str, chunk_size: int = 800, overlap: int = 100) -> List[str]:
    """
    Ventana deslizante con corte en espacio o salto de línea.

    Args:
        text: Texto a dividir
        chunk_size: Tamaño máximo de cada chunk en caracteres
        overlap: Caracteres compartidos entre chunks consecutivos
    """
    text = (text or "").strip()
    if not text:
        return []
    if len(text) <= chunk_size:
        return [text]
    if overlap >= chunk_size:
        raise ValueError("overlap debe ser menor que chunk_size")

    chunks = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            cut = max(text.rfind(" ", start, end), text.rfind("\n", start, end))
            if cut > start + overlap:
                end = cut

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        if end >= len(text):
            break
        start = end - overlap

    return chunks


def process_documents(
    docs_dir: Path, chunk_size: int = 800, overlap: int = 100
) -> List[Dict]:
    """
    Carga, secciona y divide todos los documentos de un agente.

    Returns:
        Lista de {id, text, metadata{source, section, section_level, chunk_index}}
    """
    all_chunks = []
    for doc in load_documents(docs_dir):
        for section in extract_sections(doc["content"], doc["filename"]):
            pieces = chunk_text(section["text"], chunk_size, overlap)
            for i, piece in enumerate(pieces):
                all_chunks.append(
                    {
                        "id": len(all_chunks),
                        "text": piece,
                        "metadata": {
                            "source": section["source"],
                            "section": section["header"],
                            "section_level": section["level"],
                            "chunk_index": i,
                        },
                    }
                )

    logger.info(f"Procesados {len(all_chunks)} chunks")
    return all_chunks
