"""
Configuración compartida de fixtures para los tests del orquestador.

Provee:
- Base SQLite temporal con schema + seeds reales
- Reloj controlable (FakeClock) para SLA y disponibilidad
- Mocks de búsqueda vectorial, live fetch y LLM
- TestClient de FastAPI con dependency overrides
"""

import sqlite3
import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

import api.main as main_module
from agent.conversation import ConversationContextManager
from agent.db_service import DBService
from agent.escalation import EscalationEngine
from agent.locks import KeyedLock
from agent.orchestrator import TurnOrchestrator
from api.config import Settings, get_settings
from api.main import (
    app,
    get_conversation_manager,
    get_db,
    get_escalation_engine,
    get_orchestrator,
)
from rag.query.confidence import KnowledgePassage
from rag.query.retriever import KnowledgeRetriever

_SCHEMA_PATH = project_root / "database" / "schema" / "schema.sql"
_SEED_PATH = project_root / "database" / "seeds" / "seed.sql"

# Miércoles 10:00 (dentro del horario de todos los agentes seed)
FIXED_NOW = datetime(2026, 3, 4, 10, 0, 0)


class FakeClock:
    """Reloj manual: devuelve siempre `now` hasta que se avanza."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_passages(*similarities, source="faq.md"):
    return [
        KnowledgePassage(text=f"Passage {i}", source_id=f"{source}#{i}", similarity=s)
        for i, s in enumerate(similarities)
    ]


def create_database(db_file: Path, seed: bool = True) -> None:
    conn = sqlite3.connect(db_file)
    with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
        conn.executescript(f.read())
    if seed:
        with open(_SEED_PATH, "r", encoding="utf-8") as f:
            conn.executescript(f.read())
    conn.close()


# Base de datos


@pytest.fixture
def db_path(tmp_path) -> Path:
    db_file = tmp_path / "test.db"
    create_database(db_file)
    return db_file


@pytest.fixture
def db(db_path) -> DBService:
    """DBService con schema + seeds en un DB temporal."""
    return DBService(db_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def engine(db, locks, clock) -> EscalationEngine:
    return EscalationEngine(db, locks=locks, clock=clock)


@pytest.fixture
def conversation(db, locks, clock) -> ConversationContextManager:
    return ConversationContextManager(db, window_size=10, locks=locks, clock=clock)


# Mocks de servicios externos


@pytest.fixture
def mock_vector_search():
    """Búsqueda vectorial sin modelo: por defecto no encuentra nada."""
    mock = MagicMock()
    mock.search.return_value = []
    return mock


@pytest.fixture
def mock_live_fetch():
    mock = MagicMock()
    mock.fetch.return_value = {"snippets": [], "sources": []}
    return mock


@pytest.fixture
def mock_responder():
    """LLM simulado que siempre responde lo mismo."""
    mock = MagicMock()
    mock.complete.return_value = {
        "success": True,
        "content": "Happy to help with that!",
        "usage": {"prompt_tokens": 200, "completion_tokens": 20, "total_tokens": 220},
    }
    return mock


@pytest.fixture
def retriever(mock_vector_search, mock_live_fetch) -> KnowledgeRetriever:
    return KnowledgeRetriever(vector_search=mock_vector_search, live_fetch=mock_live_fetch)


@pytest.fixture
def orchestrator(db, retriever, mock_responder, conversation, engine, clock):
    return TurnOrchestrator(
        db=db,
        retriever=retriever,
        responder=mock_responder,
        conversation=conversation,
        escalation=engine,
        clock=clock,
    )


# Settings de prueba


@pytest.fixture
def test_settings(db_path, tmp_path) -> Settings:
    """Settings con valores seguros para testing (no necesita .env)."""
    store = tmp_path / "store"
    store.mkdir()
    return Settings(
        GROQ_API_KEY="test-key-fake-12345",
        DATABASE_PATH=str(db_path),
        VECTOR_STORE_DIR=str(store),
    )


# TestClient con DI overrides


@pytest.fixture
def client(
    test_settings, db, engine, conversation, orchestrator, monkeypatch
) -> TestClient:
    """
    TestClient de FastAPI con dependency overrides.

    Reemplaza las dependencias reales:
    - get_settings → test_settings (sin .env)
    - get_db / get_escalation_engine / get_conversation_manager → DB temporal
    - get_orchestrator → orquestador con mocks (sin modelos ni Groq)
    """
    # El lifespan pre-carga el orquestador: se le da el de prueba
    monkeypatch.setattr(main_module, "_orchestrator", orchestrator)

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_escalation_engine] = lambda: engine
    app.dependency_overrides[get_conversation_manager] = lambda: conversation
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    # Limpiar overrides después del test
    app.dependency_overrides.clear()
