"""
Configuración centralizada del orquestador.

Usa Pydantic BaseSettings para:
- Validar TODAS las variables de entorno al startup
- Proveer tipos seguros y defaults documentados
- Fallar rápido si falta config crítica (GROQ_API_KEY)
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Raíz del proyecto (donde vive .env)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Configuración tipada y validada del orquestador."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorar env vars no declaradas
    )

    # LLM / Groq
    GROQ_API_KEY: str  # Requerida — falla al startup si falta
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TEMPERATURE: float = Field(default=0.7, ge=0.0, le=2.0)
    LLM_MAX_TOKENS: int = Field(default=1000, ge=1)
    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # Vector search
    EMBEDDING_MODEL: str = "paraphrase-multilingual-MiniLM-L12-v2"
    VECTOR_STORE_DIR: str = "rag/store"
    RETRIEVAL_LIMIT: int = Field(default=5, ge=1)
    SIMILARITY_THRESHOLD: float = Field(default=0.3, ge=0.0, le=1.0)

    # Live fetch fallback
    FALLBACK_SCORE_THRESHOLD: float = Field(default=0.5, ge=0.0, le=1.0)
    FALLBACK_MAX_URLS: int = Field(default=2, ge=0)
    FALLBACK_TIMEOUT_SECONDS: float = Field(default=2.0, gt=0)
    FALLBACK_MAX_SNIPPETS: int = Field(default=4, ge=0)

    # Conversación
    CONTEXT_WINDOW_SIZE: int = Field(default=10, ge=1, le=50)
    MAX_MESSAGE_LENGTH: int = Field(default=2000, ge=1)

    # Database
    DATABASE_PATH: str = "database/sqlite/orchestrator.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def db_full_path(self) -> Path:
        """Ruta absoluta a la base de datos."""
        db = Path(self.DATABASE_PATH)
        if db.is_absolute():
            return db
        return PROJECT_ROOT / db

    @property
    def vector_store_path(self) -> Path:
        store = Path(self.VECTOR_STORE_DIR)
        if store.is_absolute():
            return store
        return PROJECT_ROOT / store


@lru_cache
def get_settings() -> Settings:
    """
    Singleton de configuración (cacheado).

    Falla inmediatamente si faltan variables requeridas (GROQ_API_KEY),
    dando un error claro al startup en lugar de fallar en runtime.
    """
    return Settings()
