"""
Configuración centralizada de SupportDesk.

Usa Pydantic BaseSettings para:
- Validar TODAS las variables de entorno al startup
- Proveer tipos seguros y defaults documentados
- Fallar rápido si falta config crítica (GROQ_API_KEY)
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


# Raíz del proyecto (donde vive .env)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Configuración tipada y validada del proyecto SupportDesk."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorar env vars no declaradas
    )

    # LLM / Groq
    GROQ_API_KEY: str  # Requerida, falla al startup si falta
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    SYNTHESIS_MODEL: str = "llama-3.1-8b-instant"
    LLM_TIMEOUT_SECONDS: float = 30.0

    # Knowledge base
    EMBEDDING_MODEL: str = "all-MiniLM-L6-v2"
    KNOWLEDGE_STORE_PATH: str = "rag/store"
    SEARCH_LIMIT: int = 5

    # Agente
    AGENT_NAME: str = "Support Assistant"
    AGENT_TONE: str = "friendly, concise and professional"
    MAX_HISTORY_MESSAGES: int = 20
    TURN_LOCK_TIMEOUT_SECONDS: float = 60.0

    # Integraciones con secreto por tenant
    SECRET_SERVICES: List[str] = ["vapi"]

    # Database
    DATABASE_PATH: str = "database/sqlite/supportdesk.db"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @property
    def db_full_path(self) -> Path:
        """Ruta absoluta a la base de datos."""
        return self._resolve(self.DATABASE_PATH)

    @property
    def store_full_path(self) -> Path:
        """Ruta absoluta al store de índices por tenant."""
        return self._resolve(self.KNOWLEDGE_STORE_PATH)

    @staticmethod
    def _resolve(path: str) -> Path:
        p = Path(path)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@lru_cache
def get_settings() -> Settings:
    """
    Singleton de configuración (cacheado).

    Falla inmediatamente si faltan variables requeridas (GROQ_API_KEY),
    dando un error claro al startup en lugar de fallar en runtime.
    """
    return Settings()
