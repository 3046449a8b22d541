"""
Configuración compartida de fixtures para los tests de SupportDesk.

Provee:
- Settings de prueba (sin necesidad de .env real)
- DBService sobre una base SQLite temporal con el schema real
- Mock del orchestrator (sin LLM ni modelos de embeddings)
- TestClient de FastAPI con dependency overrides
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.conversation import ConversationManager
from agent.db_service import DBService
from agent.secrets import SecretsService
from api.config import Settings, get_settings
from api import main as api_main
from api.main import app, get_db, get_orchestrator, get_secrets_service


# Settings de prueba


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings con valores seguros para testing (no necesita .env)."""
    store = tmp_path / "store"
    store.mkdir()
    return Settings(
        GROQ_API_KEY="test-key-fake-12345",
        LLM_MODEL="llama-3.3-70b-versatile",
        DATABASE_PATH=str(tmp_path / "test.db"),
        KNOWLEDGE_STORE_PATH=str(store),
        SECRET_SERVICES=["vapi"],
    )


# DB


@pytest.fixture
def db(tmp_path) -> DBService:
    """DBService con el schema aplicado en un DB temporal."""
    service = DBService(tmp_path / "test.db")
    service.init_schema()
    return service


@pytest.fixture
def conversation(db) -> dict:
    """Conversación 'unresolved' del tenant org_a."""
    return db.create_conversation("org_a")


# Mock Orchestrator


def _make_mock_orchestrator(db: DBService):
    """Mock del orchestrator con conversaciones reales y turnos predecibles."""
    mock = MagicMock()
    mock.conversations = ConversationManager(db)
    mock.start_conversation.side_effect = db.create_conversation
    mock.handle_user_message.return_value = (
        "Refunds are available within 30 days of purchase."
    )
    return mock


@pytest.fixture
def mock_orchestrator(db):
    """Fixture que provee un mock del orchestrator."""
    return _make_mock_orchestrator(db)


# TestClient con DI overrides


@pytest.fixture
def client(test_settings, db, mock_orchestrator) -> TestClient:
    """
    TestClient de FastAPI con dependency overrides.

    Reemplaza las dependencias reales:
    - get_settings → test_settings (sin .env)
    - get_db → DB temporal
    - get_orchestrator → mock_orchestrator (sin LLM)
    - get_secrets_service → SecretsService sobre la DB temporal
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    app.dependency_overrides[get_secrets_service] = lambda: SecretsService(
        db, services=test_settings.SECRET_SERVICES
    )
    api_main._seen_messages.clear()

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    # Limpiar overrides después del test
    app.dependency_overrides.clear()
