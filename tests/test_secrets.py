"""
Tests para agent/secrets.py — Secretos de integraciones por tenant.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.secrets import SecretsService, secret_name
from rag.query.retriever import NamespaceError


@pytest.fixture
def secrets(db) -> SecretsService:
    return SecretsService(db)


class TestSecretName:
    def test_deterministic(self):
        assert secret_name("org_a", "vapi") == "tenant/org_a/vapi"


class TestUpsertSecret:
    def test_success(self, secrets, db):
        assert secrets.upsert_secret("org_a", "vapi", {"apiKey": "k1"}) == {
            "status": "success"
        }
        assert db.get_secret("tenant/org_a/vapi") == {"apiKey": "k1"}

    def test_registers_plugin(self, secrets, db):
        secrets.upsert_secret("org_a", "vapi", "k1")
        plugin = db.get_plugin("org_a", "vapi")
        assert plugin["secret_name"] == "tenant/org_a/vapi"

    def test_overwrite(self, secrets):
        secrets.upsert_secret("org_a", "vapi", "k1")
        secrets.upsert_secret("org_a", "vapi", "k2")
        assert secrets.get_secret("org_a", "vapi") == "k2"

    def test_tenants_isolated(self, secrets):
        secrets.upsert_secret("org_a", "vapi", "a-key")
        assert secrets.get_secret("org_b", "vapi") is None

    def test_unknown_service(self, secrets):
        with pytest.raises(ValueError, match="no soportado"):
            secrets.upsert_secret("org_a", "stripe", "k1")

    def test_invalid_org(self, secrets, db):
        with pytest.raises(NamespaceError):
            secrets.upsert_secret("../org_b", "vapi", "k1")
        assert db.get_secret("tenant/../org_b/vapi") is None

    def test_custom_catalog(self, db):
        service = SecretsService(db, services=["vapi", "twilio"])
        assert service.upsert_secret("org_a", "twilio", "t1")["status"] == "success"
