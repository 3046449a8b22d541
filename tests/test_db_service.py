"""
Tests para agent/db_service.py — Capa de acceso a datos.

Usa una base de datos SQLite temporal para cada test,
inicializada con el schema real del proyecto.
"""

import sys
from pathlib import Path

import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.db_service import DBService


# Conversations


class TestConversationOperations:
    def test_create_conversation(self, db):
        conv = db.create_conversation("org_a")
        assert conv["organization_id"] == "org_a"
        assert conv["status"] == "unresolved"
        assert conv["thread_id"].startswith("thread_")

    def test_create_generates_unique_threads(self, db):
        a = db.create_conversation("org_a")
        b = db.create_conversation("org_a")
        assert a["id"] != b["id"]
        assert a["thread_id"] != b["thread_id"]

    def test_get_conversation(self, db, conversation):
        found = db.get_conversation(conversation["id"])
        assert found["thread_id"] == conversation["thread_id"]

    def test_get_nonexistent_conversation(self, db):
        assert db.get_conversation("nope") is None

    def test_get_by_thread(self, db, conversation):
        found = db.get_conversation_by_thread(conversation["thread_id"])
        assert found["id"] == conversation["id"]

    def test_get_by_thread_scoped_to_org(self, db, conversation):
        thread_id = conversation["thread_id"]
        assert db.get_conversation_by_thread(thread_id, "org_a") is not None
        assert db.get_conversation_by_thread(thread_id, "org_b") is None

    def test_conditional_status_update(self, db, conversation):
        assert db.update_conversation_status(
            conversation["id"], "resolved", expected="unresolved"
        )
        # Ya no está 'unresolved': la escritura condicional no aplica
        assert not db.update_conversation_status(
            conversation["id"], "escalated", expected="unresolved"
        )
        assert db.get_conversation(conversation["id"])["status"] == "resolved"

    def test_invalid_status_rejected_by_schema(self, db, conversation):
        import sqlite3

        with pytest.raises(sqlite3.IntegrityError):
            db.update_conversation_status(
                conversation["id"], "closed", expected="unresolved"
            )

    def test_list_conversations_by_org(self, db):
        db.create_conversation("org_a")
        db.create_conversation("org_a")
        db.create_conversation("org_b")
        assert len(db.list_conversations("org_a")) == 2
        assert len(db.list_conversations("org_b")) == 1

    def test_list_conversations_by_status(self, db, conversation):
        other = db.create_conversation("org_a")
        db.update_conversation_status(other["id"], "escalated", "unresolved")
        escalated = db.list_conversations("org_a", status="escalated")
        assert [c["id"] for c in escalated] == [other["id"]]


# Messages


class TestMessageOperations:
    def test_append_and_get(self, db, conversation):
        thread_id = conversation["thread_id"]
        db.append_message(thread_id, "user", "Hi")
        db.append_message(thread_id, "assistant", "Hello!", tool_name="search")

        messages = db.get_messages(thread_id)
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[1]["tool_name"] == "search"

    def test_get_messages_limit_keeps_latest_in_order(self, db, conversation):
        thread_id = conversation["thread_id"]
        for i in range(5):
            db.append_message(thread_id, "user", f"msg {i}")

        messages = db.get_messages(thread_id, limit=2)
        assert [m["content"] for m in messages] == ["msg 3", "msg 4"]

    def test_count_messages(self, db, conversation):
        thread_id = conversation["thread_id"]
        assert db.count_messages(thread_id) == 0
        db.append_message(thread_id, "user", "Hi")
        assert db.count_messages(thread_id) == 1

    def test_message_requires_existing_thread(self, db):
        import sqlite3

        with pytest.raises(sqlite3.IntegrityError):
            db.append_message("thread_missing", "user", "Hi")

    def test_invalid_role_rejected(self, db, conversation):
        import sqlite3

        with pytest.raises(sqlite3.IntegrityError):
            db.append_message(conversation["thread_id"], "robot", "Hi")


# Secrets / plugins


class TestSecretOperations:
    def test_upsert_and_get_secret(self, db):
        db.upsert_secret("tenant/org_a/vapi", {"apiKey": "k1"})
        assert db.get_secret("tenant/org_a/vapi") == {"apiKey": "k1"}

    def test_upsert_overwrites(self, db):
        db.upsert_secret("tenant/org_a/vapi", "old")
        db.upsert_secret("tenant/org_a/vapi", "new")
        assert db.get_secret("tenant/org_a/vapi") == "new"

    def test_missing_secret(self, db):
        assert db.get_secret("tenant/org_a/vapi") is None

    def test_plugin_upsert(self, db):
        db.upsert_plugin("org_a", "vapi", "tenant/org_a/vapi")
        db.upsert_plugin("org_a", "vapi", "tenant/org_a/vapi")
        plugin = db.get_plugin("org_a", "vapi")
        assert plugin["secret_name"] == "tenant/org_a/vapi"
        assert db.get_plugin("org_b", "vapi") is None


class TestSchema:
    def test_init_schema_is_idempotent(self, tmp_path):
        service = DBService(tmp_path / "fresh.db")
        service.init_schema()
        service.init_schema()
        conv = service.create_conversation("org_a")
        assert service.get_conversation(conv["id"]) is not None
