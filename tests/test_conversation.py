"""
Tests para agent/conversation.py — Máquina de estados de la conversación.

Cubre transiciones legales, idempotencia sobre estados terminales
y rechazo de estados inválidos.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.conversation import (
    ConversationManager,
    ConversationStatus,
    TERMINAL_STATUSES,
)


@pytest.fixture
def manager(db) -> ConversationManager:
    return ConversationManager(db)


class TestStart:
    def test_new_conversation_is_unresolved(self, manager):
        conv = manager.start("org_a")
        assert manager.get_status(conv["id"]) == ConversationStatus.UNRESOLVED
        assert not manager.is_terminal(conv["id"])

    def test_get_by_thread(self, manager):
        conv = manager.start("org_a")
        assert manager.get_by_thread(conv["thread_id"])["id"] == conv["id"]
        assert manager.get_by_thread(conv["thread_id"], "org_b") is None

    def test_get_status_unknown_conversation(self, manager):
        with pytest.raises(KeyError):
            manager.get_status("missing")


class TestTransitions:
    def test_resolve(self, manager, conversation):
        result = manager.resolve(conversation["id"])
        assert result.changed is True
        assert result.status == ConversationStatus.RESOLVED
        assert manager.is_terminal(conversation["id"])

    def test_escalate(self, manager, conversation):
        result = manager.escalate(conversation["id"])
        assert result.changed is True
        assert manager.get_status(conversation["id"]) == ConversationStatus.ESCALATED

    def test_resolve_twice_is_idempotent(self, manager, conversation):
        manager.resolve(conversation["id"])
        again = manager.resolve(conversation["id"])
        assert again.changed is False
        assert again.status == ConversationStatus.RESOLVED

    def test_escalate_after_resolve_keeps_resolved(self, manager, conversation):
        manager.resolve(conversation["id"])
        result = manager.escalate(conversation["id"])
        assert result.changed is False
        assert result.status == ConversationStatus.RESOLVED
        assert manager.get_status(conversation["id"]) == ConversationStatus.RESOLVED

    def test_resolve_after_escalate_keeps_escalated(self, manager, conversation):
        manager.escalate(conversation["id"])
        result = manager.resolve(conversation["id"])
        assert result.changed is False
        assert manager.get_status(conversation["id"]) == ConversationStatus.ESCALATED

    def test_transition_accepts_string(self, manager, conversation):
        result = manager.transition(conversation["id"], "escalated")
        assert result.status == ConversationStatus.ESCALATED


class TestInvalidStates:
    def test_unknown_status(self, manager, conversation):
        with pytest.raises(ValueError, match="Estado inválido"):
            manager.transition(conversation["id"], "closed")

    def test_unresolved_is_not_a_target(self, manager, conversation):
        manager.resolve(conversation["id"])
        with pytest.raises(ValueError):
            manager.transition(conversation["id"], ConversationStatus.UNRESOLVED)
        assert manager.get_status(conversation["id"]) == ConversationStatus.RESOLVED

    def test_terminal_statuses(self):
        assert ConversationStatus.UNRESOLVED not in TERMINAL_STATUSES
        assert TERMINAL_STATUSES == {
            ConversationStatus.RESOLVED,
            ConversationStatus.ESCALATED,
        }
