"""
Conversation Manager — Máquina de estados del status de cada conversación.

Estados:
    unresolved (inicial) → resolved   (resolveConversation)
    unresolved (inicial) → escalated  (escalateConversation)

resolved y escalated son terminales para la automatización: reabrir una
conversación es una acción administrativa fuera del agente.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from agent.db_service import DBService

logger = logging.getLogger(__name__)


class ConversationStatus(str, Enum):
    """Status posibles de una conversación."""

    UNRESOLVED = "unresolved"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


TERMINAL_STATUSES = {ConversationStatus.ESCALATED, ConversationStatus.RESOLVED}

# Transiciones legales: destino → origen requerido
_TRANSITIONS = {
    ConversationStatus.RESOLVED: ConversationStatus.UNRESOLVED,
    ConversationStatus.ESCALATED: ConversationStatus.UNRESOLVED,
}


@dataclass(frozen=True)
class TransitionResult:
    """Resultado de aplicar una transición.

    ``changed`` es False cuando la conversación ya estaba en un estado
    terminal (no-op idempotente que igual se reporta como éxito).
    """

    conversation_id: str
    status: ConversationStatus
    changed: bool


class ConversationManager:
    """Gestiona el status de las conversaciones."""

    def __init__(self, db: DBService):
        self._db = db

    def start(self, organization_id: str) -> Dict:
        """Crea una conversación nueva en estado 'unresolved'."""
        conversation = self._db.create_conversation(organization_id)
        logger.info(
            f"[{conversation['thread_id']}] conversación creada "
            f"(org={organization_id})"
        )
        return conversation

    def get_by_thread(
        self, thread_id: str, organization_id: Optional[str] = None
    ) -> Optional[Dict]:
        return self._db.get_conversation_by_thread(thread_id, organization_id)

    def get_status(self, conversation_id: str) -> ConversationStatus:
        """Devuelve el status actual. KeyError si la conversación no existe."""
        conv = self._db.get_conversation(conversation_id)
        if conv is None:
            raise KeyError(f"Conversación inexistente: {conversation_id}")
        return ConversationStatus(conv["status"])

    def transition(
        self, conversation_id: str, target: ConversationStatus | str
    ) -> TransitionResult:
        """Aplica una transición de status.

        - unresolved → target: escribe y devuelve changed=True.
        - ya terminal: no-op, devuelve changed=False con el status vigente.
        """
        try:
            target = ConversationStatus(target)
        except ValueError:
            raise ValueError(f"Estado inválido: {target}")

        required = _TRANSITIONS.get(target)
        if required is None:
            raise ValueError(f"Estado inválido como destino: {target.value}")

        # Escritura condicional: solo pisa el status si sigue siendo el origen
        changed = self._db.update_conversation_status(
            conversation_id, target.value, expected=required.value
        )
        if changed:
            logger.info(f"[{conversation_id}] status → {target.value}")
            return TransitionResult(conversation_id, target, True)

        current = self.get_status(conversation_id)
        logger.info(
            f"[{conversation_id}] transición a {target.value} ignorada "
            f"(ya está en {current.value})"
        )
        return TransitionResult(conversation_id, current, False)

    def resolve(self, conversation_id: str) -> TransitionResult:
        return self.transition(conversation_id, ConversationStatus.RESOLVED)

    def escalate(self, conversation_id: str) -> TransitionResult:
        return self.transition(conversation_id, ConversationStatus.ESCALATED)

    def is_terminal(self, conversation_id: str) -> bool:
        return self.get_status(conversation_id) in TERMINAL_STATUSES
