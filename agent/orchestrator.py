"""
Orchestrator — Punto de entrada principal del agente de soporte.

Flujo de un turno:
1. Buscar la conversación por thread (filtrada por tenant si se indica)
2. Tomar el lock de la conversación
3. Si está resuelta/escalada → respuesta fija, sin LLM
4. Guardar el mensaje del usuario y tomar un snapshot del thread
5. Decidir con el LLM (texto directo o tools)
6. Validar tools, aplicar la regla de un solo tool de estado y despachar
7. Guardar la respuesta final (salvo que el tool ya la haya guardado)
"""

import logging
from typing import Dict, List, Mapping, Optional

from agent.conversation import ConversationManager, ConversationStatus
from agent.db_service import DBService
from agent.decision import Decision, DecisionProvider
from agent.handlers import ToolRegistry
from agent.locks import ConversationLocks, TurnBusyError
from agent.prompts import (
    CLARIFYING_REPLY,
    CONVERSATION_NOT_FOUND_REPLY,
    DEFAULT_AGENT_CONFIG,
    EMPTY_MESSAGE_REPLY,
    ESCALATED_CONVERSATION_REPLY,
    PROVIDER_ERROR_REPLY,
    RESOLVED_CONVERSATION_REPLY,
    TURN_BUSY_REPLY,
    AgentConfig,
)
from agent.tools import MalformedToolCall, ToolCall, ToolResult, plan_dispatch
from rag.query.retriever import NamespaceError

logger = logging.getLogger(__name__)


class AgentOrchestrator:
    """Orquestador de turnos del agente de soporte."""

    def __init__(
        self,
        db: DBService,
        decider: DecisionProvider,
        tools: ToolRegistry,
        config: AgentConfig = DEFAULT_AGENT_CONFIG,
        tenant_configs: Optional[Mapping[str, AgentConfig]] = None,
        locks: Optional[ConversationLocks] = None,
        max_history: int = 20,
        lock_timeout: Optional[float] = None,
    ):
        self._db = db
        self._conv = ConversationManager(db)
        self._decider = decider
        self._tools = tools
        self._config = config
        self._tenant_configs = dict(tenant_configs or {})
        self._locks = locks or ConversationLocks()
        self._max_history = max_history
        self._lock_timeout = lock_timeout

        logger.info("AgentOrchestrator inicializado")

    @property
    def conversations(self) -> ConversationManager:
        return self._conv

    def config_for(self, organization_id: str) -> AgentConfig:
        """Configuración del tenant (o la default)."""
        return self._tenant_configs.get(organization_id, self._config)

    # Entry points

    def start_conversation(self, organization_id: str) -> Dict:
        """Crea una conversación nueva para el tenant."""
        return self._conv.start(organization_id)

    def handle_user_message(
        self, thread_id: str, text: str, organization_id: Optional[str] = None
    ) -> str:
        """
        Procesa un mensaje entrante y devuelve la respuesta como texto.

        Args:
            thread_id: Thread de la conversación
            text: Texto del mensaje del usuario
            organization_id: Tenant autenticado del que llama (opcional)

        Raises:
            NamespaceError: el thread pertenece a otro tenant
        """
        text = (text or "").strip()
        if not text:
            return EMPTY_MESSAGE_REPLY

        conversation = self._conv.get_by_thread(thread_id)
        if conversation is None:
            logger.warning(f"[{thread_id}] conversación no encontrada")
            return CONVERSATION_NOT_FOUND_REPLY

        if (
            organization_id is not None
            and conversation["organization_id"] != organization_id
        ):
            raise NamespaceError(
                f"El thread {thread_id} no pertenece a la organización indicada"
            )

        logger.info(f"[{thread_id}] Mensaje: {text[:60]}")

        try:
            with self._locks.hold(conversation["id"], timeout=self._lock_timeout):
                return self._run_turn(conversation["id"], thread_id, text)
        except TurnBusyError:
            return TURN_BUSY_REPLY

    # Turn

    def _run_turn(self, conversation_id: str, thread_id: str, text: str) -> str:
        """Ejecuta un turno con el lock de la conversación ya tomado."""
        # Releer bajo lock: otro turno pudo haber cambiado el status
        conversation = self._db.get_conversation(conversation_id)
        status = ConversationStatus(conversation["status"])

        if status == ConversationStatus.RESOLVED:
            return RESOLVED_CONVERSATION_REPLY

        self._db.append_message(thread_id, "user", text)

        if status == ConversationStatus.ESCALATED:
            # Conversación en manos de un operador humano
            return ESCALATED_CONVERSATION_REPLY

        snapshot = tuple(self._db.get_messages(thread_id, limit=self._max_history))
        config = self.config_for(conversation["organization_id"])
        decision = self._decider.decide(config.build_instructions(), snapshot)

        if not decision.ok:
            logger.error(f"[{thread_id}] proveedor falló: {decision.error}")
            return self._reply(thread_id, PROVIDER_ERROR_REPLY)

        if decision.malformed:
            return self._reply(thread_id, CLARIFYING_REPLY)

        if not decision.wants_tools:
            return self._reply(thread_id, decision.text or CLARIFYING_REPLY)

        calls = self._validate(thread_id, decision)
        if calls is None:
            return self._reply(thread_id, CLARIFYING_REPLY)

        return self._dispatch(thread_id, decision, calls)

    def _validate(self, thread_id: str, decision: Decision) -> Optional[List[ToolCall]]:
        """Valida todos los tools pedidos. None si alguno es inválido."""
        calls = []
        for requested in decision.tool_calls:
            try:
                calls.append(self._tools.parse(requested.name, requested.arguments))
            except MalformedToolCall as e:
                logger.warning(f"[{thread_id}] decisión mal formada: {e}")
                return None
        return calls

    def _dispatch(
        self, thread_id: str, decision: Decision, calls: List[ToolCall]
    ) -> str:
        """Despacha los tools permitidos y arma la respuesta final."""
        to_dispatch, _ignored = plan_dispatch(calls)

        results: List[ToolResult] = []
        for call in to_dispatch:
            results.append(self._tools.dispatch(call, thread_id))

        parts: List[str] = []
        for result in results:
            if result.appended_message:
                # El tool ya guardó su mensaje; no duplicar
                parts.append(result.result_text)
                continue

            reply = result.result_text
            if result.success and decision.text and not result.status_conflict:
                # Texto del modelo que acompaña el tool (resumen / aviso de humano)
                reply = decision.text
            self._db.append_message(thread_id, "assistant", reply)
            parts.append(reply)

        return "\n\n".join(parts)

    def _reply(self, thread_id: str, text: str) -> str:
        """Guarda la respuesta del asistente y la devuelve."""
        self._db.append_message(thread_id, "assistant", text)
        return text
