"""
Handlers — Implementación de los tools del agente.

Cada handler recibe (thread_id, args, deps) y devuelve un ToolResult.
Las fallas de precondición (thread faltante, conversación inexistente) se
devuelven como texto para que la conversación pueda continuar; solo las
violaciones de aislamiento entre tenants se propagan como excepción.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from agent.conversation import (
    ConversationManager,
    ConversationStatus,
    TransitionResult,
)
from agent.db_service import DBService
from agent.prompts import (
    ESCALATE_TOOL_RESULT,
    ESCALATED_CONVERSATION_REPLY,
    RESOLVE_TOOL_RESULT,
    RESOLVED_CONVERSATION_REPLY,
)
from agent.tools import ToolCall, ToolName, ToolResult, parse_tool_call
from rag.query.responder import (
    NO_INFORMATION_ANSWER,
    SYNTHESIS_FALLBACK_ANSWER,
    AnswerSynthesizer,
)
from rag.query.retriever import (
    DEFAULT_SEARCH_LIMIT,
    KnowledgeRetriever,
    NamespaceError,
)

logger = logging.getLogger(__name__)

MISSING_THREAD_RESULT = "Missing thread ID"
CONVERSATION_NOT_FOUND_RESULT = "Conversation not found"
TOOL_FAILURE_RESULT = (
    "Sorry, something went wrong while handling your request. Please try again."
)

# Claves con las que un LLM podría intentar elegir el tenant
_TENANT_ARG_KEYS = ("organizationId", "organization_id", "orgId", "namespace")


@dataclass
class ToolDeps:
    """Dependencias compartidas por los handlers."""

    db: DBService
    conversations: ConversationManager
    retriever: KnowledgeRetriever
    synthesizer: AnswerSynthesizer
    search_limit: int = DEFAULT_SEARCH_LIMIT


def _check_tenant_args(args: Dict[str, Any], organization_id: str) -> None:
    """El namespace sale de la conversación; args con otro tenant se rechazan."""
    for key in _TENANT_ARG_KEYS:
        if key in args and args[key] != organization_id:
            raise NamespaceError(
                f"Intento de acceso cross-tenant vía argumento '{key}'"
            )


def _precondition(
    tool: ToolName, thread_id: Optional[str], args: Dict, deps: ToolDeps
) -> tuple[Optional[Dict], Optional[ToolResult]]:
    """Resuelve la conversación del thread o devuelve el ToolResult de falla."""
    if not thread_id:
        return None, ToolResult(tool, MISSING_THREAD_RESULT, args=args, success=False)

    conversation = deps.conversations.get_by_thread(thread_id)
    if conversation is None:
        logger.warning(f"[{thread_id}] {tool.value}: conversación no encontrada")
        return None, ToolResult(
            tool, CONVERSATION_NOT_FOUND_RESULT, args=args, success=False
        )

    _check_tenant_args(args, conversation["organization_id"])
    return conversation, None


#  SEARCH


def search_knowledge(
    thread_id: Optional[str], args: Dict[str, Any], deps: ToolDeps
) -> ToolResult:
    """Busca en la base del tenant, sintetiza y guarda la respuesta en el thread."""
    conversation, failure = _precondition(ToolName.SEARCH, thread_id, args, deps)
    if failure:
        return failure

    namespace = conversation["organization_id"]
    query = args["query"]

    try:
        result = deps.retriever.search(namespace, query, limit=deps.search_limit)
    except NamespaceError:
        raise
    except Exception as e:
        logger.error(f"[{thread_id}] Error en retrieval: {e}", exc_info=True)
        answer = SYNTHESIS_FALLBACK_ANSWER
    else:
        if result.is_empty:
            logger.info(f"[{thread_id}] sin conocimiento para '{query[:40]}'")
            answer = NO_INFORMATION_ANSWER
        else:
            answer = deps.synthesizer.synthesize(query, result.build_context())

    deps.db.append_message(
        thread_id, "assistant", answer, tool_name=ToolName.SEARCH.value
    )
    return ToolResult(ToolName.SEARCH, answer, args=args, appended_message=True)


#  RESOLVE / ESCALATE

# Texto según el status en el que quedó la conversación
_STATUS_RESULTS = {
    ConversationStatus.RESOLVED: RESOLVE_TOOL_RESULT,
    ConversationStatus.ESCALATED: ESCALATE_TOOL_RESULT,
}

# Texto cuando la conversación ya estaba en el otro estado terminal
_CURRENT_STATUS_RESULTS = {
    ConversationStatus.RESOLVED: RESOLVED_CONVERSATION_REPLY,
    ConversationStatus.ESCALATED: ESCALATED_CONVERSATION_REPLY,
}

_TOOL_TARGETS = {
    ToolName.RESOLVE_CONVERSATION: ConversationStatus.RESOLVED,
    ToolName.ESCALATE_CONVERSATION: ConversationStatus.ESCALATED,
}


def _state_result(
    tool: ToolName, transition: TransitionResult, args: Dict[str, Any]
) -> ToolResult:
    """ToolResult de un tool de estado, con texto acorde al status real."""
    if transition.status != _TOOL_TARGETS[tool]:
        logger.info(
            f"[{transition.conversation_id}] {tool.value} sin efecto: "
            f"la conversación ya está {transition.status.value}"
        )
        return ToolResult(
            tool,
            _CURRENT_STATUS_RESULTS[transition.status],
            args=args,
            status_conflict=True,
        )
    return ToolResult(
        tool,
        _STATUS_RESULTS[transition.status],
        args=args,
        state_changed=transition.changed,
    )



def resolve_conversation(
    thread_id: Optional[str], args: Dict[str, Any], deps: ToolDeps
) -> ToolResult:
    """Marca la conversación como resuelta (idempotente)."""
    conversation, failure = _precondition(
        ToolName.RESOLVE_CONVERSATION, thread_id, args, deps
    )
    if failure:
        return failure

    transition = deps.conversations.resolve(conversation["id"])
    return _state_result(ToolName.RESOLVE_CONVERSATION, transition, args)


def escalate_conversation(
    thread_id: Optional[str], args: Dict[str, Any], deps: ToolDeps
) -> ToolResult:
    """Deriva la conversación a un humano (idempotente)."""
    conversation, failure = _precondition(
        ToolName.ESCALATE_CONVERSATION, thread_id, args, deps
    )
    if failure:
        return failure

    transition = deps.conversations.escalate(conversation["id"])
    return _state_result(ToolName.ESCALATE_CONVERSATION, transition, args)


#  REGISTRY

Handler = Callable[[Optional[str], Dict[str, Any], ToolDeps], ToolResult]

HANDLERS: Dict[ToolName, Handler] = {
    ToolName.SEARCH: search_knowledge,
    ToolName.RESOLVE_CONVERSATION: resolve_conversation,
    ToolName.ESCALATE_CONVERSATION: escalate_conversation,
}


class ToolRegistry:
    """Tabla de despacho cerrada ToolName → handler."""

    def __init__(self, deps: ToolDeps):
        self._deps = deps

    def parse(self, name: str, args: Any) -> ToolCall:
        """Valida la decisión del LLM (MalformedToolCall si no es válida)."""
        return parse_tool_call(name, args)

    def dispatch(self, call: ToolCall, thread_id: Optional[str]) -> ToolResult:
        """Ejecuta un tool ya validado.

        Errores inesperados se devuelven como ToolResult fallido; NamespaceError
        se propaga.
        """
        handler = HANDLERS[call.name]
        logger.info(f"[{thread_id}] Ejecutando tool {call.name.value} {call.args}")
        try:
            return handler(thread_id, call.args, self._deps)
        except NamespaceError:
            raise
        except Exception as e:
            logger.error(
                f"[{thread_id}] Tool {call.name.value} falló: {e}", exc_info=True
            )
            return ToolResult(
                call.name, TOOL_FAILURE_RESULT, args=call.args, success=False
            )
