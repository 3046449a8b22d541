"""
Tools — Catálogo cerrado de acciones que el agente puede invocar.

Define:
- ToolName: enum cerrado de tools (search, resolveConversation, escalateConversation)
- TOOL_DEFINITIONS: schemas de function calling que se envían al LLM
- parse_tool_call: valida nombre y argumentos ANTES de despachar
- plan_dispatch: aplica la regla de un solo tool de estado por turno
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    """Tools que el agente puede invocar."""

    SEARCH = "search"
    RESOLVE_CONVERSATION = "resolveConversation"
    ESCALATE_CONVERSATION = "escalateConversation"


# Tools que modifican el status de la conversación
STATE_CHANGING_TOOLS = {ToolName.RESOLVE_CONVERSATION, ToolName.ESCALATE_CONVERSATION}

# Argumentos requeridos por tool (deben ser strings no vacíos)
_REQUIRED_ARGS: Dict[ToolName, Tuple[str, ...]] = {
    ToolName.SEARCH: ("query",),
    ToolName.RESOLVE_CONVERSATION: (),
    ToolName.ESCALATE_CONVERSATION: (),
}


TOOL_DEFINITIONS = [
    {
        "type": "function",
        "function": {
            "name": ToolName.SEARCH.value,
            "description": (
                "Search the knowledge base for relevant information to help "
                "answer user questions."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The search query to find relevant information",
                    }
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.RESOLVE_CONVERSATION.value,
            "description": "Resolve the conversation once the user is done.",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.ESCALATE_CONVERSATION.value,
            "description": (
                "Escalate the conversation to a human operator when the user is "
                "frustrated or asks for a human."
            ),
            "parameters": {"type": "object", "properties": {}},
        },
    },
]


class MalformedToolCall(ValueError):
    """El LLM pidió un tool inexistente o con argumentos inválidos."""


@dataclass(frozen=True)
class ToolCall:
    """Invocación validada de un tool."""

    name: ToolName
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def changes_state(self) -> bool:
        return self.name in STATE_CHANGING_TOOLS


@dataclass
class ToolResult:
    """
    Resultado de ejecutar un tool.

    Attributes:
        name: Tool ejecutado
        result_text: Texto que vuelve al orquestador
        args: Argumentos con los que se invocó
        appended_message: True si el tool ya guardó su propio mensaje en el thread
        state_changed: True si el tool modificó el status de la conversación
        status_conflict: True si la conversación ya estaba en otro estado terminal
        success: False si el tool falló (precondición o error inesperado)
    """

    name: ToolName
    result_text: str
    args: Dict[str, Any] = field(default_factory=dict)
    appended_message: bool = False
    state_changed: bool = False
    status_conflict: bool = False
    success: bool = True


def parse_tool_call(name: str, args: Any) -> ToolCall:
    """
    Valida una decisión de tool del LLM contra el catálogo cerrado.

    Raises:
        MalformedToolCall: nombre desconocido, args no-dict (o None) o arg requerido faltante
    """
    try:
        tool = ToolName(name)
    except ValueError:
        raise MalformedToolCall(f"Tool desconocido: {name!r}")

    # None: el JSON de argumentos no se pudo parsear
    if not isinstance(args, dict):
        raise MalformedToolCall(f"Argumentos inválidos para {tool.value}: {args!r}")

    for required in _REQUIRED_ARGS[tool]:
        value = args.get(required)
        if not isinstance(value, str) or not value.strip():
            raise MalformedToolCall(
                f"Falta el argumento '{required}' para {tool.value}"
            )

    return ToolCall(name=tool, args=dict(args))


def plan_dispatch(calls: Sequence[ToolCall]) -> Tuple[List[ToolCall], List[ToolCall]]:
    """
    Decide qué tools se despachan en este turno.

    Solo el primer tool de estado pasa; los siguientes se ignoran.

    Returns:
        (a_despachar, ignorados) preservando el orden original
    """
    to_dispatch: List[ToolCall] = []
    ignored: List[ToolCall] = []
    state_tool_seen = False

    for call in calls:
        if call.changes_state:
            if state_tool_seen:
                ignored.append(call)
                continue
            state_tool_seen = True
        to_dispatch.append(call)

    if ignored:
        logger.warning(
            "Tools de estado adicionales ignorados en el turno: "
            f"{[c.name.value for c in ignored]}"
        )
    return to_dispatch, ignored
