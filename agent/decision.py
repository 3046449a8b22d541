"""
Decision — Paso de decisión del agente con function calling (Groq).

Dado el system prompt del tenant y un snapshot del thread, el LLM devuelve
texto directo o la intención de invocar tools. La llamada es el punto de
suspensión del turno: nunca lanza, devuelve un ``Decision`` con ``error``
si el proveedor falla. No hay reintentos acá.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from groq import BadRequestError, Groq

from agent.tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

DEFAULT_DECISION_MODEL = "llama-3.3-70b-versatile"

# Roles del thread que se envían tal cual al proveedor
_PASSTHROUGH_ROLES = {"user", "assistant", "system"}


@dataclass(frozen=True)
class RequestedTool:
    """Tool pedido por el LLM, aún sin validar.

    ``arguments`` es None si el JSON de argumentos no se pudo parsear.
    """

    name: str
    arguments: Optional[Dict]
    call_id: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    """Resultado del paso de decisión (texto, tools o error)."""

    text: str = ""
    tool_calls: Tuple[RequestedTool, ...] = ()
    error: Optional[str] = None
    malformed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


def _parse_arguments(raw: Optional[str]) -> Optional[Dict]:
    """Parsea los argumentos JSON de un tool call."""
    if raw is None or not raw.strip():
        return {}
    clean = raw.strip().strip("`").strip()
    if clean.startswith("json"):
        clean = clean[4:].strip()
    try:
        data = json.loads(clean)
    except json.JSONDecodeError:
        logger.warning(f"Argumentos de tool no parseables: {raw}")
        return None
    return data if isinstance(data, dict) else None


def to_provider_messages(transcript: Sequence[Dict]) -> List[Dict[str, str]]:
    """Convierte mensajes del thread al formato chat del proveedor."""
    messages = []
    for msg in transcript:
        role = msg["role"] if msg["role"] in _PASSTHROUGH_ROLES else "assistant"
        messages.append({"role": role, "content": msg["content"]})
    return messages


class DecisionProvider:
    """Decide la acción del turno usando Groq con tools."""

    def __init__(
        self,
        api_key: str = None,
        model: str = DEFAULT_DECISION_MODEL,
        timeout: float = 30.0,
        client: Optional[Groq] = None,
    ):
        if client is None:
            client = Groq(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self._model = model

    def decide(self, instructions: str, transcript: Sequence[Dict]) -> Decision:
        """
        Consulta al LLM con el snapshot del thread.

        Args:
            instructions: System prompt del tenant (AgentConfig)
            transcript: Snapshot inmutable de los mensajes del thread

        Returns:
            Decision con texto y/o tools pedidos, o con ``error``
        """
        messages = [{"role": "system", "content": instructions}]
        messages.extend(to_provider_messages(transcript))

        try:
            completion = self._client.chat.completions.create(
                messages=messages,
                model=self._model,
                tools=TOOL_DEFINITIONS,
                tool_choice="auto",
                temperature=0.2,
                max_tokens=512,
            )
        except BadRequestError as e:
            # Groq rechaza tool calls que el modelo generó mal formados
            if "tool_use_failed" in str(e):
                logger.warning(f"Tool call mal formado según el proveedor: {e}")
                return Decision(malformed=True)
            logger.error(f"Error en decisión LLM: {e}")
            return Decision(error=str(e))
        except Exception as e:
            logger.error(f"Error en decisión LLM: {e}")
            return Decision(error=str(e))

        message = completion.choices[0].message
        text = (message.content or "").strip()

        requested = tuple(
            RequestedTool(
                name=tc.function.name,
                arguments=_parse_arguments(tc.function.arguments),
                call_id=tc.id,
            )
            for tc in (message.tool_calls or [])
        )

        logger.info(
            f"Decisión: tools={[t.name for t in requested]} "
            f"text='{text[:40]}'"
        )
        return Decision(text=text, tool_calls=requested)
