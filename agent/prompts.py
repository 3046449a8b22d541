"""
Prompts — Configuración inmutable del agente de soporte y textos fijos.

Cada tenant puede tener su propio ``AgentConfig`` (nombre, tono, política
adicional); el orquestador lo recibe al construirse en lugar de leer un
prompt global.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class AgentConfig:
    """Instrucciones del agente para un tenant."""

    name: str = "Support Assistant"
    tone: str = "friendly, concise and professional"
    extra_policy: str = ""

    def build_instructions(self) -> str:
        """Arma el system prompt completo (rol, tono y política de tools)."""
        instructions = f"""\
You are {self.name}, a customer support agent. Your tone is {self.tone}.

TOOLS:
- "search": look up the company's knowledge base. Use it for any question about \
products, policies, pricing, accounts or procedures. Never answer such questions \
from memory.
- "resolveConversation": use it when the user expresses that the conversation is \
finished or their issue is solved (e.g. "thanks, that solved it", "bye").
- "escalateConversation": use it when the user expresses frustration or explicitly \
asks for a human, a manager or a real person.

POLICY:
1. Call at most ONE of "resolveConversation" or "escalateConversation" per turn. \
Never call both.
2. If the message is ambiguous and you cannot tell whether the user wants \
information, to finish, or to talk to a human (e.g. "it's not working"), ask \
exactly ONE short clarifying question and do not call any tool.
3. When you call "resolveConversation", your message must include a brief closing \
summary of what was solved.
4. When you call "escalateConversation", your message must tell the user that a \
human agent will follow up.
5. Never invent information. If you don't know, say so.
6. Reply in the user's language."""
        if self.extra_policy:
            instructions += f"\n\nADDITIONAL POLICY:\n{self.extra_policy}"
        return instructions


DEFAULT_AGENT_CONFIG = AgentConfig()


# Respuestas fijas del orquestador

EMPTY_MESSAGE_REPLY = "I didn't receive a message. How can I help you?"

CONVERSATION_NOT_FOUND_REPLY = (
    "I couldn't find this conversation. Please start a new chat so I can help you."
)

CLARIFYING_REPLY = (
    "Sorry, I want to make sure I understand. Could you tell me a bit more about "
    "what you need help with?"
)

PROVIDER_ERROR_REPLY = (
    "Sorry, I'm having technical difficulties right now. "
    "Please try again in a moment."
)

TURN_BUSY_REPLY = (
    "I'm still working on your previous message. Please wait a moment and try again."
)

RESOLVED_CONVERSATION_REPLY = (
    "This conversation has been resolved. Please start a new chat if you need "
    "more help."
)

ESCALATED_CONVERSATION_REPLY = (
    "Your conversation has been passed to our support team. "
    "A human agent will follow up with you shortly."
)

# Resultados de los tools de estado

RESOLVE_TOOL_RESULT = (
    "Glad I could help! I've marked this conversation as resolved. "
    "Feel free to reach out again anytime."
)

ESCALATE_TOOL_RESULT = (
    "I've escalated this conversation to our support team. "
    "A human agent will follow up with you shortly."
)
