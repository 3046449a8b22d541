"""
Responder - Sintetiza respuestas a partir de los snippets recuperados (Groq API).

Este módulo:
1. Integra con Groq API para generación de texto
2. Restringe la respuesta al contexto recuperado (sin inventar datos)
3. Devuelve un mensaje seguro si el proveedor falla o no hay contexto
"""

import logging
from typing import Optional

from groq import Groq

logger = logging.getLogger(__name__)

DEFAULT_SYNTHESIS_MODEL = "llama-3.1-8b-instant"

SEARCH_INTERPRETER_PROMPT = """\
You are a helpful assistant that interprets knowledge base search results for a \
customer support conversation.

RULES:
1. Answer the user's question using ONLY the information in the search results.
2. NEVER invent facts, prices, policies, names or numbers that are not in the results.
3. If the results do not contain enough information to answer, say so explicitly, \
for example: "I don't have specific information about that in our knowledge base."
4. Be concise and conversational. Do not mention "search results" or the knowledge \
base mechanics unless you are saying that information is missing.
5. Do not greet the user and do not wrap your answer in quotes."""

NO_INFORMATION_ANSWER = (
    "I don't have information on that in our knowledge base. "
    "Would you like me to connect you with a human support agent?"
)

SYNTHESIS_FALLBACK_ANSWER = (
    "Sorry, I'm having trouble looking that up right now. "
    "Please try again in a moment."
)


class AnswerSynthesizer:
    """Genera la respuesta final del tool ``search`` usando Groq."""

    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        timeout: float = 30.0,
        client: Optional[Groq] = None,
    ):
        """
        Inicializa el sintetizador.

        Args:
            api_key: API key de Groq (requerida si no se pasa ``client``)
            model: Modelo a usar (default: llama-3.1-8b-instant)
            timeout: Timeout en segundos de la llamada al proveedor
            client: Cliente Groq ya construido (tests / reutilización)
        """
        if client is None:
            if not api_key:
                raise ValueError(
                    "GROQ_API_KEY no encontrada. "
                    "Crea un archivo .env con tu API key de https://console.groq.com/keys"
                )
            # Sin reintentos: la política de retry es de la capa que llama
            client = Groq(api_key=api_key, timeout=timeout, max_retries=0)

        self.client = client
        self.model = model or DEFAULT_SYNTHESIS_MODEL

        logger.info(f"AnswerSynthesizer inicializado (modelo: {self.model})")

    def synthesize(self, user_query: str, retrieved_context: str) -> str:
        """
        Genera una respuesta restringida al contexto.

        Args:
            user_query: Pregunta del usuario
            retrieved_context: Snippets ya concatenados y etiquetados por título

        Returns:
            Texto plano de la respuesta (nunca lanza por errores del proveedor)
        """
        if not retrieved_context or not retrieved_context.strip():
            return NO_INFORMATION_ANSWER

        messages = [
            {"role": "system", "content": SEARCH_INTERPRETER_PROMPT},
            {
                "role": "user",
                "content": (
                    f'User asked: "{user_query}" \n\n'
                    f"Search results: {retrieved_context}"
                ),
            },
        ]

        try:
            completion = self.client.chat.completions.create(
                messages=messages,
                model=self.model,
                temperature=0.2,
                max_tokens=512,
            )
            text = completion.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"Error al sintetizar respuesta: {e}")
            return SYNTHESIS_FALLBACK_ANSWER

        # Limpiar comillas envolventes que el LLM a veces agrega
        text = text.strip().strip('"“”')
        if not text:
            logger.warning("El sintetizador devolvió una respuesta vacía")
            return SYNTHESIS_FALLBACK_ANSWER
        return text
