"""
Tests para rag/query/responder.py — Síntesis de respuestas con Groq.

El cliente Groq se reemplaza por un MagicMock: no hay llamadas de red.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from rag.query.responder import (
    DEFAULT_SYNTHESIS_MODEL,
    NO_INFORMATION_ANSWER,
    SEARCH_INTERPRETER_PROMPT,
    SYNTHESIS_FALLBACK_ANSWER,
    AnswerSynthesizer,
)

_CONTEXT = "Found results in Refunds. Here is the context: \n\nRefunds within 30 days."


def _completion(content):
    message = SimpleNamespace(content=content, tool_calls=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def groq_client():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(
        "You can request a refund within 30 days."
    )
    return client


@pytest.fixture
def synthesizer(groq_client) -> AnswerSynthesizer:
    return AnswerSynthesizer(client=groq_client)


class TestInit:
    def test_requires_api_key_without_client(self):
        with pytest.raises(ValueError, match="GROQ_API_KEY"):
            AnswerSynthesizer(api_key=None)

    def test_default_model(self, synthesizer):
        assert synthesizer.model == DEFAULT_SYNTHESIS_MODEL


class TestSynthesize:
    def test_answer_from_context(self, synthesizer, groq_client):
        answer = synthesizer.synthesize("refund policy?", _CONTEXT)
        assert answer == "You can request a refund within 30 days."

        kwargs = groq_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == DEFAULT_SYNTHESIS_MODEL
        system, user = kwargs["messages"]
        assert system == {"role": "system", "content": SEARCH_INTERPRETER_PROMPT}
        assert "refund policy?" in user["content"]
        assert "Refunds within 30 days." in user["content"]

    def test_empty_context_skips_provider(self, synthesizer, groq_client):
        assert synthesizer.synthesize("refund policy?", "") == NO_INFORMATION_ANSWER
        assert synthesizer.synthesize("refund policy?", "  ") == NO_INFORMATION_ANSWER
        groq_client.chat.completions.create.assert_not_called()

    def test_provider_error_returns_fallback(self, synthesizer, groq_client):
        groq_client.chat.completions.create.side_effect = TimeoutError("timed out")
        assert synthesizer.synthesize("refund?", _CONTEXT) == SYNTHESIS_FALLBACK_ANSWER

    def test_empty_completion_returns_fallback(self, synthesizer, groq_client):
        groq_client.chat.completions.create.return_value = _completion(None)
        assert synthesizer.synthesize("refund?", _CONTEXT) == SYNTHESIS_FALLBACK_ANSWER

    def test_strips_wrapping_quotes(self, synthesizer, groq_client):
        groq_client.chat.completions.create.return_value = _completion(
            '"Refunds take 30 days."'
        )
        assert synthesizer.synthesize("refund?", _CONTEXT) == "Refunds take 30 days."

    def test_prompt_forbids_invented_facts(self):
        assert "NEVER invent" in SEARCH_INTERPRETER_PROMPT
        assert "ONLY" in SEARCH_INTERPRETER_PROMPT
