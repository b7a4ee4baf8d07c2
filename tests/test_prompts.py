"""Tests for prompt construction and the answer engine."""

from conftest import ScriptedChatClient

from mcp_server_rag_ask.answer import ANSWER_ERROR_PREFIX, AnswerChunk, AnswerEngine
from mcp_server_rag_ask.models import AskMode, TextSource
from mcp_server_rag_ask.prompts import (
    DEEP_QUERY_PROMPT,
    MORE_QUESTIONS_PROMPT,
    RAG_QUERY_PROMPT,
    build_messages,
    format_citations,
    select_template,
)

CONTEXTS = [
    TextSource(title="A", url="https://a.example.com", content="alpha"),
    TextSource(title="B", url="https://b.example.com", content="beta"),
]


class TestPrompts:
    """Citation formatting and template selection."""

    def test_citations_numbered_from_one(self):
        """Evidence is numbered from one in list order."""
        assert format_citations(CONTEXTS) == "[citation:1] alpha\n\n[citation:2] beta"

    def test_empty_contexts(self):
        """No evidence formats to an empty string."""
        assert format_citations([]) == ""

    def test_template_selection(self):
        """Mode and kind pick the matching template."""
        assert select_template("answer") is RAG_QUERY_PROMPT
        assert select_template("answer", AskMode.DEEP) is DEEP_QUERY_PROMPT
        assert select_template("related", AskMode.DEEP) is MORE_QUESTIONS_PROMPT

    def test_single_user_message(self):
        """The prompt is one user message."""
        messages = build_messages("What is alpha?", CONTEXTS, "answer")

        assert len(messages) == 1
        assert messages[0]["role"] == "user"
        content = messages[0]["content"]
        assert "{context}" not in content
        assert "[citation:1] alpha\n\n[citation:2] beta" in content
        assert content.endswith("user question:\n What is alpha?")

    def test_related_prompt_ends_with_query(self):
        """The related prompt closes with the question."""
        content = build_messages("What is alpha?", CONTEXTS, "related")[0]["content"]

        assert content.startswith(MORE_QUESTIONS_PROMPT[:60])
        assert content.endswith(" What is alpha?")

    def test_braces_in_evidence_are_preserved(self):
        """Braces in evidence are not treated as placeholders."""
        contexts = [TextSource(content="function f() { return {a: 1}; }")]

        content = build_messages("q", contexts, "answer")[0]["content"]

        assert "[citation:1] function f() { return {a: 1}; }" in content


class TestAnswerEngine:
    """Error folding around the chat client."""

    async def test_streams_tokens(self):
        """Model tokens pass through as answer chunks."""
        client = ScriptedChatClient(answer_tokens=["a", "b"])

        chunks = [chunk async for chunk in AnswerEngine(client).answer("q", CONTEXTS, "gpt-4o")]

        assert chunks == [AnswerChunk("a"), AnswerChunk("b")]
        assert client.calls[0][1] == "gpt-4o"

    async def test_error_becomes_final_chunk(self):
        """A model error ends the answer with one error chunk."""
        client = ScriptedChatClient(answer_error=RuntimeError("quota exceeded"))

        chunks = [chunk async for chunk in AnswerEngine(client).answer("q", CONTEXTS, "gpt-4o")]

        assert chunks == [AnswerChunk(f"{ANSWER_ERROR_PREFIX}: quota exceeded", failed=True)]

    async def test_error_without_message(self):
        """An error with no message points at the server logs."""
        client = ScriptedChatClient(answer_error=RuntimeError())

        chunks = [chunk async for chunk in AnswerEngine(client).answer("q", CONTEXTS, "gpt-4o")]

        assert chunks[0].text == f"{ANSWER_ERROR_PREFIX}: Please check the server logs"

    async def test_related_error_ends_stream_quietly(self):
        """A related-question error just ends that stream."""
        client = ScriptedChatClient(related_tokens=["Q1\n", "Q2"], related_error=RuntimeError("boom"), fail_after=1)

        tokens = [token async for token in AnswerEngine(client).related("q", CONTEXTS, "gpt-4o")]

        assert tokens == ["Q1\n"]

    async def test_related_uses_simple_template(self):
        """Related questions ignore the answer mode."""
        client = ScriptedChatClient()

        [token async for token in AnswerEngine(client).related("q", CONTEXTS, "gpt-4o")]

        assert client.is_related(client.calls[0][0])
