"""Answer streaming engine: turns evidence plus a query into streamed model output."""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass

from .models import AskMode, TextSource
from .prompts import PromptKind, build_messages

logger = logging.getLogger(__name__)

ANSWER_ERROR_PREFIX = "[Oops~ Some errors seem to have occurred]"


@dataclass(frozen=True)
class AnswerChunk:
    """One piece of streamed answer text.

    `failed` marks the synthetic message emitted in place of a model error.
    """

    text: str
    failed: bool = False


class AnswerEngine:
    """Runs the two generation calls made per query against one chat client.

    The chat client only needs ``stream(messages, model) -> AsyncIterator[str]``.
    Neither generator ever raises a model error to its consumer.
    """

    def __init__(self, chat_client):
        self.chat_client = chat_client

    async def _generate(self, query: str, contexts: Sequence[TextSource], kind: PromptKind, mode: AskMode, model: str) -> AsyncIterator[str]:
        messages = build_messages(query, contexts, kind, mode)
        async with aclosing(self.chat_client.stream(messages, model)) as tokens:
            async for token in tokens:
                yield token

    async def answer(
        self,
        query: str,
        contexts: Sequence[TextSource],
        model: str,
        mode: AskMode = AskMode.SIMPLE,
    ) -> AsyncIterator[AnswerChunk]:
        """Stream the cited answer.

        On failure one synthetic error chunk is yielded and the stream ends.
        """
        try:
            async with aclosing(self._generate(query, contexts, "answer", mode, model)) as tokens:
                async for token in tokens:
                    yield AnswerChunk(token)
        except Exception as e:
            logger.error(f"[LLM Error]: answer generation failed: {e}")
            yield AnswerChunk(f"{ANSWER_ERROR_PREFIX}: {str(e) or 'Please check the server logs'}", failed=True)

    async def related(self, query: str, contexts: Sequence[TextSource], model: str) -> AsyncIterator[str]:
        """Stream follow-up questions; on failure the stream just ends."""
        try:
            async with aclosing(self._generate(query, contexts, "related", AskMode.SIMPLE, model)) as tokens:
                async for token in tokens:
                    yield token
        except Exception as e:
            logger.error(f"[LLM Error]: related question generation failed: {e}")
