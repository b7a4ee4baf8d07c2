"""Pytest configuration and fake collaborators for mcp-server-rag-ask tests."""

import asyncio

import pytest

from mcp_server_rag_ask.answer import AnswerEngine
from mcp_server_rag_ask.models import ImageSource, SearchCategory, SearchResponse, TextSource
from mcp_server_rag_ask.observability import BackgroundTasks
from mcp_server_rag_ask.orchestrator import AskOrchestrator
from mcp_server_rag_ask.prompts import MORE_QUESTIONS_PROMPT
from mcp_server_rag_ask.storage import CacheStore, UsageStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: Tests that exercise the HTTP transport end to end")


class FakeSearch:
    """Web search stand-in; responses are keyed by the first requested category.

    A response may be an exception instance, which is raised instead.
    """

    def __init__(self, responses: dict[SearchCategory, SearchResponse | Exception] | None = None, delay: float = 0.0):
        self.responses = responses or {}
        self.delay = delay
        self.calls: list[tuple[SearchCategory, str]] = []
        self.started: dict[SearchCategory, asyncio.Event] = {}

    def factory(self, options):
        return _FakeEngine(self, options.categories[0])


class _FakeEngine:
    def __init__(self, owner: FakeSearch, category: SearchCategory):
        self.owner = owner
        self.category = category

    async def search(self, query: str) -> SearchResponse:
        self.owner.calls.append((self.category, query))
        self.owner.started.setdefault(self.category, asyncio.Event()).set()
        if self.owner.delay:
            await asyncio.sleep(self.owner.delay)
        response = self.owner.responses.get(self.category, SearchResponse())
        if isinstance(response, Exception):
            raise response
        return response


class FakeVectorSearch:
    """Per-user vector search stand-in."""

    def __init__(self, response: SearchResponse | Exception | None = None):
        self.response = response or SearchResponse()
        self.calls: list[tuple[str, str]] = []

    def factory(self, user_id: str):
        owner = self

        class _Bound:
            async def search(self, query: str) -> SearchResponse:
                owner.calls.append((user_id, query))
                if isinstance(owner.response, Exception):
                    raise owner.response
                return owner.response

        return _Bound()


class ScriptedChatClient:
    """Chat client that replays fixed token lists.

    Related-question prompts are recognised by their template; everything else is
    treated as an answer prompt.
    """

    def __init__(
        self,
        answer_tokens: list[str] | None = None,
        related_tokens: list[str] | None = None,
        answer_error: Exception | None = None,
        related_error: Exception | None = None,
        fail_after: int = 0,
    ):
        self.answer_tokens = ["Paris is the capital", " of France [citation:1]."] if answer_tokens is None else answer_tokens
        self.related_tokens = ["What is the population of Paris?\n", "When did Paris become the capital of France?"] if related_tokens is None else related_tokens
        self.answer_error = answer_error
        self.related_error = related_error
        self.fail_after = fail_after
        self.calls: list[tuple[list[dict[str, str]], str]] = []

    @staticmethod
    def is_related(messages) -> bool:
        return messages[0]["content"].startswith(MORE_QUESTIONS_PROMPT.split("{context}")[0])

    async def stream(self, messages, model):
        self.calls.append((messages, model))
        related = self.is_related(messages)
        tokens = self.related_tokens if related else self.answer_tokens
        error = self.related_error if related else self.answer_error
        for index, token in enumerate(tokens):
            if error is not None and index == self.fail_after:
                raise error
            await asyncio.sleep(0)
            yield token
        if error is not None and self.fail_after >= len(tokens):
            raise error


def text(n: int, origin: str = "web") -> TextSource:
    return TextSource(title=f"{origin} {n}", url=f"https://{origin}.example.com/{n}", content=f"{origin} content {n}")


def image(n: int, secure: bool = True) -> ImageSource:
    scheme = "https" if secure else "http"
    return ImageSource(title=f"image {n}", url=f"https://example.com/page/{n}", image=f"{scheme}://img.example.com/{n}.png")


@pytest.fixture
def fake_search():
    return FakeSearch(
        {
            SearchCategory.ALL: SearchResponse(texts=[text(1), text(2)], images=[image(1)]),
            SearchCategory.IMAGES: SearchResponse(images=[image(n) for n in range(1, 4)]),
        }
    )


@pytest.fixture
def fake_vector():
    return FakeVectorSearch(SearchResponse(texts=[text(1, "vector")]))


@pytest.fixture
def chat_client():
    return ScriptedChatClient()


@pytest.fixture
async def cache(tmp_path):
    store = CacheStore(tmp_path / "cache.db")
    await store.initialize()
    return store


@pytest.fixture
async def usage(tmp_path):
    store = UsageStore(tmp_path / "usage.db")
    await store.initialize()
    return store


@pytest.fixture
def background():
    return BackgroundTasks()


@pytest.fixture
def orchestrator(chat_client, fake_search, fake_vector, cache, usage, background):
    return AskOrchestrator(
        engine=AnswerEngine(chat_client),
        cache=cache,
        usage=usage,
        background=background,
        search_engine_factory=fake_search.factory,
        vector_search_factory=fake_vector.factory,
    )
