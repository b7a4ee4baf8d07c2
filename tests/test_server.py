"""Tests for the HTTP ask endpoint, health/usage routes and the MCP tool."""

import asyncio
import json

import pytest
from fastmcp import Client
from starlette.requests import Request
from starlette.testclient import TestClient

from mcp_server_rag_ask.answer import AnswerEngine
from mcp_server_rag_ask.config import AppSettings, CacheSettings, LLMSettings, RateLimitSettings, ServerSettings
from mcp_server_rag_ask.exceptions import InvalidRequestError
from mcp_server_rag_ask.models import StreamEvent
from mcp_server_rag_ask.observability import BackgroundTasks
from mcp_server_rag_ask.orchestrator import AskOrchestrator
from mcp_server_rag_ask.server import Services, build_services, parse_ask_request, resolve_client_ip, resolve_user_id, serve, sse_frames
from mcp_server_rag_ask.storage import CacheStore, SlidingWindowRateLimiter, UsageStore
from mcp_server_rag_ask.stream import AskStream


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def app_settings(monkeypatch, tmp_path):
    for var in ("MCP_LLM_API_KEY", "OPENAI_API_KEY", "MCP_LLM_OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    return AppSettings(
        llm=LLMSettings(provider="openai", model_name="gpt-3.5-turbo"),
        rate_limit=RateLimitSettings(max_requests=3, window_seconds=86400, db_path=str(tmp_path / "ratelimit.db")),
        cache=CacheSettings(db_path=str(tmp_path / "cache.db")),
        server=ServerSettings(max_request_seconds=10.0),
    )


@pytest.fixture
def services(app_settings, tmp_path, chat_client, fake_search, fake_vector):
    """Services wired to fake search and model collaborators with isolated SQLite files."""
    background = BackgroundTasks()
    cache = CacheStore(tmp_path / "cache.db")
    usage = UsageStore(tmp_path / "usage.db")
    return Services(
        app_settings=app_settings,
        background=background,
        usage=usage,
        cache=cache,
        rate_limiter=SlidingWindowRateLimiter(tmp_path / "ratelimit.db", max_requests=3, prefix="ratelimit:ask"),
        orchestrator=AskOrchestrator(
            engine=AnswerEngine(chat_client),
            cache=cache,
            usage=usage,
            background=background,
            search_engine_factory=fake_search.factory,
            vector_search_factory=fake_vector.factory,
        ),
    )


@pytest.fixture
def client(services):
    with TestClient(serve(services).http_app()) as test_client:
        yield test_client


def parse_frames(body: str) -> list[dict]:
    assert body.endswith(" \n\n")
    frames = [frame for frame in body.split(" \n\n") if frame]
    assert all(frame.startswith("data: ") for frame in frames)
    return [json.loads(frame[len("data: ") :]) for frame in frames]


def drain(client: TestClient, services: Services) -> None:
    client.portal.call(services.background.drain)


@pytest.mark.integration
class TestAskEndpoint:
    """POST /api/ask."""

    def test_streams_sse_frames(self, client):
        """The ask route streams data frames in event order."""
        response = client.post("/api/ask", json={"query": "capital of France"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        frames = parse_frames(response.text)
        assert [next(iter(frame)) for frame in frames] == ["sources", "images", "answer", "answer", "related", "related"]
        assert frames[0]["sources"][0] == {"title": "web 1", "url": "https://web.example.com/1", "content": "web content 1"}
        assert "".join(f["answer"] for f in frames if "answer" in f) == "Paris is the capital of France [citation:1]."

    def test_fourth_anonymous_request_is_rate_limited(self, client, fake_search):
        """The fourth anonymous request gets 429 without searching."""
        for _ in range(3):
            assert client.post("/api/ask", json={"query": "q"}).status_code == 200

        response = client.post("/api/ask", json={"query": "q"})

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded"}
        assert response.headers["x-ratelimit-limit"] == "3"
        assert response.headers["x-ratelimit-remaining"] == "0"
        assert len(fake_search.calls) == 3

    def test_rate_limit_keyed_by_first_forwarded_ip(self, client):
        """Quota is tracked per first forwarded address."""
        for _ in range(3):
            client.post("/api/ask", json={"query": "q"}, headers={"x-forwarded-for": "203.0.113.7, 10.0.0.1"})

        limited = client.post("/api/ask", json={"query": "q"}, headers={"x-forwarded-for": "203.0.113.7, 10.0.0.2"})
        other = client.post("/api/ask", json={"query": "q"}, headers={"x-forwarded-for": "198.51.100.1"})

        assert limited.status_code == 429
        assert other.status_code == 200

    def test_signed_in_users_bypass_rate_limit_and_are_counted(self, client, services, fake_vector):
        """Signed-in users are counted instead of limited."""
        for _ in range(5):
            assert client.post("/api/ask", json={"query": "q"}, headers={"x-user-id": "user-1"}).status_code == 200
        drain(client, services)

        assert client.get("/api/usage/user-1").json() == {"user_id": "user-1", "search_count": 5}
        assert {user for user, _ in fake_vector.calls} == {"user-1"}

    def test_signed_in_sources_are_vector_first(self, client):
        """Signed-in requests list vector sources first."""
        response = client.post("/api/ask", json={"query": "q"}, headers={"x-user-id": "user-1"})

        titles = [source["title"] for source in parse_frames(response.text)[0]["sources"]]
        assert titles == ["vector 1", "web 1", "web 2"]

    def test_cached_answer_is_replayed(self, client, services, chat_client):
        """A cached answer is replayed on request."""
        first = parse_frames(client.post("/api/ask", json={"query": "capital of France"}).text)
        drain(client, services)
        model_calls = len(chat_client.calls)

        response = client.post("/api/ask", json={"query": "  capital of France ", "useCache": True})

        frames = parse_frames(response.text)
        assert [next(iter(frame)) for frame in frames] == ["sources", "images", "answer", "related"]
        assert frames[2]["answer"] == "".join(f["answer"] for f in first if "answer" in f)
        assert len(chat_client.calls) == model_calls

    def test_model_alias_resolved(self, client, chat_client):
        """Model aliases reach the model client resolved."""
        client.post("/api/ask", json={"query": "q", "model": "gpt4"})

        assert {model for _, model in chat_client.calls} == {"gpt-4o"}

    def test_unknown_model_uses_default(self, client, chat_client):
        """Unknown aliases use the configured model."""
        client.post("/api/ask", json={"query": "q", "model": "something-else"})

        assert {model for _, model in chat_client.calls} == {"gpt-3.5-turbo"}

    def test_mode_and_source_accepted(self, client, fake_search):
        """Mode and source are read from the body."""
        response = client.post("/api/ask", json={"query": "q", "mode": "deep", "source": "news"})

        assert response.status_code == 200
        assert fake_search.calls[0][0].value == "news"

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            json.dumps({"query": "   "}),
            json.dumps({"mode": "simple"}),
            json.dumps({"query": "q", "source": "podcasts"}),
        ],
    )
    def test_malformed_request_is_500(self, client, body):
        """Invalid bodies get a 500 with an error message."""
        response = client.post("/api/ask", content=body, headers={"content-type": "application/json", "x-user-id": "user-1"})

        assert response.status_code == 500
        assert "error" in response.json()

    def test_missing_provider_key_is_500(self, app_settings, tmp_path):
        """A provider without a key gets a 500."""
        services = Services(app_settings=app_settings, background=BackgroundTasks(), usage=UsageStore(tmp_path / "usage.db"))

        with TestClient(serve(services).http_app()) as client:
            response = client.post("/api/ask", json={"query": "q"})

        assert response.status_code == 500
        assert "API key required" in response.json()["error"]


class TestAuxiliaryRoutes:
    """Health and usage routes."""

    def test_health(self, client):
        """Health reports status and enabled features."""
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["provider"] == "openai"
        assert data["cache_enabled"] is True
        assert data["rate_limit_enabled"] is True
        assert data["background_tasks"] >= 0

    def test_usage_unknown_user(self, client):
        """Unknown users have a zero count."""
        assert client.get("/api/usage/nobody").json() == {"user_id": "nobody", "search_count": 0}


class TestRequestHelpers:
    """Identity resolution and payload parsing."""

    @staticmethod
    def make_request(headers: dict[str, str]) -> Request:
        return Request({"type": "http", "headers": [(k.encode(), v.encode()) for k, v in headers.items()]})

    def test_client_ip_first_forwarded_entry(self, app_settings):
        """The first forwarded address identifies the client."""
        request = self.make_request({"x-forwarded-for": "203.0.113.7, 10.0.0.1"})

        assert resolve_client_ip(request, app_settings) == "203.0.113.7"

    def test_client_ip_default(self, app_settings):
        """Requests without forwarding headers use the loopback address."""
        assert resolve_client_ip(self.make_request({}), app_settings) == "127.0.0.1"

    def test_user_id_from_header(self, app_settings):
        """The user id is read from the configured header and trimmed."""
        assert resolve_user_id(self.make_request({"x-user-id": " user-1 "}), app_settings) == "user-1"
        assert resolve_user_id(self.make_request({"x-user-id": ""}), app_settings) is None
        assert resolve_user_id(self.make_request({}), app_settings) is None

    def test_parse_defaults(self):
        """Missing fields take their defaults."""
        request = parse_ask_request({"query": " q ", "mode": None, "source": None})

        assert request.query == "q"
        assert request.mode.value == "simple"
        assert request.source.value == "all"
        assert request.use_cache is False

    def test_parse_rejects_non_object(self):
        """A JSON array is not a valid request."""
        with pytest.raises(InvalidRequestError):
            parse_ask_request(["q"])

    def test_build_services_respects_toggles(self, monkeypatch, tmp_path):
        """Disabled cache and rate limiting are not built."""
        monkeypatch.setattr("mcp_server_rag_ask.config.get_config_dir", lambda: tmp_path)
        app_settings = AppSettings(cache=CacheSettings(enabled=False), rate_limit=RateLimitSettings(enabled=False))

        services = build_services(app_settings)

        assert services.cache is None
        assert services.rate_limiter is None
        assert services.usage.db_path == tmp_path / "usage.db"


class TestSseFrames:
    """Deadline and disconnect handling around the event channel."""

    async def test_budget_closes_connection_but_producer_finishes(self):
        """The budget ends the response while the producer runs on unbuffered."""
        background = BackgroundTasks()
        finished = asyncio.Event()

        async def slow():
            yield StreamEvent(kind="sources", data=[])
            await asyncio.sleep(0.2)
            yield StreamEvent(kind="answer", data="late")
            finished.set()

        stream = AskStream(slow(), background)
        stream.start()

        frames = [frame async for frame in sse_frames(stream, budget_seconds=0.05, cancel_on_disconnect=True)]
        await background.drain()

        assert frames == ['data: {"sources": []} \n\n']
        assert finished.is_set()
        assert stream._queue.qsize() == 1

    @pytest.mark.parametrize(("cancel_on_disconnect", "expect_cancelled"), [(True, True), (False, False)])
    async def test_disconnect(self, cancel_on_disconnect, expect_cancelled):
        """A client disconnect cancels the producer only when configured to."""
        background = BackgroundTasks()
        reached_end = asyncio.Event()

        async def producer():
            yield StreamEvent(kind="sources", data=[])
            await asyncio.sleep(0.05)
            yield StreamEvent(kind="answer", data="a")
            reached_end.set()

        stream = AskStream(producer(), background)
        frames = sse_frames(stream, budget_seconds=10, cancel_on_disconnect=cancel_on_disconnect)
        await anext(frames)
        await frames.aclose()
        await background.drain()

        assert reached_end.is_set() is not expect_cancelled


@pytest.mark.integration
class TestAskTool:
    """The `ask` MCP tool."""

    async def test_returns_result_bundle(self, services):
        """The tool returns the whole bundle as JSON."""
        async with Client(serve(services)) as mcp_client:
            result = await mcp_client.call_tool("ask", {"query": "capital of France"})

        data = json.loads(result.content[0].text)
        assert data["answer"] == "Paris is the capital of France [citation:1]."
        assert [w["title"] for w in data["webs"]] == ["web 1", "web 2"]
        assert data["related"]

    async def test_invalid_mode(self, services):
        """An unknown mode is reported as an error."""
        async with Client(serve(services)) as mcp_client:
            result = await mcp_client.call_tool("ask", {"query": "q", "mode": "verbose"})

        assert result.content[0].text.startswith("Error:")

    async def test_tool_is_not_rate_limited(self, services):
        """Tool calls are not subject to the anonymous quota."""
        async with Client(serve(services)) as mcp_client:
            for _ in range(4):
                result = await mcp_client.call_tool("ask", {"query": "q", "use_cache": False})
                assert not result.content[0].text.startswith("Error:")

    async def test_user_id_rejected_by_default(self, services, fake_vector):
        """A tool caller cannot pick a user's vector index unless trust is enabled."""
        async with Client(serve(services)) as mcp_client:
            result = await mcp_client.call_tool("ask", {"query": "q", "user_id": "alice"})

        assert result.content[0].text.startswith("Error: user_id is not accepted")
        assert fake_vector.calls == []

    async def test_user_id_accepted_when_trusted(self, services, fake_vector):
        """Trusted deployments search the named user's vector index."""
        services.app_settings.server.trust_tool_user_id = True
        async with Client(serve(services)) as mcp_client:
            result = await mcp_client.call_tool("ask", {"query": "q", "user_id": "alice"})

        assert not result.content[0].text.startswith("Error:")
        assert fake_vector.calls == [("alice", "q")]
