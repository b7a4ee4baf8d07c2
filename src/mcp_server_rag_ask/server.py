"""MCP server exposing the RAG ask pipeline as a tool and as a server-sent-event HTTP endpoint."""

import asyncio
import json
import logging
import sys
import time
import uuid
from dataclasses import dataclass, field

from fastmcp import FastMCP
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from .answer import AnswerEngine
from .config import AppSettings, settings
from .exceptions import InvalidRequestError, LLMProviderError, RateLimitExceeded
from .models import AskMode, AskRequest, SearchCategory
from .observability import BackgroundTasks, bind_request_context, clear_request_context, get_request_logger, setup_structured_logging
from .orchestrator import AskOrchestrator
from .providers import get_chat_client
from .search import get_search_engine, get_vector_search
from .storage import CacheStore, SlidingWindowRateLimiter, UsageStore
from .stream import AskStream

logger = logging.getLogger("mcp_server_rag_ask")

# Suppress verbose loggers from dependencies
for _name in ("httpx", "httpcore", "openai", "browser_use", "aiosqlite"):
    logging.getLogger(_name).setLevel(logging.WARNING)


@dataclass
class Services:
    """Process-wide collaborators, built once at start-up and shared by every request."""

    app_settings: AppSettings
    background: BackgroundTasks
    usage: UsageStore
    cache: CacheStore | None = None
    rate_limiter: SlidingWindowRateLimiter | None = None
    orchestrator: AskOrchestrator | None = None
    started_at: float = field(default_factory=time.time)

    def get_orchestrator(self) -> AskOrchestrator:
        """Build the orchestrator on first use.

        Raises:
            LLMProviderError: If the configured provider cannot be initialized.
        """
        if self.orchestrator is None:
            llm = self.app_settings.llm
            chat_client = get_chat_client(
                provider=llm.provider,
                api_key=llm.get_api_key_for_provider(),
                base_url=llm.base_url,
                temperature=llm.temperature,
                azure_endpoint=llm.azure_endpoint,
                azure_api_version=llm.azure_api_version,
                aws_region=llm.aws_region,
            )
            self.orchestrator = AskOrchestrator(
                engine=AnswerEngine(chat_client),
                cache=self.cache,
                usage=self.usage,
                background=self.background,
                search_engine_factory=lambda options: get_search_engine(options, self.app_settings.search),
                vector_search_factory=lambda user_id: get_vector_search(user_id, self.app_settings.vector),
                image_limit=self.app_settings.server.image_limit,
            )
        return self.orchestrator


def build_services(app_settings: AppSettings | None = None) -> Services:
    """Construct storage backends and the background registry from settings."""
    app_settings = app_settings or settings

    cache = None
    if app_settings.cache.enabled:
        cache = CacheStore(
            app_settings.get_db_path(app_settings.cache.db_path, "cache.db"),
            ttl_seconds=app_settings.cache.ttl_seconds,
        )

    rate_limiter = None
    if app_settings.rate_limit.enabled:
        rate_limiter = SlidingWindowRateLimiter(
            app_settings.get_db_path(app_settings.rate_limit.db_path, "ratelimit.db"),
            max_requests=app_settings.rate_limit.max_requests,
            window_seconds=app_settings.rate_limit.window_seconds,
            prefix=app_settings.rate_limit.prefix,
        )

    return Services(
        app_settings=app_settings,
        background=BackgroundTasks(),
        usage=UsageStore(app_settings.get_db_path(None, "usage.db")),
        cache=cache,
        rate_limiter=rate_limiter,
    )


def resolve_user_id(request: Request, app_settings: AppSettings) -> str | None:
    """Signed-in user id as forwarded by the upstream session layer."""
    value = request.headers.get(app_settings.auth.user_header, "").strip()
    return value or None


def resolve_client_ip(request: Request, app_settings: AppSettings) -> str:
    """First forwarded-for entry, or the loopback default."""
    forwarded = request.headers.get(app_settings.auth.forwarded_for_header) or app_settings.auth.default_ip
    return forwarded.split(",")[0].strip() or app_settings.auth.default_ip


def parse_ask_request(payload: object) -> AskRequest:
    try:
        return AskRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid ask request: {e.errors(include_url=False)}") from e


async def sse_frames(stream: AskStream, budget_seconds: float, cancel_on_disconnect: bool):
    """Render stream events as `data: <json>` frames within a wall-clock budget.

    When the budget runs out the connection is closed but the producer is left to
    finish. When the client disconnects the producer is cancelled unless
    `cancel_on_disconnect` is off.
    """
    task_logger = get_request_logger()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + budget_seconds
    timed_out = False
    frames = 0
    try:
        while True:
            event = await stream.next(timeout=max(0.0, deadline - loop.time()))
            if event is None:
                break
            frames += 1
            yield event.to_sse()
    except TimeoutError:
        timed_out = True
        logger.warning(f"Ask stream exceeded {budget_seconds}s budget, closing connection")
    finally:
        if not stream.finished:
            if cancel_on_disconnect and not timed_out:
                logger.info("Stream canceled by client")
                stream.cancel()
            stream.detach()
            task_logger.info("ask_stream_detached", frames=frames, timed_out=timed_out)
        else:
            task_logger.info("ask_stream_completed", frames=frames)
        clear_request_context()


def serve(services: Services | None = None) -> FastMCP:
    """Create and configure the MCP server with the HTTP ask endpoints."""
    setup_structured_logging(settings.server.logging_level)
    logger.setLevel(getattr(logging, settings.server.logging_level.upper()))

    services = services or build_services()
    app_settings = services.app_settings

    server = FastMCP("mcp_server_rag_ask")

    @server.custom_route("/api/ask", methods=["POST"])
    async def ask_endpoint(request: Request) -> Response:
        """Stream an answer as server-sent events."""
        user_id = resolve_user_id(request, app_settings)
        caller = user_id or resolve_client_ip(request, app_settings)

        try:
            if user_id is None and services.rate_limiter is not None:
                await services.rate_limiter.enforce(caller)

            try:
                payload = await request.json()
            except json.JSONDecodeError as e:
                raise InvalidRequestError(f"Request body is not valid JSON: {e}") from e
            ask_request = parse_ask_request(payload)
            orchestrator = services.get_orchestrator()
        except RateLimitExceeded as e:
            logger.info(f"Rate limit exceeded for {e.identifier}")
            return JSONResponse(
                {"error": "Rate limit exceeded"},
                status_code=429,
                headers={
                    "X-RateLimit-Limit": str(e.limit),
                    "X-RateLimit-Remaining": str(e.remaining),
                    "X-RateLimit-Reset": str(int(e.reset or 0)),
                },
            )
        except (InvalidRequestError, LLMProviderError) as e:
            logger.error(f"Request failed: {e}")
            return JSONResponse({"error": str(e)}, status_code=500)
        except Exception as e:
            logger.exception("Request failed")
            return JSONResponse({"error": str(e)}, status_code=500)

        model = app_settings.llm.resolve_model(ask_request.model)
        bind_request_context(str(uuid.uuid4()), caller)
        get_request_logger().info(
            "ask_started",
            query_preview=ask_request.query[:100],
            mode=ask_request.mode.value,
            source=ask_request.source.value,
            model=model,
            use_cache=ask_request.use_cache,
        )

        stream = AskStream(orchestrator.ask(ask_request, model, user_id), services.background)
        stream.start()
        return StreamingResponse(
            sse_frames(stream, app_settings.server.max_request_seconds, app_settings.server.cancel_on_disconnect),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @server.custom_route("/api/health", methods=["GET"])
    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "status": "healthy",
                "uptime_seconds": round(time.time() - services.started_at, 1),
                "background_tasks": services.background.pending,
                "provider": app_settings.llm.provider,
                "model": app_settings.llm.model_name,
                "cache_enabled": services.cache is not None,
                "rate_limit_enabled": services.rate_limiter is not None,
            }
        )

    @server.custom_route("/api/usage/{user_id}", methods=["GET"])
    async def usage(request: Request) -> Response:
        user_id = request.path_params["user_id"]
        count = await services.usage.get(user_id)
        return JSONResponse({"user_id": user_id, "search_count": count})

    @server.tool()
    async def ask(
        query: str,
        mode: str = "simple",
        model: str | None = None,
        source: str = "all",
        use_cache: bool = True,
        user_id: str | None = None,
    ) -> str:
        """
        Answer a question from web (and, for a user, personal index) search results, with citations.

        Args:
            query: The question to answer
            mode: "simple" for a concise answer, "deep" for a structured report
            model: Optional model alias (e.g. "gpt-3.5", "gpt4"); defaults to the configured model
            source: Search category: all, images, videos, news, it, science, files, music, social media, map
            use_cache: Reuse a previous answer for the same query when available
            user_id: User whose vector index should be searched too. Not authenticated, so it is
                only accepted when MCP_SERVER_TRUST_TOOL_USER_ID is enabled for trusted clients

        Returns:
            JSON object with webs (cited sources), images, answer and related questions
        """
        try:
            ask_request = AskRequest(query=query, use_cache=use_cache, mode=AskMode(mode), model=model, source=SearchCategory(source))
            orchestrator = services.get_orchestrator()
        except (ValueError, LLMProviderError) as e:
            return f"Error: {e}"

        if user_id and not app_settings.server.trust_tool_user_id:
            return "Error: user_id is not accepted from MCP clients unless MCP_SERVER_TRUST_TOOL_USER_ID is enabled"

        bind_request_context(str(uuid.uuid4()), user_id or "mcp")
        try:
            result = await orchestrator.run(ask_request, app_settings.llm.resolve_model(model), user_id)
        finally:
            clear_request_context()
        return result.model_dump_json(indent=2)

    return server


def main() -> None:
    """Entry point for the ask server."""
    transport = settings.server.transport

    if transport == "stdio":
        print("The ask endpoint streams over HTTP; set MCP_SERVER_TRANSPORT=streamable-http.", file=sys.stderr)
        sys.exit(1)
    elif transport in ("streamable-http", "sse"):
        server_instance = serve()
        logger.info(f"Starting RAG ask server (provider: {settings.llm.provider}, transport: {transport})")
        logger.info(f"Ask endpoint at http://{settings.server.host}:{settings.server.port}/api/ask")
        server_instance.run(transport=transport, host=settings.server.host, port=settings.server.port)
    else:
        raise ValueError(f"Unknown transport: {transport}")


if __name__ == "__main__":
    main()
