"""CLI interface for the RAG ask server."""

import asyncio

import typer

from .config import settings
from .exceptions import LLMProviderError
from .models import AskMode, AskRequest, CachedResult, SearchCategory

app = typer.Typer(help="Cited answers from web search, streamed from a language model")


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer"),
    mode: AskMode = typer.Option(AskMode.SIMPLE, "--mode", help="simple or deep"),
    model: str = typer.Option(None, "--model", "-m", help="Model alias (gpt-3.5, gpt4)"),
    source: SearchCategory = typer.Option(SearchCategory.ALL, "--source", "-s", help="Search category"),
    user_id: str = typer.Option(None, "--user", "-u", help="Also search this user's vector index"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore previously cached answers"),
    save_to: str = typer.Option(None, "--save", help="File path to save a markdown report"),
) -> None:
    """Answer a question, streaming tokens to stdout."""
    from .server import build_services
    from .utils import save_answer_report

    async def _ask() -> CachedResult | None:
        services = build_services()
        try:
            orchestrator = services.get_orchestrator()
        except LLMProviderError as e:
            typer.echo(f"Error: {e}", err=True)
            return None

        request = AskRequest(query=query, use_cache=not no_cache, mode=mode, model=model, source=source)
        result = CachedResult()
        answer: list[str] = []
        related: list[str] = []

        async for event in orchestrator.ask(request, settings.llm.resolve_model(model), user_id):
            match event.kind:
                case "sources":
                    result.webs = event.data
                    for index, item in enumerate(event.data, start=1):
                        typer.echo(f"[{index}] {item.title} <{item.url}>")
                    typer.echo("")
                case "images":
                    result.images = event.data
                case "answer":
                    answer.append(event.data)
                    typer.echo(event.data, nl=False)
                case "related":
                    if not related:
                        typer.echo("\n\nRelated:")
                    related.append(event.data)
                    typer.echo(event.data, nl=False)
        typer.echo("")

        # Let the cache write and usage count land before the loop closes
        await services.background.drain()

        result.answer = "".join(answer)
        result.related = "".join(related)
        return result

    result = asyncio.run(_ask())
    if result is None:
        raise typer.Exit(code=1)
    if save_to:
        path = save_answer_report(query, result, save_to)
        typer.echo(f"Saved to {path}")


@app.command()
def server() -> None:
    """Run the HTTP server (POST /api/ask streams server-sent events)."""
    from .server import main

    main()


@app.command()
def config(save: bool = typer.Option(False, "--save", help="Persist the effective settings (without secrets) to the config file")) -> None:
    """Show current configuration."""
    print(f"Provider: {settings.llm.provider}")
    print(f"Model: {settings.llm.model_name}")
    if settings.llm.requires_api_key():
        print(f"API key: {'set' if settings.llm.get_api_key_for_provider() else 'missing'}")
    else:
        print("API key: not required")
    print(f"Base URL: {settings.llm.base_url or '(default)'}")
    print(f"Search engine: {settings.search.base_url}")
    print(f"Vector index: {settings.vector.url or '(disabled)'}")
    print(f"Cache: {'on' if settings.cache.enabled else 'off'}")
    print(f"Rate limit: {settings.rate_limit.max_requests} per {settings.rate_limit.window_seconds}s" if settings.rate_limit.enabled else "Rate limit: off")
    print(f"Max request duration: {settings.server.max_request_seconds}s")
    if save:
        print(f"Saved to {settings.save()}")


@app.command("clear-cache")
def clear_cache() -> None:
    """Delete every cached answer."""
    from .server import build_services

    services = build_services()
    if services.cache is None:
        typer.echo("Cache is disabled.")
        return
    deleted = asyncio.run(services.cache.clear())
    typer.echo(f"Deleted {deleted} cached answers")


@app.command("reset-limit")
def reset_limit(ip: str = typer.Argument(..., help="Client IP whose anonymous quota should be restored")) -> None:
    """Forget recorded requests for an anonymous client."""
    from .server import build_services

    services = build_services()
    if services.rate_limiter is None:
        typer.echo("Rate limiting is disabled.")
        return
    asyncio.run(services.rate_limiter.reset(ip))
    typer.echo(f"Rate limit reset for {ip}")


if __name__ == "__main__":
    app()
