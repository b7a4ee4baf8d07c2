"""Chat client factory: native streaming for OpenAI-compatible APIs, browser-use models for the rest."""

import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from browser_use import ChatAnthropic, ChatBrowserUse, ChatGoogle

# These are available via direct import but not in __all__
from browser_use.llm.aws.chat_bedrock import ChatAWSBedrock
from browser_use.llm.messages import UserMessage
from openai import AsyncAzureOpenAI, AsyncOpenAI

from .config import NO_KEY_PROVIDERS, STANDARD_ENV_VAR_NAMES
from .exceptions import LLMProviderError

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

logger = logging.getLogger(__name__)

# OpenAI-compatible endpoints for providers that speak the chat completions protocol
OPENAI_COMPATIBLE_BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "groq": "https://api.groq.com/openai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "cerebras": "https://api.cerebras.ai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "vercel": "https://ai-gateway.vercel.sh/v1",
    "ollama": "http://localhost:11434/v1",
}

Messages = list[dict[str, str]]


class OpenAIChatClient:
    """Streams completion deltas from an OpenAI-compatible chat endpoint."""

    def __init__(self, client: AsyncOpenAI, temperature: float | None = None):
        self.client = client
        self.temperature = temperature

    async def stream(self, messages: Messages, model: str) -> AsyncIterator[str]:
        kwargs = {"model": model, "messages": messages, "stream": True}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        stream = await self.client.chat.completions.create(**kwargs)
        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if not choice or choice.delta is None:
                continue
            piece = choice.delta.content or ""
            if piece:
                yield piece


class BrowserUseChatClient:
    """Wraps a browser-use chat model, which answers in one piece.

    The model instance depends on the model name, so one is built per name and reused.
    """

    def __init__(self, factory: Callable[[str], "BaseChatModel"]):
        self._factory = factory
        self._models: dict[str, "BaseChatModel"] = {}

    def _model(self, model: str) -> "BaseChatModel":
        if model not in self._models:
            self._models[model] = self._factory(model)
        return self._models[model]

    async def stream(self, messages: Messages, model: str) -> AsyncIterator[str]:
        llm = self._model(model)
        response = await llm.ainvoke([UserMessage(content=m["content"]) for m in messages])
        if response.completion:
            yield response.completion


def get_chat_client(
    provider: str,
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float | None = None,
    **kwargs,
) -> OpenAIChatClient | BrowserUseChatClient:
    """Create a streaming chat client for `provider`.

    Supports 12 providers:
    - openai, groq, deepseek, cerebras, openrouter, vercel, ollama: OpenAI-compatible streaming
    - azure_openai: Azure-hosted OpenAI models, streaming
    - anthropic, google, bedrock, browser_use: browser-use chat models (single chunk)

    Args:
        provider: LLM provider name
        api_key: API key for the provider (not required for ollama/bedrock)
        base_url: Custom base URL for OpenAI-compatible APIs
        temperature: Sampling temperature for streaming providers
        **kwargs: Provider-specific options:
            - azure_endpoint: Azure OpenAI endpoint URL
            - azure_api_version: Azure OpenAI API version (default: 2024-02-01)
            - aws_region: AWS region for Bedrock

    Returns:
        A client exposing ``stream(messages, model)``

    Raises:
        LLMProviderError: If provider is unsupported or API key is missing
    """
    requires_api_key = provider not in NO_KEY_PROVIDERS and not base_url
    if requires_api_key and not api_key:
        standard_var = STANDARD_ENV_VAR_NAMES.get(provider, "API key")
        raise LLMProviderError(f"API key required for provider '{provider}'. Set {standard_var} or MCP_LLM_API_KEY environment variable.")

    try:
        match provider:
            case "openai" | "groq" | "deepseek" | "cerebras" | "openrouter" | "vercel" | "ollama":
                url = base_url or OPENAI_COMPATIBLE_BASE_URLS[provider]
                # Ollama ignores the key but the SDK insists on one
                key = api_key or ("ollama" if provider == "ollama" else None)
                return OpenAIChatClient(AsyncOpenAI(api_key=key, base_url=url), temperature=temperature)

            case "azure_openai":
                azure_endpoint = kwargs.get("azure_endpoint")
                azure_api_version = kwargs.get("azure_api_version") or "2024-02-01"
                if not azure_endpoint:
                    raise LLMProviderError("Azure OpenAI requires AZURE_OPENAI_ENDPOINT or MCP_LLM_AZURE_ENDPOINT to be set.")
                client = AsyncAzureOpenAI(api_key=api_key, azure_endpoint=azure_endpoint, api_version=azure_api_version)
                return OpenAIChatClient(client, temperature=temperature)

            case "anthropic":
                return BrowserUseChatClient(lambda model: ChatAnthropic(model=model, api_key=api_key))

            case "google":
                return BrowserUseChatClient(lambda model: ChatGoogle(model=model, api_key=api_key))

            case "bedrock":
                aws_region = kwargs.get("aws_region")
                return BrowserUseChatClient(lambda model: ChatAWSBedrock(model=model, aws_region=aws_region))

            case "browser_use":
                return BrowserUseChatClient(lambda model: ChatBrowserUse(model=model, api_key=api_key))

            case _:
                raise LLMProviderError(f"Unsupported provider: {provider}")

    except LLMProviderError:
        raise
    except Exception as e:
        raise LLMProviderError(f"Failed to initialize {provider} LLM: {e}") from e
