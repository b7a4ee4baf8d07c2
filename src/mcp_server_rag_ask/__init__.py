"""MCP server answering questions from web search with streamed, cited LLM output."""

from .config import settings
from .exceptions import LLMProviderError, RagAskError, RateLimitExceeded, SearchError
from .orchestrator import AskOrchestrator
from .providers import get_chat_client
from .server import main, serve

__all__ = [
    "main",
    "serve",
    "settings",
    "get_chat_client",
    "AskOrchestrator",
    "RagAskError",
    "LLMProviderError",
    "RateLimitExceeded",
    "SearchError",
]
