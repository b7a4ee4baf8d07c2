"""Configuration management using Pydantic settings with optional file persistence."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Paths ---

APP_NAME = "mcp-server-rag-ask"


def get_config_dir() -> Path:
    """Get the configuration directory (e.g. ~/.config/mcp-server-rag-ask)."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home() / ".config")).expanduser()
    else:
        base = Path("~/.config").expanduser()

    path = base / APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_default_results_dir() -> Path:
    """Get the default directory for saved answer reports."""
    base = Path("~/Documents").expanduser()
    if not base.exists():
        base = Path.home()

    return base / "rag-ask-results"


CONFIG_FILE = get_config_dir() / "config.json"


def load_config_file() -> dict[str, Any]:
    """Load settings from the JSON config file if it exists."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        text = CONFIG_FILE.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        return json.loads(text)
    except (OSError, json.JSONDecodeError):
        return {}


def save_config_file(config_data: dict[str, Any]) -> None:
    """Save settings to the JSON config file."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config_data, indent=2), encoding="utf-8")


# Standard environment variable names for API keys (industry convention)
# For providers with multiple common env var names, use a list (first match wins)
STANDARD_ENV_VAR_NAMES: dict[str, str | list[str]] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],  # GEMINI_API_KEY takes priority
    "azure_openai": "AZURE_OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "cerebras": "CEREBRAS_API_KEY",
    "browser_use": "BROWSER_USE_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "vercel": "VERCEL_API_KEY",
}

# Providers that don't require an API key
NO_KEY_PROVIDERS = frozenset({"ollama", "bedrock"})

ProviderType = Literal[
    "openai",
    "anthropic",
    "google",
    "azure_openai",
    "groq",
    "deepseek",
    "cerebras",
    "ollama",
    "bedrock",
    "browser_use",
    "openrouter",
    "vercel",
]

# Short model names accepted from clients
MODEL_ALIASES: dict[str, str] = {
    "gpt-3.5": "gpt-3.5-turbo",
    "gpt4": "gpt-4o",
}


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_LLM_")

    provider: ProviderType = Field(default="openai")
    model_name: str = Field(default="gpt-3.5-turbo")
    api_key: Optional[SecretStr] = Field(default=None, description="Generic API key override (highest priority)")
    base_url: Optional[str] = Field(default=None, description="Custom base URL for OpenAI-compatible APIs")
    temperature: float = Field(default=0.7)

    # Azure OpenAI specific
    azure_endpoint: Optional[str] = Field(default=None, description="Azure OpenAI endpoint URL")
    azure_api_version: Optional[str] = Field(default="2024-02-01", description="Azure OpenAI API version")

    # AWS Bedrock specific
    aws_region: Optional[str] = Field(default=None, description="AWS region for Bedrock")

    def get_api_key_for_provider(self) -> Optional[str]:
        """API key for the configured provider.

        Checked in order: ``MCP_LLM_API_KEY``, the provider's conventional variable
        (``OPENAI_API_KEY``, ``GEMINI_API_KEY``, ...), then ``MCP_LLM_<PROVIDER>_API_KEY``.
        """
        if self.api_key:
            return self.api_key.get_secret_value()

        names = STANDARD_ENV_VAR_NAMES.get(self.provider) or []
        candidates = [names] if isinstance(names, str) else list(names)
        candidates.append(f"MCP_LLM_{self.provider.upper()}_API_KEY")
        return next((os.environ[name] for name in candidates if os.environ.get(name)), None)

    def requires_api_key(self) -> bool:
        """Check if the current provider requires an API key."""
        return self.provider not in NO_KEY_PROVIDERS

    def resolve_model(self, requested: str | None) -> str:
        """Map a client-supplied model alias to a provider model name.

        Unknown or missing aliases fall back to the configured default model.
        """
        if requested and requested in MODEL_ALIASES:
            return MODEL_ALIASES[requested]
        return self.model_name


class SearchSettings(BaseSettings):
    """Web search engine configuration (SearXNG JSON API)."""

    model_config = SettingsConfigDict(env_prefix="MCP_SEARCH_")

    base_url: str = Field(default="http://127.0.0.1:8080", description="SearXNG instance URL")
    timeout: float = Field(default=10.0, description="Request timeout in seconds")
    max_results: int = Field(default=10, description="Maximum text results kept per search")
    language: str = Field(default="auto")
    safesearch: int = Field(default=1, ge=0, le=2)


class VectorSettings(BaseSettings):
    """Per-user vector index configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_VECTOR_")

    url: Optional[str] = Field(default=None, description="Vector index REST URL; vector search is disabled when unset")
    token: Optional[SecretStr] = Field(default=None, description="Bearer token for the vector index")
    top_k: int = Field(default=5)
    timeout: float = Field(default=10.0)


class RateLimitSettings(BaseSettings):
    """Anonymous caller quota."""

    model_config = SettingsConfigDict(env_prefix="MCP_RATE_LIMIT_")

    enabled: bool = Field(default=True)
    max_requests: int = Field(default=3, description="Requests allowed per window per client IP")
    window_seconds: int = Field(default=86400, description="Sliding window length (1 day)")
    prefix: str = Field(default="ratelimit:ask")
    db_path: Optional[str] = Field(default=None, description="SQLite path (default: config dir)")


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_CACHE_")

    enabled: bool = Field(default=True)
    ttl_seconds: Optional[int] = Field(default=None, description="Entry lifetime; unset means no expiry")
    db_path: Optional[str] = Field(default=None, description="SQLite path (default: config dir)")


class AuthSettings(BaseSettings):
    """Caller identity resolution."""

    model_config = SettingsConfigDict(env_prefix="MCP_AUTH_")

    user_header: str = Field(default="x-user-id", description="Header set by the upstream session layer for signed-in users")
    forwarded_for_header: str = Field(default="x-forwarded-for")
    default_ip: str = Field(default="127.0.0.1")


TransportType = Literal["stdio", "streamable-http", "sse"]


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="MCP_SERVER_")

    logging_level: str = Field(default="INFO")
    transport: TransportType = Field(default="streamable-http", description="MCP transport: stdio, streamable-http, or sse")
    host: str = Field(default="127.0.0.1", description="Host for HTTP transports")
    port: int = Field(default=8383, description="Port for HTTP transports")
    results_dir: Optional[str] = Field(default=None, description="Directory to save answer reports")
    max_request_seconds: float = Field(default=60.0, description="Wall-clock budget for one streamed answer")
    cancel_on_disconnect: bool = Field(default=True, description="Cancel in-flight search/model calls when the client goes away")
    image_limit: int = Field(default=8, description="Maximum backfilled images per answer")
    trust_tool_user_id: bool = Field(default=False, description="Accept user_id from MCP tool callers; only enable for trusted local clients")


class AppSettings(BaseSettings):
    """Root application settings.

    Priority: Environment Variables > Config File > Defaults
    """

    model_config = SettingsConfigDict(env_prefix="MCP_", extra="ignore")

    llm: LLMSettings = Field(default_factory=LLMSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    vector: VectorSettings = Field(default_factory=VectorSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def save(self) -> Path:
        """Save current configuration to file (excluding secrets)."""
        data = self.model_dump(mode="json", exclude_none=True)
        for section in ("llm", "vector"):
            if section in data:
                data[section].pop("api_key", None)
                data[section].pop("token", None)
        save_config_file(data)
        return CONFIG_FILE

    def get_results_dir(self) -> Path:
        """Get the results directory, creating if needed."""
        if self.server.results_dir:
            path = Path(self.server.results_dir).expanduser()
        else:
            path = get_default_results_dir()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_db_path(self, configured: str | None, filename: str) -> Path:
        """Resolve a SQLite path, defaulting to the config directory."""
        if configured:
            return Path(configured).expanduser()
        return get_config_dir() / filename


def _load_settings() -> AppSettings:
    """Load settings with file config as base, env vars overlay."""
    file_data = load_config_file()
    # Pydantic will overlay env vars on top
    return AppSettings(**file_data)


settings = _load_settings()
