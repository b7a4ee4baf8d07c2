"""Search providers: category-scoped web search and per-user vector search."""

from ..config import SearchSettings, VectorSettings
from ..models import SearchCategory
from .vector import DisabledVectorSearch, VectorSearch
from .web import SearchOptions, WebSearchEngine


def get_search_engine(options: SearchOptions, search_settings: SearchSettings | None = None) -> WebSearchEngine:
    """Create a web search engine scoped to `options.categories`."""
    if search_settings is None:
        from ..config import settings

        search_settings = settings.search

    return WebSearchEngine(
        base_url=search_settings.base_url,
        options=options,
        timeout=search_settings.timeout,
        language=search_settings.language,
        safesearch=search_settings.safesearch,
        max_results=search_settings.max_results,
    )


def get_vector_search(user_id: str, vector_settings: VectorSettings | None = None) -> VectorSearch | DisabledVectorSearch:
    """Create a search over `user_id`'s vector index namespace."""
    if vector_settings is None:
        from ..config import settings

        vector_settings = settings.vector

    if not vector_settings.url:
        return DisabledVectorSearch()

    return VectorSearch(
        url=vector_settings.url,
        namespace=user_id,
        token=vector_settings.token.get_secret_value() if vector_settings.token else None,
        top_k=vector_settings.top_k,
        timeout=vector_settings.timeout,
    )


__all__ = [
    "DisabledVectorSearch",
    "SearchCategory",
    "SearchOptions",
    "VectorSearch",
    "WebSearchEngine",
    "get_search_engine",
    "get_vector_search",
]
