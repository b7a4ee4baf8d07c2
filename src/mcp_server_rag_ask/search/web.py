"""Web and image search through a SearXNG instance's JSON API."""

import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
from pydantic import ValidationError

from ..exceptions import SearchError
from ..models import ImageSource, SearchCategory, SearchResponse, TextSource

logger = logging.getLogger(__name__)

# SearXNG names the unscoped category "general"
_ENGINE_CATEGORIES: dict[SearchCategory, str] = {SearchCategory.ALL: "general"}


@dataclass
class SearchOptions:
    """Scope of one web search engine instance."""

    categories: list[SearchCategory] = field(default_factory=lambda: [SearchCategory.ALL])


def engine_category(category: SearchCategory) -> str:
    return _ENGINE_CATEGORIES.get(category, category.value)


class WebSearchEngine:
    """Category-scoped web search.

    Text results become `TextSource` items; any result carrying an image URL is
    also collected as an `ImageSource`.
    """

    def __init__(
        self,
        base_url: str,
        options: SearchOptions | None = None,
        timeout: float = 10.0,
        language: str = "auto",
        safesearch: int = 1,
        max_results: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.options = options or SearchOptions()
        self.timeout = timeout
        self.language = language
        self.safesearch = safesearch
        self.max_results = max_results
        self._transport = transport

    def _params(self, query: str) -> dict[str, str | int]:
        return {
            "q": query,
            "format": "json",
            "categories": ",".join(engine_category(c) for c in self.options.categories),
            "language": self.language,
            "safesearch": self.safesearch,
        }

    async def search(self, query: str) -> SearchResponse:
        """Run one search.

        Raises:
            SearchError: If the engine is unreachable or answers with an error status.
        """
        url = urljoin(self.base_url.rstrip("/") + "/", "search")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=self._params(query), headers={"Accept": "application/json"})
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise SearchError(f"Web search failed for '{query}': {e}") from e
        except ValueError as e:
            raise SearchError(f"Web search returned invalid JSON for '{query}': {e}") from e

        try:
            return self._parse(payload, query)
        except ValidationError as e:
            raise SearchError(f"Web search returned malformed results for '{query}': {e}") from e

    def _parse(self, payload: object, query: str) -> SearchResponse:
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise SearchError(f"Web search returned an unexpected response shape for '{query}'")

        texts: list[TextSource] = []
        images: list[ImageSource] = []

        for item in results:
            if not isinstance(item, dict):
                continue
            title = item.get("title") or ""
            url = item.get("url") or ""

            image = item.get("img_src") or item.get("thumbnail_src")
            if image:
                images.append(ImageSource(title=title, url=url, image=image))

            content = item.get("content") or ""
            if content and len(texts) < self.max_results:
                texts.append(TextSource(title=title, url=url, content=content))

        logger.debug(f"Web search returned {len(texts)} texts, {len(images)} images")
        return SearchResponse(texts=texts, images=images)
