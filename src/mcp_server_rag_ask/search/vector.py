"""Per-user vector index search over a REST query endpoint."""

import logging

import httpx
from pydantic import ValidationError

from ..exceptions import SearchError
from ..models import SearchResponse, TextSource

logger = logging.getLogger(__name__)


class VectorSearch:
    """Query a user's namespace of a hosted vector index.

    The index stores previously ingested content; each match's raw data (or its
    `content` metadata) becomes a `TextSource`. Building the index happens
    elsewhere.
    """

    def __init__(
        self,
        url: str,
        namespace: str,
        token: str | None = None,
        top_k: int = 5,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.namespace = namespace
        self.token = token
        self.top_k = top_k
        self.timeout = timeout
        self._transport = transport

    async def search(self, query: str) -> SearchResponse:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        body = {"data": query, "topK": self.top_k, "includeMetadata": True, "includeData": True}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.url}/query-data/{self.namespace}", json=body, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise SearchError(f"Vector search failed for namespace '{self.namespace}': {e}") from e
        except ValueError as e:
            raise SearchError(f"Vector search returned invalid JSON: {e}") from e

        matches = payload.get("result") if isinstance(payload, dict) else payload
        if not isinstance(matches, list) or not all(isinstance(match, dict) for match in matches):
            raise SearchError(f"Vector search returned an unexpected response shape for namespace '{self.namespace}'")

        texts: list[TextSource] = []
        for match in matches:
            metadata = match.get("metadata")
            if not isinstance(metadata, dict):
                metadata = {}
            content = match.get("data") or metadata.get("content") or ""
            if not content:
                continue
            try:
                texts.append(TextSource(title=metadata.get("title") or "", url=metadata.get("url") or "", content=content))
            except ValidationError as e:
                raise SearchError(f"Vector search returned a malformed match for namespace '{self.namespace}': {e}") from e

        logger.debug(f"Vector search returned {len(texts)} texts for namespace '{self.namespace}'")
        return SearchResponse(texts=texts)


class DisabledVectorSearch:
    """Stand-in used when no vector index is configured; finds nothing."""

    async def search(self, query: str) -> SearchResponse:
        return SearchResponse()
