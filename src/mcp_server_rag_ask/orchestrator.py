"""Ask orchestration: cache replay, evidence gathering, streamed answer and follow-ups.

One call to `AskOrchestrator.ask` is one pass over these phases, with no retries:

1. Cache check (when requested): a hit replays the stored bundle and ends.
2. Evidence: signed-in callers asking across all categories get vector and web
   results merged vector-first; anyone else (or an empty merge) gets one plain
   web search. Sources and images are emitted before generation starts.
3. The answer streams while, if evidence had no images, an images-only search
   runs alongside it.
4. Backfilled images are emitted once, after the last answer token.
5. Related questions stream after the answer.
6. Usage counting and the cache write are handed to the background registry,
   then the sequence ends. Ending the sequence is the terminal signal.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing

from .answer import ANSWER_ERROR_PREFIX, AnswerEngine
from .exceptions import SearchError
from .models import AskRequest, CachedResult, ImageSource, SearchCategory, SearchResponse, StreamEvent, TextSource
from .observability import BackgroundTasks
from .search import SearchOptions, get_search_engine, get_vector_search
from .storage import CacheStore, UsageStore

logger = logging.getLogger(__name__)

IMAGE_LIMIT = 8


def replay_events(result: CachedResult) -> list[StreamEvent]:
    """Events for a cached bundle, each value whole, in live-run order."""
    return [
        StreamEvent(kind="sources", data=result.webs),
        StreamEvent(kind="images", data=result.images),
        StreamEvent(kind="answer", data=result.answer),
        StreamEvent(kind="related", data=result.related),
    ]


class AskOrchestrator:
    """Sequences one ask request into a stream of `StreamEvent`s.

    Collaborators are injected so the flow can run against fakes. Only the cache,
    the usage store and the background registry are shared between requests.
    """

    def __init__(
        self,
        engine: AnswerEngine,
        cache: CacheStore | None = None,
        usage: UsageStore | None = None,
        background: BackgroundTasks | None = None,
        search_engine_factory: Callable[[SearchOptions], object] = get_search_engine,
        vector_search_factory: Callable[[str], object] = get_vector_search,
        image_limit: int = IMAGE_LIMIT,
    ):
        self.engine = engine
        self.cache = cache
        self.usage = usage
        self.background = background or BackgroundTasks()
        self.search_engine_factory = search_engine_factory
        self.vector_search_factory = vector_search_factory
        self.image_limit = image_limit

    async def ask(self, request: AskRequest, model: str, user_id: str | None = None) -> AsyncIterator[StreamEvent]:
        """Run the pipeline for `request`, yielding events as they become available.

        Closing the iterator early cancels whatever search or model call is in flight;
        background side effects already spawned keep running.
        """
        query = request.query

        if request.use_cache:
            cached = await self._lookup(query)
            if cached is not None:
                logger.info(f"Cache hit for '{query}'")
                for event in replay_events(cached):
                    yield event
                self._count_usage(user_id)
                return

        try:
            texts, images = await self._gather_evidence(query, request.source, user_id)
        except SearchError as e:
            logger.error(f"Evidence gathering failed for '{query}': {e}")
            yield StreamEvent(kind="sources", data=[])
            yield StreamEvent(kind="images", data=[])
            yield StreamEvent(kind="answer", data=f"{ANSWER_ERROR_PREFIX}: {e}")
            return

        yield StreamEvent(kind="sources", data=texts)
        yield StreamEvent(kind="images", data=images)

        backfill: asyncio.Task | None = None
        if not images:
            backfill = asyncio.create_task(self._backfill_images(query))

        answer_parts: list[str] = []
        answer_failed = False
        try:
            async with aclosing(self.engine.answer(query, texts, model, request.mode)) as chunks:
                async for chunk in chunks:
                    answer_failed = answer_failed or chunk.failed
                    answer_parts.append(chunk.text)
                    yield StreamEvent(kind="answer", data=chunk.text)

            if backfill is not None:
                images = await backfill
                yield StreamEvent(kind="images", data=images)
        finally:
            if backfill is not None and not backfill.done():
                backfill.cancel()

        related_parts: list[str] = []
        async with aclosing(self.engine.related(query, texts, model)) as tokens:
            async for token in tokens:
                related_parts.append(token)
                yield StreamEvent(kind="related", data=token)

        result = CachedResult(webs=texts, images=images, answer="".join(answer_parts), related="".join(related_parts))

        self._count_usage(user_id)
        if answer_failed:
            logger.warning(f"Not caching '{query}': answer generation failed")
        else:
            self._store(query, result)

    async def run(self, request: AskRequest, model: str, user_id: str | None = None) -> CachedResult:
        """Consume the whole stream and return the assembled bundle."""
        texts: list[TextSource] = []
        images: list[ImageSource] = []
        answer: list[str] = []
        related: list[str] = []

        async with aclosing(self.ask(request, model, user_id)) as events:
            async for event in events:
                match event.kind:
                    case "sources":
                        texts = event.data
                    case "images":
                        images = event.data
                    case "answer":
                        answer.append(event.data)
                    case "related":
                        related.append(event.data)

        return CachedResult(webs=texts, images=images, answer="".join(answer), related="".join(related))

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _lookup(self, query: str) -> CachedResult | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(query)
        except Exception as e:
            logger.error(f"Cache lookup failed for '{query}', computing fresh answer: {e}")
            return None

    async def _gather_evidence(
        self,
        query: str,
        source: SearchCategory,
        user_id: str | None,
    ) -> tuple[list[TextSource], list[ImageSource]]:
        options = SearchOptions(categories=[source])
        texts: list[TextSource] = []
        images: list[ImageSource] = []

        if user_id and source == SearchCategory.ALL:
            vector_response, web_response = await asyncio.gather(
                self._search_or_empty(self.vector_search_factory(user_id), query, "vector"),
                self._search_or_empty(self.search_engine_factory(options), query, "web"),
            )
            # Citation numbers follow this order: vector evidence first
            texts = [*vector_response.texts, *web_response.texts]
            images = [*vector_response.images, *web_response.images]

        if not texts:
            response = await self.search_engine_factory(options).search(query)
            texts, images = list(response.texts), list(response.images)

        logger.info(f"Gathered {len(texts)} texts and {len(images)} images for '{query}'")
        return texts, images

    async def _search_or_empty(self, provider, query: str, label: str) -> SearchResponse:
        try:
            return await provider.search(query)
        except SearchError as e:
            logger.warning(f"{label} search failed, continuing without it: {e}")
            return SearchResponse()

    async def _backfill_images(self, query: str) -> list[ImageSource]:
        engine = self.search_engine_factory(SearchOptions(categories=[SearchCategory.IMAGES]))
        try:
            response = await engine.search(query)
        except SearchError as e:
            logger.error(f"Image backfill failed for '{query}': {e}")
            return []
        return [image for image in response.images if image.is_secure][: self.image_limit]

    # ------------------------------------------------------------------
    # Fire-and-forget side effects
    # ------------------------------------------------------------------

    def _count_usage(self, user_id: str | None) -> None:
        if not user_id or self.usage is None:
            return
        self.background.spawn(self.usage.increment(user_id), f"increment search count for user {user_id}")

    def _store(self, query: str, result: CachedResult) -> None:
        if self.cache is None:
            return
        self.background.spawn(self.cache.set(query, result), f"set cache for query {query}")
