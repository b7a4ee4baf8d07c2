"""Data models for evidence, cached answers and stream events."""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class AskMode(str, Enum):
    """Prompt template selection for answer generation."""

    SIMPLE = "simple"
    DEEP = "deep"


class SearchCategory(str, Enum):
    """Scope of a web search request."""

    ALL = "all"
    IMAGES = "images"
    VIDEOS = "videos"
    NEWS = "news"
    IT = "it"
    SCIENCE = "science"
    FILES = "files"
    MUSIC = "music"
    SOCIAL = "social media"
    MAP = "map"


class TextSource(BaseModel):
    """A unit of retrieved text evidence.

    Position in the evidence list defines its citation number.
    """

    title: str = ""
    url: str = ""
    content: str = ""


class ImageSource(BaseModel):
    """A unit of retrieved image evidence."""

    title: str = ""
    url: str = ""
    image: str

    @property
    def is_secure(self) -> bool:
        return self.image.startswith("https")


class SearchResponse(BaseModel):
    """Evidence returned by a search provider."""

    texts: list[TextSource] = Field(default_factory=list)
    images: list[ImageSource] = Field(default_factory=list)


class CachedResult(BaseModel):
    """Full materialized output of one query."""

    webs: list[TextSource] = Field(default_factory=list)
    images: list[ImageSource] = Field(default_factory=list)
    answer: str = ""
    related: str = ""


class AskRequest(BaseModel):
    """Inbound ask payload."""

    query: str
    use_cache: bool = Field(default=False, alias="useCache")
    mode: AskMode = AskMode.SIMPLE
    model: str | None = None
    source: SearchCategory = SearchCategory.ALL

    model_config = {"populate_by_name": True}

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def _default_mode(cls, value: Any) -> Any:
        return AskMode.SIMPLE if value is None else value

    @field_validator("source", mode="before")
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        return SearchCategory.ALL if value is None else value


EventKind = Literal["sources", "images", "answer", "related"]


class StreamEvent(BaseModel):
    """One tagged event of an ask stream; serializes as ``{kind: data}``."""

    kind: EventKind
    data: Any

    def payload(self) -> dict[str, Any]:
        data = self.data
        if isinstance(data, list):
            data = [item.model_dump() if isinstance(item, BaseModel) else item for item in data]
        return {self.kind: data}

    def to_json(self) -> str:
        return json.dumps(self.payload(), ensure_ascii=False)

    def to_sse(self) -> str:
        return f"data: {self.to_json()} \n\n"
