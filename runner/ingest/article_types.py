"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union


@dataclass(frozen=True)
class Paragraph:
    text: str
    kind: str = "paragraph"


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    kind: str = "heading"


@dataclass(frozen=True)
class ListBlock:
    ordered: bool
    items: tuple[str, ...]
    kind: str = "list"


@dataclass(frozen=True)
class Embed:
    provider: str
    raw_markup: str
    url: Optional[str] = None
    kind: str = "embed"


ContentPart = Union[Paragraph, Heading, ListBlock, Embed]


@dataclass
class ExtractedDocument:
    """Result of running a source's selectors over one article page.

    `images` holds raw candidates from the image selector; `hero_images` and
    `meta_images` are the fallback candidates, used in that order when the
    primary set normalizes to nothing.
    """

    title: str
    content_parts: list[ContentPart] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    hero_images: list[str] = field(default_factory=list)
    meta_images: list[str] = field(default_factory=list)


@dataclass
class Article:
    source_id: str
    title: str
    content: str
    content_format: str
    url: str
    category: Optional[str]
    language: str
    published_at: datetime
    image: list[str] = field(default_factory=list)
    embedding: list[float] = field(default_factory=list)
    embedding_pca: Optional[list[float]] = None
    view_count: int = 0
    likes: int = 0
    dislikes: int = 0
    share_count: int = 0
    id: Optional[str] = None

    def to_row(self) -> dict:
        row = {
            "source_id": self.source_id,
            "title": self.title,
            "content": self.content,
            "content_format": self.content_format,
            "url": self.url,
            "category": self.category,
            "language": self.language,
            "published_at": self.published_at.isoformat(),
            "image": list(self.image),
            # pgvector has no zero-length vector; no embedding is stored as null
            "embedding": list(self.embedding) or None,
            "view_count": self.view_count,
            "likes": self.likes,
            "dislikes": self.dislikes,
            "share_count": self.share_count,
        }
        if self.embedding_pca is not None:
            row["embedding_pca"] = list(self.embedding_pca)
        return row
