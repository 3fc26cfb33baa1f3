"""Pydantic models for Readwise Reader API data."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Location = Literal["new", "later", "archive", "feed"]
ListLocation = Literal["new", "later", "shortlist", "archive", "feed"]
Category = Literal["article", "email", "rss", "highlight", "note", "pdf", "epub", "tweet", "video"]

# -- Request models --


class SaveDocumentRequest(BaseModel):
    """Request body for POST /api/v3/save/."""

    url: str
    html: str | None = None
    should_clean_html: bool | None = None
    title: str | None = None
    author: str | None = None
    summary: str | None = None
    published_date: str | None = None
    image_url: str | None = None
    location: Location | None = None
    category: Category | None = None
    saved_using: str | None = None
    tags: list[str] | None = None
    notes: str | None = None


class UpdateDocumentRequest(BaseModel):
    """Request body for PATCH /api/v3/update/<id>/."""

    title: str | None = None
    author: str | None = None
    summary: str | None = None
    published_date: str | None = None
    image_url: str | None = None
    location: Location | None = None
    category: Category | None = None


class ListDocumentsParams(BaseModel):
    """Query parameters for GET /api/v3/list/."""

    id: str | None = None
    updatedAfter: str | None = None
    location: ListLocation | None = None
    category: Category | None = None
    tag: str | None = None
    pageCursor: str | None = None
    withHtmlContent: bool | None = None


# -- Response models --


class Document(BaseModel):
    """A Readwise Reader document.

    Timestamps stay as the upstream strings; nothing here reformats them.
    """

    id: str
    url: str | None = None
    source_url: str | None = None
    title: str | None = None
    author: str | None = None
    source: str | None = None
    category: str | None = None
    location: str | None = None
    tags: dict[str, Any] | None = None  # {"tag_key": {...}}
    site_name: str | None = None
    word_count: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    notes: str | None = None
    published_date: str | int | None = None
    summary: str | None = None
    image_url: str | None = None
    parent_id: str | None = None
    reading_progress: float | None = None
    first_opened_at: str | None = None
    last_opened_at: str | None = None
    saved_at: str | None = None
    last_moved_at: str | None = None
    html_content: str | None = None  # only with withHtmlContent=true

    model_config = {"extra": "allow"}


class DocumentListResponse(BaseModel):
    """Response from GET /api/v3/list/."""

    count: int = 0
    nextPageCursor: str | None = None
    results: list[Document] = Field(default_factory=list)


class SaveDocumentResponse(BaseModel):
    """Response from POST /api/v3/save/ and PATCH /api/v3/update/<id>/."""

    id: str
    url: str

    model_config = {"extra": "allow"}


class Tag(BaseModel):
    """A Readwise Reader tag."""

    key: str
    name: str

    model_config = {"extra": "allow"}


class TagListResponse(BaseModel):
    """Response from GET /api/v3/tags/."""

    count: int = 0
    nextPageCursor: str | None = None
    results: list[Tag] = Field(default_factory=list)
