"""Async Readwise Reader API client."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from reader_mcp.api.models import (
    Document,
    DocumentListResponse,
    ListDocumentsParams,
    SaveDocumentRequest,
    SaveDocumentResponse,
    Tag,
    TagListResponse,
    UpdateDocumentRequest,
)

logger = logging.getLogger(__name__)

READER_BASE_URL = "https://readwise.io"


def _body(request: SaveDocumentRequest | UpdateDocumentRequest) -> dict[str, Any]:
    """Request body without unset or empty-string fields."""
    return {key: value for key, value in request.model_dump(exclude_none=True).items() if value != ""}


class ReaderClient:
    """Async client for the Readwise Reader API.

    Wraps Reader API v3 (documents, tags) and the Core API v2 auth check.
    Every request carries ``Authorization: Token <token>``. Non-2xx responses
    raise ``httpx.HTTPStatusError`` except where a method documents otherwise.
    """

    def __init__(self, token: str, base_url: str = READER_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Token {token}"},
            timeout=httpx.Timeout(30.0, connect=10.0),
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ReaderClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- Auth --

    async def validate_token(self) -> bool:
        """Validate the API token. Returns True only on HTTP 204."""
        resp = await self._http.get("/api/v2/auth/")
        return resp.status_code == 204

    async def check_access(self) -> bool:
        """Confirm the token can read the library with a minimal list request.

        Any successful response counts, including an empty library.
        """
        resp = await self._http.get("/api/v3/list/", params={"pageCursor": ""})
        return resp.is_success

    # -- Documents (v3) --

    async def save_document(self, request: SaveDocumentRequest) -> SaveDocumentResponse:
        """Save a document to Reader. Unset or empty optional fields are not sent."""
        resp = await self._http.post(
            "/api/v3/save/",
            json=_body(request),
        )
        resp.raise_for_status()
        return SaveDocumentResponse.model_validate(resp.json())

    async def list_documents(
        self, params: ListDocumentsParams | None = None
    ) -> DocumentListResponse:
        """Fetch one page of documents from Reader."""
        query_params: dict[str, Any] = {}
        if params:
            for key, value in params.model_dump(exclude_none=True).items():
                if isinstance(value, bool):
                    query_params[key] = str(value).lower()
                else:
                    query_params[key] = value
        resp = await self._http.get("/api/v3/list/", params=query_params)
        resp.raise_for_status()
        return DocumentListResponse.model_validate(resp.json())

    async def get_document(self, doc_id: str) -> Document | None:
        """Get a single document by ID, with HTML content. None if not found."""
        params = ListDocumentsParams(id=doc_id, withHtmlContent=True)
        result = await self.list_documents(params)
        if result.results:
            return result.results[0]
        return None

    async def update_document(
        self, doc_id: str, request: UpdateDocumentRequest
    ) -> SaveDocumentResponse:
        """Update a document in Reader. Unset or empty fields are left untouched."""
        resp = await self._http.patch(
            f"/api/v3/update/{doc_id}/",
            json=_body(request),
        )
        resp.raise_for_status()
        return SaveDocumentResponse.model_validate(resp.json())

    async def delete_document(self, doc_id: str) -> None:
        """Delete a document from Reader."""
        resp = await self._http.delete(f"/api/v3/delete/{doc_id}/")
        resp.raise_for_status()

    # -- Tags (v3) --

    async def list_tags(self, page_cursor: str | None = None) -> TagListResponse:
        """Fetch one page of tags."""
        params: dict[str, str] = {}
        if page_cursor:
            params["pageCursor"] = page_cursor
        resp = await self._http.get("/api/v3/tags/", params=params)
        resp.raise_for_status()
        return TagListResponse.model_validate(resp.json())

    # -- Pagination helpers --

    async def list_all_tags(self, limit: int | None = None) -> list[Tag]:
        """List tags across pages, stopping once ``limit`` tags are collected."""
        all_tags: list[Tag] = []
        cursor: str | None = None
        while True:
            result = await self.list_tags(page_cursor=cursor)
            if limit is None:
                all_tags.extend(result.results)
            else:
                all_tags.extend(result.results[: limit - len(all_tags)])
                if len(all_tags) >= limit:
                    break
            cursor = result.nextPageCursor
            if not cursor:
                break
        return all_tags

    async def list_all_documents(
        self,
        params: ListDocumentsParams | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Fetch documents in upstream order, following ``nextPageCursor``.

        Stops at the last page or once ``limit`` documents are collected; the
        final page is truncated so the result never exceeds ``limit``.
        """
        page_params = params.model_copy() if params else ListDocumentsParams()
        all_docs: list[Document] = []
        while True:
            result = await self.list_documents(page_params)
            if limit is None:
                all_docs.extend(result.results)
            else:
                all_docs.extend(result.results[: limit - len(all_docs)])
                if len(all_docs) >= limit:
                    break
            if not result.nextPageCursor:
                break
            page_params = page_params.model_copy(update={"pageCursor": result.nextPageCursor})
            logger.debug("Fetched %d documents, continuing with cursor...", len(all_docs))
        return all_docs
