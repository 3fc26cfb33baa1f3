"""MCP tools for document operations."""

from __future__ import annotations

import math
from typing import Annotated, Any

import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from reader_mcp.api.client import READER_BASE_URL, ReaderClient
from reader_mcp.api.models import (
    Category,
    Document,
    ListDocumentsParams,
    ListLocation,
    Location,
    SaveDocumentRequest,
    UpdateDocumentRequest,
)
from reader_mcp.tools.session import reader_client, session_props, upstream_error

SUMMARY_LENGTH = 100


def format_summary(summary: str | None) -> str:
    if not summary:
        return "No summary"
    if len(summary) > SUMMARY_LENGTH:
        return summary[:SUMMARY_LENGTH] + "..."
    return summary


def progress_percent(fraction: float | None) -> int:
    """Reading progress fraction in [0, 1] as a whole percentage, halves rounded up."""
    return math.floor((fraction or 0.0) * 100 + 0.5)


def summarize_document(doc: Document) -> dict[str, Any]:
    """The listing view of a document."""
    return {
        "id": doc.id,
        "title": doc.title,
        "author": doc.author or "Unknown",
        "url": doc.url,
        "source_url": doc.source_url,
        "category": doc.category,
        "location": doc.location,
        "word_count": doc.word_count,
        "reading_progress": progress_percent(doc.reading_progress),
        "summary": format_summary(doc.summary),
        "saved_at": doc.saved_at,
        "tags": list(doc.tags or {}),
    }


# -- Handlers: each takes the session's client explicitly --


async def list_documents(
    client: ReaderClient,
    *,
    location: ListLocation | None = None,
    category: Category | None = None,
    tag: str | None = None,
    updated_after: str | None = None,
    limit: int = 20,
) -> dict[str, Any]:
    params = ListDocumentsParams(
        location=location,
        category=category,
        tag=tag,
        updatedAfter=updated_after,
        withHtmlContent=True,
    )
    try:
        docs = await client.list_all_documents(params, limit=limit)
    except httpx.HTTPError as e:
        raise upstream_error("fetching documents", e) from e

    documents = [summarize_document(doc) for doc in docs]
    return {
        "documents": documents,
        "count": len(documents),
        "filters": {
            "location": location,
            "category": category,
            "tag": tag,
            "updatedAfter": updated_after,
        },
    }


async def get_document(client: ReaderClient, document_id: str) -> dict[str, Any]:
    try:
        doc = await client.get_document(document_id)
    except httpx.HTTPError as e:
        raise upstream_error("fetching document", e) from e
    if doc is None:
        raise ToolError("Document not found")
    return doc.model_dump(exclude_unset=True)


async def create_document(client: ReaderClient, request: SaveDocumentRequest) -> dict[str, Any]:
    try:
        result = await client.save_document(request)
    except httpx.HTTPError as e:
        raise upstream_error("creating document", e) from e
    return {
        "success": True,
        "message": "Document created successfully",
        "document": {"id": result.id, "url": result.url},
    }


async def update_document(
    client: ReaderClient, document_id: str, request: UpdateDocumentRequest
) -> dict[str, Any]:
    try:
        result = await client.update_document(document_id, request)
    except httpx.HTTPError as e:
        raise upstream_error("updating document", e) from e
    return {
        "success": True,
        "message": "Document updated successfully",
        "document": {"id": result.id, "url": result.url},
    }


async def delete_document(client: ReaderClient, document_id: str) -> dict[str, Any]:
    try:
        await client.delete_document(document_id)
    except httpx.HTTPError as e:
        raise upstream_error("deleting document", e) from e
    return {
        "success": True,
        "message": "Document deleted successfully",
        "documentId": document_id,
    }


def register_document_tools(mcp: FastMCP, base_url: str = READER_BASE_URL) -> None:
    """Register document-related MCP tools."""

    @mcp.tool(name="listDocuments")
    async def list_documents_tool(
        location: Annotated[ListLocation | None, Field(description="Filter by document location")] = None,
        category: Annotated[Category | None, Field(description="Filter by document category")] = None,
        tag: Annotated[str | None, Field(description="Filter by tag key")] = None,
        updatedAfter: Annotated[
            str | None,
            Field(description="Fetch only documents updated after this date (ISO 8601 format)"),
        ] = None,
        limit: Annotated[
            int,
            Field(ge=1, le=100, description="Maximum number of documents to return (default: 20, max: 100)"),
        ] = 20,
    ) -> dict[str, Any]:
        """List documents from your Readwise Reader library."""
        async with reader_client(session_props(), base_url) as client:
            return await list_documents(
                client,
                location=location,
                category=category,
                tag=tag,
                updated_after=updatedAfter,
                limit=limit,
            )

    @mcp.tool(name="getDocument")
    async def get_document_tool(
        documentId: Annotated[str, Field(description="The document ID to fetch details for")],
    ) -> dict[str, Any]:
        """Get detailed information about a specific document, including its HTML content."""
        async with reader_client(session_props(), base_url) as client:
            return await get_document(client, documentId)

    @mcp.tool(name="createDocument")
    async def create_document_tool(
        url: Annotated[str, Field(description="The document's unique URL")],
        html: Annotated[str | None, Field(description="The document's content in HTML format")] = None,
        should_clean_html: Annotated[
            bool | None,
            Field(description="Whether to automatically clean the HTML and parse metadata"),
        ] = None,
        title: Annotated[str | None, Field(description="The document's title")] = None,
        author: Annotated[str | None, Field(description="The document's author")] = None,
        summary: Annotated[str | None, Field(description="Summary of the document")] = None,
        published_date: Annotated[
            str | None, Field(description="When the document was published (ISO 8601 format)")
        ] = None,
        image_url: Annotated[str | None, Field(description="An image URL to use as cover image")] = None,
        location: Annotated[Location | None, Field(description="Initial location of the document")] = None,
        category: Annotated[Category | None, Field(description="Document category")] = None,
        saved_using: Annotated[str | None, Field(description="Source of the document")] = None,
        tags: Annotated[list[str] | None, Field(description="List of tags for the document")] = None,
        notes: Annotated[str | None, Field(description="Top-level note for the document")] = None,
    ) -> dict[str, Any]:
        """Save a new document to your Readwise Reader library."""
        request = SaveDocumentRequest(
            url=url,
            html=html,
            should_clean_html=should_clean_html,
            title=title,
            author=author,
            summary=summary,
            published_date=published_date,
            image_url=image_url,
            location=location,
            category=category,
            saved_using=saved_using,
            tags=tags,
            notes=notes,
        )
        async with reader_client(session_props(), base_url) as client:
            return await create_document(client, request)

    @mcp.tool(name="updateDocument")
    async def update_document_tool(
        documentId: Annotated[str, Field(description="The document ID to update")],
        title: Annotated[str | None, Field(description="The document's title")] = None,
        author: Annotated[str | None, Field(description="The document's author")] = None,
        summary: Annotated[str | None, Field(description="Summary of the document")] = None,
        published_date: Annotated[
            str | None, Field(description="When the document was published (ISO 8601 format)")
        ] = None,
        image_url: Annotated[str | None, Field(description="An image URL to use as cover image")] = None,
        location: Annotated[Location | None, Field(description="Current location of the document")] = None,
        category: Annotated[Category | None, Field(description="Document category")] = None,
    ) -> dict[str, Any]:
        """Update an existing document in your Readwise Reader library."""
        request = UpdateDocumentRequest(
            title=title,
            author=author,
            summary=summary,
            published_date=published_date,
            image_url=image_url,
            location=location,
            category=category,
        )
        async with reader_client(session_props(), base_url) as client:
            return await update_document(client, documentId, request)

    @mcp.tool(name="deleteDocument")
    async def delete_document_tool(
        documentId: Annotated[str, Field(description="The document ID to delete")],
    ) -> dict[str, Any]:
        """Delete a document from your Readwise Reader library."""
        async with reader_client(session_props(), base_url) as client:
            return await delete_document(client, documentId)
