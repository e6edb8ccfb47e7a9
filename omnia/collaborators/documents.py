"""
omnia.collaborators.documents — PDF rendering and HTML artifact packaging.
"""

from __future__ import annotations

import base64
import logging
import re
import time

import httpx

from omnia.collaborators.base import (
    ArtifactCollaborator,
    ArtifactDescriptor,
    PdfCollaborator,
    PdfDocument,
)
from omnia.core.errors import ConfigurationError, ToolExecutionError

logger = logging.getLogger("omnia.collaborators.documents")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9]")


def safe_filename(title: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", title)


class HttpPdfRenderer(PdfCollaborator):
    """
    POSTs ``{title, content, documentType}`` to a PDF rendering service.

    The service answers with ``application/pdf`` bytes, or with JSON
    ``{"html": ...}`` when it could only produce a printable HTML page.
    """

    def __init__(self, service_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._service_url = service_url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))

    async def render(self, title: str, content: str, document_type: str) -> PdfDocument:
        if not self._service_url:
            raise ConfigurationError("PDF service URL not configured")

        resp = await self._client.post(
            self._service_url,
            json={"title": title, "content": content, "documentType": document_type},
        )
        if resp.is_error:
            raise ToolExecutionError(f"PDF API failed: {resp.status_code}")

        filename = f"{safe_filename(title)}.pdf"
        if "application/pdf" in resp.headers.get("content-type", ""):
            logger.info("PDF rendered: %s (%d bytes)", title, len(resp.content))
            return PdfDocument(title=title, filename=filename, data=resp.content)

        logger.info("PDF service returned HTML fallback for %s", title)
        return PdfDocument(title=title, filename=filename, html=resp.json().get("html", ""))

    async def close(self) -> None:
        await self._client.aclose()


class HtmlArtifactBuilder(ArtifactCollaborator):
    """Packages a self-contained HTML document for download in the browser."""

    async def create(self, title: str, html: str, artifact_type: str) -> ArtifactDescriptor:
        timestamp = int(time.time() * 1000)
        logger.info("Artifact %r (%s): %d chars", title, artifact_type, len(html))
        return ArtifactDescriptor(
            title=title,
            filename=f"artifact-{timestamp}-{safe_filename(title)}.html",
            base64=base64.b64encode(html.encode("utf-8")).decode("ascii"),
            timestamp=timestamp,
            artifact_type=artifact_type,
        )
