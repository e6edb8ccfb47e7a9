"""
omnia.collaborators.base — Contracts for the external services a turn uses.

The orchestrator and the tool coordinator only ever see these interfaces;
the concrete ``httpx`` clients live next to this module and are swapped for
fakes in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from omnia.core.models import Caller, HistoryMessage


@dataclass
class ImageData:
    data: bytes
    mime_type: str = "image/png"


@dataclass
class PdfDocument:
    """Rendered PDF bytes, or an HTML fallback when the renderer could not produce one."""
    title: str
    filename: str
    data: bytes | None = None
    html: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.data is None


@dataclass
class ArtifactDescriptor:
    title: str
    filename: str
    base64: str
    timestamp: int
    artifact_type: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "filename": self.filename,
            "base64": self.base64,
            "timestamp": self.timestamp,
            "artifact_type": self.artifact_type,
        }


@dataclass
class ConversationSummary:
    """A rolling conversation summary plus the sizes it was computed from."""
    summary: str
    message_count: int
    original_length: int
    had_previous_summary: bool = False

    @property
    def compression_ratio(self) -> int:
        if not self.original_length:
            return 0
        return round((1 - len(self.summary) / self.original_length) * 100)

    def to_metadata(self) -> dict[str, Any]:
        return {
            "message_count": self.message_count,
            "original_length": self.original_length,
            "summary_length": len(self.summary),
            "compression_ratio": f"{self.compression_ratio}%",
            "had_previous_summary": self.had_previous_summary,
        }


class AuthResolver(ABC):
    @abstractmethod
    async def resolve(self, token: str | None) -> Caller:
        """Return the caller for a bearer token; raise ``Unauthenticated`` if it is absent or invalid."""
        ...


class ImageCollaborator(ABC):
    model: str = ""

    @abstractmethod
    async def generate(self, prompt: str, count: int, aspect_ratio: str) -> list[ImageData]:
        """Generate ``count`` variations of one prompt."""
        ...

    @abstractmethod
    async def edit(self, source_url: str, instruction: str) -> ImageData:
        ...


class StorageCollaborator(ABC):
    @abstractmethod
    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        """Persist ``data`` and return its public URL."""
        ...


class PdfCollaborator(ABC):
    @abstractmethod
    async def render(self, title: str, content: str, document_type: str) -> PdfDocument:
        ...


class ArtifactCollaborator(ABC):
    @abstractmethod
    async def create(self, title: str, html: str, artifact_type: str) -> ArtifactDescriptor:
        ...


class Summarizer(ABC):
    @abstractmethod
    async def summarize(
        self, messages: list[HistoryMessage], previous_summary: str | None = None
    ) -> ConversationSummary:
        """Fold ``messages`` into ``previous_summary``."""
        ...


@dataclass
class Collaborators:
    """The set of external services injected into every turn."""
    auth: AuthResolver
    images: ImageCollaborator
    storage: StorageCollaborator
    pdf: PdfCollaborator
    artifacts: ArtifactCollaborator
    summarizer: Summarizer | None = None

    async def close(self) -> None:
        for service in (self.auth, self.images, self.storage, self.pdf, self.artifacts, self.summarizer):
            closer = getattr(service, "close", None)
            if closer is not None:
                await closer()
