"""
omnia.collaborators — External services used during a turn.

``build_collaborators()`` wires the default ``httpx`` implementations from a
``RelayConfig``.  Missing credentials surface as ``ConfigurationError`` when
a turn first needs the service, not at startup.
"""

from __future__ import annotations

from omnia.collaborators.base import (
    ArtifactCollaborator,
    ArtifactDescriptor,
    AuthResolver,
    Collaborators,
    ImageCollaborator,
    ImageData,
    PdfCollaborator,
    PdfDocument,
    StorageCollaborator,
    Summarizer,
)
from omnia.core.models import RelayConfig


def build_collaborators(config: RelayConfig) -> Collaborators:
    from omnia.collaborators.documents import HtmlArtifactBuilder, HttpPdfRenderer
    from omnia.collaborators.images import GeminiImageClient
    from omnia.collaborators.summaries import GeminiSummarizer
    from omnia.collaborators.supabase import SupabaseAuthResolver, SupabaseStorage

    return Collaborators(
        auth=SupabaseAuthResolver(config.supabase_url, config.supabase_service_key),
        images=GeminiImageClient(config.google_api_key, base_url=config.gemini_base_url),
        storage=SupabaseStorage(
            config.supabase_url, config.supabase_service_key, bucket=config.storage_bucket
        ),
        pdf=HttpPdfRenderer(config.pdf_service_url),
        artifacts=HtmlArtifactBuilder(),
        summarizer=GeminiSummarizer(config.google_api_key, base_url=config.gemini_base_url),
    )


__all__ = [
    "ArtifactCollaborator",
    "ArtifactDescriptor",
    "AuthResolver",
    "Collaborators",
    "ImageCollaborator",
    "ImageData",
    "PdfCollaborator",
    "PdfDocument",
    "StorageCollaborator",
    "Summarizer",
    "build_collaborators",
]
