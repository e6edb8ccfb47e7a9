"""Tests for the httpx-backed collaborators, using httpx.MockTransport."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from omnia.collaborators import build_collaborators
from omnia.collaborators.documents import HtmlArtifactBuilder, HttpPdfRenderer, safe_filename
from omnia.collaborators.images import EDIT_SUFFIX, IMAGE_MODEL, GeminiImageClient
from omnia.collaborators.summaries import SUMMARY_MODEL, GeminiSummarizer, conversation_text
from omnia.collaborators.supabase import SupabaseAuthResolver, SupabaseStorage
from omnia.core.errors import ConfigurationError, ToolExecutionError, Unauthenticated, UpstreamServiceError
from omnia.core.models import HistoryMessage, PermissionTier, RelayConfig
from tests.conftest import mock_client

SUPABASE = "https://proj.supabase.test"
PNG_B64 = base64.b64encode(b"\x89PNG fake").decode()


def image_response() -> httpx.Response:
    return httpx.Response(200, json={
        "candidates": [{"content": {"parts": [
            {"text": "Here you go"},
            {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
        ]}}],
    })


class TestSupabaseAuthResolver:
    """Tests for token verification and role lookup."""

    def _resolver(self, handler) -> SupabaseAuthResolver:
        return SupabaseAuthResolver(SUPABASE, "service-key", client=mock_client(handler, SUPABASE))

    @pytest.mark.asyncio
    async def test_owner_caller(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/auth/v1/user":
                return httpx.Response(200, json={"id": "user-9", "email": "o@example.com"})
            return httpx.Response(200, json=[{"role": "owner"}])

        caller = await self._resolver(handler).resolve("user-jwt")

        assert caller.user_id == "user-9"
        assert caller.tier is PermissionTier.OWNER
        assert seen[0].headers["authorization"] == "Bearer user-jwt"
        assert seen[1].url.params["id"] == "eq.user-9"
        assert seen[1].headers["authorization"] == "Bearer service-key"

    @pytest.mark.asyncio
    async def test_profile_lookup_failure_defaults_to_user(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/auth/v1/user":
                return httpx.Response(200, json={"id": "user-9"})
            return httpx.Response(500, text="db down")

        caller = await self._resolver(handler).resolve("user-jwt")
        assert caller.tier is PermissionTier.USER

    @pytest.mark.asyncio
    async def test_unknown_role_is_user(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/auth/v1/user":
                return httpx.Response(200, json={"id": "user-9"})
            return httpx.Response(200, json=[{"role": "admin-ish"}])

        assert (await self._resolver(handler).resolve("t")).tier is PermissionTier.USER

    @pytest.mark.asyncio
    async def test_rejected_token(self) -> None:
        resolver = self._resolver(lambda request: httpx.Response(401, json={"msg": "bad jwt"}))
        with pytest.raises(Unauthenticated, match="Invalid authentication token"):
            await resolver.resolve("expired")

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(Unauthenticated):
            await self._resolver(handler).resolve("t")

    @pytest.mark.asyncio
    async def test_missing_token_and_missing_config(self) -> None:
        resolver = self._resolver(lambda request: httpx.Response(200, json={"id": "x"}))
        with pytest.raises(Unauthenticated):
            await resolver.resolve(None)

        unconfigured = SupabaseAuthResolver("", "", client=mock_client(lambda r: httpx.Response(200)))
        with pytest.raises(ConfigurationError):
            await unconfigured.resolve("t")

    @pytest.mark.asyncio
    async def test_unreadable_user_body(self) -> None:
        resolver = self._resolver(lambda request: httpx.Response(200, text="<html>bad gateway page</html>"))
        with pytest.raises(Unauthenticated, match="Authentication failed"):
            await resolver.resolve("t")

        listing = self._resolver(lambda request: httpx.Response(200, json=["not", "a", "user"]))
        with pytest.raises(Unauthenticated, match="Authentication failed"):
            await listing.resolve("t")

    @pytest.mark.asyncio
    async def test_profile_body_not_a_list(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/auth/v1/user":
                return httpx.Response(200, json={"id": "user-9"})
            return httpx.Response(200, json={"role": "owner"})

        assert (await self._resolver(handler).resolve("t")).tier is PermissionTier.USER


class TestSupabaseStorage:
    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": "generated-images/x.png"})

        storage = SupabaseStorage(SUPABASE, "service-key", client=mock_client(handler, SUPABASE))
        url = await storage.upload(b"png", "generated-1-0.png", "image/png")

        assert url == f"{SUPABASE}/storage/v1/object/public/generated-images/generated-1-0.png"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/storage/v1/object/generated-images/generated-1-0.png"
        assert seen[0].headers["content-type"] == "image/png"
        assert seen[0].content == b"png"

    @pytest.mark.asyncio
    async def test_upload_failure_raises(self) -> None:
        storage = SupabaseStorage(
            SUPABASE, "service-key", client=mock_client(lambda r: httpx.Response(403), SUPABASE)
        )
        with pytest.raises(httpx.HTTPStatusError):
            await storage.upload(b"png", "x.png", "image/png")

    @pytest.mark.asyncio
    async def test_unconfigured(self) -> None:
        storage = SupabaseStorage("", "", client=mock_client(lambda r: httpx.Response(200)))
        with pytest.raises(ConfigurationError):
            await storage.upload(b"png", "x.png", "image/png")


class TestGeminiImageClient:
    """Tests for Flash-Image generation and editing."""

    @pytest.mark.asyncio
    async def test_generate_issues_one_request_per_image(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return image_response()

        client = GeminiImageClient("g-key", client=mock_client(handler))
        images = await client.generate("  a cat  ", 3, "16:9")

        assert len(images) == 3
        assert images[0].data == b"\x89PNG fake"
        assert len(seen) == 3
        assert seen[0].url.path == f"/v1beta/models/{IMAGE_MODEL}:generateContent"
        body = json.loads(seen[0].content)
        assert body["generationConfig"]["imageConfig"] == {"aspectRatio": "16:9"}
        assert body["contents"][0]["parts"][0]["text"] == "a cat"

    @pytest.mark.asyncio
    async def test_edit_sends_source_image_inline(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.host == "cdn.test":
                return httpx.Response(200, content=b"source-bytes", headers={"content-type": "image/jpeg"})
            return image_response()

        client = GeminiImageClient("g-key", client=mock_client(handler))
        image = await client.edit("https://cdn.test/cat.jpg", "make it blue")

        assert image.mime_type == "image/png"
        parts = json.loads(seen[1].content)["contents"][0]["parts"]
        assert parts[0]["inlineData"] == {
            "mimeType": "image/jpeg", "data": base64.b64encode(b"source-bytes").decode(),
        }
        assert parts[1]["text"] == "make it blue" + EDIT_SUFFIX

    @pytest.mark.asyncio
    async def test_response_without_image(self) -> None:
        client = GeminiImageClient(
            "g-key", client=mock_client(lambda r: httpx.Response(200, json={"candidates": []}))
        )
        with pytest.raises(ToolExecutionError, match="No image"):
            await client.generate("a cat", 1, "1:1")

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        client = GeminiImageClient("g-key", client=mock_client(lambda r: httpx.Response(500, text="oops")))
        with pytest.raises(ToolExecutionError, match="HTTP 500"):
            await client.generate("a cat", 1, "1:1")

    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        client = GeminiImageClient("", client=mock_client(lambda r: image_response()))
        with pytest.raises(ConfigurationError):
            await client.generate("a cat", 1, "1:1")


class TestDocuments:
    """Tests for the PDF renderer and artifact builder."""

    @pytest.mark.asyncio
    async def test_pdf_bytes(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"%PDF-1.7", headers={"content-type": "application/pdf"})

        renderer = HttpPdfRenderer("https://pdf.test/render", client=mock_client(handler))
        document = await renderer.render("Q3 Report", "# Numbers", "report")

        assert document.data == b"%PDF-1.7"
        assert document.filename == "Q3_Report.pdf"
        assert not document.is_fallback
        assert json.loads(seen[0].content) == {"title": "Q3 Report", "content": "# Numbers", "documentType": "report"}

    @pytest.mark.asyncio
    async def test_pdf_html_fallback(self) -> None:
        renderer = HttpPdfRenderer(
            "https://pdf.test/render",
            client=mock_client(lambda r: httpx.Response(200, json={"html": "<h1>Q3</h1>"})),
        )
        document = await renderer.render("Q3", "x", "document")
        assert document.is_fallback
        assert document.html == "<h1>Q3</h1>"

    @pytest.mark.asyncio
    async def test_pdf_errors(self) -> None:
        failing = HttpPdfRenderer("https://pdf.test/render", client=mock_client(lambda r: httpx.Response(502)))
        with pytest.raises(ToolExecutionError, match="502"):
            await failing.render("T", "x", "document")

        with pytest.raises(ConfigurationError):
            await HttpPdfRenderer("", client=mock_client(lambda r: httpx.Response(200))).render("T", "x", "document")

    @pytest.mark.asyncio
    async def test_artifact(self) -> None:
        artifact = await HtmlArtifactBuilder().create("Snake Game", "<html>🐍</html>", "game")

        assert artifact.filename == f"artifact-{artifact.timestamp}-Snake_Game.html"
        assert base64.b64decode(artifact.base64).decode("utf-8") == "<html>🐍</html>"
        assert artifact.to_payload()["artifact_type"] == "game"

    def test_safe_filename(self) -> None:
        assert safe_filename("Résumé 2024/v2") == "R_sum__2024_v2"


class TestGeminiSummarizer:
    """Tests for the rolling conversation summary."""

    MESSAGES = [
        HistoryMessage(sender="user", text="I'm building a relay in Python"),
        HistoryMessage(sender="bot", text="Nice, which providers?"),
    ]

    @pytest.mark.asyncio
    async def test_folds_previous_summary(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "User builds a Python relay."}]}}],
            })

        result = await GeminiSummarizer("g-key", client=mock_client(handler)).summarize(
            self.MESSAGES, previous_summary="User is a developer."
        )

        assert result.summary == "User builds a Python relay."
        assert result.message_count == 2
        assert result.had_previous_summary is True
        assert result.original_length == len(conversation_text(self.MESSAGES))
        (request,) = seen
        assert request.url.path == f"/v1beta/models/{SUMMARY_MODEL}:generateContent"
        assert request.url.params["key"] == "g-key"
        body = json.loads(request.content)
        assert body["generationConfig"]["temperature"] == 0.3
        prompt = body["contents"][0]["parts"][0]["text"]
        assert prompt.startswith("Previous summary:\nUser is a developer.")
        assert "User: I'm building a relay in Python\nAssistant: Nice, which providers?" in prompt
        assert "Maximum 500 words" in prompt

    @pytest.mark.asyncio
    async def test_first_summary_and_metadata(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "Short."}]}}]})

        result = await GeminiSummarizer("g-key", client=mock_client(handler)).summarize(self.MESSAGES)

        assert result.had_previous_summary is False
        metadata = result.to_metadata()
        assert metadata["summary_length"] == 6
        assert metadata["compression_ratio"] == f"{result.compression_ratio}%"

    @pytest.mark.asyncio
    async def test_errors(self) -> None:
        overloaded = GeminiSummarizer("g-key", client=mock_client(lambda r: httpx.Response(503)))
        with pytest.raises(UpstreamServiceError, match="Server unavailable"):
            await overloaded.summarize(self.MESSAGES)

        empty = GeminiSummarizer("g-key", client=mock_client(lambda r: httpx.Response(200, json={"candidates": []})))
        with pytest.raises(UpstreamServiceError, match="No summary"):
            await empty.summarize(self.MESSAGES)

        with pytest.raises(ConfigurationError):
            await GeminiSummarizer("", client=mock_client(lambda r: httpx.Response(200))).summarize(self.MESSAGES)


class TestBuildCollaborators:
    @pytest.mark.asyncio
    async def test_wires_defaults_from_config(self) -> None:
        config = RelayConfig(google_api_key="g", supabase_url=SUPABASE, supabase_service_key="k", storage_bucket="b")
        collab = build_collaborators(config)

        assert isinstance(collab.auth, SupabaseAuthResolver)
        assert isinstance(collab.storage, SupabaseStorage)
        assert collab.images.model == IMAGE_MODEL
        assert isinstance(collab.summarizer, GeminiSummarizer)
        await collab.close()
