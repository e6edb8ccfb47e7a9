"""
omnia.tools.definitions — Tool schemas offered to the model.

Defines the client-executed tools:
  - Images: generate_image, edit_image
  - Documents: generate_pdf, create_artifact

Web search is executed by the provider itself and is declared natively by
each adapter (``web_search_20250305`` for Claude, ``google_search`` for
Gemini).
"""

from __future__ import annotations

from typing import Any

from omnia.streaming.decoder import ToolName


ASPECT_RATIOS = ["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
DOCUMENT_TYPES = ["document", "report", "article"]
ARTIFACT_TYPES = ["app", "game", "visualization", "document", "tool"]


# ---------------------------------------------------------------------------
# Tool definitions in OpenAI function-calling schema
# ---------------------------------------------------------------------------

RELAY_TOOLS: list[dict[str, Any]] = [
    # ── Images ────────────────────────────────────────────────────────────
    {
        "type": "function",
        "function": {
            "name": ToolName.GENERATE_IMAGE.value,
            "description": (
                "Generate images from a text description. "
                "Can generate 1-3 variations of one prompt in parallel."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "prompt": {
                        "type": "string",
                        "description": "Detailed description of the image to generate.",
                    },
                    "imageCount": {
                        "type": "integer",
                        "description": "Number of images to generate (1-3).",
                        "default": 1,
                    },
                    "aspectRatio": {
                        "type": "string",
                        "description": "Image aspect ratio.",
                        "enum": ASPECT_RATIOS,
                        "default": "1:1",
                    },
                },
                "required": ["prompt"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.EDIT_IMAGE.value,
            "description": (
                "Edit an existing image with a natural language instruction: "
                "colors, backgrounds, adding or removing objects, style changes."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "image_url": {
                        "type": "string",
                        "description": "HTTPS URL of the image to edit (from the conversation history).",
                    },
                    "prompt": {
                        "type": "string",
                        "description": "Edit instruction, e.g. 'make the background blue'.",
                    },
                },
                "required": ["image_url", "prompt"],
            },
        },
    },
    # ── Documents ─────────────────────────────────────────────────────────
    {
        "type": "function",
        "function": {
            "name": ToolName.GENERATE_PDF.value,
            "description": "Generate a PDF document from conversation or content.",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {
                        "type": "string",
                        "description": "Title of the PDF document.",
                    },
                    "content": {
                        "type": "string",
                        "description": "Content to include in the PDF.",
                    },
                    "documentType": {
                        "type": "string",
                        "description": "Type of document.",
                        "enum": DOCUMENT_TYPES,
                        "default": "document",
                    },
                },
                "required": ["title", "content"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ToolName.CREATE_ARTIFACT.value,
            "description": (
                "Create an interactive HTML artifact (calculator, app, game, "
                "visualization, tool)."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {
                        "type": "string",
                        "description": "Artifact title, e.g. 'Interactive Calculator'.",
                    },
                    "html_content": {
                        "type": "string",
                        "description": (
                            "Complete self-contained HTML document with inline CSS "
                            "and JavaScript, starting with <!DOCTYPE html>."
                        ),
                    },
                    "artifact_type": {
                        "type": "string",
                        "enum": ARTIFACT_TYPES,
                        "description": "Type of artifact being created.",
                    },
                },
                "required": ["title", "html_content"],
            },
        },
    },
]


# Progress labels shown while a tool block is still streaming its arguments.
PREPARING_LABELS: dict[str, str] = {
    ToolName.GENERATE_IMAGE: "Preparing images...",
    ToolName.EDIT_IMAGE: "Editing image...",
    ToolName.GENERATE_PDF: "Preparing document...",
    ToolName.CREATE_ARTIFACT: "Building artifact...",
}
DEFAULT_PREPARING_LABEL = "Preparing tools..."


def preparing_label(tool_name: str) -> str:
    return PREPARING_LABELS.get(tool_name, DEFAULT_PREPARING_LABEL)


def to_anthropic_tools(tools: list[dict] | None = None) -> list[dict]:
    """Convert tool defs to Anthropic custom tools.

    Only the last definition carries ``cache_control``: a breakpoint caches
    the whole prefix before it, and Anthropic allows four per request.
    """
    tools = tools if tools is not None else RELAY_TOOLS
    converted = []
    for i, t in enumerate(tools):
        fn = t["function"]
        tool: dict[str, Any] = {
            "type": "custom",
            "name": fn["name"],
            "description": fn["description"],
            "input_schema": fn["parameters"],
        }
        if i == len(tools) - 1:
            tool["cache_control"] = {"type": "ephemeral"}
        converted.append(tool)
    return converted


def _without_defaults(schema: Any) -> Any:
    """Gemini's schema subset rejects ``default``; strip it recursively."""
    if isinstance(schema, dict):
        return {k: _without_defaults(v) for k, v in schema.items() if k != "default"}
    if isinstance(schema, list):
        return [_without_defaults(v) for v in schema]
    return schema


def to_google_tools(tools: list[dict] | None = None) -> list[dict]:
    """Convert tool defs to Gemini function declarations."""
    declarations = []
    for t in tools if tools is not None else RELAY_TOOLS:
        fn = t["function"]
        declarations.append({
            "name": fn["name"],
            "description": fn["description"],
            "parameters": _without_defaults(fn["parameters"]),
        })
    return [{"functionDeclarations": declarations}]


def image_tools() -> list[dict]:
    """The subset offered in Gemini image mode."""
    return [
        t for t in RELAY_TOOLS
        if t["function"]["name"] in (ToolName.GENERATE_IMAGE, ToolName.EDIT_IMAGE)
    ]
