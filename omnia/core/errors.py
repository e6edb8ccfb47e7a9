"""
omnia.core.errors — Exception taxonomy for a relayed chat turn.

Each class maps onto one outbound ``error`` event shape.  The orchestrator
catches all of them at its boundary; nothing here ever reaches the HTTP
layer.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class.  ``code`` and ``retryable`` are copied onto the error event."""

    code: str = "internal"
    retryable: bool = False


class Unauthenticated(RelayError):
    """Bearer token missing or rejected by the auth resolver."""

    code = "unauthenticated"


class ConfigurationError(RelayError):
    """Server-side misconfiguration, e.g. a provider API key is not set."""

    code = "configuration"


class UpstreamServiceError(RelayError):
    """The model provider refused or aborted the request (HTTP error, overload, in-band error)."""

    code = "upstream"
    retryable = True

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ToolExecutionError(RelayError):
    """A collaborator failed while executing a single tool invocation."""

    code = "tool"


class ToolArgumentError(ToolExecutionError):
    """A tool invocation is missing a required argument."""
