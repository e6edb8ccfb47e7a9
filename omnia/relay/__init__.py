"""
omnia.relay — Per-request orchestration and the outbound NDJSON stream.
"""

from omnia.relay.emitter import NDJSONEmitter
from omnia.relay.orchestrator import RequestContext, TurnOrchestrator, TurnState

__all__ = ["NDJSONEmitter", "RequestContext", "TurnOrchestrator", "TurnState"]
