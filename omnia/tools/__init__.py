"""
omnia.tools — Tool schemas and post-stream tool execution.
"""

from omnia.tools.coordinator import ToolExecutionCoordinator
from omnia.tools.definitions import RELAY_TOOLS, preparing_label

__all__ = ["RELAY_TOOLS", "ToolExecutionCoordinator", "preparing_label"]
