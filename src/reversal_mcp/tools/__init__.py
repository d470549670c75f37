"""Reversal Index tools."""

from reversal_mcp.tools.narrative_signals import narrative_signals
from reversal_mcp.tools.reversal_history import reversal_history
from reversal_mcp.tools.reversal_index import reversal_index
from reversal_mcp.tools.technical_conditions import technical_conditions

__all__ = [
    "narrative_signals",
    "reversal_history",
    "reversal_index",
    "technical_conditions",
]
