"""Prompt templates for reversal briefings."""

from typing import Any

# Prompt definitions
PROMPTS = {
    "reversal_briefing": {
        "description": "Structured briefing on whether a bear-to-bull reversal is underway",
        "arguments": [{"name": "symbol", "required": False}],
    },
}


def list_prompts() -> list[dict[str, Any]]:
    """List available prompts."""
    return [
        {
            "name": name,
            "description": info["description"],
            "arguments": info["arguments"],
        }
        for name, info in PROMPTS.items()
    ]


def get_prompt(name: str, arguments: dict[str, str]) -> dict[str, Any] | None:
    """
    Get a prompt by name with arguments filled in.

    Returns dict with 'messages' key for MCP GetPromptResult.
    """
    if name not in PROMPTS:
        return None

    symbol = arguments.get("symbol") or "BTC-USD"
    return {
        "messages": [
            {
                "role": "user",
                "content": f"""Brief me on the reversal picture for {symbol}.

Execute these tools in order:
1. get_reversal_index(symbol="{symbol}")
2. get_technical_conditions(symbol="{symbol}")
3. get_narrative_signals()
4. get_reversal_history(limit=10)

Then write the briefing with these sections:

**Stage**: copy.title and copy.one_liner, the final score and the phase cap.
If reversal_index.phase_cap is below raw_composite, say the cap is binding
and how many gates are missing.

**Structure**: each gate with passed/failed and its detail. Call out any
detail starting with "insufficient_data" or ending with "[stale]".

**Cycle and leverage**: cycle zone, cycle_base vs cycle_user, and whether
the overheating veto is active.

**Narrative**: summary.summary plus the top signals with probabilities.

**Changes**: stage_changes from the history, newest first.

**Next**: copy.next verbatim.

Rules:
- Quote numbers from tool output only; do not estimate.
- If status is "not_evaluated", say the index has no data yet and stop.
- If reversal_index.degraded is true, list degraded_reasons and soften the
  conclusion accordingly.""",
            }
        ]
    }
