"""Per-check tool letting the agent choose when the next check happens."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from accelerator.models.agent_schemas import WaitDecision
from accelerator.tools import Tool, make_tool

logger = logging.getLogger(__name__)

WAIT_TOOL_NAME = "wait"

# 365 days
MAX_WAIT_MS = 31_536_000_000


class WaitArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    duration: float = Field(description="The duration to wait before proceeding, in milliseconds.")
    reason: str = Field(description="Short reason for the wait.")


async def _wait(args: WaitArgs) -> WaitDecision:
    if not args.duration >= 0:
        raise ValueError("Duration must be a non-negative number.")
    if args.duration > MAX_WAIT_MS:
        raise ValueError(f"Duration must be at most {MAX_WAIT_MS} milliseconds.")
    duration_ms = int(args.duration)
    logger.info("Waiting for %d milliseconds... Reason: %s", duration_ms, args.reason)
    return WaitDecision(duration_ms=duration_ms, reason=args.reason)


def create_wait_tool() -> Tool:
    """Create a fresh wait tool; its decision travels back in the tool result."""
    return make_tool(
        name=WAIT_TOOL_NAME,
        description="Setup an alert to wait for a specified duration before proceeding.",
        args_model=WaitArgs,
        execute=_wait,
    )
