"""The reserved `done` tool in its two variants."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from accelerator.tools import Tool, make_tool

DONE_TOOL_NAME = "done"


class DoneArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(
        description=(
            "A comprehensive summary message explaining what was accomplished "
            "and the current status of the task."
        )
    )


class LimitReachedArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(
        description=(
            "An explanatory message indicating that the task cannot be completed "
            "due to reaching the tool call limit, along with any partial progress made."
        )
    )


async def _echo_message(args: DoneArgs | LimitReachedArgs) -> str:
    return args.message


def create_completion_tool() -> Tool:
    return make_tool(
        name=DONE_TOOL_NAME,
        description=(
            "Mark the task as successfully completed and end the conversation. "
            "Use this when the task has been finished or when temporarily pausing "
            "(e.g., waiting for external input or dependencies)."
        ),
        args_model=DoneArgs,
        execute=_echo_message,
    )


def create_limit_reached_tool() -> Tool:
    return make_tool(
        name=DONE_TOOL_NAME,
        description=(
            "Terminate the task execution because the maximum number of tool calls "
            "has been reached. Use this when the agent has exhausted its allowed "
            "tool usage quota and must stop processing."
        ),
        args_model=LimitReachedArgs,
        execute=_echo_message,
    )
