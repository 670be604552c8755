"""Models and errors for the agent tool-call loop."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = "{}"


class Completion(BaseModel):
    """One provider turn: its status and the output items it emitted."""

    status: str
    output: list[dict[str, Any]] = []


class WaitDecision(BaseModel):
    """Result of the wait tool; carries the chosen re-check delay back to the caller."""

    duration_ms: int
    reason: str

    def acknowledgement(self) -> str:
        return f"Set up a wait for {self.duration_ms} milliseconds."


class AgentResult(BaseModel):
    output: str
    steps: int
    tool_calls_made: int
    wait_ms: int | None = None


class AgentError(Exception):
    """Base class for errors that abort an agent run."""


class ProviderError(AgentError):
    """The completion provider failed or answered with an unusable response."""


class UnknownToolError(AgentError):
    """The provider asked for a tool that is not in the active tool set."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool {name} not found")
        self.name = name


class ToolArgumentError(AgentError):
    """Tool arguments could not be parsed or did not match the tool schema.

    Recovered by the loop: reported back to the model instead of aborting.
    """
