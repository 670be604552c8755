"""Bounded agent loop: one forced tool call per turn until `done`."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from pydantic import BaseModel

from accelerator.config import settings
from accelerator.models.agent_schemas import (
    AgentResult,
    Completion,
    ProviderError,
    ToolCall,
    WaitDecision,
)
from accelerator.prompts.prompt_layer import render_prompt
from accelerator.tools import Tool, ToolRegistry
from accelerator.tools.completion import (
    DONE_TOOL_NAME,
    create_completion_tool,
    create_limit_reached_tool,
)

logger = logging.getLogger(__name__)

MAX_TOOL_CALLS = 20


class CompletionProvider(Protocol):
    async def complete(
        self,
        conversation: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tool_choice: str = "required",
    ) -> Completion: ...


class StepCallback(Protocol):
    def on_step_start(self, step: int, max_steps: int) -> None: ...
    def on_tool_call(self, name: str, arguments: str) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...


class NullCallback:
    def on_step_start(self, step: int, max_steps: int) -> None: ...
    def on_tool_call(self, name: str, arguments: str) -> None: ...
    def on_tool_result(self, name: str, result: str) -> None: ...
    def on_finish(self, text: str, steps: int, tool_calls: int) -> None: ...


def _encode(result: Any) -> str:
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json")
    return json.dumps(result, default=str)


class Agent:
    def __init__(
        self,
        llm: CompletionProvider,
        max_tool_calls: int = MAX_TOOL_CALLS,
        callback: StepCallback | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.llm = llm
        self.max_tool_calls = max_tool_calls
        self.cb: StepCallback = callback or NullCallback()
        self.system_prompt = system_prompt or render_prompt(
            "general", managed_label=settings.managed_label
        )

    async def run(self, task: str, tools: list[Tool] | None = None) -> AgentResult:
        """Drive the conversation until the model calls `done`.

        Tool failures are reported back to the model. Provider failures and
        calls to tools outside the active set abort the run.
        """
        conversation: list[dict[str, Any]] = [
            {"role": "developer", "content": f"{self.system_prompt}\n\n---\n{task}"},
        ]
        full = ToolRegistry([*(tools or []), create_completion_tool()])
        limited = ToolRegistry([create_limit_reached_tool()])

        turns = 0
        calls_made = 0
        wait_ms: int | None = None

        while True:
            limit_reached = turns >= self.max_tool_calls
            active = limited if limit_reached else full
            if limit_reached:
                logger.info("Tool call limit (%d) reached, forcing completion", self.max_tool_calls)
            self.cb.on_step_start(turns + 1, self.max_tool_calls)

            completion = await self.llm.complete(
                conversation, active.to_openai_tools(), tool_choice="required"
            )
            self._check_status(completion)

            for item in completion.output:
                kind = item.get("type")
                if kind == "reasoning":
                    conversation.append(item)
                    continue
                if kind != "function_call":
                    continue

                call = ToolCall(
                    id=item.get("call_id") or item.get("id") or "",
                    name=item.get("name", ""),
                    arguments=item.get("arguments") or "{}",
                )
                tool = active.get(call.name)
                logger.info("Calling tool: %s with args: %s", call.name, call.arguments)
                self.cb.on_tool_call(call.name, call.arguments)
                calls_made += 1
                conversation.append(item)

                if call.name == DONE_TOOL_NAME:
                    try:
                        args = tool.parse_args(call.arguments)
                    except Exception as e:
                        logger.error("Invalid %s call: %s", DONE_TOOL_NAME, e)
                        self._append_output(conversation, call, json.dumps({"error": str(e)}))
                        continue
                    message = args.message
                    self.cb.on_finish(message, turns + 1, calls_made)
                    return AgentResult(
                        output=message,
                        steps=turns + 1,
                        tool_calls_made=calls_made,
                        wait_ms=wait_ms,
                    )

                output, decision = await self._dispatch(tool, call)
                if decision is not None:
                    wait_ms = decision.duration_ms
                self.cb.on_tool_result(call.name, output)
                self._append_output(conversation, call, output)

            if limit_reached:
                raise ProviderError(
                    f"Provider did not call {DONE_TOOL_NAME} after the tool call limit was reached"
                )
            turns += 1

    @staticmethod
    def _check_status(completion: Completion) -> None:
        if completion.status == "completed":
            return
        if completion.status == "in_progress":
            raise ProviderError(
                "Response is still in progress - this shouldn't happen with synchronous calls"
            )
        if completion.status == "failed":
            raise ProviderError("Response failed")
        logger.warning("Unknown response structure: %s", completion)
        raise ProviderError(f"Unknown response status '{completion.status}' from provider")

    @staticmethod
    async def _dispatch(tool: Tool, call: ToolCall) -> tuple[str, WaitDecision | None]:
        try:
            args = tool.parse_args(call.arguments)
            result = await tool.execute(args)
        except Exception as e:
            logger.error("Error calling tool %s: %s", call.name, e)
            return json.dumps({"error": str(e)}), None
        if isinstance(result, WaitDecision):
            return json.dumps(result.acknowledgement()), result
        return _encode(result), None

    @staticmethod
    def _append_output(conversation: list[dict[str, Any]], call: ToolCall, output: str) -> None:
        conversation.append(
            {
                "type": "function_call_output",
                "call_id": call.id,
                "output": output,
            }
        )
