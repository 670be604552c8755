"""Issue tracking state machine.

initializing -> awaiting_first_delay -> (checking -> awaiting_next_delay)* -> stopped | exhausted

Each agent run and each delay race is one durable step, so a restarted
process replays what already happened and continues from the first step that
has no recorded result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from accelerator.agents.agent import Agent, StepCallback
from accelerator.config import settings
from accelerator.models.schemas import (
    CheckOutcome,
    RaceOutcome,
    TrackingParams,
    WorkflowInstance,
    WorkflowState,
)
from accelerator.prompts.prompt_layer import render_prompt
from accelerator.tools import Tool
from accelerator.tools.wait_tool import create_wait_tool
from accelerator.workflows.durable import DurableContext, race_stop_signal

logger = logging.getLogger(__name__)

AgentFactory = Callable[[str], Agent]
ToolsFactory = Callable[[], list[Tool]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssueTrackingWorkflow:
    def __init__(
        self,
        params: TrackingParams,
        agent_factory: AgentFactory,
        tools_factory: ToolsFactory,
        max_checks: int | None = None,
        default_delay_ms: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.params = params
        self._agent_factory = agent_factory
        self._tools_factory = tools_factory
        self.max_checks = max_checks if max_checks is not None else settings.tracking_max_checks
        self.default_delay_ms = (
            default_delay_ms if default_delay_ms is not None else settings.default_check_delay_ms
        )
        self._clock = clock

    async def run(self, ctx: DurableContext) -> WorkflowInstance:
        p = self.params
        instance = WorkflowInstance(id=p.instance_id, params=p)
        logger.info("%s: tracking issue #%d in %s", instance.id, p.issue_number, p.full_name)

        outcome = CheckOutcome.model_validate(await ctx.do("Initialize tracking", self._initialize))
        self._apply(instance, outcome)

        instance.state = WorkflowState.AWAITING_FIRST_DELAY
        race = await race_stop_signal(ctx, "Wait for first check", instance.next_sleep_ms)
        if race.stopped:
            return self._stop(instance, race)

        for i in range(1, self.max_checks + 1):
            instance.state = WorkflowState.CHECKING
            instance.iteration = i
            last_check_time = instance.last_check_time

            async def check() -> dict[str, Any]:
                return await self._check_status(last_check_time)

            outcome = CheckOutcome.model_validate(await ctx.do(f"Check task status {i}", check))
            self._apply(instance, outcome)

            if i == self.max_checks:
                break
            instance.state = WorkflowState.AWAITING_NEXT_DELAY
            race = await race_stop_signal(ctx, f"Wait for next check {i}", instance.next_sleep_ms)
            if race.stopped:
                return self._stop(instance, race)

        instance.state = WorkflowState.EXHAUSTED
        logger.info("%s: check limit (%d) reached, tracking ends", instance.id, self.max_checks)
        return instance

    async def _initialize(self) -> dict[str, Any]:
        p = self.params
        task = render_prompt(
            "initialize", owner=p.owner, repo=p.repo, issue_number=p.issue_number
        )
        return await self._run_agent("initialize", task)

    async def _check_status(self, last_check_time: datetime | None) -> dict[str, Any]:
        p = self.params
        task = render_prompt(
            "check",
            owner=p.owner,
            repo=p.repo,
            issue_number=p.issue_number,
            last_check_time=last_check_time.isoformat() if last_check_time else "never",
            now=self._clock().isoformat(),
        )
        return await self._run_agent("check", task)

    async def _run_agent(self, agent_name: str, task: str) -> dict[str, Any]:
        agent = self._agent_factory(agent_name)
        result = await agent.run(task, [*self._tools_factory(), create_wait_tool()])
        # A zero or missing delay falls back to the default cadence.
        chosen = bool(result.wait_ms)
        outcome = CheckOutcome(
            summary=result.output,
            checked_at=self._clock(),
            next_sleep_ms=result.wait_ms if chosen else self.default_delay_ms,
            delay_chosen=chosen,
        )
        logger.info(
            "%s: %s run finished, next check in %d ms%s",
            self.params.instance_id,
            agent_name,
            outcome.next_sleep_ms,
            "" if chosen else " (default)",
        )
        return outcome.model_dump(mode="json")

    @staticmethod
    def _apply(instance: WorkflowInstance, outcome: CheckOutcome) -> None:
        instance.last_check_time = outcome.checked_at
        instance.next_sleep_ms = outcome.next_sleep_ms

    @staticmethod
    def _stop(instance: WorkflowInstance, race: RaceOutcome) -> WorkflowInstance:
        instance.state = WorkflowState.STOPPED
        instance.stop_signal = race.signal
        logger.info(
            "%s: stopped (%s)", instance.id, race.signal.reason if race.signal else "stop"
        )
        return instance


def build_workflow(
    params: TrackingParams,
    callback: StepCallback | None = None,
) -> IssueTrackingWorkflow:
    """Wire the workflow to the OpenAI provider and the GitHub GraphQL tool."""
    from accelerator.config import get_model_config
    from accelerator.services.github_service import GitHubService
    from accelerator.services.llm_service import LLMService
    from accelerator.tools.github_tools import create_github_tools

    github = GitHubService()

    def agent_factory(agent_name: str) -> Agent:
        llm = LLMService(get_model_config(agent_name))
        return Agent(llm=llm, max_tool_calls=settings.agent_max_tool_calls, callback=callback)

    return IssueTrackingWorkflow(
        params,
        agent_factory=agent_factory,
        tools_factory=lambda: create_github_tools(github),
    )
