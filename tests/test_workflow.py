"""Tests for the issue tracking state machine on an in-memory durable context."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from accelerator.models.agent_schemas import AgentResult, ProviderError
from accelerator.models.schemas import (
    STOP_EVENT,
    CheckOutcome,
    RaceOutcome,
    TrackingParams,
    WorkflowState,
)
from accelerator.workflows.issue_tracking import IssueTrackingWorkflow

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)
PARAMS = TrackingParams(owner="acme", repo="widgets", issue_number=42)


class MemoryContext:
    """DurableContext keeping steps, timers and events in dicts; timers fire at once."""

    def __init__(self, steps: dict[str, Any] | None = None) -> None:
        self.steps: dict[str, Any] = dict(steps or {})
        self.timers: dict[str, datetime] = {}
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.executed: list[str] = []
        self.slept: list[tuple[str, int]] = []

    def send(self, reason: str, timestamp: datetime = NOW) -> None:
        self.events.append((STOP_EVENT, {"reason": reason, "timestamp": timestamp.isoformat()}))

    async def do(self, name, fn):
        if name in self.steps:
            return self.steps[name]
        self.executed.append(name)
        result = await fn()
        self.steps[name] = result
        return result

    async def sleep(self, name, duration_ms):
        self.timers.setdefault(name, NOW + timedelta(milliseconds=duration_ms))
        self.slept.append((name, duration_ms))
        await asyncio.sleep(0)

    def timer_deadline(self, name):
        return self.timers.get(name)

    def peek_event(self, event_type):
        for kind, payload in self.events:
            if kind == event_type:
                return payload
        return None

    async def wait_for_event(self, event_type):
        while True:
            payload = self.peek_event(event_type)
            if payload is not None:
                return payload
            await asyncio.sleep(0)


class FakeAgent:
    def __init__(self, log: list[dict[str, Any]], name: str, wait_ms, on_run=None) -> None:
        self.log = log
        self.name = name
        self.wait_ms = wait_ms
        self.on_run = on_run

    async def run(self, task, tools=None):
        self.log.append({"agent": self.name, "task": task, "tools": [t.name for t in tools or []]})
        if self.on_run is not None:
            self.on_run(len(self.log))
        return AgentResult(output=f"{self.name} done", steps=1, tool_calls_made=1, wait_ms=self.wait_ms)


def make_workflow(log, wait_ms=None, max_checks=3, on_run=None, default_delay_ms=None):
    return IssueTrackingWorkflow(
        PARAMS,
        agent_factory=lambda name: FakeAgent(log, name, wait_ms, on_run),
        tools_factory=lambda: [],
        max_checks=max_checks,
        default_delay_ms=default_delay_ms,
        clock=lambda: NOW,
    )


def run(workflow, ctx):
    return asyncio.run(workflow.run(ctx))


# ---------------------------------------------------------------------------
# Delays
# ---------------------------------------------------------------------------

def test_missing_wait_falls_back_to_one_day():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()

    run(make_workflow(log, wait_ms=None, max_checks=1, default_delay_ms=86_400_000), ctx)

    assert ctx.slept == [("Wait for first check:timer", 86_400_000)]
    outcome = CheckOutcome.model_validate(ctx.steps["Initialize tracking"])
    assert outcome.delay_chosen is False


def test_zero_wait_falls_back_to_default():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()

    run(make_workflow(log, wait_ms=0, max_checks=1, default_delay_ms=5_000), ctx)

    assert ctx.slept[0][1] == 5_000


def test_agent_chosen_delay_drives_timer():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()

    instance = run(make_workflow(log, wait_ms=172_800_000, max_checks=2), ctx)

    assert [ms for _, ms in ctx.slept] == [172_800_000, 172_800_000]
    assert instance.next_sleep_ms == 172_800_000


def test_agents_get_wait_tool_and_issue_prompt():
    log: list[dict[str, Any]] = []
    run(make_workflow(log, wait_ms=1000, max_checks=1), MemoryContext())

    assert [entry["agent"] for entry in log] == ["initialize", "check"]
    assert log[0]["tools"] == ["wait"]
    assert "issue #42 in acme/widgets" in log[0]["task"]
    assert "last check happened at 2025-01-01T00:00:00+00:00" in log[1]["task"]


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------

def test_exhausts_after_max_checks():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()

    instance = run(make_workflow(log, wait_ms=1000, max_checks=3), ctx)

    assert instance.state == WorkflowState.EXHAUSTED
    assert instance.iteration == 3
    assert len(log) == 4
    assert ctx.executed == [
        "Initialize tracking",
        "Wait for first check",
        "Check task status 1",
        "Wait for next check 1",
        "Check task status 2",
        "Wait for next check 2",
        "Check task status 3",
    ]


def test_stop_before_first_check():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()
    ctx.send("unlabeled")

    instance = run(make_workflow(log, wait_ms=1000), ctx)

    assert instance.state == WorkflowState.STOPPED
    assert instance.stop_signal.reason == "unlabeled"
    assert len(log) == 1
    assert ctx.executed == ["Initialize tracking", "Wait for first check"]


def test_stop_during_pending_wait_ends_without_another_check():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()

    def close_after_first_check(runs: int) -> None:
        if runs == 2:
            ctx.send("closed")

    instance = run(make_workflow(log, wait_ms=1000, max_checks=5, on_run=close_after_first_check), ctx)

    assert instance.state == WorkflowState.STOPPED
    assert instance.stop_signal.reason == "closed"
    assert instance.iteration == 1
    assert len(log) == 2
    assert ctx.executed[-1] == "Wait for next check 1"
    assert RaceOutcome.model_validate(ctx.steps["Wait for next check 1"]).stopped


def test_signal_after_deadline_does_not_stop():
    log: list[dict[str, Any]] = []
    ctx = MemoryContext()
    ctx.send("closed", timestamp=NOW + timedelta(days=30))

    instance = run(make_workflow(log, wait_ms=1000, max_checks=2), ctx)

    assert instance.state == WorkflowState.EXHAUSTED
    assert len(log) == 3


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

def _recorded_check(ms: int) -> dict[str, Any]:
    return CheckOutcome(
        summary="recorded", checked_at=NOW, next_sleep_ms=ms, delay_chosen=True
    ).model_dump(mode="json")


def test_replay_skips_recorded_steps():
    log: list[dict[str, Any]] = []
    timer = RaceOutcome(winner="timer").model_dump(mode="json")
    ctx = MemoryContext(
        steps={
            "Initialize tracking": _recorded_check(7_000),
            "Wait for first check": timer,
            "Check task status 1": _recorded_check(9_000),
        }
    )

    instance = run(make_workflow(log, wait_ms=1000, max_checks=2), ctx)

    assert ctx.executed == ["Wait for next check 1", "Check task status 2"]
    assert ctx.slept == [("Wait for next check 1:timer", 9_000)]
    assert [entry["agent"] for entry in log] == ["check"]
    assert instance.state == WorkflowState.EXHAUSTED


def test_recorded_stop_is_replayed():
    log: list[dict[str, Any]] = []
    stop = RaceOutcome.model_validate(
        {"winner": "stop", "signal": {"reason": "closed", "timestamp": NOW.isoformat()}}
    ).model_dump(mode="json")
    ctx = MemoryContext(
        steps={"Initialize tracking": _recorded_check(7_000), "Wait for first check": stop}
    )

    instance = run(make_workflow(log), ctx)

    assert instance.state == WorkflowState.STOPPED
    assert log == []
    assert ctx.executed == []


def test_agent_failure_propagates():
    class Broken:
        async def run(self, task, tools=None):
            raise ProviderError("Response failed")

    workflow = IssueTrackingWorkflow(
        PARAMS, agent_factory=lambda name: Broken(), tools_factory=lambda: [], max_checks=1
    )
    ctx = MemoryContext()

    with pytest.raises(ProviderError):
        run(workflow, ctx)
    assert "Initialize tracking" not in ctx.steps
