"""End-to-end runs of the tracking workflow on a file journal."""

from __future__ import annotations

import asyncio

import pytest
from tenacity import wait_none

from accelerator.models.agent_schemas import AgentResult, ProviderError
from accelerator.models.schemas import InstanceStatus, TrackingParams, WorkflowState
from accelerator.workflows.issue_tracking import IssueTrackingWorkflow
from accelerator.workflows.runner import WorkflowRunner
from accelerator.workflows.store import FileDurableContext, WorkflowStore

PARAMS = TrackingParams(owner="acme", repo="widgets", issue_number=9)


class FakeAgent:
    def __init__(self, runs: list[str], name: str, wait_ms: int, fail: bool = False) -> None:
        self.runs = runs
        self.name = name
        self.wait_ms = wait_ms
        self.fail = fail

    async def run(self, task, tools=None):
        self.runs.append(self.name)
        if self.fail:
            raise ProviderError("Response failed")
        return AgentResult(output="ok", steps=1, tool_calls_made=1, wait_ms=self.wait_ms)


def _runner(store, runs, wait_ms=10, max_checks=2, fail=False):
    def workflow_factory(params):
        return IssueTrackingWorkflow(
            params,
            agent_factory=lambda name: FakeAgent(runs, name, wait_ms, fail),
            tools_factory=lambda: [],
            max_checks=max_checks,
        )

    def context_factory(store, instance_id):
        return FileDurableContext(
            store, instance_id, step_retries=1, retry_wait=wait_none(), poll_interval=0.01
        )

    return WorkflowRunner(store, workflow_factory=workflow_factory, context_factory=context_factory)


@pytest.fixture
def store(tmp_path):
    return WorkflowStore(tmp_path)


def test_runs_to_exhaustion(store):
    runs: list[str] = []
    runner = _runner(store, runs)

    async def main():
        instance_id, created = await runner.start(PARAMS)
        assert created is True
        await asyncio.wait_for(runner.wait(instance_id), timeout=10)
        return instance_id

    instance_id = asyncio.run(main())

    record = store.load(instance_id)
    assert record.status == InstanceStatus.EXHAUSTED
    assert record.result.state == WorkflowState.EXHAUSTED
    assert runs == ["initialize", "check", "check"]
    assert list(record.steps) == [
        "Initialize tracking",
        "Wait for first check",
        "Check task status 1",
        "Wait for next check 1",
        "Check task status 2",
    ]


def test_stop_signal_ends_pending_wait(store):
    runs: list[str] = []
    runner = _runner(store, runs, wait_ms=3_600_000)

    async def main():
        instance_id, _ = await runner.start(PARAMS)
        assert runner.stop(PARAMS, "closed") is True
        await asyncio.wait_for(runner.wait(instance_id), timeout=10)
        return instance_id

    instance_id = asyncio.run(main())

    record = store.load(instance_id)
    assert record.status == InstanceStatus.STOPPED
    assert record.result.stop_signal.reason == "closed"
    assert runs == ["initialize"]
    assert runner.stop(PARAMS, "closed") is False


def test_duplicate_start_reuses_running_task(store):
    runner = _runner(store, [], wait_ms=3_600_000)

    async def main():
        first = await runner.start(PARAMS)
        second = await runner.start(PARAMS)
        assert runner.is_active(PARAMS.instance_id)
        await runner.shutdown()
        return first, second

    first, second = asyncio.run(main())

    assert first == (PARAMS.instance_id, True)
    assert second == (PARAMS.instance_id, False)
    # Interrupted instances stay running so they can be resumed.
    assert store.load(PARAMS.instance_id).status == InstanceStatus.RUNNING


def test_failure_is_recorded(store):
    runner = _runner(store, [], fail=True)

    async def main():
        instance_id, _ = await runner.start(PARAMS)
        await asyncio.wait_for(runner.wait(instance_id), timeout=10)

    asyncio.run(main())

    record = store.load(PARAMS.instance_id)
    assert record.status == InstanceStatus.FAILED
    assert record.error == "Response failed"


def test_resume_continues_from_journal(store):
    runs: list[str] = []
    first = _runner(store, runs, wait_ms=3_600_000)

    async def interrupted():
        await first.start(PARAMS)
        while "Initialize tracking" not in store.load(PARAMS.instance_id).steps:
            await asyncio.sleep(0.01)
        await first.shutdown()

    asyncio.run(asyncio.wait_for(interrupted(), timeout=10))
    assert runs == ["initialize"]

    # The recorded first wait is an hour long; stop it so the resumed run ends.
    second = _runner(store, runs)

    async def resumed():
        assert second.resume_all() == [PARAMS.instance_id]
        second.stop(PARAMS, "unlabeled")
        await asyncio.wait_for(second.wait(PARAMS.instance_id), timeout=10)

    asyncio.run(resumed())

    record = store.load(PARAMS.instance_id)
    assert record.status == InstanceStatus.STOPPED
    assert runs == ["initialize"]
