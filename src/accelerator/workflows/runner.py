from __future__ import annotations

import asyncio
import logging
from typing import Callable

from accelerator.models.schemas import (
    STOP_EVENT,
    InstanceStatus,
    TrackingParams,
    WorkflowState,
)
from accelerator.workflows.issue_tracking import IssueTrackingWorkflow, build_workflow
from accelerator.workflows.store import FileDurableContext, WorkflowStore, utcnow

logger = logging.getLogger(__name__)

WorkflowFactory = Callable[[TrackingParams], IssueTrackingWorkflow]
ContextFactory = Callable[[WorkflowStore, str], FileDurableContext]


class WorkflowRunner:
    """Runs one asyncio task per tracked issue on top of a WorkflowStore."""

    def __init__(
        self,
        store: WorkflowStore,
        workflow_factory: WorkflowFactory = build_workflow,
        context_factory: ContextFactory = FileDurableContext,
    ) -> None:
        self.store = store
        self._workflow_factory = workflow_factory
        self._context_factory = context_factory
        self._tasks: dict[str, asyncio.Task] = {}

    async def start(self, params: TrackingParams) -> tuple[str, bool]:
        """Create (or reuse) the instance for `params` and make sure it is running.

        Returns the instance id and whether a new instance was created.
        """
        record, created = self.store.create(params)
        self._spawn(record.id, record.params)
        return record.id, created

    def stop(self, params: TrackingParams, reason: str) -> bool:
        """Deliver a stop signal. Returns False when no running instance exists."""
        payload = {"reason": reason, "timestamp": utcnow().isoformat()}
        delivered = self.store.send_event(params.instance_id, STOP_EVENT, payload)
        if delivered:
            logger.info("Stop signal (%s) sent to %s", reason, params.instance_id)
        else:
            logger.info("No active workflow found for %s", params.instance_id)
        return delivered

    def resume_all(self) -> list[str]:
        """Restart every instance whose journal says it is still running."""
        resumed = []
        for record in self.store.list_instances(InstanceStatus.RUNNING):
            self._spawn(record.id, record.params)
            resumed.append(record.id)
        if resumed:
            logger.info("Resumed %d workflow instance(s)", len(resumed))
        return resumed

    def is_active(self, instance_id: str) -> bool:
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    async def wait(self, instance_id: str) -> None:
        task = self._tasks.get(instance_id)
        if task is not None:
            await task

    async def shutdown(self) -> None:
        """Cancel running tasks; their journals stay `running` for a later resume."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _spawn(self, instance_id: str, params: TrackingParams) -> None:
        if self.is_active(instance_id):
            return
        self._tasks[instance_id] = asyncio.create_task(
            self._run(instance_id, params), name=instance_id
        )

    async def _run(self, instance_id: str, params: TrackingParams) -> None:
        ctx = self._context_factory(self.store, instance_id)
        workflow = self._workflow_factory(params)
        try:
            instance = await workflow.run(ctx)
        except asyncio.CancelledError:
            logger.info("%s: interrupted, will resume from its journal", instance_id)
            raise
        except Exception as e:
            logger.exception("%s: workflow failed", instance_id)
            self.store.finish(instance_id, InstanceStatus.FAILED, error=str(e))
            return

        status = (
            InstanceStatus.STOPPED
            if instance.state == WorkflowState.STOPPED
            else InstanceStatus.EXHAUSTED
        )
        self.store.finish(instance_id, status, result=instance)
        logger.info("%s: finished as %s", instance_id, status.value)
