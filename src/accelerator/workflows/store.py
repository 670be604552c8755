"""JSON-file journals for workflow instances and a DurableContext on top of them.

Layout under the store root::

    instances/<id>.json          InstanceRecord (steps, timers, status)
    instances/<id>.events.jsonl  delivered events, append-only

Events live in their own append-only file so that a separate process (the
CLI `stop` command) can deliver them without rewriting the journal owned by
the running workflow.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from accelerator.config import settings
from accelerator.models.schemas import (
    EventRecord,
    InstanceRecord,
    InstanceStatus,
    TrackingParams,
    WorkflowInstance,
)

logger = logging.getLogger(__name__)

INSTANCES_DIR = "instances"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStore:
    def __init__(self, root: Path) -> None:
        self.root = root / INSTANCES_DIR
        self.root.mkdir(parents=True, exist_ok=True)
        self._listeners: dict[str, set[asyncio.Event]] = {}

    def _path(self, instance_id: str) -> Path:
        return self.root / f"{instance_id}.json"

    def _events_path(self, instance_id: str) -> Path:
        return self.root / f"{instance_id}.events.jsonl"

    # ---- Instances ----

    def load(self, instance_id: str) -> InstanceRecord | None:
        path = self._path(instance_id)
        if not path.exists():
            return None
        return InstanceRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, record: InstanceRecord) -> None:
        record.updated_at = utcnow()
        path = self._path(record.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    def create(self, params: TrackingParams) -> tuple[InstanceRecord, bool]:
        """Create the instance for `params`, or return the running one.

        A terminal instance (stopped, exhausted, failed) is replaced by a fresh
        journal under the same id, so a reopened issue is tracked again.
        """
        existing = self.load(params.instance_id)
        if existing is not None and existing.status == InstanceStatus.RUNNING:
            logger.info("Instance %s already running", existing.id)
            return existing, False
        if existing is not None:
            logger.info("Restarting %s instance %s", existing.status.value, existing.id)
            self._events_path(existing.id).unlink(missing_ok=True)

        now = utcnow()
        record = InstanceRecord(
            id=params.instance_id,
            params=params,
            created_at=now,
            updated_at=now,
        )
        self.save(record)
        return record, True

    def finish(
        self,
        instance_id: str,
        status: InstanceStatus,
        result: WorkflowInstance | None = None,
        error: str = "",
    ) -> None:
        record = self.load(instance_id)
        if record is None:
            raise KeyError(instance_id)
        record.status = status
        record.result = result
        record.error = error
        self.save(record)

    def list_instances(self, status: InstanceStatus | None = None) -> list[InstanceRecord]:
        records = []
        for path in sorted(self.root.glob("*.json")):
            record = InstanceRecord.model_validate_json(path.read_text(encoding="utf-8"))
            if status is None or record.status == status:
                records.append(record)
        return records

    # ---- Events ----

    def send_event(self, instance_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        """Deliver an event to a running instance. Returns False if there is none."""
        record = self.load(instance_id)
        if record is None or record.status != InstanceStatus.RUNNING:
            return False
        event = EventRecord(type=event_type, payload=payload, received_at=utcnow())
        with open(self._events_path(instance_id), "a", encoding="utf-8") as f:
            f.write(event.model_dump_json() + "\n")
        for wakeup in self._listeners.get(instance_id, ()):
            wakeup.set()
        return True

    def events(self, instance_id: str) -> list[EventRecord]:
        path = self._events_path(instance_id)
        if not path.exists():
            return []
        return [
            EventRecord.model_validate_json(line)
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]

    @contextmanager
    def listen(self, instance_id: str) -> Iterator[asyncio.Event]:
        """In-process notification, set whenever an event is delivered to `instance_id`."""
        wakeup = asyncio.Event()
        listeners = self._listeners.setdefault(instance_id, set())
        listeners.add(wakeup)
        try:
            yield wakeup
        finally:
            listeners.discard(wakeup)


class FileDurableContext:
    """DurableContext persisting steps, timers and events in a WorkflowStore."""

    def __init__(
        self,
        store: WorkflowStore,
        instance_id: str,
        step_retries: int | None = None,
        retry_wait: wait_base | None = None,
        poll_interval: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.instance_id = instance_id
        self.step_retries = step_retries or settings.step_retries
        self.retry_wait = retry_wait or wait_exponential(min=2, max=60)
        self.poll_interval = poll_interval if poll_interval is not None else settings.event_poll_interval
        self._clock = clock

    def _record(self) -> InstanceRecord:
        record = self.store.load(self.instance_id)
        if record is None:
            raise KeyError(f"No journal for instance {self.instance_id}")
        return record

    async def do(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        record = self._record()
        if name in record.steps:
            logger.debug("%s: replaying step %r", self.instance_id, name)
            return record.steps[name]

        logger.info("%s: running step %r", self.instance_id, name)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.step_retries),
            wait=self.retry_wait,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "%s: retrying step %r (attempt %d)",
                        self.instance_id, name, attempt.retry_state.attempt_number,
                    )
                result = await fn()

        # Reload: nested timers may have been written while fn ran.
        record = self._record()
        record.steps[name] = result
        self.store.save(record)
        return result

    async def sleep(self, name: str, duration_ms: int) -> None:
        record = self._record()
        deadline = record.timers.get(name)
        if deadline is None:
            deadline = self._clock() + timedelta(milliseconds=duration_ms)
            record.timers[name] = deadline
            self.store.save(record)
        remaining = (deadline - self._clock()).total_seconds()
        if remaining > 0:
            logger.debug("%s: sleeping %.0fs for %r", self.instance_id, remaining, name)
            await asyncio.sleep(remaining)

    def timer_deadline(self, name: str) -> datetime | None:
        return self._record().timers.get(name)

    def peek_event(self, event_type: str) -> dict[str, Any] | None:
        for event in self.store.events(self.instance_id):
            if event.type == event_type:
                return event.payload
        return None

    async def wait_for_event(self, event_type: str) -> dict[str, Any]:
        # Polling also picks up events appended by another process.
        with self.store.listen(self.instance_id) as wakeup:
            while True:
                wakeup.clear()
                payload = self.peek_event(event_type)
                if payload is not None:
                    return payload
                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
