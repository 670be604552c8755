"""Durable execution primitives consumed by the tracking workflow."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from accelerator.models.schemas import STOP_EVENT, RaceOutcome, StopSignal

logger = logging.getLogger(__name__)


class DurableContext(Protocol):
    """Checkpointed execution for one workflow instance.

    Implementations must replay completed steps from their recorded result
    and keep timers and delivered events outside process memory.
    """

    async def do(self, name: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run `fn` once and record its JSON-serializable result under `name`."""
        ...

    async def sleep(self, name: str, duration_ms: int) -> None:
        """Wait until the deadline recorded for `name` (set on first call)."""
        ...

    async def wait_for_event(self, event_type: str) -> dict[str, Any]:
        """Return the payload of the first delivered event of `event_type`."""
        ...

    def timer_deadline(self, name: str) -> datetime | None: ...

    def peek_event(self, event_type: str) -> dict[str, Any] | None: ...


async def race_stop_signal(
    ctx: DurableContext,
    name: str,
    duration_ms: int,
    event_type: str = STOP_EVENT,
) -> RaceOutcome:
    """Wait for `duration_ms` unless a stop signal arrives first.

    The stop arm wins only when its signal is timestamped strictly before the
    timer deadline. The decision is recorded as step `name`, so a replay
    returns the same winner even if a signal arrived afterwards.
    """
    timer_name = f"{name}:timer"

    async def _race() -> dict[str, Any]:
        timer = asyncio.ensure_future(ctx.sleep(timer_name, duration_ms))
        stop = asyncio.ensure_future(ctx.wait_for_event(event_type))
        try:
            done, _ = await asyncio.wait({timer, stop}, return_when=asyncio.FIRST_COMPLETED)
            payload = stop.result() if stop in done else ctx.peek_event(event_type)
            if payload is not None:
                signal = StopSignal.model_validate(payload)
                deadline = ctx.timer_deadline(timer_name)
                if deadline is None or signal.timestamp < deadline:
                    logger.info("%s: stop signal (%s) won the race", name, signal.reason)
                    return RaceOutcome(winner="stop", signal=signal).model_dump(mode="json")
            stop.cancel()
            # A signal stamped after the deadline loses; the timer still runs out.
            await timer
        finally:
            for task in (timer, stop):
                if not task.done():
                    task.cancel()
            await asyncio.gather(timer, stop, return_exceptions=True)
        logger.info("%s: timer elapsed after %d ms", name, duration_ms)
        return RaceOutcome(winner="timer").model_dump(mode="json")

    return RaceOutcome.model_validate(await ctx.do(name, _race))
