"""Delay nodes.

The engine never sleeps. A delay node returns PAUSED with ``resumeAt`` and
an external scheduler resumes the execution when that moment arrives.
wait_for_event returns WAITING until an external event (or its timeout)
resumes the run.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from core.constants import TimeUnit
from core.utils import parse_datetime, to_number
from handlers.base_handler import NodeHandler
from workflow.models import DEFAULT_OUTCOME, ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

TIMEOUT_OUTCOME = "timeout"

_UNIT_DELTAS = {
    TimeUnit.MINUTES: lambda n: timedelta(minutes=n),
    TimeUnit.HOURS: lambda n: timedelta(hours=n),
    TimeUnit.DAYS: lambda n: timedelta(days=n),
    TimeUnit.WEEKS: lambda n: timedelta(weeks=n),
}


def _is_naive(raw) -> bool:
    """Whether a target date carries no UTC offset of its own."""
    if isinstance(raw, datetime):
        return raw.tzinfo is None
    if not isinstance(raw, str) or raw.strip().endswith("Z"):
        return False
    try:
        return datetime.fromisoformat(raw.strip()).tzinfo is None
    except ValueError:
        return True


def duration_delta(duration, unit) -> timedelta:
    """timedelta for a (duration, unit) pair.

    Raises:
        ValueError: Non-numeric or negative duration, or unknown unit
    """
    amount = to_number(duration)
    if amount is None or amount < 0:
        raise ValueError(f"Invalid wait duration: {duration}")
    try:
        time_unit = TimeUnit(str(unit or TimeUnit.MINUTES.value).upper())
    except ValueError:
        raise ValueError(f"Invalid wait unit: {unit}")
    return _UNIT_DELTAS[time_unit](amount)


class DelayHandler(NodeHandler):
    """Time and event based suspensions."""

    node_type = "delay"
    display_name = "Delay"

    def operations(self):
        return {
            "wait_duration": self._wait_duration,
            "wait_until_date": self._wait_until_date,
            "wait_for_event": self._wait_for_event,
            "schedule_action": self._schedule_action,
        }

    def _early(self, context: ExecutionContext) -> bool:
        """A resume arrived before the stored resumeAt and the clock is re-checked."""
        if not self.services.settings.DELAY_RECHECK_CLOCK:
            return False
        resume_at = context.get_variable("resumeAt")
        if not resume_at:
            return False
        try:
            return parse_datetime(resume_at) > self.now()
        except ValueError:
            return False

    async def _wait_duration(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        now = self.now()

        if context.is_resuming:
            if self._early(context):
                resume_at = parse_datetime(context.get_variable("resumeAt"))
                logger.info("Resumed before delay elapsed, pausing again", node_id=node.id, resume_at=resume_at.isoformat())
                return ExecutionResult.paused(
                    {
                        "paused": True,
                        "resumeAt": resume_at.isoformat(),
                        "delayMs": int((resume_at - now).total_seconds() * 1000),
                    }
                )
            return ExecutionResult.ok({"waited": True, "resumedAt": now.isoformat()})

        duration = self.resolve_value(config.get("duration"), context)
        unit = str(config.get("unit") or TimeUnit.MINUTES.value).upper()
        try:
            delta = duration_delta(duration, unit)
        except ValueError as e:
            return ExecutionResult.failed(str(e))

        resume_at = now + delta
        logger.info("Pausing for duration", node_id=node.id, duration=duration, unit=unit, resume_at=resume_at.isoformat())
        return ExecutionResult.paused(
            {
                "paused": True,
                "resumeAt": resume_at.isoformat(),
                "waitDuration": duration,
                "waitUnit": unit,
                "delayMs": int(delta.total_seconds() * 1000),
            }
        )

    async def _wait_until_date(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        raw = self.resolve_value(config.get("targetDate"), context)
        try:
            target = parse_datetime(raw)
        except ValueError:
            return ExecutionResult.failed(f"Invalid target date format: {raw}")

        tz_name = config.get("timezone")
        if tz_name and _is_naive(raw):
            try:
                target = target.replace(tzinfo=ZoneInfo(str(tz_name)))
            except (ZoneInfoNotFoundError, ValueError):
                return ExecutionResult.failed(f"Unknown timezone: {tz_name}")

        now = self.now()
        if target > now and (not context.is_resuming or self.services.settings.DELAY_RECHECK_CLOCK):
            logger.info("Waiting until date", node_id=node.id, target=target.isoformat())
            return ExecutionResult.paused(
                {
                    "paused": True,
                    "targetDate": target.isoformat(),
                    "resumeAt": target.isoformat(),
                    "delayMs": int((target - now).total_seconds() * 1000),
                }
            )

        return ExecutionResult.ok({"waited": True, "targetDate": target.isoformat(), "resumedAt": now.isoformat()})

    async def _wait_for_event(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        now = self.now()

        if context.is_resuming:
            timed_out = context.resume_reason == TIMEOUT_OUTCOME
            deadline = context.get_variable("eventTimeout")
            if not timed_out and deadline:
                try:
                    timed_out = parse_datetime(deadline) <= now
                except ValueError:
                    timed_out = False
            if timed_out:
                logger.info("Event wait timed out", node_id=node.id, event_type=context.get_variable("waitingForEvent"))
                return ExecutionResult.ok(
                    {"eventReceived": False, "timedOut": True, "waitingForEvent": None},
                    outcome=TIMEOUT_OUTCOME,
                )
            return ExecutionResult.ok(
                {
                    "eventReceived": True,
                    "timedOut": False,
                    "eventData": context.get_variable("eventData"),
                    "waitingForEvent": None,
                },
                outcome=DEFAULT_OUTCOME,
            )

        event_type = self.resolve(config.get("eventType"), context)
        timeout_minutes = to_number(config.get("timeoutMinutes"))
        output = {
            "paused": True,
            "waitingForEvent": event_type,
            "eventCondition": self.resolve_map(config.get("eventCondition"), context),
            "eventTimeout": None,
        }
        if timeout_minutes:
            output["eventTimeout"] = (now + timedelta(minutes=timeout_minutes)).isoformat()

        logger.info("Waiting for event", node_id=node.id, event_type=event_type, timeout=output["eventTimeout"])
        return ExecutionResult.waiting(output)

    async def _schedule_action(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        raw = self.resolve_value(config.get("scheduleTime"), context)
        try:
            schedule_time = parse_datetime(raw)
        except ValueError:
            return ExecutionResult.failed(f"Invalid schedule time: {raw}")

        schedule_id = f"sched_{context.execution_id}_{node.id}"
        logger.info("Action scheduled", node_id=node.id, schedule_id=schedule_id, at=schedule_time.isoformat())
        return ExecutionResult.ok(
            {
                "scheduled": True,
                "scheduleId": schedule_id,
                "scheduleTime": schedule_time.isoformat(),
                "actionType": config.get("actionType"),
                "actionConfig": self.resolve_map(config.get("actionConfig"), context),
            }
        )


DELAY_HANDLERS = {
    "delay": DelayHandler,
}
