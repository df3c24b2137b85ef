"""Scheduled trigger nodes: one-off dates, offsets from a record date, recurrences.

Each subtype computes when it is due. Before that moment the node returns
PAUSED with ``resumeAt`` so an external scheduler can resume the run; at
or after it the node succeeds. When ``DELAY_RECHECK_CLOCK`` is on, a resume
that arrives early pauses again instead of trusting the caller.
"""

import calendar
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from croniter import croniter

from core.utils import parse_datetime
from handlers.base_handler import NodeHandler
from workflow.models import ExecutionContext, ExecutionResult, Node

logger = structlog.get_logger(__name__)

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

ENDED_OUTCOME = "ended"


def next_cron_run(expression: str, now: datetime, tz: str = "UTC") -> datetime:
    """Next fire time of a cron expression after now, evaluated in tz, returned in UTC."""
    tz_obj = ZoneInfo(tz)
    cron = croniter(expression, now.astimezone(tz_obj))
    return cron.get_next(datetime).astimezone(ZoneInfo("UTC"))


def _parse_time(time_of_day: Any) -> tuple:
    parts = str(time_of_day or "00:00").split(":")
    hour = int(parts[0]) if parts[0].strip() else 0
    minute = int(parts[1]) if len(parts) > 1 and parts[1].strip() else 0
    return hour, minute


def _add_months(value: datetime, months: int, day: Optional[int] = None) -> datetime:
    total = value.month - 1 + months
    year, month = value.year + total // 12, total % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day or value.day, last_day))


def calculate_next_run(
    frequency: str,
    interval: int,
    from_date: datetime,
    days_of_week: Optional[list] = None,
    day_of_month: Optional[int] = None,
    time_of_day: str = "00:00",
) -> datetime:
    """Next occurrence of a recurrence strictly after ``from_date``'s day.

    Weekly schedules with ``days_of_week`` pick the next listed weekday in
    the same week, else the first listed weekday ``interval`` weeks later.
    Monthly ``day_of_month`` is clamped to the month's length.
    """
    hour, minute = _parse_time(time_of_day)
    interval = max(1, int(interval or 1))
    frequency = str(frequency or "daily").lower()

    if frequency == "weekly":
        targets = sorted({WEEKDAYS[d.lower()] for d in days_of_week or [] if str(d).lower() in WEEKDAYS})
        if targets:
            weekday = from_date.weekday()
            later = [d for d in targets if d > weekday]
            if later:
                candidate = from_date + timedelta(days=later[0] - weekday)
            else:
                week_start = from_date - timedelta(days=weekday) + timedelta(weeks=interval)
                candidate = week_start + timedelta(days=targets[0])
        else:
            candidate = from_date + timedelta(weeks=interval)
    elif frequency == "monthly":
        candidate = _add_months(from_date, interval, int(day_of_month) if day_of_month else None)
    elif frequency == "yearly":
        candidate = _add_months(from_date, 12 * interval)
    else:
        if frequency != "daily":
            logger.warning("Unknown recurrence frequency, using daily", frequency=frequency)
        candidate = from_date + timedelta(days=interval)

    return candidate.replace(hour=hour, minute=minute, second=0, microsecond=0)


class ScheduledTriggerHandler(NodeHandler):
    """Time-gated triggers: scheduled, date_based, recurring."""

    node_type = "scheduled"
    display_name = "Scheduled Trigger"

    def operations(self):
        return {
            "scheduled": self._scheduled,
            "date_based": self._date_based,
            "recurring": self._recurring,
        }

    def _should_wait(self, context: ExecutionContext) -> bool:
        return not context.is_resuming or self.services.settings.DELAY_RECHECK_CLOCK

    async def _scheduled(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        raw = self.resolve_value(config.get("scheduledDate"), context)
        now = self.now()

        if not raw and config.get("schedule"):
            # Cron schedules are fired by the external scheduler at the right time
            schedule = str(config["schedule"])
            try:
                next_run = next_cron_run(schedule, now, config.get("timezone") or "UTC")
            except (ValueError, KeyError, ZoneInfoNotFoundError) as e:
                return ExecutionResult.failed(f"Invalid cron schedule {schedule}: {e}")
            return ExecutionResult.ok(
                {
                    "scheduled": True,
                    "schedule": schedule,
                    "status": "executed",
                    "executedAt": now.isoformat(),
                    "nextRun": next_run.isoformat(),
                }
            )

        try:
            due = parse_datetime(raw)
        except ValueError:
            return ExecutionResult.failed(f"Invalid scheduled date: {raw}")

        if due > now and self._should_wait(context):
            logger.info("Scheduled time not yet reached", node_id=node.id, resume_at=due.isoformat())
            return ExecutionResult.paused(
                {
                    "scheduled": True,
                    "scheduledDate": due.isoformat(),
                    "resumeAt": due.isoformat(),
                    "delayMs": int((due - now).total_seconds() * 1000),
                    "status": "pending",
                }
            )

        return ExecutionResult.ok(
            {
                "scheduled": True,
                "scheduledDate": due.isoformat(),
                "executedAt": now.isoformat(),
                "status": "executed",
            }
        )

    async def _date_based(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        date_field = config.get("dateField")
        base_value = self.lookup(date_field, context)
        if base_value in (None, ""):
            return ExecutionResult.failed(f"Date field '{date_field}' not found in context")

        try:
            base_date = parse_datetime(base_value)
        except ValueError:
            return ExecutionResult.failed(f"Invalid date in field '{date_field}': {base_value}")

        offset_days = abs(int(config.get("offsetDays", 0) or 0))
        offset_type = str(config.get("offsetType", "before")).lower()
        days = -offset_days if offset_type == "before" else offset_days
        trigger_date = base_date + timedelta(days=days)
        now = self.now()

        output = {
            "baseDate": base_date.isoformat(),
            "triggerDate": trigger_date.isoformat(),
            "offsetDays": offset_days,
            "offsetType": offset_type,
        }
        if trigger_date > now and self._should_wait(context):
            output.update(shouldTrigger=False, status="pending", resumeAt=trigger_date.isoformat())
            logger.info("Date-based trigger not yet due", node_id=node.id, trigger_date=trigger_date.isoformat())
            return ExecutionResult.paused(output)

        output.update(shouldTrigger=True, status="triggered")
        return ExecutionResult.ok(output)

    async def _recurring(self, node: Node, context: ExecutionContext) -> ExecutionResult:
        config = node.config
        frequency = str(config.get("frequency", "daily")).lower()
        interval = int(config.get("interval", 1) or 1)
        days_of_week = config.get("daysOfWeek")
        day_of_month = config.get("dayOfMonth")
        time_of_day = config.get("timeOfDay", "00:00")
        now = self.now()

        start_raw = self.resolve_value(config.get("startDate"), context)
        end_raw = self.resolve_value(config.get("endDate"), context)
        try:
            start = parse_datetime(start_raw) if start_raw else now
            end = parse_datetime(end_raw) if end_raw else None
        except ValueError as e:
            return ExecutionResult.failed(f"Recurring trigger failed: {e}")

        if end is not None and now > end:
            logger.info("Recurring schedule has ended", node_id=node.id, end_date=end.isoformat())
            return ExecutionResult.ok({"status": "ended", "endDate": end.isoformat()}, outcome=ENDED_OUTCOME)

        hour, minute = _parse_time(time_of_day)
        due = start.replace(hour=hour, minute=minute, second=0, microsecond=0)
        stored = context.get_variable("nextRun") if context.is_resuming else None
        if stored:
            due = parse_datetime(stored)

        summary = {"frequency": frequency, "interval": interval, "startDate": start.isoformat()}
        if end is not None:
            summary["endDate"] = end.isoformat()

        if due > now and self._should_wait(context):
            status = "pending" if stored else "not_started"
            logger.info("Recurring trigger not yet due", node_id=node.id, next_run=due.isoformat())
            return ExecutionResult.paused(
                {**summary, "status": status, "shouldRun": False, "nextRun": due.isoformat(), "resumeAt": due.isoformat()}
            )

        next_occurrence = calculate_next_run(frequency, interval, due, days_of_week, day_of_month, time_of_day)
        output = {
            **summary,
            "status": "triggered",
            "shouldRun": True,
            "executedAt": now.isoformat(),
            "nextRun": next_occurrence.isoformat(),
            "nextOccurrence": next_occurrence.isoformat(),
        }
        if end is not None and next_occurrence > end:
            output["lastOccurrence"] = True
        return ExecutionResult.ok(output)
