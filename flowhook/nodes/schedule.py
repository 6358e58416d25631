"""Schedule trigger node.

Entry point of workflows started on a timer instead of a webhook. The
node's config says when the workflow is due:

    {"triggerType": "interval", "interval": "hours", "intervalValue": 2}
    {"triggerType": "interval", "interval": "days", "triggerAt": {"hour": 9, "minute": 0}}
    {"triggerType": "cron", "cronExpression": "30 9 * * 1"}

``is_due`` decides whether a run should start now, given the time of the
workflow's last scheduled run. Cron fields are plain numbers or ``*``.
"""

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from flowhook.config import get_settings
from flowhook.core.router import NodeInputs
from flowhook.models.execution import TriggerEvent
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.models.workflow import NodeKind
from flowhook.nodes.base import BaseNode, NodeContext

logger = structlog.get_logger()

SCHEDULE_TRIGGER_TYPE = "schedule"
DEFAULT_CRON = "0 * * * *"
# Intervals that fire only at their configured triggerAt time of day
CALENDAR_INTERVALS = ("days", "weeks", "months")


def schedule_zone(config: dict[str, Any]) -> ZoneInfo:
    """Get the timezone a schedule is evaluated in."""
    name = config.get("timezone") or get_settings().template_timezone
    try:
        return ZoneInfo(str(name))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("schedule_timezone_unknown", timezone=name)
        return ZoneInfo(get_settings().template_timezone)


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _at_trigger_time(config: dict[str, Any], now: datetime) -> bool:
    trigger_at = config.get("triggerAt") or {}
    if not isinstance(trigger_at, dict):
        trigger_at = {}
    return now.hour == _int(trigger_at.get("hour"), 0) and now.minute == _int(
        trigger_at.get("minute"), 0
    )


def _whole_months(start: datetime, end: datetime) -> int:
    months = (end.year - start.year) * 12 + end.month - start.month
    if (end.day, end.time()) < (start.day, start.time()):
        months -= 1
    return months


def _cron_field_matches(field: str, value: int) -> bool:
    if field == "*":
        return True
    return field.isdigit() and int(field) == value


def cron_matches(expression: str, now: datetime) -> bool:
    """Check a five-field cron expression against the current minute.

    Weekdays count from 0 (Sunday). Fields other than numbers or ``*``
    never match.
    """
    parts = str(expression).split()
    if len(parts) < 5:
        return False
    minute, hour, day, month, weekday = parts[:5]
    return (
        _cron_field_matches(minute, now.minute)
        and _cron_field_matches(hour, now.hour)
        and _cron_field_matches(day, now.day)
        and _cron_field_matches(month, now.month)
        and _cron_field_matches(weekday, now.isoweekday() % 7)
    )


def is_due(
    config: dict[str, Any],
    last_run: datetime | None,
    now: datetime | None = None,
) -> bool:
    """Decide whether a schedule trigger should start a run now.

    Args:
        config: Schedule node config
        last_run: Start of the workflow's last scheduled run, if any
        now: Current time (default: now)

    Returns:
        True when the workflow is due
    """
    zone = schedule_zone(config)
    now = (now or datetime.now(timezone.utc)).astimezone(zone)
    last = last_run.astimezone(zone) if last_run is not None else None

    if config.get("triggerType") == "cron":
        if last is not None and (now - last).total_seconds() < 60:
            return False
        return cron_matches(config.get("cronExpression") or DEFAULT_CRON, now)

    interval = config.get("interval") or "hours"
    value = _int(config.get("intervalValue"), 1)

    if last is None:
        if interval in CALENDAR_INTERVALS:
            return _at_trigger_time(config, now)
        return True

    elapsed = now - last
    if interval == "minutes":
        return elapsed.total_seconds() // 60 >= value
    if interval == "hours":
        return elapsed.total_seconds() // 3600 >= value
    if interval == "days":
        return elapsed.days >= value and _at_trigger_time(config, now)
    if interval == "weeks":
        return elapsed.days // 7 >= value and _at_trigger_time(config, now)
    if interval == "months":
        return _whole_months(last, now) >= value and _at_trigger_time(config, now)
    return False


def schedule_event(config: dict[str, Any], now: datetime | None = None) -> TriggerEvent:
    """Build the trigger event of a scheduled run."""
    now = (now or datetime.now(timezone.utc)).astimezone(schedule_zone(config))
    return TriggerEvent(
        method="POST",
        url="/schedule",
        body={
            "triggeredAt": now.isoformat(),
            "triggerType": SCHEDULE_TRIGGER_TYPE,
            "schedule": dict(config),
        },
    )


class ScheduleTriggerNode(BaseNode[dict[str, Any]]):
    """Timer entry point.

    Output:
        {"triggeredAt", "triggerType": "schedule", "schedule": <config>}
    """

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="schedule",
            display_name="Schedule Trigger",
            description="Starts the workflow on an interval or cron schedule",
            category=NodeCategory.TRIGGER,
            kind=NodeKind.SCHEDULE,
            aliases=["scheduleTrigger"],
            tags=["schedule", "cron", "trigger"],
        )

    async def execute(
        self,
        config: dict[str, Any],
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Return the schedule details of the run."""
        body = context.trigger.body
        if isinstance(body, dict) and body.get("triggerType") == SCHEDULE_TRIGGER_TYPE:
            return dict(body)
        # Manual and test runs report the current time
        return schedule_event(config).body
