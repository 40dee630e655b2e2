"""
Cron helpers: trigger construction, next fire time and readable descriptions.
"""

import re
from datetime import datetime, timezone

from apscheduler.triggers.cron import CronTrigger

_COMMON_SCHEDULES = {
    "*/15 * * * *": "Every 15 minutes",
    "*/30 * * * *": "Every 30 minutes",
    "0 * * * *": "Every hour",
    "0 */2 * * *": "Every 2 hours",
    "0 */6 * * *": "Every 6 hours",
    "0 0 * * *": "Daily at midnight",
    "0 3 * * *": "Daily at 3:00 AM",
    "0 0 * * 0": "Weekly on Sunday at midnight",
}

_WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
_CRON_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _weekday_names(field: str) -> str:
    # APScheduler numbers weekdays from Monday; crontab numbers them from Sunday
    return re.sub(r"(?<![/\d])\d+", lambda m: _CRON_WEEKDAYS[int(m.group()) % 7], field)


def build_trigger(expression: str, tz=timezone.utc) -> CronTrigger:
    """CronTrigger for a standard 5-field expression. Raises ValueError if invalid."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Wrong number of fields; got {len(fields)}, expected 5")
    minute, hour, day, month, weekday = fields
    return CronTrigger(
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_weekday_names(weekday),
        timezone=tz,
    )


def is_valid(expression: str) -> bool:
    try:
        build_trigger(expression)
    except ValueError:
        return False
    return True


def next_run_time(expression: str, now: datetime | None = None) -> datetime | None:
    """Next time the expression fires after now, or None if it never will."""
    trigger = build_trigger(expression)
    return trigger.get_next_fire_time(None, now or datetime.now(timezone.utc))


def describe_schedule(expression: str) -> str:
    expression = expression.strip()
    if not is_valid(expression):
        return "Invalid cron expression"
    if expression in _COMMON_SCHEDULES:
        return _COMMON_SCHEDULES[expression]

    minute, hour, day, month, weekday = expression.split()[:5]

    if minute == "*":
        description = "Every minute"
    elif minute.startswith("*/"):
        description = f"Every {minute[2:]} minutes"
    else:
        description = f"At minute {minute}"

    if hour != "*":
        if hour.startswith("*/"):
            description += f", every {hour[2:]} hours"
        else:
            description += f" past hour {hour}"
    if day != "*":
        description += f", on day {day}"
    if month != "*":
        description += f", in month {month}"
    if weekday != "*":
        if weekday.isdigit():
            description += f", on {_WEEKDAYS[int(weekday) % 7]}"
        else:
            description += f", on weekday {weekday}"
    return description
