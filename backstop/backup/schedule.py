"""
Secondary destination schedule gate.

The primary backup runs on every invocation; only the secondary path is
gated. Granularity is the UTC hour: every invocation inside the scheduled
hour is due.
"""

from datetime import datetime, timezone


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def utc_day_of_week(now: datetime) -> int:
    """Day of week with 0 = Sunday."""
    return (_as_utc(now).weekday() + 1) % 7


def is_due(config, now: datetime) -> bool:
    """
    Decide whether the secondary backup is due at ``now``.

    An unset hour or day matches any value.

    Args:
        config: BackupConfig (schedule_type, schedule_hour_utc, schedule_day_of_week)
        now: Current time (naive values are taken as UTC)
    """
    now = _as_utc(now)
    hour_matches = config.schedule_hour_utc is None or config.schedule_hour_utc == now.hour

    if config.schedule_type == 'weekly':
        day_matches = config.schedule_day_of_week is None or config.schedule_day_of_week == utc_day_of_week(now)
        return day_matches and hour_matches

    return hour_matches


def ran_in_current_slot(last_run_at, now: datetime) -> bool:
    """True if last_run_at falls in the same UTC date and hour as now."""
    if last_run_at is None:
        return False
    last = _as_utc(last_run_at)
    now = _as_utc(now)
    return (last.date(), last.hour) == (now.date(), now.hour)
