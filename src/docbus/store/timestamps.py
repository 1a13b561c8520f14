"""
Canonical timestamps.

Stored documents and poller watermarks use the legacy wire format
yyyy-MM-ddTHH:mm:ss.SSS+02:00: the instant rendered in a fixed UTC+2
offset, regardless of the host timezone. Existing stored data and
consumers depend on that offset, so it is kept.
"""

from datetime import datetime, timedelta, timezone

TIMESTAMP_FIELD = "datetime"

LEGACY_UTC_OFFSET = timezone(timedelta(hours=2))

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current instant, truncated to the store's millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def format_timestamp(instant: datetime, offset: timezone = LEGACY_UTC_OFFSET) -> str:
    """
    Render an instant in canonical form.

    Naive datetimes are taken as UTC (that is what the driver returns
    unless tz_aware is set).
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(offset)
    utc_offset = local.strftime("%z")
    return (
        local.strftime("%Y-%m-%dT%H:%M:%S")
        + f".{local.microsecond // 1000:03d}"
        + f"{utc_offset[:3]}:{utc_offset[3:5]}"
    )


def now_timestamp() -> str:
    return format_timestamp(utc_now())


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp with offset (or Z) into an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def datetime_from_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


def timestamp_from_millis(millis: int) -> str:
    """Canonical timestamp for epoch milliseconds."""
    return format_timestamp(datetime_from_millis(millis))


def millis_from_datetime(instant: datetime) -> int:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return (instant - _EPOCH) // timedelta(milliseconds=1)
