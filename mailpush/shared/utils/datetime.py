"""Timezone-aware datetime helpers. Everything stored or compared is UTC."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_timestamp_ms_utc(value: int | str) -> datetime:
    """Convert milliseconds since the epoch (Gmail internalDate, watch expiration) to UTC."""
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def parse_iso8601(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp as returned by Microsoft Graph.

    Graph uses a trailing 'Z' and up to seven fractional digits
    (e.g. 2024-05-01T10:00:00.1234567Z), which datetime.fromisoformat
    rejects on older interpreters, so the fraction is trimmed to microseconds.
    """
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for ch in rest:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    return ensure_utc(datetime.fromisoformat(text))


def isoformat_z(value: datetime) -> str:
    """Render as ISO-8601 UTC with millisecond precision and a 'Z' suffix."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
