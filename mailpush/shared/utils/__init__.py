from mailpush.shared.utils.datetime import (
    ensure_utc,
    from_timestamp_ms_utc,
    isoformat_z,
    parse_iso8601,
    utc_now,
)
from mailpush.shared.utils.threads import run_in_thread

__all__ = [
    "utc_now",
    "ensure_utc",
    "from_timestamp_ms_utc",
    "parse_iso8601",
    "isoformat_z",
    "run_in_thread",
]
