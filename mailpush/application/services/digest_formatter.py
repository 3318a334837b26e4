"""
Digest formatting for pending-mail notifications.

Turns the pending queue into one alert. Up to DIGEST_LINE_LIMIT emails are
listed line by line; beyond that the alert collapses into a count plus the
senders, so a burst of mail never produces an unreadable notification.
"""

from collections import Counter
from collections.abc import Iterable

from mailpush.domain.entities import NotificationContent, PendingEvent
from mailpush.shared.utils import ensure_utc

APP_NAME = "Sweep"
DIGEST_LINE_LIMIT = 3
EMPTY_BODY = "No new emails"
BULLET = "•"


def _by_recency(events: Iterable[PendingEvent]) -> list[PendingEvent]:
    # sorted() is stable, so events with equal timestamps keep queue order
    return sorted(events, key=lambda event: ensure_utc(event.timestamp), reverse=True)


def format_digest(events: Iterable[PendingEvent], title: str = APP_NAME) -> NotificationContent:
    """
    Format pending events, newest first.

    >>> format_digest([]).body
    'No new emails'
    """
    ordered = _by_recency(events)

    if not ordered:
        return NotificationContent(title=title, body=EMPTY_BODY)

    if len(ordered) <= DIGEST_LINE_LIMIT:
        lines = [f"{BULLET} {event.sender}: {event.subject}" for event in ordered]
        return NotificationContent(title=title, body="\n".join(lines))

    # Counter preserves first-insertion order, i.e. most recent sender first
    counts = Counter(event.sender for event in ordered)
    senders = [
        f"{sender} ({count})" if count > 1 else sender
        for sender, count in counts.items()
    ]
    body = f" {BULLET} ".join([f"{len(ordered)} new emails", *senders])
    return NotificationContent(title=title, body=body)
