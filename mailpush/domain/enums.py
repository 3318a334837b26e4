"""Domain enumerations."""

from enum import Enum


class ProviderKind(str, Enum):
    """Mail provider families supported for push notifications"""

    GMAIL = "gmail"
    OUTLOOK = "outlook"


class SignalOutcome(str, Enum):
    """Result of processing one inbound provider signal"""

    NOTIFIED = "notified"  # events appended and a push was attempted
    NO_NEW_MAIL = "no_new_mail"
    RESYNCED = "resynced"  # cursor was re-baselined
    DROPPED = "dropped"  # unknown user / subscription or rejected clientState
    FAILED = "failed"
