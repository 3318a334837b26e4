"""Application services."""

from mailpush.application.services.credentials import authorize_registration
from mailpush.application.services.digest_formatter import (DIGEST_LINE_LIMIT,
                                                            format_digest)
from mailpush.application.services.subscription_manager import (
    SubscriptionManager, needs_renewal)

__all__ = [
    "authorize_registration",
    "DIGEST_LINE_LIMIT",
    "format_digest",
    "SubscriptionManager",
    "needs_renewal",
]
