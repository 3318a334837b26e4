"""Mail provider implementations"""

from mailpush.infrastructure.external.email.providers.gmail_provider import GmailProvider
from mailpush.infrastructure.external.email.providers.outlook_provider import OutlookProvider

__all__ = ["GmailProvider", "OutlookProvider"]
