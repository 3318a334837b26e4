"""Mail provider integration package"""
from mailpush.infrastructure.external.email.factory import MailProviderFactory
from mailpush.infrastructure.external.email.oauth_manager import UnifiedOAuthManager

__all__ = ["MailProviderFactory", "UnifiedOAuthManager"]
