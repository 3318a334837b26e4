"""Push delivery to iOS devices"""
from mailpush.infrastructure.external.push.apns_dispatcher import (
    ApnsDispatcher, ProviderTokenCache)

__all__ = ["ApnsDispatcher", "ProviderTokenCache"]
