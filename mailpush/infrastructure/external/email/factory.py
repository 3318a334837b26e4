"""Mail provider factory for instantiating providers"""

from typing import ClassVar

from mailpush.application.interfaces import IMailProvider
from mailpush.domain.enums import ProviderKind
from mailpush.infrastructure.config.settings import Settings
from mailpush.infrastructure.external.email.providers import (GmailProvider,
                                                              OutlookProvider)
from mailpush.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class MailProviderFactory:
    """Factory for creating mail provider instances"""

    _providers: ClassVar[dict[ProviderKind, type]] = {
        ProviderKind.GMAIL: GmailProvider,
        ProviderKind.OUTLOOK: OutlookProvider,
    }

    @classmethod
    def create_provider(cls, kind: ProviderKind | str, settings: Settings | None = None) -> IMailProvider:
        """
        Create provider instance for a provider kind.

        Raises:
            ValueError: If the provider kind is not supported
        """
        try:
            kind = ProviderKind(kind)
        except ValueError:
            raise ValueError(
                f"Unsupported provider: {kind}. Supported: {cls.list_supported_providers()}"
            ) from None

        provider_class = cls._providers.get(kind)
        if not provider_class:
            raise ValueError(
                f"Unsupported provider: {kind.value}. Supported: {cls.list_supported_providers()}"
            )

        logger.debug("Creating %s", provider_class.__name__)
        return provider_class(settings=settings)

    @classmethod
    def create_all(cls, settings: Settings | None = None) -> dict[ProviderKind, IMailProvider]:
        return {kind: cls.create_provider(kind, settings) for kind in cls._providers}

    @classmethod
    def list_supported_providers(cls) -> list[str]:
        return [kind.value for kind in cls._providers]
