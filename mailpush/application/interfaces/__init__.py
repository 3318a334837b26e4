from mailpush.application.interfaces.services import (IMailProvider,
                                                      IPendingEventStore,
                                                      IPushDispatcher,
                                                      IRegistrationStore)

__all__ = [
    "IMailProvider",
    "IPendingEventStore",
    "IPushDispatcher",
    "IRegistrationStore",
]
