"""Device registration model: one row per (account email, provider)"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from mailpush.infrastructure.persistence.database import Base


class UserRegistrationModel(Base):
    """
    Push registration and provider state for one mailbox.

    The composite primary key guarantees at most one live registration
    per (email, provider). Credential material (refresh token and cached
    access token) is stored Fernet-encrypted; cursor and subscription
    columns stay in plain text because notifications are routed by them.
    """

    __tablename__ = "user_registration"

    email: Mapped[str] = mapped_column(String, primary_key=True)
    provider: Mapped[str] = mapped_column(String, primary_key=True)  # gmail, outlook

    device_token: Mapped[str] = mapped_column(String, nullable=False)

    # Encrypted credentials (Fernet)
    credentials_encrypted: Mapped[str] = mapped_column(String, nullable=False)

    # Gmail: resumable history cursor
    history_id: Mapped[str | None] = mapped_column(String, nullable=True)

    # Outlook: Graph subscription
    subscription_id: Mapped[str | None] = mapped_column(
        String, nullable=True, unique=True, index=True
    )
    client_state: Mapped[str | None] = mapped_column(String, nullable=True)

    # Watch / subscription expiry
    expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # [{sender, subject, timestamp, message_id?}] in insertion order
    pending_events: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<UserRegistration(email={self.email}, "
            f"provider={self.provider}, "
            f"pending={len(self.pending_events or [])})>"
        )
