"""
Subscription models for LangQuest.

Defines UserSubscription, written only by the subscription event
processor, and ProcessedWebhookEvent, the durable idempotency ledger.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from sqlalchemy import Integer, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from langquest.core.database import Base


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes coming back from the store as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserSubscription(Base):
    """
    Payment-provider subscription mirrored for one user.
    """
    __tablename__ = "user_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_price_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<UserSubscription(user_id={self.user_id}, subscription={self.stripe_subscription_id})>"

    def is_active(self, grace_period: timedelta, now: Optional[datetime] = None) -> bool:
        """Active while a price is set and the period end plus grace lies in the future."""
        if not self.stripe_price_id or self.stripe_current_period_end is None:
            return False
        now = now or datetime.now(timezone.utc)
        return as_utc(self.stripe_current_period_end) + grace_period > now


class ProcessedWebhookEvent(Base):
    """
    Ledger of payment events already handled, keyed by the provider's event id.
    """
    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent(event_id={self.event_id}, outcome={self.outcome})>"
