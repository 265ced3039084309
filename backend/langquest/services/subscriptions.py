"""
Subscription event processor.

Consumes payment-provider webhook deliveries and mirrors subscription
state into UserSubscription. Deliveries are at-least-once and may arrive
out of order, so every event goes through:

    signature check -> ledger check -> handler -> ledger record

- Bad signature: 400, not recorded, so a genuine retry can still succeed.
- Already in the ledger: 200, nothing happens.
- Missing correlation or required fields: 200, recorded as skipped.
- Constraint violation while persisting: 200, recorded (another delivery
  already applied the effect).
- Any other persistence or provider failure: 500, not recorded, so the
  provider redelivers.

The ledger row is committed in the same transaction as the subscription
change.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional
import logging

import stripe
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from langquest.core.config import settings
from langquest.models.subscription import ProcessedWebhookEvent, UserSubscription
from langquest.services.payments import (
    SignatureVerificationError,
    StripeGateway,
    field_of,
    object_id,
)


logger = logging.getLogger(__name__)


CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAID_EVENTS = frozenset({
    "invoice.payment_succeeded",
    "invoice_payment.paid",
    "invoice.paid",
})

USER_ID_METADATA_KEY = "userId"

# Outcomes
APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"
DUPLICATE = "duplicate"
REJECTED = "rejected"
FAILED = "failed"


class EventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: str
    type: str
    data: EventData = Field(default_factory=EventData)


@dataclass
class WebhookResult:
    status_code: int
    outcome: str
    detail: Optional[str] = None


def is_constraint_violation(error: Exception) -> bool:
    """Uniqueness and other integrity-class (SQLSTATE 23xxx) database errors."""
    if isinstance(error, IntegrityError):
        return True

    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code and str(code).startswith("23"):
        return True

    diag = getattr(orig, "diag", None)
    return bool(getattr(diag, "constraint_name", None))


def get_subscription(db: Session, user_id: str) -> Optional[UserSubscription]:
    return db.execute(
        select(UserSubscription).where(UserSubscription.user_id == user_id)
    ).scalar_one_or_none()


def subscription_status(db: Session, user_id: str) -> Optional[Dict[str, Any]]:
    """The user's stored subscription with its active flag, or None."""
    subscription = get_subscription(db, user_id)
    if subscription is None:
        return None
    grace = timedelta(days=settings.SUBSCRIPTION_GRACE_PERIOD_DAYS)
    return {
        "user_id": subscription.user_id,
        "stripe_customer_id": subscription.stripe_customer_id,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "stripe_price_id": subscription.stripe_price_id,
        "stripe_current_period_end": subscription.stripe_current_period_end,
        "is_active": subscription.is_active(grace)
    }


class IdempotencyLedger:
    """Durable record of processed event ids."""

    def __init__(self, db: Session):
        self.db = db

    def contains(self, event_id: str) -> bool:
        return self.db.get(ProcessedWebhookEvent, event_id) is not None

    def record(self, event: WebhookEvent, outcome: str) -> None:
        """Stage the ledger row in the current transaction."""
        self.db.add(ProcessedWebhookEvent(
            event_id=event.id,
            event_type=event.type,
            outcome=outcome
        ))

    def record_now(self, event: WebhookEvent, outcome: str) -> None:
        """Record in a transaction of its own; an existing row is fine."""
        self.record(event, outcome)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Event {event.id} was already in the ledger")


class SubscriptionEventProcessor:
    """
    Applies payment events to UserSubscription rows at most once.
    """

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self.ledger = IdempotencyLedger(db)

    def handle(self, payload: bytes, sig_header: Optional[str]) -> WebhookResult:
        try:
            self.gateway.verify_signature(payload, sig_header)
        except SignatureVerificationError as e:
            logger.warning(f"Rejected webhook with bad signature: {e}")
            return WebhookResult(400, REJECTED, f"Webhook Error: {e}")

        try:
            event = WebhookEvent.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Rejected malformed webhook payload: {e.error_count()} errors")
            return WebhookResult(400, REJECTED, "Webhook Error: malformed event")

        if self.ledger.contains(event.id):
            logger.info(f"Event {event.id} already processed")
            return WebhookResult(200, DUPLICATE)

        try:
            outcome = self.dispatch(event)
            self.ledger.record(event, outcome)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            if is_constraint_violation(e):
                logger.info(f"Event {event.id} conflicted with existing data, treating as duplicate")
                self.ledger.record_now(event, DUPLICATE)
                return WebhookResult(200, DUPLICATE)
            logger.error(f"Failed to persist event {event.id}: {e}")
            return WebhookResult(500, FAILED, f"Webhook processing error: {e}")
        except stripe.StripeError as e:
            self.db.rollback()
            logger.error(f"Payment provider error while processing event {event.id}: {e}")
            return WebhookResult(500, FAILED, f"Webhook processing error: {e}")

        logger.info(f"Event {event.id} ({event.type}) {outcome}")
        return WebhookResult(200, outcome)

    def dispatch(self, event: WebhookEvent) -> str:
        if event.type == CHECKOUT_COMPLETED:
            return self.handle_checkout_completed(event.data.object)
        if event.type in INVOICE_PAID_EVENTS:
            return self.handle_invoice_paid(event.data.object)
        return IGNORED

    def handle_checkout_completed(self, session: Dict[str, Any]) -> str:
        subscription_id = object_id(session.get("subscription"))
        user_id = field_of(session.get("metadata"), USER_ID_METADATA_KEY)
        if not subscription_id or not user_id:
            return SKIPPED

        details = self.gateway.retrieve_subscription(subscription_id)
        if not details.is_complete:
            return SKIPPED

        period_end = details.period_end

        subscription = get_subscription(self.db, user_id)
        if subscription is not None:
            subscription.stripe_subscription_id = details.id
            subscription.stripe_customer_id = details.customer_id
            subscription.stripe_price_id = details.price_id
            subscription.stripe_current_period_end = period_end
        else:
            self.db.add(UserSubscription(
                user_id=user_id,
                stripe_subscription_id=details.id,
                stripe_customer_id=details.customer_id,
                stripe_price_id=details.price_id,
                stripe_current_period_end=period_end
            ))
        self.db.flush()
        return APPLIED

    def handle_invoice_paid(self, invoice: Dict[str, Any]) -> str:
        subscription_id = object_id(invoice.get("subscription"))
        if not subscription_id:
            # Newer API versions nest it under the invoice parent
            subscription_id = object_id(field_of(
                field_of(invoice.get("parent"), "subscription_details"),
                "subscription"
            ))
        if not subscription_id:
            return SKIPPED

        details = self.gateway.retrieve_subscription(subscription_id)
        if not details.id or not details.price_id or details.period_end is None:
            return SKIPPED

        subscription = self.db.execute(
            select(UserSubscription).where(UserSubscription.stripe_subscription_id == details.id)
        ).scalar_one_or_none()
        if subscription is None:
            # Invoices only renew subscriptions we already track
            return SKIPPED

        subscription.stripe_price_id = details.price_id
        subscription.stripe_current_period_end = details.period_end
        self.db.flush()
        return APPLIED
