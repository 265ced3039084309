"""
Payment provider adapter.

Wraps the Stripe SDK for the two things the subscription processor needs:
verifying webhook signatures and fetching subscription details.
Subscriptions are normalized into SubscriptionDetails so the processor
never touches SDK objects directly.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
import logging

import stripe

from langquest.core.config import settings


logger = logging.getLogger(__name__)


SignatureVerificationError = stripe.SignatureVerificationError


@dataclass(frozen=True)
class SubscriptionDetails:
    id: Optional[str]
    customer_id: Optional[str]
    price_id: Optional[str]
    current_period_end: Optional[int]  # unix seconds

    @property
    def period_end(self) -> Optional[datetime]:
        """The period end as an aware datetime, None when missing or out of range."""
        if not self.current_period_end or self.current_period_end <= 0:
            return None
        try:
            return datetime.fromtimestamp(self.current_period_end, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

    @property
    def is_complete(self) -> bool:
        """Every field needed to mirror the subscription is present and sane."""
        return bool(
            self.id
            and self.customer_id
            and self.price_id
            and self.period_end is not None
        )


def field_of(obj: Any, key: str) -> Any:
    """Read a key from a provider object or plain dict, None when absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, IndexError, TypeError):
        return None


def object_id(value: Any) -> Optional[str]:
    """Ids may come back as plain strings or as expanded objects."""
    if value is None or isinstance(value, str):
        return value or None
    return field_of(value, "id")


def subscription_details(subscription: Any) -> SubscriptionDetails:
    """Normalize a provider subscription object."""
    items = field_of(field_of(subscription, "items"), "data") or []
    first_item = items[0] if len(items) > 0 else None

    # Newer API versions report the billing period per subscription item
    period_end = field_of(subscription, "current_period_end")
    if period_end is None:
        period_end = field_of(first_item, "current_period_end")

    return SubscriptionDetails(
        id=object_id(field_of(subscription, "id")),
        customer_id=object_id(field_of(subscription, "customer")),
        price_id=object_id(field_of(first_item, "price")),
        current_period_end=int(period_end) if period_end is not None else None
    )


class StripeGateway:
    """
    Stripe-backed payment gateway.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_API_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE

    def verify_signature(self, payload: bytes, sig_header: Optional[str]) -> None:
        """
        Check the ``Stripe-Signature`` header against the shared secret.

        Raises:
            SignatureVerificationError: the header is missing or does not match,
                or the payload is not UTF-8 text
        """
        if not self.webhook_secret:
            raise SignatureVerificationError("Webhook secret is not configured", sig_header)
        if not sig_header:
            raise SignatureVerificationError("Missing Stripe-Signature header", sig_header)

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureVerificationError(f"Payload is not valid UTF-8: {e}", sig_header)

        stripe.WebhookSignature.verify_header(
            text,
            sig_header,
            self.webhook_secret,
            self.tolerance
        )

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionDetails:
        """
        Fetch a subscription from the provider.

        Raises:
            stripe.StripeError: the provider could not be reached or refused
        """
        logger.debug(f"Retrieving subscription {subscription_id}")
        subscription = stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        return subscription_details(subscription)


def get_payment_gateway() -> StripeGateway:
    """Dependency returning the configured gateway."""
    return StripeGateway()
