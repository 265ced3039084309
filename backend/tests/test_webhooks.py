import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest
import stripe
from sqlalchemy.exc import OperationalError

from conftest import event_payload, signed_headers
from langquest.models import ProcessedWebhookEvent, UserSubscription
from langquest.models.subscription import as_utc
from langquest.services.payments import SubscriptionDetails, subscription_details
from langquest.services.subscriptions import (
    SubscriptionEventProcessor,
    is_constraint_violation,
)


URL = "/api/v1/webhooks/stripe"
PERIOD_END = int(time.time()) + 30 * 24 * 3600


def _details(subscription_id="sub_1", customer_id="cus_1", price_id="price_1", period_end=PERIOD_END):
    return SubscriptionDetails(
        id=subscription_id,
        customer_id=customer_id,
        price_id=price_id,
        current_period_end=period_end
    )


def _checkout(event_id="evt_1", subscription="sub_1", user_id="user_1"):
    metadata = {"userId": user_id} if user_id else {}
    return event_payload(event_id, "checkout.session.completed", {
        "id": "cs_test_1",
        "subscription": subscription,
        "metadata": metadata
    })


def _post(client, payload, headers=None):
    return client.post(URL, content=payload, headers=headers or signed_headers(payload))


def _ledger(db):
    return {row.event_id: row.outcome for row in db.query(ProcessedWebhookEvent).all()}


def test_bad_signature_is_rejected_and_not_recorded(client, db, gateway):
    gateway.subscriptions["sub_1"] = _details()
    payload = _checkout()

    forged = _post(client, payload, signed_headers(payload, secret="whsec_wrong"))
    assert forged.status_code == 400
    assert forged.json()["outcome"] == "rejected"

    missing = client.post(URL, content=payload)
    assert missing.status_code == 400

    stale = _post(client, payload, signed_headers(payload, timestamp=time.time() - 3600))
    assert stale.status_code == 400

    assert _ledger(db) == {}
    assert gateway.retrieved == []

    # The provider's retry with a valid signature still goes through
    retry = _post(client, payload)
    assert retry.status_code == 200
    assert retry.json()["outcome"] == "applied"


def test_malformed_payload_is_rejected(client, db):
    payload = '{"type": "checkout.session.completed"}'
    response = _post(client, payload)
    assert response.status_code == 400
    assert _ledger(db) == {}


def test_non_utf8_payload_is_rejected(client, db, gateway):
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}\xff'

    response = client.post(URL, content=payload, headers=signed_headers("{}"))

    assert response.status_code == 400
    assert response.json()["outcome"] == "rejected"
    assert _ledger(db) == {}
    assert gateway.retrieved == []


def test_checkout_creates_subscription(client, db, gateway):
    gateway.subscriptions["sub_1"] = _details()

    response = _post(client, _checkout())

    assert response.status_code == 200
    subscription = db.query(UserSubscription).one()
    assert subscription.user_id == "user_1"
    assert subscription.stripe_customer_id == "cus_1"
    assert subscription.stripe_price_id == "price_1"
    assert as_utc(subscription.stripe_current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)
    assert _ledger(db) == {"evt_1": "applied"}


def test_replayed_event_is_a_no_op(client, db, gateway):
    gateway.subscriptions["sub_1"] = _details()
    payload = _checkout()
    _post(client, payload)

    gateway.subscriptions["sub_1"] = _details(price_id="price_changed")
    for _ in range(3):
        response = _post(client, payload)
        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"

    assert gateway.retrieved == ["sub_1"]
    assert db.query(UserSubscription).one().stripe_price_id == "price_1"


def test_checkout_updates_existing_subscription(client, db, gateway):
    gateway.subscriptions["sub_1"] = _details()
    gateway.subscriptions["sub_2"] = _details(subscription_id="sub_2", customer_id="cus_2", price_id="price_2")

    _post(client, _checkout())
    _post(client, _checkout(event_id="evt_2", subscription="sub_2"))

    subscription = db.query(UserSubscription).one()
    assert subscription.stripe_subscription_id == "sub_2"
    assert subscription.stripe_customer_id == "cus_2"
    assert subscription.stripe_price_id == "price_2"


@pytest.mark.parametrize("subscription, user_id", [(None, "user_1"), ("sub_1", None)])
def test_checkout_without_correlation_is_skipped(client, db, gateway, subscription, user_id):
    gateway.subscriptions["sub_1"] = _details()

    response = _post(client, _checkout(subscription=subscription, user_id=user_id))

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"
    assert db.query(UserSubscription).count() == 0
    assert _ledger(db) == {"evt_1": "skipped"}


@pytest.mark.parametrize("details", [
    _details(customer_id=None),
    _details(price_id=None),
    _details(period_end=0),
    _details(period_end=None),
    _details(period_end=10 ** 15),
])
def test_checkout_with_incomplete_subscription_is_skipped(client, db, gateway, details):
    gateway.subscriptions["sub_1"] = details

    response = _post(client, _checkout())

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"
    assert db.query(UserSubscription).count() == 0
    assert _ledger(db) == {"evt_1": "skipped"}


def _track(db, period_end=None):
    db.add(UserSubscription(
        user_id="user_1",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        stripe_price_id="price_1",
        stripe_current_period_end=period_end or datetime.now(timezone.utc)
    ))
    db.commit()


@pytest.mark.parametrize("event_type", ["invoice.payment_succeeded", "invoice_payment.paid", "invoice.paid"])
def test_invoice_renews_tracked_subscription(client, db, gateway, event_type):
    _track(db)
    gateway.subscriptions["sub_1"] = _details(price_id="price_2")

    payload = event_payload("evt_inv", event_type, {"id": "in_1", "subscription": "sub_1"})
    response = _post(client, payload)

    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    subscription = db.query(UserSubscription).one()
    assert subscription.stripe_price_id == "price_2"
    assert as_utc(subscription.stripe_current_period_end) == datetime.fromtimestamp(PERIOD_END, tz=timezone.utc)


def test_invoice_reads_subscription_from_parent(client, db, gateway):
    _track(db)
    gateway.subscriptions["sub_1"] = _details(price_id="price_3")

    payload = event_payload("evt_inv", "invoice.paid", {
        "id": "in_1",
        "parent": {"subscription_details": {"subscription": "sub_1"}}
    })
    _post(client, payload)

    assert db.query(UserSubscription).one().stripe_price_id == "price_3"


def test_invoice_for_untracked_subscription_never_creates(client, db, gateway):
    gateway.subscriptions["sub_9"] = _details(subscription_id="sub_9", customer_id="cus_9")

    payload = event_payload("evt_inv", "invoice.paid", {"id": "in_1", "subscription": "sub_9"})
    response = _post(client, payload)

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"
    assert db.query(UserSubscription).count() == 0
    assert _ledger(db) == {"evt_inv": "skipped"}


def test_invoice_with_out_of_range_period_end_is_skipped(client, db, gateway):
    _track(db)
    gateway.subscriptions["sub_1"] = _details(price_id="price_2", period_end=10 ** 15)

    payload = event_payload("evt_inv", "invoice.paid", {"id": "in_1", "subscription": "sub_1"})
    response = _post(client, payload)

    assert response.status_code == 200
    assert response.json()["outcome"] == "skipped"
    assert db.query(UserSubscription).one().stripe_price_id == "price_1"
    assert _ledger(db) == {"evt_inv": "skipped"}


def test_invoice_without_subscription_is_skipped(client, db, gateway):
    payload = event_payload("evt_inv", "invoice.paid", {"id": "in_1"})
    response = _post(client, payload)
    assert response.json()["outcome"] == "skipped"
    assert gateway.retrieved == []


def test_unknown_event_is_acknowledged(client, db):
    payload = event_payload("evt_x", "customer.created", {"id": "cus_1"})
    response = _post(client, payload)
    assert response.status_code == 200
    assert _ledger(db) == {"evt_x": "ignored"}


def test_constraint_conflict_is_treated_as_duplicate(client, db, gateway):
    _track(db)
    # Another user's checkout resolving to a subscription we already store
    gateway.subscriptions["sub_1"] = _details()

    response = _post(client, _checkout(event_id="evt_2", user_id="user_2"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "duplicate"
    assert db.query(UserSubscription).count() == 1
    assert _ledger(db) == {"evt_2": "duplicate"}


def test_processing_runs_off_the_event_loop(client, gateway, monkeypatch):
    on_loop = []
    original = SubscriptionEventProcessor.handle

    def handle(self, payload, sig_header):
        try:
            asyncio.get_running_loop()
            on_loop.append(True)
        except RuntimeError:
            on_loop.append(False)
        return original(self, payload, sig_header)

    monkeypatch.setattr(SubscriptionEventProcessor, "handle", handle)
    gateway.subscriptions["sub_1"] = _details()

    response = _post(client, _checkout())

    assert response.json() == {"received": True, "outcome": "applied", "detail": None}
    assert on_loop == [False]


def test_provider_failure_is_retryable(client, db, gateway):
    gateway.error = stripe.APIConnectionError("network down")

    response = _post(client, _checkout())

    assert response.status_code == 500
    assert _ledger(db) == {}

    gateway.error = None
    gateway.subscriptions["sub_1"] = _details()
    assert _post(client, _checkout()).status_code == 200


def test_persistence_failure_is_retryable(db, gateway, monkeypatch):
    processor = SubscriptionEventProcessor(db, gateway)

    def broken(event):
        raise OperationalError("UPDATE user_subscriptions", {}, Exception("connection lost"))

    monkeypatch.setattr(processor, "dispatch", broken)
    payload = _checkout()

    result = processor.handle(payload.encode("utf-8"), signed_headers(payload)["Stripe-Signature"])

    assert result.status_code == 500
    assert result.outcome == "failed"
    assert _ledger(db) == {}


class _PgError(Exception):
    def __init__(self, pgcode):
        super().__init__("constraint")
        self.pgcode = pgcode


def test_constraint_classification():
    assert is_constraint_violation(OperationalError("stmt", {}, _PgError("23503")))
    assert not is_constraint_violation(OperationalError("stmt", {}, _PgError("40001")))
    assert not is_constraint_violation(OperationalError("stmt", {}, Exception("boom")))


def test_subscription_details_from_provider_object():
    details = subscription_details({
        "id": "sub_1",
        "customer": {"id": "cus_1"},
        "items": {"data": [{"price": {"id": "price_1"}, "current_period_end": PERIOD_END}]}
    })
    assert details == _details()
    assert details.is_complete

    empty = subscription_details({"id": "sub_1", "items": {"data": []}})
    assert empty.price_id is None
    assert not empty.is_complete

    assert _details(period_end=10 ** 15).period_end is None
    assert not _details(period_end=10 ** 15).is_complete


def test_subscription_active_window():
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)
    grace = timedelta(days=1)
    subscription = UserSubscription(
        user_id="user_1",
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        stripe_price_id="price_1",
        stripe_current_period_end=datetime(2026, 1, 9, 12)
    )
    assert subscription.is_active(grace, now=now)
    assert not subscription.is_active(grace, now=now + timedelta(days=1))

    subscription.stripe_price_id = ""
    assert not subscription.is_active(grace, now=now)
