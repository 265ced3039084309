"""
Webhooks router for LangQuest.

Receives payment-provider events. The response status drives the
provider's retry behaviour: 2xx stops redelivery, 4xx/5xx asks for it.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from langquest.core.database import get_db
from langquest.schemas.subscription import WebhookAck
from langquest.services.payments import StripeGateway, get_payment_gateway
from langquest.services.subscriptions import SubscriptionEventProcessor


router = APIRouter()


@router.post(
    "/stripe",
    response_model=WebhookAck,
    responses={400: {"model": WebhookAck}, 500: {"model": WebhookAck}}
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
) -> JSONResponse:
    """
    Process a Stripe event at most once.
    """
    payload = await request.body()
    # Provider calls and DB writes block; keep them off the event loop
    processor = SubscriptionEventProcessor(db, gateway)
    result = await run_in_threadpool(processor.handle, payload, stripe_signature)

    ack = WebhookAck(
        received=result.status_code < 400,
        outcome=result.outcome,
        detail=result.detail
    )
    return JSONResponse(status_code=result.status_code, content=ack.model_dump())
