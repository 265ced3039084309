from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class SubscriptionResponse(BaseModel):
    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: str
    stripe_current_period_end: datetime
    is_active: bool


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    detail: Optional[str] = None
