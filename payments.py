import logging
import secrets
from datetime import datetime
from typing import Dict, Optional

import stripe

from config import settings

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


def is_configured() -> bool:
    return bool(settings.STRIPE_SECRET_KEY)


def create_payment_intent(amount: float, currency: str = "usd", metadata: Optional[Dict[str, str]] = None) -> dict:
    if not is_configured():
        raise PaymentError("Payment provider is not configured", status_code=503)
    stripe.api_key = settings.STRIPE_SECRET_KEY
    try:
        intent = stripe.PaymentIntent.create(
            amount=int(round(amount * 100)),
            currency=currency.lower(),
            metadata=metadata or {},
            automatic_payment_methods={"enabled": True},
        )
    except stripe.StripeError as e:
        raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
    logger.info("Created payment intent %s for %.2f %s", intent["id"], amount, currency)
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def refund_payment(payment_intent_id: Optional[str]) -> str:
    """Refund a captured payment and return the refund id.

    Payments recorded without a provider intent get a local refund reference.
    """
    if payment_intent_id and is_configured():
        stripe.api_key = settings.STRIPE_SECRET_KEY
        try:
            refund = stripe.Refund.create(payment_intent=payment_intent_id)
        except stripe.StripeError as e:
            raise PaymentError(str(e)) from e
        return refund["id"]
    return f"refund_{int(datetime.utcnow().timestamp())}_{secrets.token_hex(4)}"
