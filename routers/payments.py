from typing import Dict

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

import payments

router = APIRouter(prefix="/api/payments", tags=["payments"])


class IntentIn(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = Field("usd", min_length=3, max_length=3)
    metadata: Dict[str, str] = Field(default_factory=dict)


@router.post("/create-intent")
def create_intent(payload: IntentIn):
    try:
        intent = payments.create_payment_intent(payload.amount, payload.currency, payload.metadata)
    except payments.PaymentError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, **intent}
