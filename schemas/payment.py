import uuid
from pydantic import BaseModel
from typing import Optional


class PaymentInitRequest(BaseModel):
    order_id: uuid.UUID
    callback_url: Optional[str] = None


class PaymentInitResponse(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class PaymentVerifyRequest(BaseModel):
    reference: str


class PaymentOut(BaseModel):
    id: int
    order_id: uuid.UUID
    provider: str
    reference: str
    amount: float
    currency: str
    status: str
    order_status: Optional[str] = None

    class Config:
        from_attributes = True
