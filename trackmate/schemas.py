from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from trackmate.models import ShipmentFields
from trackmate.security_config import sanitize_input

# Request bodies ignore unknown keys, so server-owned fields
# (status, trackingId, createdAt) can never be supplied by a caller.

class ParcelCreate(ShipmentFields):
    createdBy: Optional[str] = None

    class Config:
        extra = "ignore"

    @field_validator("*")
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ParcelResponse(ShipmentFields):
    id: str
    trackingId: str
    status: str
    createdBy: Optional[str] = None
    createdAt: datetime
    paymentIntentId: Optional[str] = None
    paid_at: Optional[datetime] = None

class ConfirmPaymentRequest(BaseModel):
    parcelId: str
    paymentIntentId: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    createdBy: str = Field(..., min_length=1)

    class Config:
        extra = "ignore"

class PaymentResponse(BaseModel):
    id: str
    parcelId: str
    createdBy: str
    amount: float
    paymentIntentId: str
    status: str
    createdAt: datetime
    paid_at: datetime

class PaymentIntentRequest(BaseModel):
    amountInCents: int = Field(..., gt=0)

class PaymentIntentResponse(BaseModel):
    clientSecret: str

class TrackingUpdateCreate(BaseModel):
    parcelId: str
    trackingId: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1)
    location: Optional[str] = None

    class Config:
        extra = "ignore"

    @field_validator("trackingId", "status", "location")
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class TrackingUpdateResponse(BaseModel):
    id: str
    parcelId: str
    trackingId: str
    status: str
    location: Optional[str] = None
    createdAt: datetime

class MessageResponse(BaseModel):
    success: bool = True
    message: str
