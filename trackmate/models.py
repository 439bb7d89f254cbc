from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
from bson import ObjectId

PARCELS = "parcels"
PAYMENTS = "payments"
TRACKING_UPDATES = "trackingUpdates"

class ParcelStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"

class PaymentStatus(str, Enum):
    SUCCEEDED = "Succeeded"

def generate_tracking_id() -> str:
    # Collisions are not checked against the store
    return str(ObjectId())

class ShipmentFields(BaseModel):
    parcelType: Optional[str] = None
    title: Optional[str] = None
    weight: Optional[float] = None
    cost: Optional[float] = None
    destination: Optional[str] = None
    senderName: Optional[str] = None
    senderContact: Optional[str] = None
    senderRegion: Optional[str] = None
    senderServiceCenter: Optional[str] = None
    senderAddress: Optional[str] = None
    pickupInstruction: Optional[str] = None
    receiverName: Optional[str] = None
    receiverContact: Optional[str] = None
    receiverRegion: Optional[str] = None
    receiverServiceCenter: Optional[str] = None
    receiverAddress: Optional[str] = None
    deliveryInstruction: Optional[str] = None

class ParcelDB(ShipmentFields):
    id: Optional[str] = Field(None, alias="_id")
    createdBy: Optional[str] = None
    trackingId: str = Field(default_factory=generate_tracking_id)
    status: ParcelStatus = ParcelStatus.PENDING
    createdAt: datetime = Field(default_factory=datetime.utcnow)
    paymentIntentId: Optional[str] = None
    paid_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True

class PaymentDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    parcelId: str
    createdBy: str
    amount: float
    paymentIntentId: str
    status: PaymentStatus = PaymentStatus.SUCCEEDED
    createdAt: datetime = Field(default_factory=datetime.utcnow)
    paid_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True

class TrackingUpdateDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    parcelId: str
    trackingId: str
    status: str
    location: Optional[str] = None
    createdAt: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
