from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from datetime import datetime
from typing import Optional

from trackmate.utils import (
    get_db_client, settings, SuccessResponse, ListResponse,
    NotFoundException, HealthResponse, AppException,
    str_to_oid, serialize_doc, setup_exception_handlers, ensure_unique_routes
)
from trackmate.logging_config import setup_logging, RequestLoggingMiddleware
from trackmate.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter
from trackmate.payments_gateway import PaymentGateway, get_payment_gateway
from trackmate.schemas import (
    ParcelCreate, ParcelResponse, ConfirmPaymentRequest, PaymentResponse,
    PaymentIntentRequest, PaymentIntentResponse, TrackingUpdateCreate,
    TrackingUpdateResponse, MessageResponse
)
from trackmate.models import (
    ParcelDB, PaymentDB, TrackingUpdateDB, ParcelStatus,
    PARCELS, PAYMENTS, TRACKING_UPDATES
)

SERVICE_NAME = "trackmate"
VERSION = "1.0.0"

# Setup Logging
logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="TrackMate Server", version=VERSION)

# Security Setup
setup_rate_limiting(app)
setup_exception_handlers(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.MONGO_DB_NAME]
    # Indexes
    await app.mongodb[PARCELS].create_index("trackingId", unique=True)
    await app.mongodb[PARCELS].create_index("createdBy")
    await app.mongodb[PAYMENTS].create_index("createdBy")
    await app.mongodb[PAYMENTS].create_index("parcelId")
    await app.mongodb[TRACKING_UPDATES].create_index("parcelId")
    logger.info("MongoDB connected to %s", settings.MONGO_DB_NAME)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()
    logger.info("MongoDB connection closed")

# --- Dependencies ---
def get_database(request: Request) -> AsyncIOMotorDatabase:
    return request.app.mongodb

def email_filter(email: Optional[str]) -> dict:
    return {"createdBy": email} if email else {}

# --- Endpoints ---

@app.get("/", response_class=PlainTextResponse)
async def root():
    return "TrackMate server is tracking...."

# Parcels
@app.get("/parcels", response_model=ListResponse[ParcelResponse])
@limiter.limit(settings.RATE_LIMIT)
async def list_parcels(request: Request, email: Optional[str] = None, db=Depends(get_database)):
    cursor = db[PARCELS].find(email_filter(email)).sort("createdAt", -1)
    docs = await cursor.to_list(length=None)
    parcels = [ParcelResponse(**serialize_doc(doc)) for doc in docs]
    return ListResponse(count=len(parcels), data=parcels)

@app.get("/parcels/{parcel_id}", response_model=SuccessResponse[ParcelResponse])
@limiter.limit(settings.RATE_LIMIT)
async def get_parcel(parcel_id: str, request: Request, db=Depends(get_database)):
    oid = str_to_oid(parcel_id)
    parcel = await db[PARCELS].find_one({"_id": oid})
    if not parcel:
        raise NotFoundException("Parcel not found")
    return SuccessResponse(data=ParcelResponse(**serialize_doc(parcel)))

@app.post("/parcels", response_model=SuccessResponse[ParcelResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT)
async def create_parcel(parcel_in: ParcelCreate, request: Request, db=Depends(get_database)):
    parcel_db = ParcelDB(**parcel_in.model_dump(exclude_none=True))
    parcel_dict = parcel_db.model_dump(by_alias=True, exclude_none=True)

    result = await db[PARCELS].insert_one(parcel_dict)
    parcel_dict["_id"] = result.inserted_id
    logger.info("Parcel created", extra={"parcel_id": str(result.inserted_id)})

    return SuccessResponse(
        data=ParcelResponse(**serialize_doc(parcel_dict)),
        message="Parcel created successfully!"
    )

@app.delete("/parcels/{parcel_id}", response_model=MessageResponse)
@limiter.limit(settings.RATE_LIMIT)
async def delete_parcel(parcel_id: str, request: Request, db=Depends(get_database)):
    oid = str_to_oid(parcel_id)
    result = await db[PARCELS].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundException("Parcel not found")
    logger.info("Parcel deleted", extra={"parcel_id": parcel_id})
    return MessageResponse(message="Parcel deleted successfully")

# Payments
@app.post("/confirm-payment", response_model=SuccessResponse[PaymentResponse])
@limiter.limit(settings.RATE_LIMIT)
async def confirm_payment(payment_in: ConfirmPaymentRequest, request: Request, db=Depends(get_database)):
    oid = str_to_oid(payment_in.parcelId)
    parcel = await db[PARCELS].find_one({"_id": oid})
    if not parcel:
        raise NotFoundException("Parcel not found")

    now = datetime.utcnow()
    await db[PARCELS].update_one(
        {"_id": oid},
        {"$set": {
            "status": ParcelStatus.PAID.value,
            "paymentIntentId": payment_in.paymentIntentId,
            "paid_at": now,
        }}
    )

    payment_db = PaymentDB(
        parcelId=str(oid),
        createdBy=payment_in.createdBy,
        amount=payment_in.amount,
        paymentIntentId=payment_in.paymentIntentId,
        createdAt=now,
        paid_at=now
    )
    payment_dict = payment_db.model_dump(by_alias=True, exclude_none=True)

    try:
        result = await db[PAYMENTS].insert_one(payment_dict)
    except PyMongoError:
        logger.error("Payment insert failed, restoring parcel", extra={"parcel_id": str(oid)})
        await restore_parcel(db, oid, parcel)
        raise

    payment_dict["_id"] = result.inserted_id
    logger.info("Payment confirmed", extra={"parcel_id": str(oid)})
    return SuccessResponse(data=PaymentResponse(**serialize_doc(payment_dict)), message="Payment confirmed")

async def restore_parcel(db, oid, previous: dict):
    restore = {"status": previous.get("status", ParcelStatus.PENDING.value)}
    unset = {}
    for field in ("paymentIntentId", "paid_at"):
        if field in previous:
            restore[field] = previous[field]
        else:
            unset[field] = ""

    update = {"$set": restore}
    if unset:
        update["$unset"] = unset
    await db[PARCELS].update_one({"_id": oid}, update)

@app.get("/payments", response_model=ListResponse[PaymentResponse])
@limiter.limit(settings.RATE_LIMIT)
async def list_payments(request: Request, email: Optional[str] = None, db=Depends(get_database)):
    cursor = db[PAYMENTS].find(email_filter(email)).sort("paid_at", -1)
    docs = await cursor.to_list(length=None)
    payments = [PaymentResponse(**serialize_doc(doc)) for doc in docs]
    return ListResponse(count=len(payments), data=payments)

@app.post("/create-payment-intent", response_model=PaymentIntentResponse)
@limiter.limit(settings.RATE_LIMIT)
async def create_payment_intent(
    intent_in: PaymentIntentRequest,
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    client_secret = await gateway.create_payment_intent(intent_in.amountInCents, currency="usd", methods=["card"])
    logger.info("Payment intent created")
    return PaymentIntentResponse(clientSecret=client_secret)

# Tracking
@app.post("/tracking", response_model=SuccessResponse[TrackingUpdateResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT)
async def create_tracking_update(update_in: TrackingUpdateCreate, request: Request, db=Depends(get_database)):
    oid = str_to_oid(update_in.parcelId)
    if not await db[PARCELS].find_one({"_id": oid}, {"_id": 1}):
        raise NotFoundException("Parcel not found")

    update_db = TrackingUpdateDB(**{**update_in.model_dump(), "parcelId": str(oid)})
    update_dict = update_db.model_dump(by_alias=True, exclude_none=True)

    result = await db[TRACKING_UPDATES].insert_one(update_dict)
    update_dict["_id"] = result.inserted_id
    logger.info("Tracking update recorded", extra={"parcel_id": str(oid)})

    return SuccessResponse(data=TrackingUpdateResponse(**serialize_doc(update_dict)))

@app.get("/tracking/{parcel_id}", response_model=ListResponse[TrackingUpdateResponse])
@limiter.limit(settings.RATE_LIMIT)
async def list_tracking_updates(parcel_id: str, request: Request, db=Depends(get_database)):
    oid = str_to_oid(parcel_id)
    cursor = db[TRACKING_UPDATES].find({"parcelId": str(oid)}).sort("createdAt", -1)
    docs = await cursor.to_list(length=None)
    updates = [TrackingUpdateResponse(**serialize_doc(doc)) for doc in docs]
    return ListResponse(count=len(updates), data=updates)

@app.get("/health", response_model=HealthResponse)
async def health_check(db=Depends(get_database)):
    try:
        await db.client.admin.command("ping")
        db_status = "connected"
    except PyMongoError:
        db_status = "disconnected"

    if db_status != "connected":
        raise AppException(status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unhealthy")

    return HealthResponse(
        service=SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version=VERSION,
        database=db_status
    )

ensure_unique_routes(app)
