from datetime import datetime
from typing import Optional, Generic, TypeVar, Any, List
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from motor.motor_asyncio import AsyncIOMotorClient
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi
from bson import ObjectId
from bson.errors import InvalidId
import logging

logger = logging.getLogger("trackmate")

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None
    MONGO_CLUSTER: Optional[str] = None
    MONGO_DB_NAME: str = "parcelDB"
    STRIPE_SECRET_KEY: Optional[str] = None
    PORT: int = 5000
    RATE_LIMIT: str = "60/minute"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

    @property
    def mongo_uri(self) -> str:
        # Atlas credentials win over a plain URL
        if self.DB_USER and self.DB_PASSWORD and self.MONGO_CLUSTER:
            return (
                f"mongodb+srv://{self.DB_USER}:{self.DB_PASSWORD}@{self.MONGO_CLUSTER}"
                "/?retryWrites=true&w=majority"
            )
        return self.MONGO_URL

settings = Settings()

# --- Database ---
def get_db_client(url: Optional[str] = None) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url or settings.mongo_uri, server_api=ServerApi("1"))

def str_to_oid(id: str) -> ObjectId:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        raise ValidationException("Invalid ID format")

def serialize_doc(doc: dict) -> dict:
    """Expose the store id as a plain ``id`` string."""
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ListResponse(BaseModel, Generic[T]):
    success: bool = True
    count: int
    data: List[T]

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: str = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class ValidationException(AppException):
    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UpstreamException(AppException):
    def __init__(self, detail: str = "Upstream service failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=getattr(exc, "headers", None),
    )

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = ErrorResponse(error="Validation error", details=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

async def store_exception_handler(request: Request, exc: PyMongoError):
    logger.error("Store operation failed: %s", exc, extra={"path": request.url.path})
    body = ErrorResponse(error=str(exc))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())

async def document_exception_handler(request: Request, exc: ValidationError):
    # A stored document that no longer fits its response model
    logger.error("Malformed stored document for %s: %s", exc.title, exc, extra={"path": request.url.path})
    errors = exc.errors(include_url=False, include_input=False)
    body = ErrorResponse(error="Malformed stored document", details=jsonable_encoder(errors))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())

def setup_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PyMongoError, store_exception_handler)
    app.add_exception_handler(ValidationError, document_exception_handler)


# --- Routing ---
def ensure_unique_routes(app: FastAPI) -> dict:
    """
    Fail fast when a (method, path) pair is registered more than once.
    Starlette would otherwise silently serve the first registration.
    """
    registry = {}
    for route in app.routes:
        if not isinstance(route, APIRoute):
            continue
        for method in route.methods:
            key = (method, route.path)
            if key in registry:
                raise RuntimeError(
                    f"Route {method} {route.path} declared twice "
                    f"({registry[key]} and {route.name})"
                )
            registry[key] = route.name
    return registry
