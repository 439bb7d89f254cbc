import logging
import json
import time
import sys
import uuid
from contextvars import ContextVar
from typing import Callable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from datetime import datetime
import traceback

REQUEST_ID_HEADER = "X-Request-ID"

# Masked in access logs
SENSITIVE_HEADERS = {"authorization", "cookie", "x-api-key", "stripe-signature"}

# Optional record attributes copied into the JSON line, in this order
EXTRA_FIELDS = ("request_id", "method", "path", "status_code", "duration_ms", "parcel_id", "headers")

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestContextFilter(logging.Filter):
    """Stamps the current request id on records logged inside a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            request_id = request_id_var.get()
            if request_id:
                record.request_id = request_id
        return True


class JSONFormatter(logging.Formatter):
    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update({
            field: getattr(record, field)
            for field in EXTRA_FIELDS
            if hasattr(record, field)
        })

        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(service_name: str, level: str = "INFO") -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name))
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    # uvicorn's own access log duplicates RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").propagate = False

    return logging.getLogger(service_name)


def masked_headers(request: Request) -> dict:
    return {
        k: "***" if k.lower() in SENSITIVE_HEADERS else v
        for k, v in request.headers.items()
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, service_name: str):
        super().__init__(app)
        self.logger = logging.getLogger(service_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self.log_request(request, 500, start_time, exc_info=sys.exc_info())
            raise
        finally:
            request_id_var.reset(token)

        self.log_request(request, response.status_code, start_time, request_id=request_id)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    def log_request(self, request: Request, status_code: int, start_time: float,
                    request_id: Optional[str] = None, exc_info: Optional[tuple] = None):
        extra = {
            "request_id": request_id or request.state.request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
            "headers": masked_headers(request),
        }

        if status_code >= 500:
            self.logger.error("Request failed", extra=extra, exc_info=exc_info)
        elif status_code == 429:
            self.logger.warning("Request rate limited", extra=extra)
        elif status_code >= 400:
            self.logger.warning("Request rejected", extra=extra)
        else:
            self.logger.info("Request processed", extra=extra)
