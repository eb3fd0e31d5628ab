from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import uuid

from swms.logging_config import LogContext


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        LogContext.set(request_id=req_id)
        try:
            response = await call_next(request)
        finally:
            LogContext.clear()
        response.headers["X-Request-ID"] = req_id
        return response
