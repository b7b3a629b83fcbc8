import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from mockinterview.core.logging import LOGGER_NAME, request_id_ctx_var, latency_bucket_ms

REQUEST_ID_HEADER = "x-request-id"
# Longer incoming ids are replaced rather than echoed
MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate every request with an id and log one completion line.

    The completion line carries the caller (set on request.state by
    get_current_user) so entitlement calls can be traced per user.
    """

    async def dispatch(self, request, call_next):
        incoming = request.headers.get(REQUEST_ID_HEADER)
        rid = incoming if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH else str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            logging.getLogger(LOGGER_NAME).info(
                "request.complete",
                extra={
                    "request_id": rid,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "user_id": getattr(request.state, "user_id", None),
                    "latency_bucket": latency_bucket_ms((time.perf_counter() - started) * 1000),
                },
            )
            return response
        finally:
            request_id_ctx_var.reset(token)
