"""Request ID and error-catching middleware for ErrorHub.

RequestIDMiddleware reuses a well-formed inbound X-Request-ID or generates
one, stores it in a ContextVar and on request.state so it can be retrieved
anywhere in the request lifecycle, and attaches it as a response header.

ErrorResponseMiddleware is the transport seam: any exception escaping the
routes is handed to the Dispatcher and rendered, so nothing reaches the
server's default 500 page.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from errorhub.handlers import render_error, request_metadata
from errorhub.mapping.dispatcher import Dispatcher

REQUEST_ID_HEADER = "X-Request-ID"

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,128}$")

# Module-level ContextVar -- allows non-HTTP code (services, logging) to read
# the current request ID without needing the Request object.
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def get_request_id() -> str:
    return request_id_var.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Sets the request ID ContextVar and adds the X-Request-ID header to
    every response."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        inbound = request.headers.get(REQUEST_ID_HEADER, "")
        req_id = inbound if _VALID_REQUEST_ID.match(inbound) else uuid.uuid4().hex
        request_id_var.set(req_id)
        request.state.request_id = req_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = req_id
        return response


class ErrorResponseMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, dispatcher: Dispatcher, html_pages: bool = True) -> None:
        super().__init__(app)
        self.dispatcher = dispatcher
        self.html_pages = html_pages

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        try:
            return await call_next(request)
        except Exception as exc:  # noqa: BLE001
            error = self.dispatcher.handle(exc, request_metadata(request))
            return render_error(error, request, html_pages=self.html_pages)
