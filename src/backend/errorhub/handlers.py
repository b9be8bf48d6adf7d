"""Transport glue between Starlette requests and the Dispatcher.

render_error() serializes an ErrorResponse for the client:
  HEAD                      -> status and headers only
  Accept: text/html, no JSON -> escaped HTML page (when enabled)
  otherwise                 -> application/json body (schema version 1)
"""

import html
from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from errorhub.mapping.dispatcher import Dispatcher, RequestMetadata
from errorhub.schemas.error import SCHEMA_VERSION, ErrorResponse

ExceptionHandler = Callable[[Request, Exception], Awaitable[Response]]


def request_metadata(request: Request) -> RequestMetadata:
    return RequestMetadata(
        method=request.method,
        path=request.url.path,
        accept=request.headers.get("accept", ""),
        request_id=getattr(request.state, "request_id", None),
    )


def wants_html(accept: str) -> bool:
    accept = accept.lower()
    return "text/html" in accept and "json" not in accept


def _headers(error: ErrorResponse) -> dict[str, str]:
    return {
        **error.headers,
        "X-Request-ID": error.correlation_id,
        "X-Error-Schema": SCHEMA_VERSION,
    }


def render_html(error: ErrorResponse) -> str:
    items = "".join(
        f"<li><code>{html.escape(d.field)}</code>: {html.escape(d.message)}</li>"
        for d in error.details
    )
    details = f"<ul>{items}</ul>" if items else ""
    return (
        '<!doctype html><html lang="en"><head><meta charset="utf-8">'
        '<meta name="robots" content="noindex, nofollow">'
        f"<title>{error.status} {html.escape(error.code)}</title></head>"
        f"<body><main><h1>{html.escape(error.message)}</h1>"
        f"<h2>{error.status}</h2>{details}"
        f"<p>Reference: <code>{html.escape(error.correlation_id)}</code></p>"
        "</main></body></html>"
    )


def render_error(error: ErrorResponse, request: Request, *, html_pages: bool = True) -> Response:
    headers = _headers(error)
    if request.method == "HEAD":
        return Response(status_code=error.status, headers=headers)
    if html_pages and wants_html(request.headers.get("accept", "")):
        return HTMLResponse(render_html(error), status_code=error.status, headers=headers)
    return JSONResponse(error.body(), status_code=error.status, headers=headers)


def make_exception_handler(dispatcher: Dispatcher, *, html_pages: bool = True) -> ExceptionHandler:
    """Exception handler for faults Starlette catches before middleware sees
    them (HTTPException, RequestValidationError)."""

    async def handle_exception(request: Request, exc: Exception) -> Response:
        error = dispatcher.handle(exc, request_metadata(request))
        response = render_error(error, request, html_pages=html_pages)
        # e.g. Allow on 405, set by Starlette itself
        for name, value in (getattr(exc, "headers", None) or {}).items():
            response.headers.setdefault(name, value)
        return response

    return handle_exception
