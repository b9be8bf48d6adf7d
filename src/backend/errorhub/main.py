"""ErrorHub FastAPI application factory.

Entry point: uvicorn errorhub.main:app

The Dispatcher is built and sealed once here; the app only ever reads it.
"""

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

from errorhub.config import AppSettings, settings
from errorhub.errors import FailureCategory
from errorhub.handlers import make_exception_handler
from errorhub.mapping.builder import ResponseBuilder
from errorhub.mapping.dispatcher import Dispatcher
from errorhub.mapping.registry import ErrorCodeEntry, ErrorCodeRegistry
from errorhub.mapping.rules import (
    BearerChallengeRule,
    DiagnosticsRule,
    RetryAfterRule,
    RuleChain,
    UpstreamTimeoutRule,
)
from errorhub.middleware import ErrorResponseMiddleware, RequestIDMiddleware
from errorhub.routers import demo, health


def build_dispatcher(app_settings: AppSettings, *, seal: bool = True) -> Dispatcher:
    registry = ErrorCodeRegistry()
    validation = registry.lookup(FailureCategory.VALIDATION)
    if app_settings.VALIDATION_STATUS != validation.http_status:
        registry.register(
            ErrorCodeEntry(
                category=validation.category,
                http_status=app_settings.VALIDATION_STATUS,
                code=validation.code,
                message_template=validation.message_template,
                aliases=validation.aliases,
            )
        )

    chain = RuleChain(
        [
            RetryAfterRule(),
            BearerChallengeRule(realm=app_settings.AUTH_REALM),
            UpstreamTimeoutRule(),
        ]
    )
    if app_settings.diagnostics_enabled:
        # Last, so it only replaces the default rule
        chain.register(DiagnosticsRule())

    dispatcher = Dispatcher(
        registry=registry,
        chain=chain,
        builder=ResponseBuilder(
            registry,
            sensitive_key_patterns=app_settings.SENSITIVE_KEY_PATTERNS,
            stack_trace_filters=app_settings.STACK_TRACE_FILTERS,
        ),
    )
    if seal:
        dispatcher.seal()
    return dispatcher


def install_error_handling(app: FastAPI, dispatcher: Dispatcher, *, html_pages: bool = True) -> None:
    """Route every fault through the dispatcher.

    Call before adding RequestIDMiddleware so the request ID middleware ends
    up outermost and stamps error responses too.
    """
    app.state.dispatcher = dispatcher
    handler = make_exception_handler(dispatcher, html_pages=html_pages)
    app.add_exception_handler(HTTPException, handler)
    app.add_exception_handler(RequestValidationError, handler)
    app.add_middleware(ErrorResponseMiddleware, dispatcher=dispatcher, html_pages=html_pages)


def create_app(app_settings: AppSettings | None = None, dispatcher: Dispatcher | None = None) -> FastAPI:
    app_settings = app_settings or settings
    dispatcher = dispatcher or build_dispatcher(app_settings)

    app = FastAPI(title=app_settings.APP_NAME)
    install_error_handling(app, dispatcher, html_pages=app_settings.HTML_ERROR_PAGES)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    app.include_router(demo.router)
    return app


app = create_app()
