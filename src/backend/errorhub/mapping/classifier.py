"""Failure classifier: any escaped fault -> RaisedFailure.

Recognized shapes, first match wins:
  RaisedFailure                      -> returned unchanged
  object with a FailureCategory .category (ErrorHubError and friends)
  RequestValidationError / pydantic  -> Validation, one violation per error
  Starlette HTTPException            -> category owning its status
  SQLAlchemy errors                  -> NotFound / Conflict / Dependency
  httpx errors                       -> Dependency
  python-jose JWTError               -> Unauthorized
  ConnectionError / TimeoutError     -> Dependency
  anything else                      -> Internal, original kept in .cause

classify() never raises. Extra extractors registered by the caller run
before the built-in ones.
"""

import logging
from collections.abc import Callable, Iterable

import httpx
from fastapi.exceptions import RequestValidationError
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import exc as sa_exc
from starlette.exceptions import HTTPException

from errorhub.errors import FailureCategory, FieldViolation, RaisedFailure
from errorhub.mapping.registry import category_for_status

log = logging.getLogger(__name__)

Extractor = Callable[[BaseException], RaisedFailure | None]

GENERIC_INTERNAL_MESSAGE = "Unhandled error"

_MAX_CAUSE_DEPTH = 16
_MAX_TEXT = 500


def _truncate(text: str) -> str:
    return text if len(text) <= _MAX_TEXT else text[: _MAX_TEXT - 3] + "..."


def _describe(exc: BaseException) -> str:
    message = str(exc)
    name = type(exc).__qualname__
    return _truncate(f"{name}: {message}" if message else name)


def _violations_from_errors(errors: Iterable[dict]) -> tuple[FieldViolation, ...]:
    violations = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        # FastAPI prefixes the request part ("body", "query", ...)
        if len(loc) > 1 and loc[0] in {"body", "query", "path", "header", "cookie"}:
            loc = loc[1:]
        violations.append(
            FieldViolation(field=".".join(loc) or "request", message=str(error.get("msg", "")))
        )
    return tuple(violations)


def _from_category_attr(exc: BaseException) -> RaisedFailure | None:
    category = getattr(exc, "category", None)
    if not isinstance(category, FailureCategory):
        return None
    context = getattr(exc, "context", None) or {}
    return RaisedFailure(
        category=category,
        internal_message=_truncate(str(getattr(exc, "message", "") or exc)),
        context={str(k): str(v) for k, v in dict(context).items()},
        violations=tuple(getattr(exc, "violations", ()) or ()),
        public_message=getattr(exc, "public_message", None),
        exception=exc,
    )


def _from_request_validation(exc: BaseException) -> RaisedFailure | None:
    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        return RaisedFailure(
            category=FailureCategory.VALIDATION,
            internal_message=_describe(exc),
            violations=_violations_from_errors(exc.errors()),
            exception=exc,
        )
    return None


def _from_http_exception(exc: BaseException) -> RaisedFailure | None:
    if not isinstance(exc, HTTPException):
        return None
    category = category_for_status(exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else None
    return RaisedFailure(
        category=category,
        internal_message=_truncate(str(exc.detail)),
        public_message=detail if exc.status_code < 500 else None,
        status_hint=exc.status_code,
        exception=exc,
    )


def _from_sqlalchemy(exc: BaseException) -> RaisedFailure | None:
    if isinstance(exc, sa_exc.NoResultFound):
        category = FailureCategory.NOT_FOUND
    elif isinstance(exc, sa_exc.IntegrityError):
        category = FailureCategory.CONFLICT
    elif isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError)):
        category = FailureCategory.DEPENDENCY
    else:
        return None
    context = {"dependency": "database"} if category is FailureCategory.DEPENDENCY else {}
    if isinstance(exc, sa_exc.TimeoutError):
        context["timeout"] = "true"
    return RaisedFailure(
        category=category, internal_message=_describe(exc), context=context, exception=exc
    )


def _from_httpx(exc: BaseException) -> RaisedFailure | None:
    if not isinstance(exc, httpx.HTTPError):
        return None
    context: dict[str, str] = {}
    try:
        context["dependency"] = exc.request.url.host
    except RuntimeError:
        # .request raises when the error was built without one
        pass
    if isinstance(exc, httpx.TimeoutException):
        context["timeout"] = "true"
    if isinstance(exc, httpx.HTTPStatusError):
        context["upstream_status"] = str(exc.response.status_code)
    return RaisedFailure(
        category=FailureCategory.DEPENDENCY,
        internal_message=_describe(exc),
        context=context,
        exception=exc,
    )


def _from_jose(exc: BaseException) -> RaisedFailure | None:
    if not isinstance(exc, JWTError):
        return None
    reason = "expired" if isinstance(exc, ExpiredSignatureError) else "invalid"
    return RaisedFailure(
        category=FailureCategory.UNAUTHORIZED,
        internal_message=_describe(exc),
        context={"auth_failure": reason},
        exception=exc,
    )


def _from_builtin(exc: BaseException) -> RaisedFailure | None:
    if isinstance(exc, (ConnectionError, TimeoutError)):
        context = {"timeout": "true"} if isinstance(exc, TimeoutError) else {}
        return RaisedFailure(
            category=FailureCategory.DEPENDENCY,
            internal_message=_describe(exc),
            context=context,
            exception=exc,
        )
    return None


BUILTIN_EXTRACTORS: tuple[Extractor, ...] = (
    _from_category_attr,
    _from_request_validation,
    _from_http_exception,
    _from_sqlalchemy,
    _from_httpx,
    _from_jose,
    _from_builtin,
)


class FailureClassifier:
    def __init__(self, extractors: Iterable[Extractor] = ()) -> None:
        self._extractors: tuple[Extractor, ...] = (*extractors, *BUILTIN_EXTRACTORS)

    def classify(self, fault: object) -> RaisedFailure:
        try:
            return self._classify(fault)
        except Exception:  # noqa: BLE001
            log.exception("Failure classification raised; treating as internal")
            return RaisedFailure(
                category=FailureCategory.INTERNAL,
                internal_message=GENERIC_INTERNAL_MESSAGE,
                exception=fault if isinstance(fault, BaseException) else None,
            )

    def _classify(self, fault: object) -> RaisedFailure:
        if isinstance(fault, RaisedFailure):
            return fault
        if not isinstance(fault, BaseException):
            return RaisedFailure(
                category=FailureCategory.INTERNAL,
                internal_message=GENERIC_INTERNAL_MESSAGE,
                cause=RaisedFailure(
                    category=FailureCategory.INTERNAL,
                    internal_message=_truncate(f"{type(fault).__qualname__}: {fault!r}"),
                ),
            )

        failure = self._extract(fault)
        cause = self._cause_chain(fault)
        if failure is None:
            # Unknown shape: the top level stays generic and the fault itself
            # becomes the head of the cause chain.
            return RaisedFailure(
                category=FailureCategory.INTERNAL,
                internal_message=GENERIC_INTERNAL_MESSAGE,
                context={"exception_type": type(fault).__qualname__},
                cause=self._describe_unknown(fault, cause),
                exception=fault,
            )
        if cause is not None and failure.cause is None:
            failure = RaisedFailure(
                category=failure.category,
                internal_message=failure.internal_message,
                context=failure.context,
                cause=cause,
                violations=failure.violations,
                public_message=failure.public_message,
                status_hint=failure.status_hint,
                exception=failure.exception,
            )
        return failure

    def _extract(self, exc: BaseException) -> RaisedFailure | None:
        for extractor in self._extractors:
            try:
                failure = extractor(exc)
            except Exception:  # noqa: BLE001
                log.warning("Extractor %r failed on %s", extractor, type(exc).__qualname__, exc_info=True)
                continue
            if failure is not None:
                return failure
        return None

    @staticmethod
    def _describe_unknown(exc: BaseException, cause: RaisedFailure | None) -> RaisedFailure:
        return RaisedFailure(
            category=FailureCategory.INTERNAL,
            internal_message=_describe(exc),
            cause=cause,
            exception=exc,
        )

    def _cause_chain(self, exc: BaseException) -> RaisedFailure | None:
        """Diagnostic chain built from __cause__ / __context__."""
        links: list[BaseException] = []
        seen = {id(exc)}
        current = _next_cause(exc)
        while current is not None and id(current) not in seen and len(links) < _MAX_CAUSE_DEPTH:
            seen.add(id(current))
            links.append(current)
            current = _next_cause(current)

        chain: RaisedFailure | None = None
        for link in reversed(links):
            extracted = self._extract(link)
            chain = RaisedFailure(
                category=extracted.category if extracted else FailureCategory.INTERNAL,
                internal_message=_describe(link),
                cause=chain,
                exception=link,
            )
        return chain


def _next_cause(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__
