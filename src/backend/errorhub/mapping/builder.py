"""Response builder: RaisedFailure + matched rule -> ErrorResponse.

Registry entry first, then the rule override on top:
  code     -- override only if the registry accepts it for the category
  status   -- override, else the failure's status hint; only inside the
              category's allowed set (Internal is always 500)
  message  -- override > allow-listed internal message > public message
              > registry template
  details  -- override > violations > "field" context entry, plus context
              entries when allow-listed

Anything tied to a sensitive context key is stripped before rendering.
"""

import logging
import re
import traceback
from collections.abc import Iterable, Mapping

from errorhub.errors import FieldViolation, RaisedFailure
from errorhub.mapping.registry import ErrorCodeEntry, ErrorCodeRegistry
from errorhub.mapping.rules import MappingRule, RuleOverride
from errorhub.schemas.error import CauseSummary, Diagnostics, ErrorDetail, ErrorResponse

log = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

DEFAULT_SENSITIVE_KEY_PATTERNS: tuple[str, ...] = (
    "passw(or)?d",
    "secret",
    "token",
    "api[_-]?key",
    "authorization",
    "cookie",
    "session",
    "credential",
    "ssn",
    "card",
)

# Context keys with a fixed meaning for detail rendering
_RESERVED_CONTEXT = frozenset({"field", "reason"})


class _PublicContext(dict):
    def __missing__(self, key: str) -> str:
        return key


class ResponseBuilder:
    def __init__(
        self,
        registry: ErrorCodeRegistry,
        *,
        sensitive_key_patterns: Iterable[str] = DEFAULT_SENSITIVE_KEY_PATTERNS,
        stack_trace_filters: Iterable[str] = (),
    ) -> None:
        self.registry = registry
        self._deny = [re.compile(p, re.IGNORECASE) for p in sensitive_key_patterns]
        self._stack_trace_filters = tuple(stack_trace_filters)

    def is_sensitive(self, key: str) -> bool:
        return any(p.search(key) for p in self._deny)

    def build(self, failure: RaisedFailure, rule: MappingRule, correlation_id: str) -> ErrorResponse:
        entry = self.registry.lookup(failure.category)
        override = rule.render(failure)
        public, secrets = self._split_context(failure.context)

        details = self._details(failure, override, entry, public)
        denied = {key.lower() for key in failure.context if key not in public}
        details = [d for d in details if not self._leaks(d, denied, secrets)]

        return ErrorResponse(
            code=self._code(failure, override, entry, rule),
            message=self._message(failure, override, entry, public, secrets),
            status=self._status(failure, override, entry, rule),
            correlation_id=correlation_id,
            details=[ErrorDetail(field=d.field, message=d.message) for d in details],
            headers=self._headers(override),
            diagnostics=self._diagnostics(failure, override, secrets),
        )

    def _split_context(self, context: Mapping[str, str]) -> tuple[dict[str, str], list[str]]:
        public: dict[str, str] = {}
        secrets: list[str] = []
        for key, value in context.items():
            if self.is_sensitive(key):
                if value:
                    secrets.append(value)
            else:
                public[key] = value
        return public, secrets

    def _code(self, failure: RaisedFailure, override: RuleOverride, entry: ErrorCodeEntry, rule: MappingRule) -> str:
        if override.code is None:
            return entry.code
        if self.registry.accepts_code(failure.category, override.code):
            return override.code
        log.warning(
            "Rule %s returned code %s which does not belong to %s; using %s",
            rule.name,
            override.code,
            failure.category.value,
            entry.code,
        )
        return entry.code

    def _status(self, failure: RaisedFailure, override: RuleOverride, entry: ErrorCodeEntry, rule: MappingRule) -> int:
        if override.status is not None:
            if self.registry.accepts_status(failure.category, override.status):
                return override.status
            log.warning(
                "Rule %s returned status %d which is not allowed for %s; using %d",
                rule.name,
                override.status,
                failure.category.value,
                entry.http_status,
            )
            return entry.http_status
        hint = failure.status_hint
        if hint is not None and self.registry.accepts_status(failure.category, hint):
            return hint
        return entry.http_status

    def _message(
        self,
        failure: RaisedFailure,
        override: RuleOverride,
        entry: ErrorCodeEntry,
        public: dict[str, str],
        secrets: list[str],
    ) -> str:
        if override.message is not None:
            return self._render(override.message, public)
        if "internal_message" in override.expose and failure.internal_message:
            return self._redact(failure.internal_message, secrets)
        if failure.public_message:
            return self._redact(failure.public_message, secrets)
        return self._render(entry.message_template, public)

    @staticmethod
    def _render(template: str, public: dict[str, str]) -> str:
        try:
            return template.format_map(_PublicContext(public))
        except (ValueError, IndexError, AttributeError):
            return template

    def _details(
        self,
        failure: RaisedFailure,
        override: RuleOverride,
        entry: ErrorCodeEntry,
        public: dict[str, str],
    ) -> list[FieldViolation]:
        if override.details is not None:
            details = list(override.details)
        elif failure.violations:
            details = list(failure.violations)
        elif "field" in public:
            reason = public.get("reason") or self._render(entry.message_template, public)
            details = [FieldViolation(field=public["field"], message=reason)]
        else:
            details = []

        if "context" in override.expose:
            details.extend(
                FieldViolation(field=key, message=value)
                for key, value in public.items()
                if key not in _RESERVED_CONTEXT
            )
        return details

    @staticmethod
    def _leaks(detail: FieldViolation, denied: set[str], secrets: list[str]) -> bool:
        field, message = detail.field.lower(), detail.message.lower()
        if any(key in field or key in message for key in denied):
            return True
        return any(secret in detail.message or secret in detail.field for secret in secrets)

    @staticmethod
    def _redact(text: str, secrets: list[str]) -> str:
        for secret in secrets:
            text = text.replace(secret, REDACTED)
        return text

    @staticmethod
    def _headers(override: RuleOverride) -> dict[str, str]:
        headers = {}
        for name, value in override.headers.items():
            if any(c in f"{name}{value}" for c in "\r\n"):
                log.warning("Dropping header %r with line break", name)
                continue
            headers[name] = value
        return headers

    def _diagnostics(
        self, failure: RaisedFailure, override: RuleOverride, secrets: list[str]
    ) -> Diagnostics | None:
        expose = override.expose & {"internal_message", "cause_chain", "stack_trace"}
        if not expose:
            return None
        internal_message = None
        if "internal_message" in expose:
            internal_message = self._redact(failure.internal_message, secrets)
        causes = None
        if "cause_chain" in expose and failure.cause is not None:
            causes = [
                CauseSummary(category=c.category.value, message=self._redact(c.internal_message, secrets))
                for c in failure.cause.chain()
            ]
        stack_trace = None
        exception_type = None
        if failure.exception is not None and expose & {"internal_message", "stack_trace"}:
            exception_type = type(failure.exception).__qualname__
            if "stack_trace" in expose:
                stack_trace = self._stack_trace(failure.exception)
        return Diagnostics(
            internal_message=internal_message,
            exception_type=exception_type,
            causes=causes,
            stack_trace=stack_trace,
        )

    def _stack_trace(self, exc: BaseException) -> list[str]:
        frames = traceback.extract_tb(exc.__traceback__)
        return [
            f"{frame.filename}:{frame.lineno} in {frame.name}"
            for frame in frames
            if not any(f in frame.filename for f in self._stack_trace_filters)
        ]
