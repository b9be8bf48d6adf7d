"""Dispatcher: the single entry point the transport layer calls.

handle() classifies the fault, resolves the first matching rule, builds the
response and returns it. It never raises: if any step faults, a static
INTERNAL_ERROR/500 response carrying the same correlation id is returned.

Configuration (register_rule, register_entry, seal) happens once at startup.
After seal() the dispatcher holds no mutable state and may be shared by any
number of concurrent requests.
"""

import logging
import uuid
from dataclasses import dataclass

from errorhub.errors import RaisedFailure
from errorhub.mapping.builder import ResponseBuilder
from errorhub.mapping.classifier import FailureClassifier
from errorhub.mapping.registry import ErrorCodeEntry, ErrorCodeRegistry
from errorhub.mapping.rules import MappingRule, RuleChain
from errorhub.schemas.error import ErrorResponse

log = logging.getLogger(__name__)

_FALLBACK = ErrorResponse(
    code="INTERNAL_ERROR",
    message="An unexpected error occurred",
    status=500,
    correlation_id="",
)


@dataclass(frozen=True)
class RequestMetadata:
    method: str = ""
    path: str = ""
    accept: str = ""
    request_id: str | None = None


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def fallback_response(correlation_id: str) -> ErrorResponse:
    return _FALLBACK.model_copy(update={"correlation_id": correlation_id})


class Dispatcher:
    def __init__(
        self,
        registry: ErrorCodeRegistry | None = None,
        chain: RuleChain | None = None,
        classifier: FailureClassifier | None = None,
        builder: ResponseBuilder | None = None,
    ) -> None:
        self.registry = registry or ErrorCodeRegistry()
        self.chain = chain or RuleChain()
        self.classifier = classifier or FailureClassifier()
        self.builder = builder or ResponseBuilder(self.registry)

    @property
    def sealed(self) -> bool:
        return self.registry.sealed and self.chain.sealed

    def register_rule(self, rule: MappingRule) -> None:
        self.chain.register(rule)

    def register_entry(self, entry: ErrorCodeEntry) -> None:
        self.registry.register(entry)

    def seal(self) -> None:
        self.registry.seal()
        self.chain.seal()
        log.info("Error mapping sealed with %d rule(s)", len(self.chain.rules))

    def handle(self, fault: object, metadata: RequestMetadata | None = None) -> ErrorResponse:
        correlation_id = None
        try:
            metadata = metadata or RequestMetadata()
            correlation_id = metadata.request_id or new_correlation_id()
            failure = self.classifier.classify(fault)
            rule = self.chain.resolve(failure)
            response = self.builder.build(failure, rule, correlation_id)
            _log_response(failure, rule, response, metadata)
        except Exception:  # noqa: BLE001
            if not isinstance(correlation_id, str) or not correlation_id:
                correlation_id = new_correlation_id()
            log.exception(
                "Error mapping failed for %s %s [%s]",
                getattr(metadata, "method", ""),
                getattr(metadata, "path", ""),
                correlation_id,
            )
            return fallback_response(correlation_id)
        return response


def _log_response(
    failure: RaisedFailure,
    rule: MappingRule,
    response: ErrorResponse,
    metadata: RequestMetadata,
) -> None:
    if response.status >= 500:
        log.error(
            "%s %s -> %d %s [%s] rule=%s: %s",
            metadata.method,
            metadata.path,
            response.status,
            response.code,
            response.correlation_id,
            rule.name,
            failure.internal_message,
            exc_info=failure.exception,
        )
    else:
        log.info(
            "%s %s -> %d %s [%s] rule=%s",
            metadata.method,
            metadata.path,
            response.status,
            response.code,
            response.correlation_id,
            rule.name,
        )
