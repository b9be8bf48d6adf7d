"""Mapping rules and the ordered, first-match-wins rule chain.

A rule decides whether it applies to a RaisedFailure and, if so, returns a
RuleOverride: a partial response whose unset fields fall back to the registry
defaults. Position in the chain is the precedence; rules are registered once
at startup and the chain is sealed before serving traffic.

Exposable internals (RuleOverride.expose):
  internal_message -- render failure.internal_message as the message
  context          -- render non-sensitive context entries as details
  cause_chain      -- add the cause chain to diagnostics
  stack_trace      -- add the filtered stack trace to diagnostics
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from errorhub.errors import ConfigurationError, FailureCategory, FieldViolation, RaisedFailure

log = logging.getLogger(__name__)

EXPOSABLE: frozenset[str] = frozenset({"internal_message", "context", "cause_chain", "stack_trace"})


@dataclass(frozen=True)
class RuleOverride:
    code: str | None = None
    message: str | None = None
    status: int | None = None
    details: tuple[FieldViolation, ...] | None = None
    headers: dict[str, str] = field(default_factory=dict)
    expose: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        unknown = self.expose - EXPOSABLE
        if unknown:
            raise ConfigurationError(f"Cannot expose {sorted(unknown)}")


class MappingRule(ABC):
    name: str = "rule"

    @abstractmethod
    def matches(self, failure: RaisedFailure) -> bool: ...

    @abstractmethod
    def render(self, failure: RaisedFailure) -> RuleOverride: ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class DefaultRule(MappingRule):
    """Registry defaults only. Used when no registered rule matches."""

    name = "default"

    def matches(self, failure: RaisedFailure) -> bool:
        return True

    def render(self, failure: RaisedFailure) -> RuleOverride:
        return RuleOverride()


DEFAULT_RULE = DefaultRule()


class CategoryRule(MappingRule):
    """Static override applied to every failure of one category."""

    def __init__(self, category: FailureCategory, override: RuleOverride, name: str | None = None) -> None:
        self.category = category
        self.override = override
        self.name = name or f"category:{category.value}"

    def matches(self, failure: RaisedFailure) -> bool:
        return failure.category is self.category

    def render(self, failure: RaisedFailure) -> RuleOverride:
        return self.override


class PredicateRule(MappingRule):
    """Caller-supplied predicate plus a static or computed override."""

    def __init__(
        self,
        name: str,
        predicate: Callable[[RaisedFailure], bool],
        override: RuleOverride | Callable[[RaisedFailure], RuleOverride],
    ) -> None:
        self.name = name
        self._predicate = predicate
        self._override = override

    def matches(self, failure: RaisedFailure) -> bool:
        return bool(self._predicate(failure))

    def render(self, failure: RaisedFailure) -> RuleOverride:
        if isinstance(self._override, RuleOverride):
            return self._override
        return self._override(failure)


class RetryAfterRule(MappingRule):
    name = "rate-limited:retry-after"

    def matches(self, failure: RaisedFailure) -> bool:
        return (
            failure.category is FailureCategory.RATE_LIMITED
            and failure.context.get("retry_after", "").isdigit()
        )

    def render(self, failure: RaisedFailure) -> RuleOverride:
        return RuleOverride(headers={"Retry-After": failure.context["retry_after"]})


class BearerChallengeRule(MappingRule):
    name = "unauthorized:bearer-challenge"

    def __init__(self, realm: str | None = None) -> None:
        self.realm = realm

    def matches(self, failure: RaisedFailure) -> bool:
        return failure.category is FailureCategory.UNAUTHORIZED

    def render(self, failure: RaisedFailure) -> RuleOverride:
        challenge = f'Bearer realm="{self.realm}"' if self.realm else "Bearer"
        return RuleOverride(headers={"WWW-Authenticate": challenge})


class UpstreamTimeoutRule(MappingRule):
    name = "dependency:timeout"

    def matches(self, failure: RaisedFailure) -> bool:
        return (
            failure.category is FailureCategory.DEPENDENCY
            and failure.context.get("timeout") == "true"
        )

    def render(self, failure: RaisedFailure) -> RuleOverride:
        return RuleOverride(status=504, message="An upstream service timed out")


class DiagnosticsRule(MappingRule):
    """Allow-lists internals for every failure it sees.

    Meant for development only and registered last, so it replaces the
    default rule without shadowing any specific rule.
    """

    name = "diagnostics"

    def __init__(
        self,
        expose: Iterable[str] = ("internal_message", "context", "cause_chain", "stack_trace"),
    ) -> None:
        self.expose = frozenset(expose)

    def matches(self, failure: RaisedFailure) -> bool:
        return True

    def render(self, failure: RaisedFailure) -> RuleOverride:
        return RuleOverride(expose=self.expose)


class RuleChain:
    def __init__(self, rules: Iterable[MappingRule] = ()) -> None:
        self._rules: list[MappingRule] = []
        self._frozen: tuple[MappingRule, ...] | None = None
        for rule in rules:
            self.register(rule)

    @property
    def sealed(self) -> bool:
        return self._frozen is not None

    @property
    def rules(self) -> tuple[MappingRule, ...]:
        return self._frozen if self._frozen is not None else tuple(self._rules)

    def register(self, rule: MappingRule) -> None:
        """Append rule; its position in the chain is its precedence."""
        if self._frozen is not None:
            raise ConfigurationError("Rule chain is sealed")
        if any(r.name == rule.name for r in self._rules):
            raise ConfigurationError(f"Duplicate mapping rule name {rule.name!r}")
        self._rules.append(rule)
        log.info("Registered mapping rule %s at position %d", rule.name, len(self._rules) - 1)

    def seal(self) -> None:
        if self._frozen is None:
            self._frozen = tuple(self._rules)

    def resolve(self, failure: RaisedFailure) -> MappingRule:
        for rule in self.rules:
            if rule.matches(failure):
                return rule
        return DEFAULT_RULE
