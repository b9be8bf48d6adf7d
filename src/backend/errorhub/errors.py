"""ErrorHub failure taxonomy.

FailureCategory is the closed set every failure is reduced to. Service code
raises subclasses of ErrorHubError; the classifier turns those (and any other
escaped fault) into a RaisedFailure, which is the only value the mapping
pipeline works on.

ConfigurationError is raised at startup when the registry or rule chain is
misconfigured. It is never converted into an HTTP response.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum


class FailureCategory(str, Enum):
    VALIDATION = "Validation"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    RATE_LIMITED = "RateLimited"
    DEPENDENCY = "Dependency"
    INTERNAL = "Internal"


class ConfigurationError(Exception):
    """Registry or rule chain misconfiguration, or mutation after sealing."""


@dataclass(frozen=True)
class FieldViolation:
    field: str
    message: str


@dataclass(frozen=True)
class RaisedFailure:
    """What went wrong, reduced to a category plus structured context.

    internal_message, cause and exception are diagnostics only; the response
    builder never renders them unless a mapping rule allow-lists them.
    """

    category: FailureCategory
    internal_message: str = ""
    context: Mapping[str, str] = field(default_factory=dict)
    cause: "RaisedFailure | None" = None
    violations: tuple[FieldViolation, ...] = ()
    public_message: str | None = None
    status_hint: int | None = None
    exception: BaseException | None = field(default=None, compare=False, repr=False)

    def chain(self) -> Iterator["RaisedFailure"]:
        """Yield this failure followed by each nested cause."""
        current: RaisedFailure | None = self
        while current is not None:
            yield current
            current = current.cause


class ErrorHubError(Exception):
    category: FailureCategory = FailureCategory.INTERNAL

    def __init__(
        self,
        message: str = "",
        *,
        context: Mapping[str, str] | None = None,
        violations: list[FieldViolation] | None = None,
        public_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = {str(k): str(v) for k, v in (context or {}).items()}
        self.violations = tuple(violations or ())
        self.public_message = public_message


class ValidationError(ErrorHubError):
    category = FailureCategory.VALIDATION

    def __init__(
        self,
        message: str = "",
        *,
        field: str | None = None,
        reason: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        if field is not None:
            self.context["field"] = field
        if reason is not None:
            self.context["reason"] = reason


class NotFoundError(ErrorHubError):
    category = FailureCategory.NOT_FOUND

    def __init__(
        self,
        message: str = "",
        *,
        resource: str | None = None,
        resource_id: str | None = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        if resource is not None:
            self.context["resource"] = resource
        if resource_id is not None:
            self.context["resource_id"] = str(resource_id)


class ConflictError(ErrorHubError):
    category = FailureCategory.CONFLICT


class UnauthorizedError(ErrorHubError):
    category = FailureCategory.UNAUTHORIZED


class ForbiddenError(ErrorHubError):
    category = FailureCategory.FORBIDDEN


class RateLimitedError(ErrorHubError):
    category = FailureCategory.RATE_LIMITED

    def __init__(self, message: str = "", *, retry_after: int | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        if retry_after is not None:
            self.context["retry_after"] = str(retry_after)


class DependencyError(ErrorHubError):
    category = FailureCategory.DEPENDENCY

    def __init__(
        self,
        message: str = "",
        *,
        dependency: str | None = None,
        timeout: bool = False,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        if dependency is not None:
            self.context["dependency"] = dependency
        if timeout:
            self.context["timeout"] = "true"


class InternalError(ErrorHubError):
    category = FailureCategory.INTERNAL
