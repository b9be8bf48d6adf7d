"""Error code registry: category -> stable code, HTTP status, public message.

The registry is built from an exhaustive table at construction; a table that
misses a category fails immediately with ConfigurationError. Entries may be
replaced until seal() is called, after which the registry is read-only and
safe to share between concurrent requests.

Each category also owns a fixed set of statuses it may be rendered with.
Registry entries, rule overrides and framework status hints must all fall
inside that set, which keeps status and code consistent on the wire.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from errorhub.errors import ConfigurationError, FailureCategory

log = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

ALLOWED_STATUSES: dict[FailureCategory, frozenset[int]] = {
    FailureCategory.VALIDATION: frozenset(
        {400, 405, 406, 408, 411, 413, 414, 415, 416, 417, 422, 428, 431}
    ),
    FailureCategory.NOT_FOUND: frozenset({404, 410}),
    FailureCategory.CONFLICT: frozenset({409, 412}),
    FailureCategory.UNAUTHORIZED: frozenset({401}),
    FailureCategory.FORBIDDEN: frozenset({403}),
    FailureCategory.RATE_LIMITED: frozenset({429}),
    FailureCategory.DEPENDENCY: frozenset({502, 503, 504}),
    FailureCategory.INTERNAL: frozenset({500}),
}


@dataclass(frozen=True)
class ErrorCodeEntry:
    category: FailureCategory
    http_status: int
    code: str
    message_template: str
    aliases: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not 100 <= self.http_status <= 599:
            raise ConfigurationError(f"{self.code}: http_status {self.http_status} out of range")
        for code in (self.code, *self.aliases):
            if not _CODE_RE.match(code):
                raise ConfigurationError(f"Invalid error code {code!r}")


DEFAULT_ENTRIES: tuple[ErrorCodeEntry, ...] = (
    ErrorCodeEntry(
        FailureCategory.VALIDATION, 400, "VALIDATION_FAILED", "The request failed validation"
    ),
    ErrorCodeEntry(
        FailureCategory.NOT_FOUND, 404, "NOT_FOUND", "The requested {resource} was not found"
    ),
    ErrorCodeEntry(
        FailureCategory.CONFLICT,
        409,
        "CONFLICT",
        "The request conflicts with the current state of the resource",
    ),
    ErrorCodeEntry(FailureCategory.UNAUTHORIZED, 401, "UNAUTHORIZED", "Authentication is required"),
    ErrorCodeEntry(
        FailureCategory.FORBIDDEN,
        403,
        "FORBIDDEN",
        "You do not have permission to perform this action",
    ),
    ErrorCodeEntry(
        FailureCategory.RATE_LIMITED, 429, "RATE_LIMITED", "Too many requests, try again later"
    ),
    ErrorCodeEntry(
        FailureCategory.DEPENDENCY, 502, "DEPENDENCY_FAILURE", "An upstream service failed"
    ),
    ErrorCodeEntry(
        FailureCategory.INTERNAL, 500, "INTERNAL_ERROR", "An unexpected error occurred"
    ),
)


def category_for_status(status: int) -> FailureCategory:
    """Map a bare HTTP status back to the category that owns it."""
    for category, statuses in ALLOWED_STATUSES.items():
        if status in statuses:
            return category
    if 400 <= status < 500:
        return FailureCategory.VALIDATION
    return FailureCategory.INTERNAL


class ErrorCodeRegistry:
    def __init__(self, entries: Iterable[ErrorCodeEntry] = DEFAULT_ENTRIES) -> None:
        self._entries: dict[FailureCategory, ErrorCodeEntry] = {}
        self._sealed = False
        for entry in entries:
            if entry.category in self._entries:
                raise ConfigurationError(f"Duplicate registry entry for {entry.category.value}")
            self._validate(entry)
            self._entries[entry.category] = entry

        missing = [c.value for c in FailureCategory if c not in self._entries]
        if missing:
            raise ConfigurationError(f"Registry has no entry for: {', '.join(missing)}")

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def lookup(self, category: FailureCategory) -> ErrorCodeEntry:
        return self._entries[category]

    def register(self, entry: ErrorCodeEntry) -> None:
        """Replace the entry for entry.category. Only legal before seal()."""
        if self._sealed:
            raise ConfigurationError("Error code registry is sealed")
        self._validate(entry)
        self._entries[entry.category] = entry
        log.info(
            "Registered %s -> %s (%d)", entry.category.value, entry.code, entry.http_status
        )

    def accepts_status(self, category: FailureCategory, status: int) -> bool:
        return status in ALLOWED_STATUSES[category]

    def accepts_code(self, category: FailureCategory, code: str) -> bool:
        entry = self._entries[category]
        return code == entry.code or code in entry.aliases

    def _validate(self, entry: ErrorCodeEntry) -> None:
        if entry.http_status not in ALLOWED_STATUSES[entry.category]:
            raise ConfigurationError(
                f"Status {entry.http_status} is not allowed for {entry.category.value}"
            )
        for category, existing in self._entries.items():
            if category is entry.category:
                continue
            if {existing.code, *existing.aliases} & {entry.code, *entry.aliases}:
                raise ConfigurationError(
                    f"Code {entry.code} is already used by {category.value}"
                )
