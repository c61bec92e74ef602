"""
Request conditions for scoped configuration blocks.

A condition compares one request attribute (host, url path, remote ip or
scheme) with a value, by equality or regular expression. Results are cached
per request in a ConditionCache stored on the ASGI scope so that several
consumers evaluating the same condition agree, and so that the cache can be
invalidated when the remote address or scheme of the request is replaced.
"""
import re
from functools import lru_cache
from typing import Dict, Iterable, Literal, Self

from pydantic import BaseModel, ConfigDict, StrictStr, model_validator
from starlette.datastructures import Headers
from starlette.types import Scope

CONDITION_CACHE_SCOPE_KEY = "extforward.condition_cache"

ConditionField = Literal["host", "url", "remote_ip", "scheme"]
ConditionOperator = Literal["==", "!=", "=~", "!~"]

# Attributes that change when a forwarded address is substituted
ADDRESS_DEPENDENT_FIELDS = ("remote_ip", "scheme")


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern)


def request_attribute(scope: Scope, field: str) -> str:
    """Read the textual request attribute a condition field refers to."""
    if field == "host":
        return Headers(scope=scope).get("host", "")
    if field == "url":
        return scope.get("path", "")
    if field == "remote_ip":
        client = scope.get("client")
        return client[0] if client else ""
    if field == "scheme":
        return scope.get("scheme", "")
    raise ValueError(f"Unknown condition field: {field!r}")


class Condition(BaseModel):
    """A single request condition, e.g. ``host == "api.example.com"``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    field: ConditionField
    operator: ConditionOperator = "=="
    value: StrictStr

    @model_validator(mode="after")
    def validate_pattern(self) -> Self:
        """Reject regular expressions that do not compile."""
        if self.operator in ("=~", "!~"):
            try:
                _compile(self.value)
            except re.error as e:
                raise ValueError(
                    f"Invalid regular expression for {self.field} condition: "
                    f"{self.value!r} ({e})"
                ) from e
        return self

    def matches(self, scope: Scope) -> bool:
        """Evaluate the condition against the current request state."""
        actual = request_attribute(scope, self.field)
        if self.operator == "==":
            return actual == self.value
        if self.operator == "!=":
            return actual != self.value
        found = _compile(self.value).search(actual) is not None
        return found if self.operator == "=~" else not found


class ConditionCache:
    """
    Per-request memo of condition results.

    Entries are keyed by condition; invalidating a field drops every cached
    result for conditions on that field so the next evaluation sees the
    request's current attributes.
    """

    def __init__(self) -> None:
        self._results: Dict[Condition, bool] = {}

    def evaluate(self, condition: Condition, scope: Scope) -> bool:
        if condition not in self._results:
            self._results[condition] = condition.matches(scope)
        return self._results[condition]

    def invalidate(self, fields: Iterable[str] = ADDRESS_DEPENDENT_FIELDS) -> None:
        """Drop cached results for conditions on the given fields."""
        stale = set(fields)
        for condition in [c for c in self._results if c.field in stale]:
            del self._results[condition]

    def __contains__(self, condition: object) -> bool:
        return condition in self._results

    def __len__(self) -> int:
        return len(self._results)


def get_condition_cache(scope: Scope) -> ConditionCache:
    """Return the request's condition cache, creating it on first use."""
    cache = scope.get(CONDITION_CACHE_SCOPE_KEY)
    if cache is None:
        cache = ConditionCache()
        scope[CONDITION_CACHE_SCOPE_KEY] = cache
    return cache
