"""Tag keys and tag-set construction for resiliency measurements."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from resiliency_metrics.errors import InvalidTagError

APP_ID_KEY = "app_id"
NAMESPACE_KEY = "namespace"
POLICY_NAME_KEY = "name"
POLICY_TYPE_KEY = "policy"
COMPONENT_KEY = "component"

MAX_TAG_LENGTH = 255


class PolicyType(str, Enum):
    """Kinds of resiliency policy reported in the ``policy`` tag."""

    TIMEOUT = "timeout"
    RETRY = "retry"
    CIRCUIT_BREAKER = "circuitbreaker"


def _is_printable_ascii(text: str) -> bool:
    return all(" " <= ch <= "~" for ch in text)


def _check_key(key: Any) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidTagError("Tag key must be a non-empty string", details={"key": key})
    if len(key) > MAX_TAG_LENGTH or not _is_printable_ascii(key):
        raise InvalidTagError("Tag key is not valid", details={"key": key})
    return key


def _check_value(key: str, value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        raise InvalidTagError(
            "Tag value must be a string",
            details={"key": key, "value": value},
        )
    if len(value) > MAX_TAG_LENGTH or not _is_printable_ascii(value):
        raise InvalidTagError("Tag value is not valid", details={"key": key, "value": value})
    return value


class TagSet(Mapping[str, str]):
    """Immutable, insertion-ordered set of tags attached to one measurement."""

    __slots__ = ("_tags",)

    def __init__(self, tags: Optional[Mapping[str, str]] = None):
        self._tags: Dict[str, str] = dict(tags or {})

    @staticmethod
    def builder() -> "TagSetBuilder":
        return TagSetBuilder()

    def __getitem__(self, key: str) -> str:
        return self._tags[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __repr__(self) -> str:
        return f"TagSet({self._tags!r})"

    def select(self, keys) -> Dict[str, str]:
        """Return the subset of tags whose key is in ``keys``, in ``keys`` order."""
        return {k: self._tags[k] for k in keys if k in self._tags}


class TagSetBuilder:
    """Collects validated key/value pairs; later values win for repeated keys."""

    def __init__(self) -> None:
        self._pairs: List[Tuple[str, str]] = []

    def add(self, key: str, value: Any) -> "TagSetBuilder":
        key = _check_key(key)
        self._pairs.append((key, _check_value(key, value)))
        return self

    def build(self) -> TagSet:
        return TagSet(dict(self._pairs))


def with_tags(*pairs: Any) -> TagSet:
    """Build a TagSet from alternating key and value arguments.

    Example:
        >>> with_tags(APP_ID_KEY, "checkout", COMPONENT_KEY, "statestore")
        TagSet({'app_id': 'checkout', 'component': 'statestore'})
    """
    if len(pairs) % 2 != 0:
        raise InvalidTagError(
            "Tags must be given as key/value pairs",
            details={"count": len(pairs)},
        )
    builder = TagSet.builder()
    for i in range(0, len(pairs), 2):
        builder.add(pairs[i], pairs[i + 1])
    return builder.build()
