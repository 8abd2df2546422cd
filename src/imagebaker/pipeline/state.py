"""Shared state bag passed by reference through every build step."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Iterator, TypeVar

from ..errors import MissingStateError

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True, slots=True)
class StateKey(Generic[T]):
    """A well-known state key together with the type stored under it."""

    name: str
    expected_type: type | tuple[type, ...]

    def __str__(self) -> str:
        return self.name


class StateBag:
    """Mutable key/value container shared by the steps of a single build.

    Steps run strictly one at a time, so the bag does no locking. Values may be
    stored under plain strings or under a :class:`StateKey`, in which case the
    value type is checked on ``put`` and ``require`` returns it typed.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def put(self, key: StateKey[T] | str, value: T) -> None:
        if isinstance(key, StateKey) and not isinstance(value, key.expected_type):
            raise TypeError(
                f"State key '{key.name}' expects {_type_name(key.expected_type)}, got {type(value).__name__}"
            )
        self._data[str(key)] = value

    def get(self, key: StateKey[T] | str, default: Any = None) -> T | Any:
        return self._data.get(str(key), default)

    def get_ok(self, key: StateKey[T] | str) -> tuple[T | None, bool]:
        value = self._data.get(str(key), _MISSING)
        if value is _MISSING:
            return None, False
        return value, True

    def require(self, key: StateKey[T] | str) -> T:
        value = self._data.get(str(key), _MISSING)
        if value is _MISSING:
            raise MissingStateError(str(key))
        return value

    def remove(self, key: StateKey[T] | str) -> None:
        self._data.pop(str(key), None)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " | ".join(item.__name__ for item in expected)
    return expected.__name__
