"""Per-task scratch memory shared by the segments of a behavior chain.

A :class:`TaskContext` maps string keys to values: numbers, messages or
arbitrary blobs. Segments communicate by writing a value under one key and
letting a downstream segment read it, e.g. a sense segment stores the sample
size under ``'SENSOR_DATA'`` and a copy segment threads it into
``'COMPRESS_DATA'``.

Only the segments of a single task ever touch that task's context, and they
run strictly one after the other, so no locking is needed.

"""
from typing import Any, Dict, Iterator

_MISSING = object()


class MissingKey(KeyError):
    """A segment read a context key that no segment has written."""

    def __init__(self, key: str, scope: str = '') -> None:
        super().__init__(key)
        self.key = key
        self.scope = scope

    def __str__(self) -> str:
        where = f' of {self.scope}' if self.scope else ''
        return f'missing key "{self.key}" in context{where}'


class TaskContext:
    """String-keyed store shared by the segments of one task.

    :param str scope: Scope of the owning task, used in error messages.

    """

    def __init__(self, scope: str = '') -> None:
        self.scope = scope
        self._values: Dict[str, Any] = {}

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """Get the value stored under `key`.

        :raises MissingKey: If `key` is absent and no `default` is given.

        """
        try:
            return self._values[key]
        except KeyError:
            if default is _MISSING:
                raise MissingKey(key, self.scope) from None
            return default

    def put(self, key: str, value: Any) -> None:
        """Store `value` under `key`, overwriting any previous value."""
        self._values[key] = value

    def pop(self, key: str, default: Any = _MISSING) -> Any:
        """Remove and return the value stored under `key`."""
        value = self.get(key, default)
        self._values.pop(key, None)
        return value

    def clear(self) -> None:
        self._values.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(scope={self.scope!r} keys={sorted(self._values)})'
