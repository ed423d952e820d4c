"""Immutable messages exchanged between task ports."""
from types import MappingProxyType
from typing import Any, Mapping


class Message:
    """A bag of named fields with a derived size.

    The size, in bytes, is stored in the :attr:`SIZE` field and drives the
    transmission delay of the message over a
    :class:`~segmod.channel.Channel`.

    Messages are immutable; use :meth:`replace` to derive a modified copy.

    """

    #: Name of the field holding the message size.
    SIZE = 'SIZE'

    __slots__ = ('_fields',)

    def __init__(self, fields: Mapping[str, Any]) -> None:
        if self.SIZE not in fields:
            raise ValueError(f'message fields must include {self.SIZE!r}')
        if fields[self.SIZE] < 0:
            raise ValueError(f'message size must be non-negative, got {fields[self.SIZE]}')
        object.__setattr__(self, '_fields', MappingProxyType(dict(fields)))

    @classmethod
    def create(cls, size: float, **fields: Any) -> 'Message':
        """Create a message of `size` bytes carrying additional `fields`."""
        fields[cls.SIZE] = size
        return cls(fields)

    @property
    def size(self) -> float:
        return self._fields[self.SIZE]

    @property
    def fields(self) -> Mapping[str, Any]:
        return self._fields

    def get(self, name: str, default: Any = None) -> Any:
        return self._fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self._fields[name]

    def replace(self, **fields: Any) -> 'Message':
        return type(self)({**self._fields, **fields})

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f'{type(self).__name__} is immutable')

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return dict(self._fields) == dict(other._fields)

    def __repr__(self) -> str:
        fields = ' '.join(f'{k}={v!r}' for k, v in self._fields.items())
        return f'{type(self).__name__}({fields})'
