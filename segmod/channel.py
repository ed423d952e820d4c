"""Communication channels.

A channel connects exactly two :class:`~segmod.device.CommunicationDevice`
instances and determines how long a message takes to cross it. Channels hold
no simulation state and are only read after construction, so the two devices
may share one freely.

"""
from typing import TYPE_CHECKING, List, Optional

from .config import ConfigError

if TYPE_CHECKING:
    from .device import CommunicationDevice

#: Messages are delivered in the order they arrive; a small message sent
#: after a large one may overtake it.
ARRIVAL_ORDER = 'arrival'
#: Messages from one device are delivered in the order they were sent; a
#: message that arrives early is held until its predecessors are delivered.
SEND_ORDER = 'send'


class Channel:
    """Base class for channels.

    :param str ordering: Delivery ordering policy, :data:`ARRIVAL_ORDER` or
        :data:`SEND_ORDER`.

    """

    def __init__(self, ordering: str = ARRIVAL_ORDER) -> None:
        if ordering not in (ARRIVAL_ORDER, SEND_ORDER):
            raise ConfigError(f'unknown channel ordering "{ordering}"')
        self.ordering = ordering
        self._devices: List['CommunicationDevice'] = []

    @property
    def devices(self) -> List['CommunicationDevice']:
        return list(self._devices)

    def attach(self, device: 'CommunicationDevice') -> None:
        if device in self._devices:
            return
        if len(self._devices) == 2:
            raise ConfigError(
                f'channel already connects {self._devices[0].scope} and '
                f'{self._devices[1].scope}; cannot attach {device.scope}'
            )
        self._devices.append(device)

    def peer(self, device: 'CommunicationDevice') -> Optional['CommunicationDevice']:
        """The device at the other end of the channel from `device`, if any."""
        for other in self._devices:
            if other is not device:
                return other
        return None

    def delay(self, size: float) -> float:
        """Transmission delay, in seconds, of a message of `size` bytes."""
        raise NotImplementedError()  # pragma: no cover


class DelayChannel(Channel):
    """Channel whose delay is proportional to message size.

    :param float bandwidth: Bandwidth in bytes per second.

    """

    def __init__(self, bandwidth: float, ordering: str = ARRIVAL_ORDER) -> None:
        super().__init__(ordering)
        if bandwidth <= 0:
            raise ConfigError(f'channel bandwidth must be positive, got {bandwidth}')
        self.bandwidth = bandwidth

    def delay(self, size: float) -> float:
        return size / self.bandwidth

    def __repr__(self) -> str:
        return f'{type(self).__name__}(bandwidth={self.bandwidth} ordering={self.ordering!r})'
