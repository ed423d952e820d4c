"""Task ports.

Tasks exchange :class:`~segmod.message.Message` objects through ports. An
:class:`OutputPort` hands messages to the
:class:`~segmod.device.CommunicationDevice` it is bound to; the device
transmits them over its channel to a peer device which delivers them to its
bound :class:`InputPort`.

An :class:`InputPort` is a first-in first-out queue of delivered messages.
:meth:`InputPort.receive` returns an event that is triggered with the oldest
message as soon as one is available, which is how a blocking receive segment
suspends until delivery.

"""
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from simpy.core import BoundClass
from simpy.events import Event

from .config import ConfigError
from .message import Message

if TYPE_CHECKING:
    from .device import CommunicationDevice
    from .task import Task

EventCallback = Callable[[Event], None]


class UnboundPort(ConfigError):
    """A port was used without being bound to a communication device."""


class PortReceiveEvent(Event):
    """Pending receive, served in request order. It cannot be cancelled."""

    callbacks: List[EventCallback]

    def __init__(self, port: 'InputPort') -> None:
        super().__init__(port.env)
        self.port = port
        port._get_waiters.append(self)
        port._trigger_get()


class Port:
    """Named endpoint owned by a task."""

    direction = ''

    def __init__(self, task: 'Task', name: str) -> None:
        self.task = task
        self.name = name
        self.env = task.env
        #: Communication device this port is bound to.
        self.device: Optional['CommunicationDevice'] = None

    @property
    def scope(self) -> str:
        return f'{self.task.scope}.{self.name}'

    @property
    def is_bound(self) -> bool:
        return self.device is not None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.scope!r})'


class InputPort(Port):
    """Port accumulating delivered messages in arrival order."""

    direction = 'in'

    def __init__(self, task: 'Task', name: str) -> None:
        super().__init__(task, name)
        self.items: List[Message] = []
        #: Number of messages delivered to this port.
        self.delivered = 0
        self._get_waiters: List[PortReceiveEvent] = []
        self._put_hook: Optional[Callable[[], Any]] = None
        self._get_hook: Optional[Callable[[], Any]] = None
        BoundClass.bind_early(self)

    @property
    def size(self) -> int:
        """Number of queued messages."""
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    if TYPE_CHECKING:

        def receive(self) -> PortReceiveEvent:
            """Event triggered with the oldest queued message."""
            ...

    else:
        receive = BoundClass(PortReceiveEvent)

    def try_receive(self) -> Optional[Message]:
        """Dequeue the oldest message without waiting, or return None."""
        if self._get_waiters or not self.items:
            return None
        message = self.items.pop(0)
        if self._get_hook:
            self._get_hook()
        return message

    def deliver(self, message: Message) -> None:
        """Append a message; called when a transmission completes."""
        self.items.append(message)
        self.delivered += 1
        if self._put_hook:
            self._put_hook()
        self._trigger_get()

    def _trigger_get(self, _: Optional[Event] = None) -> None:
        while self._get_waiters and self.items:
            get_ev = self._get_waiters.pop(0)
            get_ev.succeed(self.items.pop(0))
            if self._get_hook:
                self._get_hook()


class OutputPort(Port):
    """Port handing messages to its bound communication device."""

    direction = 'out'

    def __init__(self, task: 'Task', name: str) -> None:
        super().__init__(task, name)
        #: Number of messages sent through this port.
        self.sent = 0

    def send(self, message: Message) -> Event:
        """Transmit `message` through the bound device.

        :returns: Event triggered when the message is delivered.
        :raises UnboundPort: If the port is not bound to a device.

        """
        if self.device is None:
            raise UnboundPort(f'{self.scope} is not bound to a communication device')
        event = self.device.transmit(message)
        self.sent += 1
        return event
