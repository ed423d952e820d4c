"""Physical devices and their power modes.

Every :class:`Device` has a table of named modes, each with a power draw in
watts, and is in exactly one of those modes at any time. Modes are switched
by task segments (e.g. a calculate segment keeps the processor ``BUSY``) or
by the transport framework (a radio is in ``TX`` while transmitting and
``RX`` while receiving). Switching is immediate and has no cost of its own.

The energy drawn by a device is power(mode) x time-in-mode; integrating it
and charging it to the node's :class:`Battery` is the job of
:class:`~segmod.loggers.NodePowerLogger`, which observes mode changes through
hooks called just before (:attr:`Device._pre_mode_hooks`) and just after
(:attr:`Device._mode_hooks`) each switch.

"""
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

import simpy

from .channel import SEND_ORDER, Channel
from .component import Component
from .config import ConfigError
from .message import Message
from .port import InputPort, OutputPort, Port, UnboundPort
from .units import charge

if TYPE_CHECKING:
    from .node import Node

ModeHook = Callable[['Device'], None]


class UnknownMode(ConfigError):
    """A mode name is not in the device's mode table."""


class Device(Component):
    """A device with mutually exclusive power modes.

    :param parent: Parent component, normally a :class:`~segmod.node.Node`.
    :param dict modes: Mapping of mode name to power draw in watts.
    :param str initial_mode: Mode the device starts in.

    """

    base_name = 'device'

    def __init__(
        self,
        parent: Component,
        modes: Mapping[str, float],
        initial_mode: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(parent, **kwargs)
        if not modes:
            raise ConfigError(f'{self.scope} has no modes')
        for mode, power in modes.items():
            if power < 0:
                raise ConfigError(f'{self.scope} mode {mode} has negative power {power}')
        self.modes: Dict[str, float] = dict(modes)
        self._check_mode(initial_mode)
        self._mode = initial_mode
        #: Simulation time of the last mode change.
        self.mode_since = self.env.now
        self._pre_mode_hooks: List[ModeHook] = []
        self._mode_hooks: List[ModeHook] = []
        self.auto_probe('mode', self, log={}, vcd={})
        self.auto_probe('power', self, vcd={}, trace_power=True)

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def power(self) -> float:
        """Current power draw in watts."""
        return self.modes[self._mode]

    @property
    def node(self) -> Optional['Node']:
        from .node import Node

        return self._parent if isinstance(self._parent, Node) else None

    def _check_mode(self, mode: str) -> None:
        if mode not in self.modes:
            raise UnknownMode(
                f'{self.scope} has no mode "{mode}"; modes are {sorted(self.modes)}'
            )

    def set_mode(self, mode: str) -> None:
        """Switch to `mode` immediately.

        :raises UnknownMode: If `mode` is not in the mode table.

        """
        self._check_mode(mode)
        if mode == self._mode:
            return
        for hook in self._pre_mode_hooks:
            hook(self)
        self._mode = mode
        self.mode_since = self.env.now
        for hook in self._mode_hooks:
            hook(self)

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.scope!r} mode={self._mode!r})'


class Processor(Device):
    """Processor with integer and floating-point throughput.

    :param float iops: Integer operations per second.
    :param float flops: Floating-point operations per second.
    :param str busy_mode: Mode used while computing.
    :param str idle_mode: Mode used otherwise.

    """

    base_name = 'processor'

    def __init__(
        self,
        parent: Component,
        modes: Mapping[str, float],
        initial_mode: str = 'IDLE',
        iops: float = 1.0,
        flops: float = 1.0,
        busy_mode: str = 'BUSY',
        idle_mode: str = 'IDLE',
        **kwargs: Any,
    ) -> None:
        super().__init__(parent, modes, initial_mode, **kwargs)
        if iops <= 0 or flops <= 0:
            raise ConfigError(f'{self.scope} throughput must be positive')
        self.iops = iops
        self.flops = flops
        self._check_mode(busy_mode)
        self._check_mode(idle_mode)
        self.busy_mode = busy_mode
        self.idle_mode = idle_mode
        self._computations = 0

    def begin_computation(self) -> None:
        """Enter busy mode until every computation has ended."""
        self._computations += 1
        self.set_mode(self.busy_mode)

    def end_computation(self) -> None:
        if not self._computations:
            raise RuntimeError(f'{self.scope} has no computation to end')
        self._computations -= 1
        if not self._computations:
            self.set_mode(self.idle_mode)

    def compute_time(self, flops: float, iops: float = 0) -> float:
        """Seconds needed to perform `flops` and `iops` operations."""
        if flops < 0 or iops < 0:
            raise ValueError(f'negative operation count ({flops}, {iops})')
        return flops / self.flops + iops / self.iops


class Memory(Device):
    """Memory module.

    :param int capacity: Capacity in bytes, or None when not modeled.

    """

    base_name = 'memory'

    def __init__(
        self,
        parent: Component,
        modes: Optional[Mapping[str, float]] = None,
        initial_mode: str = 'ON',
        capacity: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            parent, {'ON': 0.0} if modes is None else modes, initial_mode, **kwargs
        )
        self.capacity = capacity


class CommunicationDevice(Device):
    """Radio transmitting messages over a :class:`~segmod.channel.Channel`.

    The device is connected to its channel through the ``channel`` connection
    and relays messages between bound task ports and the channel. While a
    message is in flight the sender is in `tx_mode` and the receiving peer in
    `rx_mode`; otherwise each device rests in `idle_mode`, or in `rx_mode`
    once :meth:`listen` was called.

    """

    base_name = 'radio'

    def __init__(
        self,
        parent: Component,
        modes: Mapping[str, float],
        initial_mode: str = 'IDLE',
        tx_mode: str = 'TX',
        rx_mode: str = 'RX',
        idle_mode: str = 'IDLE',
        **kwargs: Any,
    ) -> None:
        super().__init__(parent, modes, initial_mode, **kwargs)
        for mode in (tx_mode, rx_mode, idle_mode):
            self._check_mode(mode)
        self.tx_mode = tx_mode
        self.rx_mode = rx_mode
        self.idle_mode = idle_mode
        self.rest_mode = idle_mode
        self.channel: Channel
        self.add_connections('channel')
        self.input_port: Optional[InputPort] = None
        self.output_ports: List[OutputPort] = []
        self._tx_count = 0
        self._rx_count = 0
        self._last_delivery = self.env.now

    def elab_hook(self) -> None:
        self.channel.attach(self)

    def bind(self, port: Port) -> None:
        """Bind a task port to this device."""
        if port.device is not None and port.device is not self:
            raise ConfigError(f'{port.scope} is already bound to {port.device.scope}')
        if isinstance(port, InputPort):
            if self.input_port is not None and self.input_port is not port:
                raise ConfigError(
                    f'{self.scope} is already bound to {self.input_port.scope}'
                )
            self.input_port = port
        elif isinstance(port, OutputPort):
            if port not in self.output_ports:
                self.output_ports.append(port)
        else:
            raise TypeError(f'cannot bind {port!r}')
        port.device = self

    def listen(self) -> None:
        """Rest in receive mode instead of idle mode."""
        self.rest_mode = self.rx_mode
        self._update_mode()

    def transmit(self, message: Message) -> simpy.Event:
        """Send `message` to the peer device at the other end of the channel.

        :returns: Event triggered with the message once it is delivered.
        :raises UnboundPort:
            If there is no peer device or it has no bound input port.

        """
        peer = self.channel.peer(self)
        if peer is None:
            raise UnboundPort(f'{self.scope} has no peer on its channel')
        if peer.input_port is None:
            raise UnboundPort(f'{peer.scope} has no bound input port')
        delay = self.channel.delay(message.size)
        arrival = self.env.now + self.env.sim_time(delay)
        deliver_at = arrival
        if self.channel.ordering == SEND_ORDER:
            deliver_at = max(arrival, self._last_delivery)
            self._last_delivery = deliver_at

        self._tx_count += 1
        self._update_mode()
        peer._rx_count += 1
        peer._update_mode()
        self.debug(f'transmitting {message.size} bytes to {peer.scope} in {delay} s')

        delivered = self.env.event()

        def finish() -> None:
            self._tx_count -= 1
            self._update_mode()
            peer._rx_count -= 1
            peer._update_mode()

        def deliver() -> None:
            assert peer.input_port is not None
            peer.input_port.deliver(message)
            delivered.succeed(message)

        self.env.schedule_at(arrival, finish)
        self.env.schedule_at(deliver_at, deliver)
        return delivered

    def _update_mode(self) -> None:
        if self._tx_count:
            self.set_mode(self.tx_mode)
        elif self._rx_count:
            self.set_mode(self.rx_mode)
        else:
            self.set_mode(self.rest_mode)


class Battery(Component):
    """Battery with a finite charge.

    Charge only decreases. When it reaches zero the battery is *depleted*:
    :attr:`depleted` becomes True and :attr:`when_depleted` is triggered.
    A battery built with no charge is depleted from the start. Depletion does
    not stop the simulation; models that care must check it.

    :param float potential: Potential in volts.
    :param float capacity: Initial charge in coulombs.

    """

    base_name = 'battery'

    def __init__(
        self, parent: Component, potential: float, capacity: float, **kwargs: Any
    ) -> None:
        super().__init__(parent, **kwargs)
        if potential <= 0:
            raise ConfigError(f'{self.scope} potential must be positive')
        if capacity < 0:
            raise ConfigError(f'{self.scope} capacity must be non-negative')
        self.potential = potential
        self.capacity = capacity
        self._charge = capacity
        #: Event triggered when the charge reaches zero.
        self.when_depleted = self.env.event()
        if self.depleted:
            self.when_depleted.succeed()
        self._charge_hooks: List[Callable[['Battery'], None]] = []
        self.auto_probe('charge', self, log={}, vcd={})

    @property
    def charge(self) -> float:
        """Remaining charge in coulombs."""
        return self._charge

    @property
    def depleted(self) -> bool:
        return self._charge <= 0

    @property
    def state_of_charge(self) -> float:
        """Remaining charge as a fraction of capacity."""
        return self._charge / self.capacity if self.capacity else 0.0

    def draw(self, energy: float) -> float:
        """Draw `energy` joules; returns the charge removed in coulombs."""
        if energy < 0:
            raise ValueError(f'cannot draw negative energy {energy}')
        if not energy or self.depleted:
            return 0.0
        removed = min(charge(energy, self.potential), self._charge)
        self._charge -= removed
        for hook in self._charge_hooks:
            hook(self)
        if self.depleted:
            self.warn('depleted')
            self.when_depleted.succeed()
        return removed
