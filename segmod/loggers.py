"""Loggers collecting model measurements during simulation.

:class:`NodePowerLogger` integrates the power drawn by a node's devices and
charges it to the node's battery. :class:`MessageCountLogger` counts the
messages delivered to an input port.

Both contribute their measurements to the simulation result dict.

"""
from typing import TYPE_CHECKING, Any, Dict, Generator, List, Optional, Tuple, Union

import simpy

from .component import Component
from .device import Device
from .node import Node
from .port import InputPort
from .probe import attach
from .units import Number, energy, parse_time, scale_time

if TYPE_CHECKING:
    from .simulation import ResultDict

PowerLogEntry = Tuple[float, str, str, float]


class NodePowerLogger(Component):
    """Integrate the energy drawn by the devices of a node.

    A device's power is constant between two changes of its mode, so the
    energy of each interval is exactly power x duration. The logger accounts
    each interval just before the device changes mode and, every
    ``'power.sample_period'`` (default ``'1 s'``, empty to disable), for all
    devices, so that the battery charge follows the simulation closely. The
    energy is drawn from the node's battery.

    :param Node node: The node to observe; the logger is its child.

    """

    base_name = 'power'

    def __init__(
        self, node: Node, sample_period: Optional[Union[str, Number]] = None, **kwargs: Any
    ) -> None:
        super().__init__(node, **kwargs)
        self.node = node
        if sample_period is None:
            sample_period = self.env.config.get('power.sample_period', '1 s')
        if isinstance(sample_period, str):
            self.sample_period: Number = (
                scale_time(parse_time(sample_period), self.env.timescale)
                if sample_period
                else 0
            )
        else:
            self.sample_period = sample_period
        #: Energy in joules drawn by each device, by device name.
        self.energy: Dict[str, float] = {}
        #: ``(time, device, mode, watts)`` entries, one per mode change.
        self.power_log: List[PowerLogEntry] = []
        self._since: Dict[Device, Number] = {}
        if self.sample_period:
            self.add_process(self._sample)

    def elab_hook(self) -> None:
        for device in self.node.devices:
            self.energy[device.name] = 0.0
            self._since[device] = self.env.now
            self.power_log.append((self.env.now, device.name, device.mode, device.power))
            device._pre_mode_hooks.append(self._account)
            device._mode_hooks.append(self._mode_changed)

    @property
    def total_energy(self) -> float:
        return sum(self.energy.values())

    def _account(self, device: Device) -> None:
        now = self.env.now
        duration = self.env.time(now - self._since[device])
        drawn = energy(device.power, duration)
        self._since[device] = now
        if drawn:
            self.energy[device.name] += drawn
            self.node.battery.draw(drawn)

    def account_all(self) -> None:
        """Account every device up to the current time."""
        for device in self._since:
            self._account(device)

    def _mode_changed(self, device: Device) -> None:
        self.power_log.append((self.env.now, device.name, device.mode, device.power))

    def _sample(self) -> Generator[simpy.Timeout, None, None]:
        while True:
            yield self.env.timeout(self.sample_period)
            self.account_all()
            self.debug(f'{self.total_energy:.6g} J drawn')

    def post_sim_hook(self) -> None:
        self.account_all()
        self.info(
            f'{self.total_energy:.6g} J drawn, '
            f'{self.node.battery.charge:.6g} C left in battery'
        )

    def get_result_hook(self, result: 'ResultDict') -> None:
        result[f'{self.scope}.energy'] = dict(self.energy)
        result[f'{self.scope}.total_energy'] = self.total_energy
        result[f'{self.scope}.mode_changes'] = len(self.power_log) - len(self._since)
        result[f'{self.node.scope}.battery.charge'] = self.node.battery.charge
        result[f'{self.node.scope}.battery.depleted'] = self.node.battery.depleted


class MessageCountLogger(Component):
    """Count messages delivered to an input port.

    :param InputPort port: The port to observe.

    """

    base_name = 'messages'

    def __init__(self, parent: Component, port: InputPort, **kwargs: Any) -> None:
        super().__init__(parent, **kwargs)
        self.port = port
        #: Delivery times of the messages.
        self.arrivals: List[Number] = []
        attach(f'{port.scope}.deliver', port.deliver, [self._delivered])

    @property
    def message_count(self) -> int:
        return len(self.arrivals)

    def _delivered(self, _: Any) -> None:
        self.arrivals.append(self.env.now)

    def get_result_hook(self, result: 'ResultDict') -> None:
        result[f'{self.scope}.count'] = self.message_count
