"""Nodes: the physical view of a model.

A :class:`Node` is a computing platform made of one
:class:`~segmod.device.Processor`, one :class:`~segmod.device.Memory`, one
:class:`~segmod.device.Battery` and any number of peripherals, such as a
:class:`~segmod.device.CommunicationDevice`. Devices are created as children
of the node::

    node = Node(top, name='sensor')
    Processor(node, {'IDLE': 1.5e-6, 'BUSY': 1.2e-3}, iops=4.0323e6, flops=16.129e6)
    Memory(node)
    Battery(node, potential=3.0, capacity=7200.0)
    CommunicationDevice(node, {'IDLE': 0.6e-6, 'TX': 102e-3, 'RX': 49.5e-3})

The power drawn by every device of a node is charged to the node's battery by
a :class:`~segmod.loggers.NodePowerLogger`.

"""
from typing import TYPE_CHECKING, Any, Dict, List, Type, TypeVar

from .component import Component
from .config import ConfigError
from .device import Battery, Device, Memory, Processor

if TYPE_CHECKING:
    from .task import Task

C = TypeVar('C', bound=Component)


class Node(Component):
    """Aggregation of devices executing tasks."""

    base_name = 'node'

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._tasks: List['Task'] = []

    def _only(self, cls: Type[C]) -> C:
        found = [child for child in self._children if isinstance(child, cls)]
        if len(found) != 1:
            raise ConfigError(
                f'{self.scope} must have exactly one {cls.__name__}, has {len(found)}'
            )
        return found[0]

    @property
    def processor(self) -> Processor:
        return self._only(Processor)

    @property
    def memory(self) -> Memory:
        return self._only(Memory)

    @property
    def battery(self) -> Battery:
        return self._only(Battery)

    @property
    def devices(self) -> List[Device]:
        """Every device whose power is charged to this node's battery."""
        return [child for child in self._children if isinstance(child, Device)]

    @property
    def peripherals(self) -> Dict[str, Device]:
        return {
            device.name: device
            for device in self.devices
            if not isinstance(device, (Processor, Memory))
        }

    def peripheral(self, name: str) -> Device:
        try:
            return self.peripherals[name]
        except KeyError:
            raise ConfigError(f'{self.scope} has no peripheral "{name}"') from None

    @property
    def tasks(self) -> List['Task']:
        return list(self._tasks)

    def execute(self, task: 'Task') -> None:
        """Map `task` onto this node."""
        task.execute(self)

    def elab_hook(self) -> None:
        for cls in (Processor, Memory, Battery):
            self._only(cls)
        names = [device.name for device in self.devices]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f'{self.scope} has duplicate device names {duplicates}')
