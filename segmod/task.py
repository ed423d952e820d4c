"""Tasks: the functional view of a model.

A :class:`Task` models a piece of software. It owns

 - a :class:`~segmod.behavior.BehaviorChain` describing what it does,
 - named input and output :mod:`ports <segmod.port>`,
 - a property bag of declared, validated parameters, e.g. the compression
   algorithm a sampling task uses,
 - a :class:`~segmod.context.TaskContext` shared by its segments.

A task runs on exactly one :class:`~segmod.node.Node`, set once with
:meth:`Task.execute` (or equivalently :meth:`Node.execute
<segmod.node.Node.execute>`). The mapping, the chain and the port bindings
are checked at elaboration so that a misconfigured model fails before
simulated time begins; the chain is activated once the checks pass.

"""
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .behavior import BehaviorChain
from .component import Component, ConnectError
from .config import ConfigError
from .context import MissingKey, TaskContext
from .port import InputPort, OutputPort, Port, UnboundPort

if TYPE_CHECKING:
    from .node import Node
    from .simulation import ResultDict

Validator = Callable[[Any], Any]


class Task(Component):
    """A task executing a behavior chain on a node.

    :param BehaviorChain chain: Behavior of the task; an empty chain is
        created when omitted.

    """

    base_name = 'task'

    def __init__(
        self, parent: Component, chain: Optional[BehaviorChain] = None, **kwargs: Any
    ) -> None:
        super().__init__(parent, **kwargs)
        self.chain = BehaviorChain() if chain is None else chain
        self.chain.bind(self)
        self.context = TaskContext(self.scope)
        self.ports: Dict[str, Port] = {}
        self._properties: Dict[str, Any] = {}
        self._validators: Dict[str, Optional[Validator]] = {}
        #: Node the task is mapped to.
        self.node: Optional['Node'] = None

    def add_input_port(self, name: str) -> InputPort:
        port = InputPort(self, name)
        self._add_port(port)
        self.auto_probe(name, port, log={}, vcd={})
        return port

    def add_output_port(self, name: str) -> OutputPort:
        port = OutputPort(self, name)
        self._add_port(port)
        return port

    def _add_port(self, port: Port) -> None:
        if port.name in self.ports:
            raise ConfigError(f'{self.scope} already has a port named "{port.name}"')
        self.ports[port.name] = port

    def port(self, name: str) -> Port:
        try:
            return self.ports[name]
        except KeyError:
            raise ConfigError(f'{self.scope} has no port named "{name}"') from None

    def add_property(
        self, name: str, default: Any, validator: Optional[Validator] = None
    ) -> None:
        """Declare a property with its default value.

        `validator` is called with each new value and returns the value to
        store; it raises ValueError or TypeError for invalid values.

        """
        if name in self._properties:
            raise ConfigError(f'{self.scope} already declares property "{name}"')
        self._validators[name] = validator
        self._properties[name] = self._validate(name, default)

    def set(self, name: str, value: Any) -> None:
        """Set a declared property.

        :raises ConfigError: For undeclared properties or invalid values.

        """
        if name not in self._properties:
            raise ConfigError(f'{self.scope} has no property "{name}"')
        self._properties[name] = self._validate(name, value)

    def get(self, name: str) -> Any:
        try:
            return self._properties[name]
        except KeyError:
            raise ConfigError(f'{self.scope} has no property "{name}"') from None

    @property
    def failure(self) -> Optional[MissingKey]:
        """Data error that aborted the behavior chain, if any."""
        return self.chain.failure

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self._properties)

    def _validate(self, name: str, value: Any) -> Any:
        validator = self._validators[name]
        if validator is None:
            return value
        try:
            return validator(value)
        except (ValueError, TypeError) as e:
            raise ConfigError(f'{self.scope} property {name}: {e}') from e

    def execute(self, node: 'Node') -> None:
        """Map this task onto `node`.

        :raises ConfigError:
            If the task is already mapped to another node or its behavior
            chain is malformed.

        """
        if self.node is not None and self.node is not node:
            raise ConfigError(f'{self.scope} is already mapped to {self.node.scope}')
        self.chain.validate()
        if self.node is None:
            self.node = node
            node._tasks.append(self)
            self.info(f'mapped to {node.scope}')

    def elab_hook(self) -> None:
        if self.node is None:
            raise ConnectError(f'{self.scope} is not mapped to a node')
        self.chain.validate()
        for port in self.ports.values():
            if not port.is_bound:
                raise UnboundPort(f'{port.scope} is not bound to a communication device')
        self.chain.activate(self)

    def get_result_hook(self, result: 'ResultDict') -> None:
        result[f'{self.scope}.iterations'] = self.chain.iterations
        if self.failure is not None:
            result[f'{self.scope}.error'] = str(self.failure)
