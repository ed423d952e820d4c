"""Component is the building block for segmod models.

Hierarchy
---------

A segmod model is a tree of :class:`Component` subclasses rooted at a single
top-level component passed to :func:`~segmod.simulation.simulate()`. A typical
model looks like::

    top
    ├── sensor                  (Node)
    │   ├── processor           (Processor)
    │   ├── memory              (Memory)
    │   ├── battery             (Battery)
    │   ├── radio               (CommunicationDevice)
    │   └── power               (NodePowerLogger)
    ├── sink                    (Node)
    ├── sampler                 (Task)
    └── collector               (Task)

The physical view (nodes and devices) and the functional view (tasks) are
siblings in the hierarchy; the mapping of tasks onto nodes is made with
:meth:`segmod.task.Task.execute`.

Connections
-----------

Components declare the names of externally-provided connection objects with
:meth:`Component.add_connections` and their ancestors assign them with
:meth:`Component.connect` at elaboration time. For example, each
:class:`~segmod.device.CommunicationDevice` declares a ``channel``
connection. A declared connection that is never made is a configuration
error (:class:`ConnectError`).

Processes
---------

A component may have zero or more simulation processes
(:class:`simpy.events.Process`); a task's behavior chain is one. Processes
declared with :meth:`Component.add_process` are started at elaboration.

"""

from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Generator,
    List,
    Optional,
    Set,
    Tuple,
)

import simpy

from .config import ConfigError

if TYPE_CHECKING:
    from .simulation import ResultDict, SimEnvironment

ProcessGenerator = Callable[..., Generator[simpy.Event, Any, None]]


class ConnectError(ConfigError):
    pass


class Component:
    """Building block for composing models.

    This class is meant to be subclassed. Component subclasses declare their
    children, connections, and processes.

    :param Component parent: Parent component or None for top-level Component.
    :param SimEnvironment env: Simulation environment.
    :param str name: Optional name of Component instance.
    :param int index:
        Optional index of Component. This is used when multiple sibling
        components of the same type are instantiated as an array/list.

    """

    #: Short/friendly name used in the scope (class attribute).
    base_name: str = ''

    def __init__(
        self,
        parent: Optional['Component'],
        env: Optional['SimEnvironment'] = None,
        name: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        #: The simulation environment; a :class:`SimEnvironment` instance.
        self.env: 'SimEnvironment'
        if env is not None:
            self.env = env
        elif parent is not None:
            self.env = parent.env
        else:
            raise AssertionError('either parent or env must be non-None')

        #: The component name (str).
        self.name = (self.base_name if name is None else name) + (
            '' if index is None else str(index)
        )

        #: Index of Component instance within group of sibling instances.
        self.index = index

        #: Dotted scope of the Component instance in the model hierarchy.
        self.scope: str
        if parent is None or not parent.scope:
            self.scope = self.name
        else:
            self.scope = f'{parent.scope}.{self.name}'

        self._parent = parent
        if parent:
            parent._children.append(self)

        self._children: List['Component'] = []
        self._processes: List[
            Tuple[ProcessGenerator, Tuple[Any, ...], Dict[str, Any]]
        ] = []
        self._connections: List[Any] = []
        self._not_connected: Set[str] = set()
        self._elaborated = False

        #: Log an error message.
        self.error = self._log_function('ERROR')
        #: Log a warning message.
        self.warn = self._log_function('WARNING')
        #: Log an informative message.
        self.info = self._log_function('INFO')
        #: Log a debug message.
        self.debug = self._log_function('DEBUG')

    def _log_function(self, level: str) -> Callable[..., None]:
        return self.env.tracemgr.get_trace_function(self.scope, log={'level': level})

    @property
    def children(self) -> List['Component']:
        return list(self._children)

    def add_process(self, g: ProcessGenerator, *args: Any, **kwargs: Any) -> None:
        """Add a process method to be run at simulation-time.

        Processes added before elaboration are started by :meth:`elaborate`;
        processes added afterwards are started immediately.

        :param function g:
            Typically a bound generator method of the Component subclass.
        :param args: arguments to pass to `g`.
        :param kwargs: keyword arguments to pass to `g`.

        """
        if self._elaborated:
            self.env.process(g(*args, **kwargs))
        else:
            self._processes.append((g, args, kwargs))

    def add_connections(self, *connection_names: str) -> None:
        """Declare names of externally-provided connection objects.

        The named connections must be connected (assigned) by an ancestor at
        elaboration time.

        """
        self._not_connected.update(connection_names)

    def connect(
        self,
        dst: 'Component',
        dst_connection: Any,
        src: Optional['Component'] = None,
        src_connection: Optional[Any] = None,
        conn_obj: Optional[Any] = None,
    ) -> None:
        """Assign connection object from source to destination component.

        ``top.connect(node.radio, 'channel')`` assigns ``top.channel`` to
        ``node.radio.channel``.

        :param Component dst:
            Destination component being assigned the connection object.
        :param str dst_connection:
            Destination's name for the connection object.
        :param Component src:
            Source component providing the connection object; `self` when
            omitted.
        :param str src_connection:
            Source's name for the connection object; `dst_connection` when
            omitted.
        :param conn_obj:
            The connection object itself. When omitted, it is looked up as
            attribute `src_connection` of `src`.

        """
        if dst_connection not in dst._not_connected:
            raise ConnectError(
                f'dst "{dst.scope}" (class {type(dst).__name__}) does not declare '
                f'connection "{dst_connection}"'
            )
        src = self if src is None else src
        src_connection = dst_connection if src_connection is None else src_connection
        if conn_obj is None:
            if not hasattr(src, src_connection):
                raise ConnectError(
                    f'src "{src.scope}" (class {type(src).__name__}) does not have '
                    f'attr "{src_connection}"'
                )
            conn_obj = getattr(src, src_connection)
        setattr(dst, dst_connection, conn_obj)
        dst._not_connected.remove(dst_connection)
        dst._connections.append((dst_connection, src, src_connection, conn_obj))

    def connect_children(self) -> None:
        """Make connections for descendant components.

        Override in Component subclasses that need to make connections on
        behalf of their descendants, e.g. a top-level component attaching
        every node's radio to a shared channel.

        """
        if any(child._not_connected for child in self._children):
            raise ConnectError(
                f'{type(self).__name__} has unconnected children; implement '
                f'{type(self).__name__}.connect_children()'
            )

    def auto_probe(self, name: str, target: Any = None, **hints: Any) -> None:
        """Probe `target` (attribute `name` by default) as ``<scope>.<name>``."""
        if target is None:
            target = getattr(self, name)
        self.env.tracemgr.auto_probe(f'{self.scope}.{name}', target, **hints)

    def get_trace_function(self, name: str, **hints: Any) -> Callable[..., None]:
        return self.env.tracemgr.get_trace_function(f'{self.scope}.{name}', **hints)

    @classmethod
    def pre_init(cls, env: 'SimEnvironment') -> None:
        """Override-able class method called prior to model initialization."""
        pass

    def elaborate(self) -> None:
        """Recursively elaborate the model.

        Descendant connections are made, :meth:`elab_hook` is called on every
        component (children before parents), and processes are started.

        """
        self.connect_children()
        for child in self._children:
            missing = sorted(child._not_connected)
            if missing:
                raise ConnectError(f'{child.scope}.{missing[0]} not connected')
            child.elaborate()
        self.elab_hook()
        self._elaborated = True
        for proc, args, kwargs in self._processes:
            self.env.process(proc(*args, **kwargs))

    def elab_hook(self) -> None:
        """Hook called after elaboration and before simulation phase.

        Subclasses use it to validate their configuration (e.g. behavior
        chains and port bindings) before simulated time begins.

        """
        pass

    def post_simulate(self) -> None:
        """Recursively run post-simulation hooks."""
        for child in self._children:
            child.post_simulate()
        self.post_sim_hook()

    def post_sim_hook(self) -> None:
        """Hook called after simulation completes."""
        pass

    def get_result(self, result: 'ResultDict') -> None:
        """Recursively compose simulation result dict.

        Model results (energy, charge, message counts, task errors) are added
        under keys prefixed with the contributing component's scope.

        :param dict result: Result dictionary to be modified.

        """
        for child in self._children:
            child.get_result(result)
        self.get_result_hook(result)

    def get_result_hook(self, result: 'ResultDict') -> None:
        """Hook called after result is composed by descendant components."""
        pass
