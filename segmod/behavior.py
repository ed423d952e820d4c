"""Segment-chain task behavior.

A task's behavior is a :class:`BehaviorChain` of :class:`Segment` objects.
Each segment is an atomic step that reads and writes the task's
:class:`~segmod.context.TaskContext` and reports what happened through a
named *outcome* (:data:`SUCCESS`, :data:`FAILURE`, ...). The chain's routing
table maps ``(segment, outcome)`` to the next segment.

A segment's :meth:`~Segment.execute` returns one of:

 - an outcome string: the next segment runs at the same simulated instant;
 - :class:`Timed`: the chain resumes the segment after a delay, which is how
   computation and waiting consume simulated time;
 - :class:`Blocked`: the chain resumes the segment when an event fires, e.g.
   when a message is delivered to an input port.

A suspended segment is resumed with :meth:`~Segment.resume`, which returns the
outcome used for routing.

The library provides the segment variants :class:`DelaySegment`,
:class:`CalculateSegment`, :class:`CopySegment`, :class:`SendSegment`,
:class:`ReceiveSegment` and :class:`CustomSegment`. Other behavior is written
by subclassing :class:`Segment`.

Example::

    chain = BehaviorChain(looping=True)
    chain.add_segment(ReceiveSegment(task.port('in')))
    chain.add_segment(CustomSegment(log_message, inputs=[MESSAGE_RECEIVED]))
    chain.add_segment(DelaySegment('100 ms'))

"""
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Generator,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Set,
    Tuple,
    Union,
)

import simpy

from .config import ConfigError
from .context import MissingKey, TaskContext
from .message import Message
from .port import InputPort, OutputPort
from .units import Number, to_seconds

if TYPE_CHECKING:
    from .task import Task

SUCCESS = 'SUCCESS'
FAILURE = 'FAILURE'

#: Context key of the floating-point operation count for :class:`CalculateSegment`.
FLOPS = 'FLOPS'
#: Context key of the integer operation count for :class:`CalculateSegment`.
IOPS = 'IOPS'
#: Context key of the message sent by :class:`SendSegment`.
MESSAGE_SEND = 'MESSAGE_SEND'
#: Context key of the message stored by :class:`ReceiveSegment`.
MESSAGE_RECEIVED = 'MESSAGE_RECEIVED'


class ChainError(ConfigError):
    """The behavior chain is malformed."""


class Timed(NamedTuple):
    """Resume the segment after `delay` seconds."""

    delay: float


class Blocked(NamedTuple):
    """Resume the segment when `event` is triggered."""

    event: simpy.Event


SegmentResult = Union[str, Timed, Blocked]


class Segment:
    """Atomic unit of task behavior.

    Subclasses implement :meth:`execute` and, when they suspend,
    :meth:`resume`. They declare the outcomes they may produce and the context
    keys they read (`inputs`) and write (`outputs`) so that a chain can be
    checked before the simulation starts.

    """

    outcomes: Tuple[str, ...] = (SUCCESS,)
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = type(self).__name__ if name is None else name
        self.chain: Optional['BehaviorChain'] = None

    @property
    def task(self) -> 'Task':
        if self.chain is None or self.chain.task is None:
            raise ChainError(f'{self.name} is not part of a bound behavior chain')
        return self.chain.task

    def execute(self, context: TaskContext) -> SegmentResult:
        raise NotImplementedError()  # pragma: no cover

    def resume(self, context: TaskContext, value: Any) -> str:
        return SUCCESS

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.name}>'


class DelaySegment(Segment):
    """Wait without computing.

    :param delay: Seconds, or a time string such as ``'5 s'``.

    """

    def __init__(self, delay: Union[str, Number], name: Optional[str] = None) -> None:
        super().__init__(name)
        self.delay = to_seconds(delay)
        if self.delay < 0:
            raise ChainError(f'negative delay {delay}')

    def execute(self, context: TaskContext) -> SegmentResult:
        return Timed(self.delay)


class CalculateSegment(Segment):
    """Keep the node's processor busy for the context's operation counts.

    The number of floating-point and integer operations are read from the
    :data:`FLOPS` and :data:`IOPS` context keys, typically written by the
    preceding segment, and converted to time by the processor's throughput.

    """

    inputs = (FLOPS, IOPS)

    def execute(self, context: TaskContext) -> SegmentResult:
        flops = context.get(FLOPS)
        iops = context.get(IOPS)
        processor = self.task.node.processor
        seconds = processor.compute_time(flops, iops)
        processor.begin_computation()
        return Timed(seconds)

    def resume(self, context: TaskContext, value: Any) -> str:
        self.task.node.processor.end_computation()
        return SUCCESS


class CopySegment(Segment):
    """Copy the value stored under `src` to `dst`."""

    def __init__(self, src: str, dst: str, name: Optional[str] = None) -> None:
        super().__init__(name)
        self.src = src
        self.dst = dst
        self.inputs = (src,)
        self.outputs = (dst,)

    def execute(self, context: TaskContext) -> SegmentResult:
        context.put(self.dst, context.get(self.src))
        return SUCCESS


class SendSegment(Segment):
    """Send the message stored under `key` through an output port.

    :param bool blocking: Wait until the message is delivered.

    """

    def __init__(
        self,
        port: OutputPort,
        blocking: bool = False,
        key: str = MESSAGE_SEND,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        self.port = port
        self.blocking = blocking
        self.key = key
        self.inputs = (key,)

    def execute(self, context: TaskContext) -> SegmentResult:
        message = context.get(self.key)
        if not isinstance(message, Message):
            raise TypeError(f'{self.key} holds {type(message).__name__}, not Message')
        delivered = self.port.send(message)
        if self.blocking:
            return Blocked(delivered)
        return SUCCESS


class ReceiveSegment(Segment):
    """Store the oldest message of an input port under `key`.

    A blocking receive waits for a message to be delivered. A non-blocking
    receive yields :data:`FAILURE` when the port is empty.

    """

    def __init__(
        self,
        port: InputPort,
        blocking: bool = True,
        key: str = MESSAGE_RECEIVED,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name)
        self.port = port
        self.blocking = blocking
        self.key = key
        self.outputs = (key,)
        self.outcomes = (SUCCESS,) if blocking else (SUCCESS, FAILURE)

    def execute(self, context: TaskContext) -> SegmentResult:
        if self.blocking:
            return Blocked(self.port.receive())
        message = self.port.try_receive()
        if message is None:
            return FAILURE
        context.put(self.key, message)
        return SUCCESS

    def resume(self, context: TaskContext, value: Any) -> str:
        context.put(self.key, value)
        return SUCCESS


class CustomSegment(Segment):
    """Segment running an injected function.

    `func` is called as ``func(task, context)`` and returns a segment result;
    returning None means :data:`SUCCESS`.

    """

    def __init__(
        self,
        func: Callable[['Task', TaskContext], Optional[SegmentResult]],
        inputs: Iterable[str] = (),
        outputs: Iterable[str] = (),
        outcomes: Iterable[str] = (SUCCESS,),
        name: Optional[str] = None,
    ) -> None:
        super().__init__(getattr(func, '__name__', None) if name is None else name)
        self.func = func
        self.inputs = tuple(inputs)
        self.outputs = tuple(outputs)
        self.outcomes = tuple(outcomes)

    def execute(self, context: TaskContext) -> SegmentResult:
        result = self.func(self.task, context)
        return SUCCESS if result is None else result


class BehaviorChain:
    """Graph of segments linked by outcomes.

    Segments are added in order with :meth:`add_segment`; by default a
    segment's :data:`SUCCESS` leads to the segment added after it. Other
    routes are declared with :meth:`route`. An outcome without a route ends
    the chain when declared with :meth:`terminate`, and so does the last
    segment's success unless the chain is `looping`, in which case it starts
    a new iteration at the first segment.

    :param bool looping: Route the last segment's success to the first.
    :param dict initial_context:
        Values put in the context at the start of each iteration.
    :param bool clear_context: Clear the context at each new iteration.

    """

    def __init__(
        self,
        looping: bool = False,
        initial_context: Optional[Mapping[str, Any]] = None,
        clear_context: bool = True,
    ) -> None:
        self.looping = looping
        self.initial_context: Dict[str, Any] = dict(initial_context or {})
        self.clear_context = clear_context
        self.segments: List[Segment] = []
        self.task: Optional['Task'] = None
        self._routes: Dict[Tuple[int, str], Segment] = {}
        self._terminal: Set[Tuple[int, str]] = set()
        #: Number of started iterations.
        self.iterations = 0
        #: Number of executed segment steps.
        self.steps = 0
        #: True once the chain has ended.
        self.finished = False
        #: Data error that aborted the chain, if any.
        self.failure: Optional[MissingKey] = None

    def set_looping(self, looping: bool) -> None:
        self.looping = looping

    def add_segment(self, segment: Segment) -> Segment:
        if segment.chain is not None:
            raise ChainError(f'{segment.name} already belongs to a behavior chain')
        segment.chain = self
        self.segments.append(segment)
        return segment

    def add_segments(self, *segments: Segment) -> None:
        for segment in segments:
            self.add_segment(segment)

    def route(self, src: Segment, outcome: str, dst: Segment) -> None:
        """Route `outcome` of `src` to `dst`."""
        self._check_member(src)
        self._check_member(dst)
        if outcome not in src.outcomes:
            raise ChainError(f'{src.name} never yields outcome "{outcome}"')
        self._terminal.discard((id(src), outcome))
        self._routes[(id(src), outcome)] = dst

    def terminate(self, src: Segment, outcome: str) -> None:
        """Declare that `outcome` of `src` ends the chain."""
        self._check_member(src)
        if outcome not in src.outcomes:
            raise ChainError(f'{src.name} never yields outcome "{outcome}"')
        self._routes.pop((id(src), outcome), None)
        self._terminal.add((id(src), outcome))

    def _check_member(self, segment: Segment) -> None:
        if segment.chain is not self:
            raise ChainError(f'{segment.name} is not part of this behavior chain')

    def next_segment(self, segment: Segment, outcome: str) -> Optional[Segment]:
        """The segment following `segment` for `outcome`, or None to stop."""
        if outcome not in segment.outcomes:
            raise ChainError(f'{segment.name} yielded undeclared outcome "{outcome}"')
        key = (id(segment), outcome)
        if key in self._routes:
            return self._routes[key]
        if key in self._terminal:
            return None
        if outcome == SUCCESS:
            index = self.segments.index(segment)
            if index + 1 < len(self.segments):
                return self.segments[index + 1]
            if self.looping:
                return self.segments[0]
            return None
        raise ChainError(f'outcome "{outcome}" of {segment.name} is not routed')

    def validate(self) -> None:
        """Check routing and context keys before simulation.

        :raises ChainError:
            If the chain is empty, an outcome is unrouted, or a segment reads
            a context key that no segment writes.

        """
        if not self.segments:
            raise ChainError('behavior chain has no segments')
        for segment in self.segments:
            for outcome in segment.outcomes:
                self.next_segment(segment, outcome)
        produced = set(self.initial_context)
        for segment in self.segments:
            produced.update(segment.outputs)
        for segment in self.segments:
            missing = [key for key in segment.inputs if key not in produced]
            if missing:
                raise ChainError(
                    f'{segment.name} reads {missing} which no segment writes'
                )

    def bind(self, task: 'Task') -> None:
        if self.task is not None and self.task is not task:
            raise ChainError('behavior chain already belongs to another task')
        self.task = task

    def activate(self, task: 'Task') -> simpy.Process:
        """Start the chain as a simulation process of `task`."""
        self.bind(task)
        return task.env.process(self.run(task))

    def _start_iteration(self, context: TaskContext) -> None:
        self.iterations += 1
        if self.clear_context:
            context.clear()
        for key, value in self.initial_context.items():
            context.put(key, value)

    def run(self, task: 'Task') -> Generator[simpy.Event, Any, None]:
        """Execute segments until the chain ends.

        The chain returns control to the event calendar after every segment,
        including zero-delay steps, so that tasks active at the same instant
        are interleaved fairly.

        A segment reading a missing context key aborts the chain; the error
        is logged and kept in :attr:`failure`.

        """
        self.bind(task)
        env = task.env
        context = task.context
        segment: Optional[Segment] = self.segments[0]
        self._start_iteration(context)
        try:
            while segment is not None:
                self.steps += 1
                task.debug(f'{segment.name}')
                result = segment.execute(context)
                if isinstance(result, Timed):
                    yield env.timeout(env.sim_time(result.delay))
                    outcome = segment.resume(context, None)
                elif isinstance(result, Blocked):
                    value = yield result.event
                    outcome = segment.resume(context, value)
                else:
                    outcome = result
                    yield env.timeout(0)
                next_segment = self.next_segment(segment, outcome)
                if next_segment is self.segments[0] and self._is_restart(
                    segment, outcome
                ):
                    self._start_iteration(context)
                segment = next_segment
        except MissingKey as e:
            self.failure = e
            task.error(f'behavior aborted in {segment.name}: {e}')
        else:
            self.finished = True

    def _is_restart(self, segment: Segment, outcome: str) -> bool:
        return (
            self.looping
            and outcome == SUCCESS
            and segment is self.segments[-1]
            and (id(segment), outcome) not in self._routes
        )

    def __len__(self) -> int:
        return len(self.segments)

