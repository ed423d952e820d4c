"""Simulation environment and runners.

:class:`SimEnvironment` is the event calendar shared by every component of a
model. It owns simulated time (:attr:`~simpy.Environment.now`) and fires
callbacks at requested instants (:meth:`SimEnvironment.schedule_at`). Events
scheduled for the same instant fire in the order they were scheduled, which
makes runs repeatable for a given ``'sim.seed'``.

:func:`simulate` takes a model through its phases:

 - *Initialization*: the top-level component and its children are built.
 - *Elaboration*: connections are made, behavior chains validated and task
   processes started.
 - *Simulation*: discrete event simulation until ``'sim.duration'``.
 - *Post-simulation*: power accounting is closed and results gathered.

"""
from contextlib import closing
from multiprocessing import Process, Queue, cpu_count
from pprint import pprint
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type, Union
import json
import os
import random
import shutil
import timeit

import simpy
import yaml

from .config import ConfigDict, ConfigFactor, factorial_config
from .tracer import TraceManager
from .units import Number, parse_time, scale_time

if TYPE_CHECKING:
    from .component import Component

ResultDict = Dict[str, Any]


class SimEnvironment(simpy.Environment):
    """Simulation Environment.

    The :class:`SimEnvironment` class is a :class:`simpy.Environment` subclass
    that adds:

     - Access to the configuration dictionary (`config`).
     - Access to a seeded pseudo-random number generator (`rand`).
     - Access to the simulation timescale (`timescale`).
     - Access to the simulation duration (`duration`).
     - Callback scheduling at absolute instants (:meth:`schedule_at`).

    A new environment is created for each simulation run; nothing is shared
    between runs.

    :param dict config: A fully-initialized configuration dictionary.

    """

    def __init__(self, config: ConfigDict) -> None:
        super().__init__()
        #: The configuration dictionary.
        self.config = config

        #: The pseudo-random number generator; an instance of
        #: :class:`random.Random`.
        self.rand = random.Random()
        self.rand.seed(config.setdefault('sim.seed', None), version=1)

        timescale_str: str = config.setdefault('sim.timescale', '1 s')

        #: Simulation timescale ``(magnitude, units)`` tuple. The current
        #: simulation time is ``now * timescale``.
        self.timescale = parse_time(timescale_str)

        duration: str = config.setdefault('sim.duration', '0 s')

        #: The intended simulation duration, in units of :attr:`timescale`.
        self.duration = scale_time(parse_time(duration), self.timescale)

        #: The simulation runs "until" this time.
        self.until = self.duration

        #: From 'meta.sim.index', the simulation's index when running multiple
        #: related simulations or `None` for a standalone simulation.
        self.sim_index: Optional[int] = config.get('meta.sim.index')

        #: :class:`TraceManager` instance.
        self.tracemgr = TraceManager(self)

    def time(self, t: Optional[Number] = None, unit: str = 's') -> Number:
        """The current simulation time scaled to specified unit.

        :param float t: Time in simulation units. Default is :attr:`now`.
        :param str unit: Unit of time to scale to. Default is 's' (seconds).
        :returns: Simulation time scaled to to `unit`.

        """
        target_scale = parse_time(unit)
        ts_mag, ts_unit = self.timescale
        sim_time = ((self.now if t is None else t) * ts_mag, ts_unit)
        return scale_time(sim_time, target_scale)

    def sim_time(self, seconds: Number) -> Number:
        """Convert a duration in seconds to simulation units."""
        return scale_time((seconds, 's'), self.timescale)

    def schedule_at(self, instant: Number, callback: Callable[[], None]) -> simpy.Event:
        """Invoke `callback` at the absolute simulation time `instant`.

        Callbacks scheduled for the same instant are invoked in the order they
        were scheduled. Scheduled callbacks cannot be cancelled.

        :returns: The underlying timeout event.

        """
        if instant < self.now:
            raise ValueError(f'cannot schedule at {instant} before now ({self.now})')
        event = self.timeout(instant - self.now)
        event.callbacks.append(lambda _: callback())
        return event


class _Workspace:
    """Context manager for workspace directory management."""

    def __init__(self, config: ConfigDict) -> None:
        self.workspace: str = config.setdefault(
            'meta.sim.workspace', config.setdefault('sim.workspace', os.curdir)
        )
        self.overwrite: bool = config.setdefault('sim.workspace.overwrite', False)
        self.prev_dir = os.getcwd()

    def __enter__(self) -> None:
        if os.path.relpath(self.workspace) != os.curdir:
            if self.overwrite and os.path.isdir(self.workspace):
                shutil.rmtree(self.workspace)
            os.makedirs(self.workspace, exist_ok=True)
            os.chdir(self.workspace)

    def __exit__(self, *exc) -> None:
        os.chdir(self.prev_dir)


def simulate(
    config: ConfigDict,
    top_type: Type['Component'],
    env_type: Type[SimEnvironment] = SimEnvironment,
    reraise: bool = True,
) -> ResultDict:
    """Initialize, elaborate, and run a simulation.

    All exceptions are caught by `simulate()` so they can be logged and
    captured in the result file. By default, any unhandled exception caught by
    `simulate()` is re-raised. Setting `reraise` to False prevents exceptions
    from propagating to the caller; the returned result dict then indicates
    the exception via the 'sim.exception' item.

    :param dict config: Configuration dictionary for the simulation.
    :param top_type: The model's top-level Component subclass.
    :param env_type: :class:`SimEnvironment` subclass.
    :param bool reraise: Should unhandled exceptions propogate to the caller.
    :returns:
        Dictionary containing the model-specific results of the simulation.

    """
    t0 = timeit.default_timer()
    result: ResultDict = {}
    result_file: Optional[str] = config.setdefault('sim.result.file')
    config_file: Optional[str] = config.setdefault('sim.config.file')
    try:
        with _Workspace(config):
            env = env_type(config)
            with closing(env.tracemgr):
                try:
                    top_type.pre_init(env)
                    env.tracemgr.flush()
                    top = top_type(parent=None, env=env)
                    top.elaborate()
                    env.tracemgr.flush()
                    env.run(until=env.until)
                    env.tracemgr.flush()
                    top.post_simulate()
                    env.tracemgr.flush()
                    top.get_result(result)
                except BaseException as e:
                    env.tracemgr.trace_exception()
                    result['sim.exception'] = repr(e)
                    raise
                else:
                    result['sim.exception'] = None
                finally:
                    env.tracemgr.flush()
                    result['config'] = config
                    result['sim.now'] = env.now
                    result['sim.time'] = env.time()
                    result['sim.runtime'] = timeit.default_timer() - t0
                    _dump_dict(config_file, config)
                    _dump_dict(result_file, result)
    except BaseException as e:
        if reraise:
            raise
        result.setdefault('config', config)
        result.setdefault('sim.runtime', timeit.default_timer() - t0)
        if result.get('sim.exception') is None:
            result['sim.exception'] = repr(e)
    return result


def simulate_factors(
    base_config: ConfigDict,
    factors: List[ConfigFactor],
    top_type: Type['Component'],
    env_type: Type[SimEnvironment] = SimEnvironment,
    jobs: Optional[int] = None,
    config_filter: Optional[Callable[[ConfigDict], bool]] = None,
) -> List[ResultDict]:
    """Run multi-factor simulations in separate processes.

    The `factors` are used to compose specialized config dictionaries, e.g.
    to sweep compression algorithms against compression percentages::

        factors = [(['sampler.compression.algorithm'], [['ZIP'], ['RAR']]),
                   (['sampler.compression.percentage'], [[10.0], [50.0]])]

    Each simulation runs in its own workspace ``<sim.workspace>/<index>``.

    :param dict base_config: Base configuration dictionary to be specialized.
    :param list factors: List of factors.
    :param top_type: The model's top-level Component subclass.
    :param env_type: :class:`SimEnvironment` subclass.
    :param int jobs: User specified number of concurent processes.
    :param function config_filter:
        A function which will be passed a config and returns a bool to filter.
    :returns: Sequence of result dictionaries for each simulation.

    """
    configs = list(factorial_config(base_config, factors, 'meta.sim.special'))
    ws = base_config.setdefault('sim.workspace', os.curdir)
    overwrite = base_config.setdefault('sim.workspace.overwrite', False)

    for index, config in enumerate(configs):
        config['meta.sim.index'] = index
        config['meta.sim.workspace'] = os.path.join(ws, str(index))
    if config_filter is not None:
        configs[:] = filter(config_filter, configs)
    if overwrite and os.path.relpath(ws) != os.curdir and os.path.isdir(ws):
        shutil.rmtree(ws)
    return simulate_many(configs, top_type, env_type, jobs)


def simulate_many(
    configs: List[ConfigDict],
    top_type: Type['Component'],
    env_type: Type[SimEnvironment] = SimEnvironment,
    jobs: Optional[int] = None,
) -> List[ResultDict]:
    """Run multiple experiments in separate processes.

    :param dict configs: list of configuration dictionary for the simulation.
    :param top_type: The model's top-level Component subclass.
    :param env_type: :class:`SimEnvironment` subclass.
    :param int jobs: User specified number of concurent processes.
    :returns: Sequence of result dictionaries for each simulation.

    """
    if jobs is not None and jobs < 1:
        raise ValueError(f'Invalid number of jobs: {jobs}')

    result_queue: Queue = Queue()
    config_queue: Queue = Queue()

    workspaces = set()
    for index, config in enumerate(configs):
        workspace = os.path.normpath(
            config.setdefault(
                'meta.sim.workspace', config.setdefault('sim.workspace', os.curdir)
            )
        )
        if workspace in workspaces:
            raise ValueError(f'Duplicate workspace: {workspace}')
        workspaces.add(workspace)
        config.setdefault('meta.sim.index', index)
        config_queue.put(config)

    num_workers = min(len(configs), cpu_count())
    if jobs is not None:
        num_workers = min(num_workers, jobs)

    workers = []
    for i in range(num_workers):
        worker = Process(
            name=f'sim-worker-{i}',
            target=_simulate_worker,
            args=(top_type, env_type, config_queue, result_queue),
        )
        worker.daemon = True  # Workers die if main process dies.
        worker.start()
        workers.append(worker)
        config_queue.put(None)  # A stop sentinel for each worker.

    results = [result_queue.get() for _ in configs]

    for worker in workers:
        worker.join(5)

    return sorted(results, key=lambda r: r['config']['meta.sim.index'])


def _simulate_worker(
    top_type: Type['Component'],
    env_type: Type[SimEnvironment],
    config_queue: Queue,
    result_queue: Queue,
) -> None:
    while True:
        config = config_queue.get()
        if config is None:
            break
        result_queue.put(simulate(config, top_type, env_type, reraise=False))


_DUMPERS: Dict[str, Callable[[Any, Any], None]] = {
    '.yaml': lambda d, f: yaml.safe_dump(d, stream=f),
    '.yml': lambda d, f: yaml.safe_dump(d, stream=f),
    '.json': lambda d, f: json.dump(d, f, sort_keys=True, indent=2),
    '.py': lambda d, f: pprint(d, stream=f),
}


def _dump_dict(filename: Optional[str], dump_dict: Union[ConfigDict, ResultDict]) -> None:
    if filename is None:
        return
    _, ext = os.path.splitext(filename)
    if ext not in _DUMPERS:
        raise ValueError(f'Invalid extension: {ext}')
    with open(filename, 'w') as dump_file:
        _DUMPERS[ext](dump_dict, dump_file)
