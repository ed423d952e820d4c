"""Logging and VCD tracing.

Every :class:`~segmod.component.Component` gets ``error()``, ``warn()``,
``info()`` and ``debug()`` trace functions from the :class:`TraceManager`.
Log lines are annotated with the simulation time and the component scope::

    INFO    5.000 s: top.collector: message received with size 78

Device modes, power draw, battery charge and input-port occupancy may be
probed (see :mod:`segmod.probe`) and recorded to the log and/or a VCD file,
which can be inspected with a waveform viewer such as GTKWave.

Tracers are configured with ``'sim.log.*'`` and ``'sim.vcd.*'`` keys.

"""
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Generator,
    List,
    Optional,
    Tuple,
)
import os
import re
import string
import sys
import traceback

from vcd import VCDWriter
import simpy

from .device import Battery, Device
from .port import InputPort
from .probe import ProbeCallback, ProbeTarget
from .probe import attach as probe_attach
from .units import parse_time, scale_time

if TYPE_CHECKING:
    from .simulation import SimEnvironment

TraceCallback = Callable[..., None]

_formatter = string.Formatter()


def partial_format(format_string: str, **kwargs: Any) -> str:
    """Partially replace named replacement fields in format string.

    Fields without a replacement in `kwargs` are preserved so that the string
    may be formatted again later, e.g. with the current timestamp.

    """
    parts = []
    for literal, field, spec, conversion in _formatter.parse(format_string):
        parts.append(literal.replace('{', '{{').replace('}', '}}'))
        if field is None:
            continue
        inner = field
        if conversion:
            inner += '!' + conversion
        if spec:
            inner += ':' + partial_format(spec, **kwargs)
        if field and not field.isdigit() and field in kwargs:
            parts.append(('{' + inner + '}').format(**kwargs))
        else:
            parts.append('{' + inner + '}')
    return ''.join(parts)


def _compile(patterns: List[str]) -> List[re.Pattern]:
    return [re.compile(pattern) for pattern in patterns]


class Tracer:
    """Base class of the tracers owned by :class:`TraceManager`.

    A tracer is configured from the ``'sim.<name>.*'`` keys. Only enabled
    tracers open files; files listed in :attr:`files` are removed on close
    when ``'sim.<name>.persist'`` is false.

    """

    name: str = ''

    def __init__(self, env: 'SimEnvironment'):
        self.env = env
        self.files: List[str] = []
        prefix = f'sim.{self.name}'
        self.enabled: bool = env.config.setdefault(f'{prefix}.enable', False)
        self.persist: bool = env.config.setdefault(f'{prefix}.persist', True)
        if self.enabled:
            self._include = _compile(
                env.config.setdefault(f'{prefix}.include_pat', ['.*'])
            )
            self._exclude = _compile(
                env.config.setdefault(f'{prefix}.exclude_pat', [])
            )
            self.open()

    def is_scope_enabled(self, scope: str) -> bool:
        if not self.enabled:
            return False
        if not any(r.match(scope) for r in self._include):
            return False
        return not any(r.match(scope) for r in self._exclude)

    def open(self) -> None:
        raise NotImplementedError()  # pragma: no cover

    def close(self) -> None:
        if self.enabled:
            self._close()

    def _close(self) -> None:
        raise NotImplementedError()  # pragma: no cover

    def remove_files(self) -> None:
        for filename in self.files:
            if os.path.isfile(filename):
                os.remove(filename)

    def flush(self) -> None:
        pass

    def activate_probe(
        self, scope: str, target: ProbeTarget, **hints: Any
    ) -> Optional[ProbeCallback]:
        raise NotImplementedError()  # pragma: no cover

    def activate_trace(self, scope: str, **hints) -> Optional[TraceCallback]:
        raise NotImplementedError()  # pragma: no cover

    def trace_exception(self) -> None:
        pass


class LogTracer(Tracer):
    """Writes timestamped trace lines to ``'sim.log.file'``, or stderr."""

    name = 'log'
    default_format = '{level:7} {ts:.3f} {ts_unit}: {scope}:'

    levels = {
        'ERROR': 1,
        'WARNING': 2,
        'INFO': 3,
        'PROBE': 4,
        'DEBUG': 5,
    }

    def open(self) -> None:
        config = self.env.config
        filename: str = config.setdefault('sim.log.file', 'sim.log')
        buffering: int = config.setdefault('sim.log.buffering', -1)
        self.max_level = self.levels[config.setdefault('sim.log.level', 'INFO')]
        self.format_str: str = config.setdefault('sim.log.format', self.default_format)
        ts_n, ts_unit = self.env.timescale
        self.ts_unit = ts_unit if ts_n == 1 else f'({ts_n}{ts_unit})'

        if filename:
            self.file = open(filename, 'w', buffering)
            self.files.append(filename)
        else:
            self.file = sys.stderr

    def flush(self) -> None:
        self.file.flush()

    def _close(self) -> None:
        if self.files:
            self.file.close()

    def is_scope_enabled(self, scope: str, level: Optional[str] = None) -> bool:
        if level is not None and self.levels[level] > self.max_level:
            return False
        return super().is_scope_enabled(scope)

    def _line_prefix(self, scope: str, level: str) -> Optional[str]:
        if not self.is_scope_enabled(scope, level):
            return None
        return partial_format(
            self.format_str, level=level, ts_unit=self.ts_unit, scope=scope
        )

    def activate_probe(
        self, scope: str, target: ProbeTarget, **hints: Any
    ) -> Optional[ProbeCallback]:
        prefix = self._line_prefix(scope, hints.get('level', 'PROBE'))
        if prefix is None:
            return None

        def probe_callback(value: object) -> None:
            print(prefix.format(ts=self.env.now), value, file=self.file)

        return probe_callback

    def activate_trace(self, scope: str, **hints) -> Optional[TraceCallback]:
        prefix = self._line_prefix(scope, hints.get('level', 'DEBUG'))
        if prefix is None:
            return None

        def trace_callback(*value) -> None:
            print(prefix.format(ts=self.env.now), *value, file=self.file)

        return trace_callback

    def trace_exception(self) -> None:
        tb_lines = traceback.format_exception(*sys.exc_info())
        prefix = self.format_str.format(
            level='ERROR', ts=self.env.now, ts_unit=self.ts_unit, scope='Exception'
        )
        print(prefix, tb_lines[-1], '\n', *tb_lines, file=self.file)


def _probe_var(target: ProbeTarget, hints: Dict[str, Any]) -> Tuple[str, Any]:
    """VCD var type and initial value for a probed target."""
    if isinstance(target, Device):
        if hints.get('trace_power'):
            return 'real', target.power
        return 'string', target.mode
    if isinstance(target, Battery):
        return 'real', target.charge
    if isinstance(target, InputPort):
        return 'integer', target.size
    raise ValueError(f'Could not infer VCD var_type for {target!r}')


class VCDTracer(Tracer):
    """Records probed values as VCD variables using :mod:`vcd` (pyvcd).

    Device modes are ``string`` vars, power draw and battery charge are
    ``real`` vars and input-port occupancy is an ``integer`` var. Dumping may
    be limited to a window with ``'sim.vcd.start_time'`` and
    ``'sim.vcd.stop_time'``.

    """

    name = 'vcd'

    def open(self) -> None:
        config = self.env.config
        dump_filename: str = config.setdefault('sim.vcd.dump_file', 'sim.vcd')
        if 'sim.vcd.timescale' in config:
            mag, unit = parse_time(config['sim.vcd.timescale'])
        else:
            mag, unit = self.env.timescale
        if int(mag) != mag:
            raise ValueError(f'sim.timescale magnitude must be an integer, got {mag}')
        vcd_timescale = int(mag), unit
        self.scale_factor = scale_time(self.env.timescale, vcd_timescale)
        check_values: bool = config.setdefault('sim.vcd.check_values', True)
        self.dump_file = open(dump_filename, 'w')
        self.files.append(dump_filename)
        self.vcd = VCDWriter(
            self.dump_file, timescale=vcd_timescale, check_values=check_values
        )
        start_time: str = config.setdefault('sim.vcd.start_time', '')
        stop_time: str = config.setdefault('sim.vcd.stop_time', '')
        self.env.process(self._dump_window(self._when(start_time), self._when(stop_time)))

    def _when(self, time_str: str) -> Optional[float]:
        if not time_str:
            return None
        return scale_time(parse_time(time_str), self.env.timescale)

    def vcd_now(self) -> float:
        return self.env.now * self.scale_factor

    def flush(self) -> None:
        self.dump_file.flush()

    def _close(self) -> None:
        self.vcd.close(self.vcd_now())
        self.dump_file.close()

    def _register(self, scope: str, var_type: str, hints: Dict[str, Any]) -> Any:
        kwargs = {k: hints[k] for k in ['size', 'init', 'ident'] if k in hints}
        parent_scope, name = scope.rsplit('.', 1)
        return self.vcd.register_var(parent_scope, name, var_type, **kwargs)

    def activate_probe(
        self, scope: str, target: ProbeTarget, **hints: Any
    ) -> Optional[ProbeCallback]:
        assert self.enabled
        var_type = hints.get('var_type')
        if var_type is None or 'init' not in hints:
            inferred_type, init = _probe_var(target, hints)
            var_type = var_type or inferred_type
            hints.setdefault('init', init)
        var = self._register(scope, var_type, hints)

        def probe_callback(value: Any) -> None:
            self.vcd.change(var, self.vcd_now(), value)

        return probe_callback

    def activate_trace(self, scope: str, **hints) -> Optional[TraceCallback]:
        assert self.enabled
        var = self._register(scope, hints['var_type'], hints)

        def trace_callback(*value) -> None:
            self.vcd.change(var, self.vcd_now(), value[0])

        return trace_callback

    def _dump_window(
        self, t_start: Optional[float], t_stop: Optional[float]
    ) -> Generator[simpy.Timeout, None, None]:
        # Variable registration completes during elaboration; no dump_on() or
        # dump_off() before the simulation starts.
        yield self.env.timeout(0)

        toggles: List[Tuple[float, bool]] = []
        if t_start is not None:
            toggles.append((t_start, True))
            if t_stop is None or t_start <= t_stop:
                self.vcd.dump_off(self.vcd_now())
        if t_stop is not None:
            toggles.append((t_stop, False))

        for when, dump_on in sorted(toggles, key=lambda t: (t[0], not t[1])):
            yield self.env.timeout(when - self.env.now)
            if dump_on:
                self.vcd.dump_on(self.vcd_now())
            else:
                self.vcd.dump_off(self.vcd_now())


class TraceManager:
    """Owns the log and VCD tracers of one simulation environment."""

    def __init__(self, env: 'SimEnvironment') -> None:
        self.tracers: List[Tracer] = []
        try:
            self.log_tracer = LogTracer(env)
            self.tracers.append(self.log_tracer)
            self.vcd_tracer = VCDTracer(env)
            self.tracers.append(self.vcd_tracer)
        except BaseException:
            self.close()
            raise

    def flush(self) -> None:
        """Flush all enabled tracers."""
        for tracer in self.tracers:
            if tracer.enabled:
                tracer.flush()

    def close(self) -> None:
        for tracer in self.tracers:
            tracer.close()
            if tracer.enabled and not tracer.persist:
                tracer.remove_files()

    def auto_probe(self, scope: str, target: ProbeTarget, **hints: Any) -> None:
        callbacks: List[ProbeCallback] = []
        for tracer in self.tracers:
            if tracer.name not in hints or not tracer.is_scope_enabled(scope):
                continue
            tracer_hints = dict(hints[tracer.name])
            if hints.get('trace_power'):
                tracer_hints.setdefault('trace_power', True)
            callback = tracer.activate_probe(scope, target, **tracer_hints)
            if callback:
                callbacks.append(callback)
        if callbacks:
            probe_attach(scope, target, callbacks, **hints)

    def get_trace_function(self, scope: str, **hints) -> TraceCallback:
        callbacks = [
            callback
            for callback in (
                tracer.activate_trace(scope, **hints[tracer.name])
                for tracer in self.tracers
                if tracer.name in hints and tracer.is_scope_enabled(scope)
            )
            if callback
        ]

        def trace_function(*value) -> None:
            for callback in callbacks:
                callback(*value)

        return trace_function

    def trace_exception(self) -> None:
        for tracer in self.tracers:
            if tracer.enabled:
                tracer.trace_exception()
