"""Minimal SI unit helpers.

Simulated time is kept in units of the environment's timescale (see
:attr:`segmod.simulation.SimEnvironment.timescale`) while physical quantities
are plain floats in SI units: seconds, watts, joules, volts and coulombs.

Time strings such as ``'5 s'`` or ``'100 ms'`` are parsed with
:func:`parse_time` and converted between scales with :func:`scale_time`.

"""
from typing import Tuple, Union
import re

Number = Union[int, float]
TimeValue = Tuple[Number, str]

_unit_map = {'s': 1e0, 'ms': 1e3, 'us': 1e6, 'ns': 1e9, 'ps': 1e12, 'fs': 1e15}

_num_re = r'[-+]? (?: \d*\.\d+ | \d+\.?\d* ) (?: [eE] [-+]? \d+)?'

_time_re = re.compile(
    r'(?P<num>{})?'.format(_num_re) + r'\s?' + r'(?P<unit> [fpnum]? s)?', re.VERBOSE
)


def parse_time(time_str: str, default_unit: str = None) -> TimeValue:
    """Parse a string containing a time magnitude and optional unit.

    :param str time_str: Time string to parse, e.g. ``'0.1 s'``.
    :param str default_unit:
        Unit applied when `time_str` does not carry one.
    :returns:
        `(magnitude, unit)` tuple where the unit is one of "s", "ms", "us",
        "ns", "ps", or "fs".
    :raises ValueError: If the string cannot be parsed.

    """
    match = _time_re.fullmatch(time_str)
    if not match or not time_str:
        raise ValueError(f'Invalid time string "{time_str}"')
    num_str = match.group('num')
    if num_str:
        try:
            num: Number = int(num_str)
        except ValueError:
            num = float(num_str)
    else:
        num = 1

    unit = match.group('unit') or default_unit
    if not unit:
        raise ValueError('No unit specified')
    return num, unit


def scale_time(from_time: TimeValue, to_time: TimeValue) -> Number:
    """Scale `from_time` to a multiple of `to_time`.

    :returns: Numeric scale factor relating `from_time` to `to_time`.

    """
    from_t, from_u = from_time
    to_t, to_u = to_time
    scaled = (_unit_map[to_u] / _unit_map[from_u] * from_t) / to_t
    if scaled % 1.0 == 0.0:
        return int(scaled)
    return scaled


def to_seconds(value: Union[str, Number]) -> float:
    """Convert a time string (or a plain number of seconds) to seconds."""
    if isinstance(value, str):
        return float(scale_time(parse_time(value, default_unit='s'), (1, 's')))
    return float(value)


def energy(power: float, duration: float) -> float:
    """Energy in joules drawn at constant `power` watts for `duration` seconds."""
    return power * duration


def charge(energy_j: float, potential: float) -> float:
    """Electric charge in coulombs equivalent to `energy_j` at `potential` volts."""
    return energy_j / potential
