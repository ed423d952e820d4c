"""Tools for managing simulation configurations.

Each simulation is configured by a single, flat configuration dictionary
whose keys use a dotted notation (e.g. ``'sampler.compression.algorithm'``),
similar to :class:`~segmod.component.Component` scopes. Keys prefixed with
``'sim.'`` are reserved for the framework itself, for example
``'sim.duration'`` and ``'sim.seed'``.

The :class:`NamedManager` class defines named groups of configuration values
(e.g. a ``'zip'`` group selecting the ZIP compressor at some percentage) that
can be composed and resolved into a configuration.

:func:`factorial_config` expands configuration factors into the set of
configurations explored by :func:`~segmod.simulation.simulate_factors`.

:class:`ConfigError` is the root of every *configuration* error raised by
segmod: malformed behavior chains, unknown device modes, unbound ports and
unconnected components all derive from it. Such errors are raised while a
model is constructed, bound or elaborated; never in steady-state simulation.

"""
from collections.abc import Sequence
from copy import deepcopy
from itertools import product
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
import builtins

ConfigDict = Dict[str, Any]
ConfigFactor = Tuple[List[str], List[List[Any]]]


class ConfigError(Exception):
    """Exception raised for a variety of configuration errors."""


class NamedManager:
    """Manage named configuration groups.

    Any number of named configuration groups can be specified using the
    :meth:`name()` method. The :meth:`resolve()` method is used to compose a
    fully-resolved configuration based on one or more configuration group
    names.

    """

    def __init__(self) -> None:
        self._named_configs: Dict[str, Tuple[List[str], ConfigDict]] = {}

    def name(self, name: str, deps: List[str], cfg: Optional[ConfigDict] = None) -> None:
        """Declare a new configuration group.

        :param str name: Name of new configuration group.
        :param list deps: List of configuration group dependencies.
        :param dict cfg: Configuration key/values.

        """
        if name in self._named_configs:
            raise ConfigError(f'name already used: {name}')
        self._named_configs[name] = (deps, {} if cfg is None else cfg)

    def resolve(self, *names: str) -> ConfigDict:
        """Resolve named configs into a new config object."""
        resolved: ConfigDict = {}
        self._resolve(resolved, *names)
        return resolved

    def _resolve(self, resolved: ConfigDict, *names: str) -> None:
        for name in names:
            if name not in self._named_configs:
                raise ConfigError(f'unknown named config: {name}')
            deps, cfg = self._named_configs[name]
            self._resolve(resolved, *deps)
            resolved.update(cfg)

    def iter(self) -> Iterator[Tuple[str, List[str], ConfigDict]]:
        """Iterate named config (name, deps, cfg) tuples."""
        for name, (deps, cfg) in self._named_configs.items():
            yield name, deps, cfg


def apply_user_overrides(
    config: ConfigDict,
    overrides: Iterable[Tuple[str, str]],
    eval_locals: Optional[Dict[str, Any]] = None,
) -> None:
    """Apply user-provided overrides to a configuration.

    Each user-provided key must already exist (unambiguously, see
    :func:`fuzzy_lookup()`) in `config`. Value expressions are evaluated in a
    restricted environment and must be type-compatible with the existing
    value; e.g. ``('percentage', '35')`` sets
    ``'sampler.compression.percentage'`` to ``35.0``.

    :param dict config: Configuration dictionary to modify.
    :param list overrides:
        List of user-provided (key, value expression) tuples.
    :param dict eval_locals:
        Optional dictionary of locals to use with :func:`eval()`.

    """
    for user_key, user_expr in overrides:
        key, current_value = fuzzy_lookup(config, user_key)
        config[key] = _safe_eval(user_expr, type(current_value), eval_locals)


def factorial_config(
    base_config: ConfigDict,
    factors: Iterable[ConfigFactor],
    special_key: Optional[str] = None,
) -> Iterator[ConfigDict]:
    """Generate configurations from base config and config factors.

    :param dict base_config:
        Configuration dictionary that the generated configuration dictionaries
        are based on. This dict is not modified.
    :param list factors:
        Sequence of configuration factors. Each factor is a 2-tuple of a keys
        list and a list of values lists.
    :param str special_key:
        When specified, each generated config records its unique factor
        key/values under this key.
    :yields:
        Configuration dictionaries with the cartesian product of `factors`
        applied.

    """
    unrolled_factors = [
        [(keys, values) for values in values_list] for keys, values_list in factors
    ]

    for keys_values_lists in product(*unrolled_factors):
        config = deepcopy(base_config)
        special: List[List[Any]] = []
        if special_key:
            config[special_key] = special
        for keys, values in keys_values_lists:
            if not isinstance(values, Sequence) or len(keys) != len(values):
                raise ConfigError(f'factor values {values!r} do not match {keys!r}')
            for key, value in zip(keys, values):
                config[key] = value
                if special_key:
                    special.append([key, value])
        yield config


def fuzzy_lookup(config: ConfigDict, fuzzy_key: str) -> Tuple[str, Any]:
    """Lookup a config key/value using a partially specified (fuzzy) key.

    The lookup succeeds iff `fuzzy_key` unambiguously matches the tail of a
    fully-qualified key in `config`.

    :returns: `(key, value)` tuple with the fully-qualified key.
    :raises `segmod.config.ConfigError`: For non-matching `fuzzy_key`.

    """
    if fuzzy_key in config:
        return fuzzy_key, config[fuzzy_key]
    suffix_matches = []
    split_matches = []
    for k in config:
        if k.rsplit('.', 1)[-1] == fuzzy_key:
            split_matches.append(k)
        elif k.endswith(fuzzy_key):
            suffix_matches.append(k)
    if len(split_matches) == 1:
        k = split_matches[0]
        return k, config[k]
    elif len(suffix_matches) == 1:
        k = suffix_matches[0]
        return k, config[k]
    elif not suffix_matches + split_matches:
        raise ConfigError(f'Invalid config key "{fuzzy_key}"')
    else:
        raise ConfigError(
            'Ambiguous config key "{}"; possible matches: {}'.format(
                fuzzy_key, ', '.join(split_matches + suffix_matches)
            )
        )


_safe_builtins = [
    'abs', 'bool', 'dict', 'float', 'int', 'len', 'list', 'max', 'min',
    'range', 'round', 'set', 'str', 'sum', 'tuple', 'zip', 'True', 'False',
]

_default_eval_locals = {
    name: getattr(builtins, name) for name in _safe_builtins if hasattr(builtins, name)
}


def _safe_eval(
    expr: str, coerce_type: Optional[type] = None, eval_locals: Optional[Dict] = None
) -> Any:
    if eval_locals is None:
        eval_locals = _default_eval_locals
    try:
        value = eval(expr, {'__builtins__': None}, eval_locals)
    except Exception:
        if coerce_type and issubclass(coerce_type, str):
            value = expr
        else:
            raise ConfigError(f'Failed evaluation of expression "{expr}"')

    if coerce_type:
        if expr in eval_locals and not isinstance(value, coerce_type):
            value = expr
        if not isinstance(value, coerce_type):
            try:
                value = coerce_type(value)
            except (ValueError, TypeError):
                raise ConfigError(
                    'Failed to coerce expression {} to {}'.format(
                        _quote_expr(expr), coerce_type.__name__
                    )
                )
    return value


def _quote_expr(expr: str) -> str:
    quote_char = "'" if expr.startswith('"') else '"'
    return ''.join([quote_char, expr, quote_char])
