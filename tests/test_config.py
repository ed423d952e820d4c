import sys

import pytest

from segmod.config import (
    ConfigError,
    NamedManager,
    _safe_eval,
    apply_user_overrides,
    factorial_config,
    fuzzy_lookup,
)


@pytest.fixture
def config():
    return {
        'sampler.compression.algorithm': 'ZIP',
        'sampler.compression.percentage': 20.0,
        'sampler.package_size.average': 110.0,
        'sampler.interval': '5 s',
        'channel.bandwidth': 110.0,
        'channel.ordering': 'arrival',
        'sim.log.enable': False,
        'sim.seed': 1234,
        'sim.vcd.include_pat': ['.*'],
    }


@pytest.fixture
def named_mgr():
    return NamedManager()


def test_named_reuse(named_mgr):
    named_mgr.name('zip', [], {'sampler.compression.algorithm': 'ZIP'})
    with pytest.raises(ConfigError):
        named_mgr.name('zip', [], {'sampler.compression.algorithm': 'RAR'})
    with pytest.raises(ConfigError):
        named_mgr.resolve('rar')


def test_named_resolve(named_mgr):
    named_mgr.name('slow', [], {'channel.bandwidth': 10.0})
    named_mgr.name('zip', [], {'sampler.compression.algorithm': 'ZIP'})
    named_mgr.name('zip-slow', ['zip', 'slow'],
                   {'sampler.compression.percentage': 50.0})
    named_mgr.name('zip-slower', ['zip-slow'], {'channel.bandwidth': 1.0})
    named_mgr.name('alias', ['zip-slower'])
    assert named_mgr.resolve('alias') == {
        'channel.bandwidth': 1.0,
        'sampler.compression.algorithm': 'ZIP',
        'sampler.compression.percentage': 50.0,
    }
    assert {name for name, _, _ in named_mgr.iter()} == {
        'slow', 'zip', 'zip-slow', 'zip-slower', 'alias'}


@pytest.mark.parametrize('fuzzy_key, expected', [
    ('percentage', ('sampler.compression.percentage', 20.0)),
    ('compression.algorithm', ('sampler.compression.algorithm', 'ZIP')),
    ('bandwidth', ('channel.bandwidth', 110.0)),
    ('sim.seed', ('sim.seed', 1234)),
    ('enable', ('sim.log.enable', False)),
    ('.interval', ('sampler.interval', '5 s')),
    ('e', ConfigError),
    ('size', ConfigError),
])
def test_fuzzy_lookup(config, fuzzy_key, expected):
    if isinstance(expected, type) and issubclass(expected, Exception):
        with pytest.raises(expected):
            fuzzy_lookup(config, fuzzy_key)
    else:
        assert fuzzy_lookup(config, fuzzy_key) == expected


def test_user_override(config):
    apply_user_overrides(config, [
        ('percentage', '35'),
        ('algorithm', 'RAR'),
        ('include_pat', '["top.sensor", "top.sink"]'),
    ])
    assert config['sampler.compression.percentage'] == 35.0
    assert config['sampler.compression.algorithm'] == 'RAR'
    assert config['sim.vcd.include_pat'] == ['top.sensor', 'top.sink']


def test_user_override_type_mismatch(config):
    with pytest.raises(ConfigError):
        apply_user_overrides(config, [('include_pat', 'os.system("clear")')])


def test_user_override_invalid_key(config):
    with pytest.raises(ConfigError):
        apply_user_overrides(config, [('not.a.key', '1')])


def test_user_override_int(config):
    apply_user_overrides(config, [('seed', '42')])
    assert config['sim.seed'] == 42
    with pytest.raises(ConfigError):
        apply_user_overrides(config, [('seed', 'forty-two')])


def test_user_override_bool(config):
    apply_user_overrides(config, [('log.enable', '1')])
    assert config['sim.log.enable'] is True
    apply_user_overrides(config, [('log.enable', 'False')])
    assert config['sim.log.enable'] is False


def test_user_override_str_int(config):
    apply_user_overrides(config, [('interval', '10')])
    assert config['sampler.interval'] == '10'


@pytest.mark.skipif(hasattr(sys, 'pypy_version_info'),
                    reason="PyPy's eval() mishandles locals dict")
def test_safe_eval_str_builtin_alias():
    assert _safe_eval('max', str) == 'max'
    assert _safe_eval('max') is max
    with pytest.raises(ConfigError):
        _safe_eval('max', eval_locals={})
    assert _safe_eval('max', str, {}) == 'max'


def test_safe_eval_dict():
    with pytest.raises(ConfigError):
        _safe_eval('max', coerce_type=dict)


def test_factorial_config():
    factors = [
        (['sampler.compression.algorithm', 'channel.ordering'],
         [['ZIP', 'arrival'], ['RAR', 'send']]),
        (['sampler.compression.percentage'], [[10.0], [20.0], [30.0]]),
    ]
    configs = list(factorial_config({'sim.seed': 1}, factors))
    assert len(configs) == 6
    assert configs[0] == {
        'sim.seed': 1,
        'sampler.compression.algorithm': 'ZIP',
        'channel.ordering': 'arrival',
        'sampler.compression.percentage': 10.0,
    }
    assert configs[-1]['sampler.compression.algorithm'] == 'RAR'
    assert configs[-1]['channel.ordering'] == 'send'
    assert configs[-1]['sampler.compression.percentage'] == 30.0


def test_factorial_config_special():
    factors = [(['k0'], [[0], [1]])]
    configs = list(factorial_config({}, factors, 'special'))
    assert configs == [
        {'k0': 0, 'special': [['k0', 0]]},
        {'k0': 1, 'special': [['k0', 1]]},
    ]


def test_factorial_config_mismatch():
    factors = [(['k0', 'k1'], [[0, 1], [2]])]
    with pytest.raises(ConfigError):
        list(factorial_config({}, factors))
