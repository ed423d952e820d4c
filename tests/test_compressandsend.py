import os

import pytest

from segmod.compressandsend import (
    COMPRESSION_ALGORITHM,
    COMPRESSION_PERCENTAGE,
    Top,
    compression_cost,
    main,
    make_config,
    rar_flops,
    rar_size,
    zip_flops,
    zip_size,
)
from segmod.config import ConfigError
from segmod.simulation import SimEnvironment, simulate, simulate_factors

pytestmark = pytest.mark.usefixtures('cleandir')


def test_zip_cost():
    assert zip_size(20.0) == 0.7165927644464541
    assert zip_flops(20.0) == 1084.4967497363698


def test_rar_cost():
    assert rar_size(20.0) == 0.5891851851851851
    assert rar_flops(20.0) == 520.7714926271865


@pytest.mark.parametrize('percentage', [0.0, 20.0, 50.0, 100.0])
def test_compression_shrinks(percentage):
    for size_ratio in (zip_size, rar_size):
        assert 0 < size_ratio(percentage) < 1.0


def test_compression_cost():
    packet_size, operations = compression_cost('ZIP', 20.0, 110.0)
    assert packet_size == int(zip_size(20.0) * 110.0) == 78
    assert operations == int(zip_flops(20.0) * 110.0)
    assert compression_cost('NONE', 20.0, 110.0) == (220, 1)
    assert compression_cost('GZIP', 20.0, 110.0) == (220, 1)


def test_make_config():
    config = make_config('rar', overrides={'sim.duration': '10 s'})
    assert config['sampler.compression.algorithm'] == 'RAR'
    assert config['sampler.compression.percentage'] == 20.0
    assert config['sim.duration'] == '10 s'
    with pytest.raises(ConfigError):
        make_config('lzma')


def test_sampler_properties():
    env = SimEnvironment(make_config('zip', overrides={'sim.log.enable': False}))
    top = Top(None, env=env)
    assert top.sampler.get(COMPRESSION_ALGORITHM) == 'ZIP'
    assert top.sampler.get(COMPRESSION_PERCENTAGE) == 20.0
    with pytest.raises(ConfigError):
        top.sampler.set(COMPRESSION_PERCENTAGE, 120.0)
    assert top.sensor.tasks == [top.sampler]
    assert top.sink.tasks == [top.collector]


@pytest.mark.parametrize('names', [('zip',), ('none',), ('rar',)])
def test_simulate(names):
    result = simulate(make_config(*names), Top)
    assert result['sim.exception'] is None
    assert result['top.messages.count'] == 19
    assert result['top.sampler.iterations'] == 20
    assert 'top.sampler.error' not in result
    energy = result['top.sensor.power.energy']
    assert set(energy) == {'processor', 'memory', 'radio'}
    assert result['top.sensor.power.total_energy'] == pytest.approx(
        sum(energy.values()))
    assert result['top.sensor.battery.charge'] == pytest.approx(
        7200.0 - result['top.sensor.power.total_energy'] / 3.0)
    assert not result['top.sensor.battery.depleted']
    assert os.path.exists(os.path.join('workspace', 'results.yaml'))


def test_compression_saves_radio_energy():
    raw = simulate(make_config('none'), Top)
    zipped = simulate(make_config('zip'), Top)
    raw_energy = raw['top.sensor.power.energy']
    zipped_energy = zipped['top.sensor.power.energy']
    assert zipped_energy['radio'] < raw_energy['radio']
    assert zipped_energy['processor'] > raw_energy['processor']
    assert raw_energy['radio'] == pytest.approx(19 * 2.0 * 102e-3, rel=1e-3)


def test_sink_logs_messages():
    simulate(make_config('zip'), Top)
    with open(os.path.join('workspace', 'sim.log')) as f:
        log = f.read()
    assert 'top.collector: message received with size 78' in log


def test_unknown_algorithm():
    config = make_config(
        overrides={
            'sampler.compression.algorithm': 'GZIP',
            'sampler.compression.percentage': 20.0,
        })
    result = simulate(config, Top)
    assert result['top.messages.count'] == 19
    with open(os.path.join('workspace', 'sim.log')) as f:
        log = f.read()
    assert 'WARNING' in log
    assert 'unknown compression method "GZIP"' in log
    assert 'message received with size 220' in log


def test_seeded_noise_repeatable():
    config = make_config('zip', 'noisy', overrides={'sim.log.enable': False})
    first = simulate(dict(config), Top)
    second = simulate(dict(config), Top)
    assert (first['top.sensor.power.energy'] ==
            second['top.sensor.power.energy'])


def test_simulate_factors():
    factors = [
        (['sampler.compression.algorithm'], [['ZIP'], ['RAR']]),
        (['sampler.compression.percentage'], [[10.0], [60.0]]),
    ]
    config = make_config(overrides={
        'sim.duration': '20 s',
        'sim.log.enable': False,
    })
    results = simulate_factors(config, factors, Top, jobs=1)
    assert len(results) == 4
    for result in results:
        assert result['sim.exception'] is None
        assert result['top.messages.count'] == 3


def test_zip_effort_clamped():
    assert zip_flops(60.0) < 0
    assert compression_cost('ZIP', 60.0, 110.0)[1] == 0


def test_main_overrides(capsys):
    result = main([
        'rar',
        '--set', 'percentage', '35',
        '--set', 'duration', '12 s',
        '-s', 'log.enable', 'False',
    ])
    config = result['config']
    assert config['sampler.compression.algorithm'] == 'RAR'
    assert config['sampler.compression.percentage'] == 35.0
    assert config['sim.duration'] == '12 s'
    assert config['sim.log.enable'] is False
    assert result['sim.exception'] is None
    assert result['top.messages.count'] == 2
    out, _ = capsys.readouterr()
    assert 'Total number of messages received: 2' in out


def test_main_invalid_override():
    with pytest.raises(ConfigError):
        main(['--set', 'bandwith', '10'])
    with pytest.raises(ConfigError):
        main(['--set', 'percentage', "'lots'"])
