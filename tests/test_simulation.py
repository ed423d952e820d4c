import json
import os

import pytest
import yaml

from segmod.component import Component
from segmod.device import Battery
from segmod.simulation import (
    SimEnvironment,
    simulate,
    simulate_factors,
    simulate_many,
)

pytestmark = pytest.mark.usefixtures('cleandir')


@pytest.fixture
def config():
    return {
        'sim.config.file': 'config.yaml',
        'sim.result.file': 'result.yaml',
        'sim.workspace': 'workspace',
        'sim.workspace.overwrite': False,
        'sim.timescale': '1 ms',
        'sim.seed': 1234,
        'sim.duration': '1 ms',
        'test.fail': None,
    }


class Drain(Component):
    """Draws one joule from a 2 V battery every half time unit."""

    base_name = 'top'

    @classmethod
    def pre_init(cls, env):
        cls.fail_at(env, 'pre_init')

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_at(self.env, 'init')
        self.battery = Battery(self, potential=2.0, capacity=10.0)
        self.add_process(self.drain)

    @staticmethod
    def fail_at(env, phase):
        if env.config.get('test.fail') == phase:
            raise Exception(f'fail {phase}')

    def drain(self):
        while True:
            yield self.env.timeout(0.5)
            self.battery.draw(1.0)
            self.fail_at(self.env, 'simulate')

    def post_sim_hook(self):
        self.fail_at(self.env, 'post_simulate')

    def get_result_hook(self, result):
        self.fail_at(self.env, 'get_result')
        result['top.battery.charge'] = self.battery.charge
        result['time_100ns'] = self.env.time(unit='100 ns')


def check_files(config, result):
    assert result['sim.runtime'] > 0
    for file_key in ['sim.result.file', 'sim.config.file']:
        assert os.path.exists(os.path.join(config['sim.workspace'],
                                           config[file_key]))


def test_simulate(config):
    result = simulate(config, Drain)
    assert result['sim.exception'] is None
    assert result['sim.now'] == 1
    assert result['top.battery.charge'] == pytest.approx(9.5)
    check_files(config, result)


@pytest.mark.parametrize('phase, now', [
    ('pre_init', 0),
    ('init', 0),
    ('simulate', 0.5),
    ('post_simulate', 1),
    ('get_result', 1),
])
def test_phase_failure(config, phase, now):
    config['test.fail'] = phase
    result = simulate(config, Drain, reraise=False)
    assert result['sim.exception'] == repr(Exception(f'fail {phase}'))
    assert result['sim.now'] == now
    assert result['sim.time'] == pytest.approx(now * 1e-3)
    check_files(config, result)


def test_simulate_reraise(config):
    config['test.fail'] = 'simulate'
    with pytest.raises(Exception, match='fail simulate'):
        simulate(config, Drain, reraise=True)


def test_no_result_file(config):
    config.pop('sim.result.file')
    config.pop('sim.config.file')
    result = simulate(config, Drain)
    assert result['sim.exception'] is None
    assert not os.listdir(config['sim.workspace'])


def test_simulate_factors(config):
    factors = [(['sim.seed'], [[1], [2], [3]])]
    results = simulate_factors(config, factors, Drain)
    assert len(results) == 3
    for index, result in enumerate(results):
        assert result['sim.exception'] is None
        assert result['config']['meta.sim.index'] == index
        assert result['config']['sim.seed'] == index + 1
        assert os.path.exists(
            os.path.join(result['config']['meta.sim.workspace'],
                         result['config']['sim.result.file']))


def test_simulate_factors_filter(config):
    factors = [(['sim.seed'], [[1], [2], [3]])]
    results = simulate_factors(
        config, factors, Drain,
        config_filter=lambda cfg: cfg['meta.sim.index'] == 2)
    assert len(results) == 1
    assert results[0]['config']['meta.sim.workspace'] == os.path.join(
        config['sim.workspace'], '2')


def test_simulate_factors_overwrite(config):
    config['sim.workspace.overwrite'] = True
    factors = [(['sim.seed'], [[1], [2], [3]])]
    simulate_factors(config, factors, Drain)
    with open(os.path.join(config['sim.workspace'], 'cookie.txt'), 'w') as f:
        f.write('hi')

    factors = [(['sim.seed'], [[1], [2]])]
    results = simulate_factors(config, factors, Drain)
    assert len(results) == 2
    assert not os.path.exists(os.path.join(config['sim.workspace'],
                                           'cookie.txt'))
    assert set(os.listdir(config['sim.workspace'])) == {'0', '1'}


def test_workspace_env_init(config):
    class TestEnvironment(SimEnvironment):
        def __init__(self, config):
            super().__init__(config)
            assert os.path.split(os.getcwd())[-1] == config['sim.workspace']

    workspace = config['sim.workspace']
    assert not os.path.exists(workspace)
    simulate(config, Drain, TestEnvironment)
    assert os.path.exists(workspace)


def test_workspace_overwrite(config):
    workspace = config['sim.workspace']
    config['sim.result.file'] = 'first-result.yaml'
    simulate(config, Drain)

    config['sim.result.file'] = 'second-result.yaml'
    simulate(config, Drain)
    assert os.path.exists(os.path.join(workspace, 'first-result.yaml'))

    config['sim.workspace.overwrite'] = True
    config['sim.result.file'] = 'third-result.yaml'
    simulate(config, Drain)
    assert not os.path.exists(os.path.join(workspace, 'first-result.yaml'))
    assert os.path.exists(os.path.join(workspace, 'third-result.yaml'))


def test_many_with_duplicate_workspace(config):
    configs = [config.copy() for _ in range(2)]
    configs[0]['sim.workspace'] = os.path.join('tmp', os.pardir, 'workspace')
    configs[1]['sim.workspace'] = 'workspace'
    with pytest.raises(ValueError):
        simulate_many(configs, Drain)


def test_many_invalid_jobs(config):
    with pytest.raises(ValueError):
        simulate_many([config], Drain, jobs=0)


def test_sim_time(config):
    config['sim.timescale'] = '10 ms'
    config['sim.duration'] = '995 ms'
    result = simulate(config, Drain)
    assert result['sim.time'] == 0.995
    assert result['sim.now'] == 99.5
    assert result['time_100ns'] == 9950000


def test_sim_time_conversions(config):
    env = SimEnvironment(config)
    assert env.time(1000, 's') == 1
    assert env.time(t=500) == 0.5
    assert env.sim_time(5) == 5000
    assert env.sim_time(0.1) == pytest.approx(100)


def test_schedule_at(config):
    env = SimEnvironment(config)
    fired = []
    env.schedule_at(5, lambda: fired.append(('b', env.now)))
    env.schedule_at(2, lambda: fired.append(('a', env.now)))
    env.schedule_at(5, lambda: fired.append(('c', env.now)))
    env.run()
    assert fired == [('a', 2), ('b', 5), ('c', 5)]
    with pytest.raises(ValueError):
        env.schedule_at(1, lambda: None)


def test_seeded_rand(config):
    first = SimEnvironment(dict(config)).rand.random()
    assert SimEnvironment(dict(config)).rand.random() == first


@pytest.mark.parametrize('ext, parser', [
    ('yaml', yaml.safe_load),
    ('yml', yaml.safe_load),
    ('json', json.load),
    ('py', lambda f: eval(f.read())),
])
def test_sim_result_format(config, ext, parser):
    config['sim.result.file'] = 'result.' + ext
    config['sim.config.file'] = 'config.' + ext
    result = simulate(config, Drain)
    workspace = config['sim.workspace']
    with open(os.path.join(workspace, config['sim.result.file'])) as f:
        assert parser(f) == result
    with open(os.path.join(workspace, config['sim.config.file'])) as f:
        assert parser(f) == config


def test_sim_invalid_result_format(config):
    config['sim.result.file'] = 'result.bogus'
    with pytest.raises(ValueError):
        simulate(config, Drain)

    result = simulate(config, Drain, reraise=False)
    assert result['sim.exception'] is not None
