import os

import pytest

from segmod.component import Component
from segmod.device import Battery, CommunicationDevice, Memory, Processor
from segmod.node import Node
from segmod.simulation import SimEnvironment


@pytest.fixture
def config():
    return {
        'power.sample_period': '',
        'sim.duration': '0 s',
        'sim.seed': 1234,
        'sim.timescale': '1 s',
    }


@pytest.fixture
def env(config):
    """Fixture providing SimEnvironment for tests with `env` argument."""
    return SimEnvironment(config)


@pytest.fixture
def top(env):
    return Component(None, env=env, name='top')


@pytest.fixture
def make_node():
    """Fixture providing a function building a node, with a radio by default.

    The radio declares a ``channel`` connection that an ancestor must make
    before elaboration.

    """

    def make(
        parent, name, idle_power=0.0, busy_power=1.2e-3, capacity=7200.0, radio=True
    ):
        node = Node(parent, name=name)
        Processor(
            node,
            {'IDLE': idle_power, 'BUSY': busy_power},
            iops=4.0323e6,
            flops=16.129e6,
        )
        Memory(node)
        Battery(node, potential=3.0, capacity=capacity)
        if radio:
            node.radio = CommunicationDevice(
                node, {'IDLE': 0.0, 'TX': 102e-3, 'RX': 49.5e-3}
            )
        return node

    return make


@pytest.fixture
def cleandir(tmpdir):
    origin = os.getcwd()
    tmpdir.chdir()
    yield None
    os.chdir(origin)
