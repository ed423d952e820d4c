import pytest

from segmod.behavior import BehaviorChain, DelaySegment
from segmod.component import ConnectError
from segmod.config import ConfigError
from segmod.device import Battery, CommunicationDevice, Device, Memory, Processor
from segmod.node import Node
from segmod.task import Task


def idle_task(parent, name='task'):
    chain = BehaviorChain(looping=True)
    chain.add_segment(DelaySegment('1 s'))
    return Task(parent, chain=chain, name=name)


def test_node_devices(top, make_node):
    node = make_node(top, 'node')
    Device(node, {'OFF': 0.0, 'ON': 0.1}, 'OFF', name='led')
    assert isinstance(node.processor, Processor)
    assert isinstance(node.memory, Memory)
    assert isinstance(node.battery, Battery)
    assert sorted(node.peripherals) == ['led', 'radio']
    assert isinstance(node.peripheral('radio'), CommunicationDevice)
    assert len(node.devices) == 4
    with pytest.raises(ConfigError):
        node.peripheral('gps')


def test_missing_battery(top):
    node = Node(top, name='node')
    Processor(node, {'IDLE': 0.0, 'BUSY': 1.0})
    Memory(node)
    with pytest.raises(ConfigError):
        node.battery
    with pytest.raises(ConfigError):
        top.elaborate()


def test_two_processors(top, make_node):
    node = make_node(top, 'node')
    Processor(node, {'IDLE': 0.0, 'BUSY': 1.0}, name='coprocessor')
    with pytest.raises(ConfigError):
        node.processor


def test_duplicate_device_names(top):
    node = Node(top, name='node')
    Processor(node, {'IDLE': 0.0, 'BUSY': 1.0})
    Memory(node)
    Battery(node, potential=3.0, capacity=1.0)
    Device(node, {'ON': 0.0}, 'ON', name='led')
    Device(node, {'ON': 0.0}, 'ON', name='led')
    with pytest.raises(ConfigError):
        node.elab_hook()


def test_execute(top, make_node):
    node = make_node(top, 'node')
    task = idle_task(top)
    node.execute(task)
    assert task.node is node
    assert node.tasks == [task]
    node.execute(task)
    assert node.tasks == [task]


def test_execute_twice(top, make_node):
    first = make_node(top, 'first')
    second = make_node(top, 'second')
    task = idle_task(top)
    task.execute(first)
    with pytest.raises(ConfigError):
        task.execute(second)


def test_unmapped_task(top):
    node = Node(top, name='node')
    Processor(node, {'IDLE': 0.0, 'BUSY': 1.0})
    Memory(node)
    Battery(node, potential=3.0, capacity=1.0)
    idle_task(top)
    with pytest.raises(ConnectError):
        top.elaborate()


def test_radio_not_connected(top, make_node):
    make_node(top, 'node')
    with pytest.raises(ConnectError):
        top.elaborate()


def test_task_properties(top):
    task = idle_task(top)
    task.add_property('PERCENTAGE', 0.0, float)
    task.set('PERCENTAGE', '20')
    assert task.get('PERCENTAGE') == 20.0
    assert task.properties == {'PERCENTAGE': 20.0}
    with pytest.raises(ConfigError):
        task.set('PERCENTAGE', 'twenty')
    with pytest.raises(ConfigError):
        task.set('ALGORITHM', 'ZIP')
    with pytest.raises(ConfigError):
        task.get('ALGORITHM')
    with pytest.raises(ConfigError):
        task.add_property('PERCENTAGE', 1.0)


def test_task_ports(top):
    task = idle_task(top)
    inport = task.add_input_port('in')
    outport = task.add_output_port('out')
    assert task.port('in') is inport
    assert task.port('out') is outport
    assert inport.scope == 'top.task.in'
    assert not inport.is_bound
    with pytest.raises(ConfigError):
        task.add_output_port('in')
    with pytest.raises(ConfigError):
        task.port('missing')
