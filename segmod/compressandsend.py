"""Sample, compress and send.

A battery-powered sensor node periodically samples its environment and sends
each sample to a sink node over a radio link. Transmitting costs a lot of
power, so the sensor may compress samples first, using a ``'ZIP'`` or a
(fictive) ``'RAR'`` algorithm at a chosen compression percentage. Compressing
costs processor time, and therefore power, too.

The model helps answer how the choice of algorithm, compression percentage
and processor trade throughput (messages delivered per unit of time) against
energy drawn from the sensor's battery (its operational lifetime)::

    python -m segmod.compressandsend
    python -m segmod.compressandsend rar --set percentage 35 --set duration '600 s'

The compression cost functions are empirical curves: the ``*_size``
functions give the size ratio after compression and the ``*_flops``
functions the floating-point operations per byte of input.

"""
from argparse import ArgumentParser
from typing import Any, Callable, Dict, List, Optional, Tuple
import math

from .behavior import (
    FLOPS,
    IOPS,
    MESSAGE_RECEIVED,
    MESSAGE_SEND,
    BehaviorChain,
    CalculateSegment,
    CopySegment,
    CustomSegment,
    DelaySegment,
    ReceiveSegment,
    Segment,
    SegmentResult,
    SendSegment,
    SUCCESS,
)
from .channel import DelayChannel
from .component import Component
from .config import ConfigDict, NamedManager, apply_user_overrides
from .context import TaskContext
from .device import Battery, CommunicationDevice, Memory, Processor
from .loggers import MessageCountLogger, NodePowerLogger
from .message import Message
from .node import Node
from .port import InputPort, OutputPort
from .simulation import ResultDict, simulate
from .task import Task

SENSOR_DATA = 'SENSOR_DATA'
COMPRESS_DATA = 'COMPRESS_DATA'

AVERAGE_PACKAGE_SIZE = 'AVERAGE_PACKAGE_SIZE'
SDEVIATION_PACKAGE_SIZE = 'SDEVIATION_PACKAGE_SIZE'
COMPRESSION_ALGORITHM = 'COMPRESSION_ALGORITHM'
COMPRESSION_PERCENTAGE = 'COMPRESSION_PERCENTAGE'

#: Size of an uncompressed packet relative to the sampled data.
RAW_ENCODING_FACTOR = 2.0


def zip_size(percentage: float) -> float:
    """Size ratio after "ZIP" compression targeting `percentage`."""
    return 0.978 + (1.01 * math.cos((math.pi * (percentage + 120)) / 240))


def zip_flops(percentage: float) -> float:
    """Floating-point operations per byte of "ZIP" compression."""
    scale = 1.0e3
    bumpy_part = math.cos(math.pow(percentage / 40.0, 1.6))
    return scale * ((1 / math.pow(101 - percentage, 0.45)) + bumpy_part)


def rar_size(percentage: float) -> float:
    """Size ratio after "RAR" compression targeting `percentage`."""
    return (3 / ((percentage + 61.0) / 32.0)) - 0.596


def rar_flops(percentage: float) -> float:
    """Floating-point operations per byte of "RAR" compression."""
    scale = 1.0e3
    bumpy_part = math.sin(math.pow(percentage / 45.0, 1.3))
    return scale * ((1 / math.pow(102 - percentage, 0.39)) + bumpy_part)


COMPRESSORS: Dict[str, Tuple[Callable[[float], float], Callable[[float], float]]] = {
    'ZIP': (zip_size, zip_flops),
    'RAR': (rar_size, rar_flops),
}


def compression_cost(algorithm: str, percentage: float, data_size: float) -> Tuple[int, int]:
    """Packet size in bytes and operation count to compress `data_size` bytes.

    ``'NONE'``, like any algorithm missing from :data:`COMPRESSORS`, applies
    no compression. The "ZIP" effort curve dips below zero between roughly
    57 % and 97 %; the operation count is clamped at zero there.

    """
    if algorithm in COMPRESSORS:
        size_ratio, flops_per_byte = COMPRESSORS[algorithm]
        return (
            int(size_ratio(percentage) * data_size),
            max(0, int(flops_per_byte(percentage) * data_size)),
        )
    return int(RAW_ENCODING_FACTOR * data_size), 1


def _percentage(value: Any) -> float:
    value = float(value)
    if not 0.0 <= value <= 100.0:
        raise ValueError(f'percentage must be within [0, 100], got {value}')
    return value


def _size(value: Any) -> float:
    value = float(value)
    if value < 0:
        raise ValueError(f'size must be non-negative, got {value}')
    return value


class SenseSegment(Segment):
    """Draw a sample whose size follows a normal distribution."""

    outputs = (FLOPS, IOPS, SENSOR_DATA)

    def execute(self, context: TaskContext) -> SegmentResult:
        mu = self.task.get(AVERAGE_PACKAGE_SIZE)
        sigma = self.task.get(SDEVIATION_PACKAGE_SIZE)
        data_size = max(0.0, self.task.env.rand.gauss(mu, sigma))
        context.put(FLOPS, int(data_size))
        context.put(IOPS, 0)
        context.put(SENSOR_DATA, data_size)
        return SUCCESS


class CompressSegment(Segment):
    """Compress the sample into a message and set the compression effort."""

    inputs = (COMPRESS_DATA,)
    outputs = (FLOPS, IOPS, COMPRESS_DATA)

    def execute(self, context: TaskContext) -> SegmentResult:
        algorithm = self.task.get(COMPRESSION_ALGORITHM)
        percentage = self.task.get(COMPRESSION_PERCENTAGE)
        data_size = context.get(COMPRESS_DATA)
        if algorithm != 'NONE' and algorithm not in COMPRESSORS:
            self.task.warn(
                f'unknown compression method "{algorithm}": no compression applied'
            )
        packet_size, operations = compression_cost(algorithm, percentage, data_size)
        context.put(FLOPS, operations)
        context.put(IOPS, 0)
        context.put(COMPRESS_DATA, Message.create(packet_size))
        return SUCCESS


class SampleAndCompressTask(Task):
    """Sample, compress and send, forever.

    Properties: :data:`AVERAGE_PACKAGE_SIZE` and
    :data:`SDEVIATION_PACKAGE_SIZE` (bytes) parameterize the sample size;
    :data:`COMPRESSION_ALGORITHM` (``'NONE'``, ``'ZIP'`` or ``'RAR'``) and
    :data:`COMPRESSION_PERCENTAGE` (0 to 100) the compression.

    """

    base_name = 'sampler'

    def __init__(self, *args: Any, interval: str = '5 s', **kwargs: Any) -> None:
        super().__init__(*args, chain=BehaviorChain(looping=True), **kwargs)
        self.outport: OutputPort = self.add_output_port('OUTPORT')

        self.add_property(AVERAGE_PACKAGE_SIZE, 110.0, _size)
        self.add_property(SDEVIATION_PACKAGE_SIZE, 0.0, _size)
        self.add_property(COMPRESSION_ALGORITHM, 'NONE', str)
        self.add_property(COMPRESSION_PERCENTAGE, 0.0, _percentage)

        self.chain.add_segments(
            DelaySegment(interval, name='wait'),
            SenseSegment(name='sense'),
            CalculateSegment(name='calculate_sampling'),
            CopySegment(SENSOR_DATA, COMPRESS_DATA, name='sense2compress'),
            CompressSegment(name='compress'),
            CalculateSegment(name='calculate_compression'),
            CopySegment(COMPRESS_DATA, MESSAGE_SEND, name='compress2send'),
            SendSegment(self.outport, blocking=False, name='send'),
        )


def log_message(task: Task, context: TaskContext) -> None:
    message = context.get(MESSAGE_RECEIVED)
    task.info(f'message received with size {message.size}')


class SinkTask(Task):
    """Receive messages, log them and discard them."""

    base_name = 'collector'

    def __init__(self, *args: Any, delay: str = '100 ms', **kwargs: Any) -> None:
        super().__init__(*args, chain=BehaviorChain(looping=True), **kwargs)
        self.inport: InputPort = self.add_input_port('INPORT')
        self.chain.add_segments(
            ReceiveSegment(self.inport, blocking=True, name='receive'),
            CustomSegment(log_message, inputs=[MESSAGE_RECEIVED], name='print'),
            DelaySegment(delay, name='rest'),
        )


class SampleAndCompressNode(Node):
    """A small, fictive battery-powered microcontroller with a radio.

    Two 1.5 V cells in series give 3 V and 7200 C (about 2000 mAh).

    """

    base_name = 'sensor'

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        Processor(
            self,
            {'IDLE': 1.5e-6, 'BUSY': 1.2e-3},
            iops=4.0323e6,
            flops=16.129e6,
        )
        Memory(self)
        Battery(self, potential=3.0, capacity=7200.0)
        self.radio = CommunicationDevice(
            self, {'IDLE': 0.6e-6, 'TX': 102e-3, 'RX': 49.5e-3}
        )


class SinkNode(SampleAndCompressNode):
    """Receiving node, built like the sensor node."""

    base_name = 'sink'


class Top(Component):
    """Sensor and sink nodes linked by a radio channel."""

    base_name = 'top'

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        config = self.env.config

        # Physical view.
        self.sensor = SampleAndCompressNode(self)
        self.sink = SinkNode(self)
        self.channel = DelayChannel(
            config.get('channel.bandwidth', 110.0),
            ordering=config.get('channel.ordering', 'arrival'),
        )

        # Functional view.
        self.sampler = SampleAndCompressTask(
            self, interval=config.get('sampler.interval', '5 s')
        )
        self.sampler.set(
            AVERAGE_PACKAGE_SIZE, config.get('sampler.package_size.average', 110.0)
        )
        self.sampler.set(
            SDEVIATION_PACKAGE_SIZE,
            config.get('sampler.package_size.sdeviation', 0.0),
        )
        self.sampler.set(
            COMPRESSION_ALGORITHM, config.get('sampler.compression.algorithm', 'NONE')
        )
        self.sampler.set(
            COMPRESSION_PERCENTAGE, config.get('sampler.compression.percentage', 0.0)
        )
        self.collector = SinkTask(self, delay=config.get('sink.delay', '100 ms'))

        # Mapping view.
        self.sensor.execute(self.sampler)
        self.sink.execute(self.collector)
        self.sensor.radio.bind(self.sampler.outport)
        self.sink.radio.bind(self.collector.inport)

        # Loggers.
        self.messages = MessageCountLogger(self, self.collector.inport)
        NodePowerLogger(self.sensor)
        NodePowerLogger(self.sink)

    def connect_children(self) -> None:
        for node in (self.sensor, self.sink):
            self.connect(node.radio, 'channel')

    def elab_hook(self) -> None:
        self.sink.radio.listen()


base_config: ConfigDict = {
    'channel.bandwidth': 110.0,
    'channel.ordering': 'arrival',
    'power.sample_period': '1 s',
    'sampler.compression.algorithm': 'NONE',
    'sampler.compression.percentage': 0.0,
    'sampler.interval': '5 s',
    'sampler.package_size.average': 110.0,
    'sampler.package_size.sdeviation': 0.0,
    'sim.duration': '100 s',
    'sim.log.enable': True,
    'sim.log.file': 'sim.log',
    'sim.log.level': 'INFO',
    'sim.result.file': 'results.yaml',
    'sim.seed': 1234,
    'sim.timescale': '1 ms',
    'sim.workspace': 'workspace',
    'sink.delay': '100 ms',
}

named_configs = NamedManager()
named_configs.name('none', [], {'sampler.compression.algorithm': 'NONE'})
named_configs.name(
    'zip',
    [],
    {
        'sampler.compression.algorithm': 'ZIP',
        'sampler.compression.percentage': 20.0,
    },
)
named_configs.name(
    'rar',
    [],
    {
        'sampler.compression.algorithm': 'RAR',
        'sampler.compression.percentage': 20.0,
    },
)
named_configs.name('noisy', [], {'sampler.package_size.sdeviation': 10.0})


def make_config(*names: str, overrides: Optional[ConfigDict] = None) -> ConfigDict:
    """Compose a configuration from the base config and named groups."""
    config = dict(base_config)
    config.update(named_configs.resolve(*names))
    if overrides:
        config.update(overrides)
    return config


def main(argv: Optional[List[str]] = None) -> ResultDict:
    parser = ArgumentParser(description='Simulate a sensor sending samples to a sink.')
    parser.add_argument(
        'names', nargs='*', metavar='NAME', default=['zip'],
        help='Named configurations to apply: ' + ', '.join(
            name for name, _, _ in named_configs.iter()))
    parser.add_argument(
        '--set', '-s', nargs=2, metavar=('KEY', 'VALUE'),
        action='append', default=[], dest='config_overrides',
        help='Override config KEY with VALUE expression')
    args = parser.parse_args(argv)
    config = make_config(*args.names)
    apply_user_overrides(config, args.config_overrides)
    result = simulate(config, Top)
    print('Total number of messages received:', result['top.messages.count'])
    print('Sensor energy (J):', result['top.sensor.power.energy'])
    print('Sensor battery charge (C):', result['top.sensor.battery.charge'])
    return result


if __name__ == '__main__':
    main()
