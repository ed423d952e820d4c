import pytest

from segmod.context import MissingKey, TaskContext


@pytest.fixture
def context():
    return TaskContext('top.task')


def test_put_get(context):
    context.put('SENSOR_DATA', 110.0)
    assert context.get('SENSOR_DATA') == 110.0
    assert 'SENSOR_DATA' in context
    assert len(context) == 1


def test_put_overwrites(context):
    context.put('FLOPS', 1)
    context.put('FLOPS', 2)
    assert context.get('FLOPS') == 2
    assert list(context) == ['FLOPS']


def test_missing_key(context):
    with pytest.raises(MissingKey) as exc_info:
        context.get('COMPRESS_DATA')
    assert exc_info.value.key == 'COMPRESS_DATA'
    assert 'top.task' in str(exc_info.value)
    assert isinstance(exc_info.value, KeyError)


def test_default(context):
    assert context.get('IOPS', 0) == 0
    assert context.get('IOPS', None) is None


def test_pop(context):
    context.put('MESSAGE_SEND', 'blob')
    assert context.pop('MESSAGE_SEND') == 'blob'
    assert 'MESSAGE_SEND' not in context
    assert context.pop('MESSAGE_SEND', None) is None
    with pytest.raises(MissingKey):
        context.pop('MESSAGE_SEND')


def test_clear(context):
    context.put('a', 1)
    context.put('b', 2)
    context.clear()
    assert len(context) == 0
