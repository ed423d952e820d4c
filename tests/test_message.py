import pytest

from segmod.message import Message


def test_create():
    message = Message.create(78, seq=3)
    assert message.size == 78
    assert message['seq'] == 3
    assert message[Message.SIZE] == 78
    assert message.get('missing') is None
    assert dict(message.fields) == {'SIZE': 78, 'seq': 3}


def test_size_required():
    with pytest.raises(ValueError):
        Message({'seq': 1})


def test_negative_size():
    with pytest.raises(ValueError):
        Message.create(-1)


def test_immutable():
    message = Message.create(10)
    with pytest.raises(AttributeError):
        message.size = 20
    with pytest.raises(TypeError):
        message.fields['SIZE'] = 20


def test_replace():
    message = Message.create(10, seq=1)
    bigger = message.replace(SIZE=20)
    assert bigger.size == 20
    assert bigger['seq'] == 1
    assert message.size == 10
    assert bigger != message
    assert bigger.replace(SIZE=10) == message
