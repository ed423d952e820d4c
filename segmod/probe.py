"""Attach probe callbacks to observable model state.

A probe reports every change of a value to a list of callbacks. The following
targets are supported:

 - :class:`~segmod.device.Device`: the current mode name, or the current power
   draw with the ``trace_power`` hint.
 - :class:`~segmod.device.Battery`: the remaining charge in coulombs.
 - :class:`~segmod.port.InputPort`: the number of queued messages.
 - Bound methods: the method's return value on each call.

"""
from functools import wraps
from types import MethodType
from typing import Any, Callable, Iterable, Union

from .device import Battery, Device
from .port import InputPort

ProbeCallback = Callable[[Any], None]
ProbeCallbacks = Iterable[ProbeCallback]
ProbeTarget = Union[Device, Battery, InputPort, MethodType]


def attach(
    scope: str, target: ProbeTarget, callbacks: ProbeCallbacks, **hints: Any
) -> None:
    callbacks = list(callbacks)
    if isinstance(target, MethodType):
        _attach_method(target, callbacks)
    elif isinstance(target, Device):
        if hints.get('trace_power', False):
            _attach_device_power(target, callbacks)
        else:
            _attach_device_mode(target, callbacks)
    elif isinstance(target, Battery):
        _attach_battery_charge(target, callbacks)
    elif isinstance(target, InputPort):
        _attach_port_size(target, callbacks)
    else:
        raise TypeError(f'Cannot probe {scope} of type {type(target)}')


def _attach_method(method: MethodType, callbacks: ProbeCallbacks) -> None:
    def make_wrapper(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            value = func(*args, **kwargs)
            for callback in callbacks:
                callback(value)
            return value

        return wrapper

    setattr(method.__self__, method.__func__.__name__, make_wrapper(method))


def _attach_device_mode(device: Device, callbacks: ProbeCallbacks) -> None:
    def hook(device: Device) -> None:
        for callback in callbacks:
            callback(device.mode)

    device._mode_hooks.append(hook)


def _attach_device_power(device: Device, callbacks: ProbeCallbacks) -> None:
    def hook(device: Device) -> None:
        for callback in callbacks:
            callback(device.power)

    device._mode_hooks.append(hook)


def _attach_battery_charge(battery: Battery, callbacks: ProbeCallbacks) -> None:
    def hook(battery: Battery) -> None:
        for callback in callbacks:
            callback(battery.charge)

    battery._charge_hooks.append(hook)


def _attach_port_size(port: InputPort, callbacks: ProbeCallbacks) -> None:
    def hook() -> None:
        for callback in callbacks:
            callback(port.size)

    port._put_hook = port._get_hook = hook
