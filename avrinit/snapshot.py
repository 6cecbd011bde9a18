"""
Configuration snapshot

The complete input of one generation run: which peripherals are active and how
they are configured. A snapshot is built once and never changed, all mappings
in it are read-only.

A snapshot is usually parsed from plain data, e.g. a YAML or JSON document:

    gpio:
      pins:
        PB5: {mode: OUTPUT, initialState: HIGH}
    uart0:
      settings: {baudRate: 9600}
      interrupts: {RX: true}
    watchdog_timer:
      enabled: true
      settings: {timeout: 1000}
"""
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import SnapshotError
from .models import GLOBAL_KIND, PIN_KIND, PeripheralDescriptor


def _freeze(mapping=None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class PinBoundState:
    """ State of a pin-bound peripheral

    `pins` holds the settings per pin, `settings` the peripheral-level settings
    shared by all pins. `activation` names an interrupt or signal the peripheral
    was selected for without any pin, e.g. "INT0".
    """
    pins: Mapping[str, Mapping[str, Any]] = field(default_factory=_freeze)
    settings: Mapping[str, Any] = field(default_factory=_freeze)
    interrupts: Mapping[str, bool] = field(default_factory=_freeze)
    activation: Optional[str] = None

    kind = PIN_KIND

    def occupied(self, descriptor:PeripheralDescriptor) -> Tuple[str, ...]:
        """ Pins the peripheral occupies.

        The configured pins, or for a shared peripheral configured only on
        peripheral level all of its mapped pins, or the pins carrying the signal
        of an interrupt-only activation.
        """
        if self.pins:
            return tuple(self.pins)
        if self.activation:
            if self.activation in descriptor.pin_mapping:
                return tuple(descriptor.pin_mapping[self.activation])
            interrupt = descriptor.get_interrupt(self.activation)
            if interrupt and interrupt.signal in descriptor.pin_mapping:
                return tuple(descriptor.pin_mapping[interrupt.signal])
            return ()
        if descriptor.shared:
            return tuple(descriptor.pins)
        return ()

    def merged(self, descriptor:PeripheralDescriptor) -> Dict[str, Any]:
        """ Settings of a shared peripheral: peripheral-level settings first, then
        per-pin settings in declared pin order for keys not set yet """
        result = dict(self.settings)
        for pin in descriptor.pins:
            for key, value in (self.pins.get(pin) or {}).items():
                result.setdefault(key, value)
        return result


@dataclass(frozen=True)
class GlobalState:
    """ State of a peripheral without pins """
    settings: Mapping[str, Any] = field(default_factory=_freeze)
    enabled: bool = True
    interrupts: Mapping[str, bool] = field(default_factory=_freeze)

    kind = GLOBAL_KIND

    @property
    def activation(self) -> Optional[str]:
        return None

    @property
    def pins(self) -> Mapping:
        return MappingProxyType({})

    def occupied(self, descriptor:PeripheralDescriptor) -> Tuple[str, ...]:
        return ()

    def merged(self, descriptor:PeripheralDescriptor) -> Dict[str, Any]:
        return dict(self.settings)


PeripheralState = Union[PinBoundState, GlobalState]


class Snapshot(MappingABC):
    """ Read-only mapping of peripheral id to its state """

    def __init__(self, states:Mapping[str, PeripheralState]=None):
        self._states = dict(states or {})
        for pid, state in self._states.items():
            if not isinstance(state, (PinBoundState, GlobalState)):
                raise SnapshotError(f"state of '{pid}' is a {type(state).__name__}, not a peripheral state")

    def __getitem__(self, pid:str) -> PeripheralState:
        return self._states[pid]

    def __iter__(self) -> Iterator[str]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __repr__(self):
        return f"Snapshot({', '.join(self._states)})"

    def occupants(self, registry) -> Dict[str, List[str]]:
        """ Pin -> ids of all peripherals occupying it, in snapshot order """
        result = {}
        for pid, state in self._states.items():
            descriptor = registry.get(pid)
            if descriptor is None:
                pins = tuple(state.pins)
            else:
                pins = state.occupied(descriptor)
            for pin in pins:
                result.setdefault(pin, [])
                if pid not in result[pin]:
                    result[pin].append(pid)
        return result

    @classmethod
    def parse(cls, data, registry=None) -> 'Snapshot':
        return parse_snapshot(data, registry)


def _mapping(value, what:str) -> Mapping:
    if value is None:
        return {}
    if not isinstance(value, MappingABC):
        raise SnapshotError(f"{what} must be a mapping, not {type(value).__name__}")
    return value


def _parse_pins(value, pid:str) -> Mapping:
    # A plain list selects pins without settings
    if isinstance(value, (list, tuple)):
        return _freeze({str(pin): _freeze({}) for pin in value})
    pins = {}
    for pin, settings in _mapping(value, f"pins of '{pid}'").items():
        pins[str(pin)] = _freeze(_mapping(settings, f"settings of '{pid}' pin {pin}"))
    return _freeze(pins)


def _parse_interrupts(value, pid:str) -> Mapping:
    # A list names the enabled interrupts
    if isinstance(value, (list, tuple)):
        return _freeze({str(name): True for name in value})
    return _freeze({str(k): bool(v) for k, v in _mapping(value, f"interrupts of '{pid}'").items()})


def _kind_of(pid:str, data:Mapping, registry) -> str:
    kind = data.get('kind')
    if kind is not None:
        if kind not in (PIN_KIND, GLOBAL_KIND):
            raise SnapshotError(f"unknown kind of state {kind!r} for '{pid}'")
        return kind
    descriptor = registry.get(pid) if registry is not None else None
    if descriptor is not None:
        return descriptor.kind
    if 'pins' in data or 'activation' in data:
        return PIN_KIND
    return GLOBAL_KIND


def parse_state(pid:str, data, registry=None) -> PeripheralState:
    data = _mapping(data, f"state of '{pid}'")
    settings = _freeze(_mapping(data.get('settings'), f"settings of '{pid}'"))
    interrupts = _parse_interrupts(data.get('interrupts'), pid)
    if _kind_of(pid, data, registry) == PIN_KIND:
        if 'enabled' in data:
            raise SnapshotError(f"'{pid}' is pin-bound and has no enabled flag")
        activation = data.get('activation')
        return PinBoundState(
            pins=_parse_pins(data.get('pins'), pid),
            settings=settings,
            interrupts=interrupts,
            activation=None if activation is None else str(activation),
        )
    if 'pins' in data or 'activation' in data:
        raise SnapshotError(f"'{pid}' is a global peripheral and has no pins")
    return GlobalState(settings=settings, enabled=bool(data.get('enabled', True)), interrupts=interrupts)


def parse_snapshot(data, registry=None) -> Snapshot:
    """ Build a snapshot from plain data.

    With a registry, the kind of each state follows the peripheral's descriptor;
    states of unknown peripherals are kept so that validation can report them.
    """
    if isinstance(data, Snapshot):
        return data
    data = _mapping(data, "snapshot")
    return Snapshot({str(pid): parse_state(str(pid), state, registry) for pid, state in data.items()})
