"""
Data models of the peripheral schema

Everything here is built once when the models are loaded and never changed
afterwards. Mappings are wrapped read-only and lists are stored as tuples.
"""
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import SchemaError
from .templates import LineTemplate, TemplateTable

PIN_KIND = "pin"
GLOBAL_KIND = "global"

_PIN_RE = re.compile(r"^P([A-Z])([0-7])$")


def split_pin(pin:str) -> Tuple[str, int]:
    """ Decompose a pin identifier like "PB3" into port letter and bit index ("B", 3) """
    match = _PIN_RE.match(pin or '')
    if not match:
        raise SchemaError(f"malformed pin identifier {pin!r}")
    return match.group(1), int(match.group(2))


def frozen(mapping=None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


def applies(predicate:Mapping, settings:Mapping) -> bool:
    """ Evaluate an `appliesTo` predicate: every listed field must hold one of the listed values """
    for key, allowed in (predicate or {}).items():
        value = settings.get(key)
        if isinstance(allowed, (list, tuple)):
            if value not in allowed and str(value) not in [str(a) for a in allowed]:
                return False
        elif value != allowed and str(value) != str(allowed):
            return False
    return True


@dataclass(frozen=True)
class ConfigField:
    """
    A user-facing setting of a peripheral
    """
    key: str
    name: str
    kind: str                       # "select", "number" or "boolean"
    default: Any = None
    values: Tuple[Any, ...] = ()    # allowed values of a select
    applies_to: Mapping[str, Tuple[Any, ...]] = field(default_factory=frozen)
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    helper: Optional[str] = None

    def visible(self, settings:Mapping) -> bool:
        return applies(self.applies_to, settings)

    def accepts(self, value) -> bool:
        if self.kind == "select":
            return value in self.values or str(value) in [str(v) for v in self.values]
        if self.kind == "boolean":
            return isinstance(value, bool)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class InterruptDescriptor:
    """
    An interrupt a peripheral can raise, with the code to enable it and the handler stub
    """
    key: str                        # name used in configurations, e.g. "RX"
    vector: str = ''                # e.g. "USART_RX_vect", empty for pin change interrupts
    description: str = ''
    default_enabled: bool = False
    applies_to: Mapping[str, Tuple[Any, ...]] = field(default_factory=frozen)
    enable: Tuple[LineTemplate, ...] = ()
    handler: Tuple[LineTemplate, ...] = ()
    pin_change: bool = False        # handled by the pin change interrupt aggregator
    signal: Optional[str] = None    # enabled whenever a pin carrying this signal is configured

    @property
    def flag(self) -> str:
        """ Name of the boolean setting that enables this interrupt """
        return f"enable{self.key}Interrupt"


@dataclass(frozen=True)
class ConflictRule:
    """
    If the owning peripheral occupies one of the reserved pins, none of the
    conflicting peripherals may occupy that pin as well.
    """
    trigger: str
    reserved_pins: Tuple[str, ...]
    conflicting: Tuple[str, ...]
    message: str


@dataclass(frozen=True)
class RoutineParameter:
    name: str                       # C parameter name
    ctype: str                      # C type
    setting: str                    # setting the call argument is taken from


@dataclass(frozen=True)
class RoutineSpec:
    """ Name and signature of the init routine generated for a peripheral """
    name: LineTemplate
    parameters: Tuple[RoutineParameter, ...] = ()


@dataclass(frozen=True)
class PinChangeSpec:
    """ Code templates of the pin change interrupt aggregator.

    `pin_setup` is rendered once per member pin, `group_enable` and `mask` once per
    port group. The handler of a group is `handler_head`, then `handler_member` for
    every member pin, then `handler_tail`.
    """
    routine: str
    flag: Optional[str] = None                  # per-pin setting requesting a pin change interrupt
    pin_setup: Tuple[LineTemplate, ...] = ()
    group_enable: Tuple[LineTemplate, ...] = ()
    mask: Tuple[LineTemplate, ...] = ()
    mask_bit: Optional[LineTemplate] = None
    handler_head: Tuple[LineTemplate, ...] = ()
    handler_member: Tuple[LineTemplate, ...] = ()
    handler_tail: Tuple[LineTemplate, ...] = ()


@dataclass(frozen=True)
class PeripheralDescriptor:
    """
    Complete, immutable description of one peripheral
    """
    # Identity
    id: str
    name: str
    kind: str                                   # PIN_KIND or GLOBAL_KIND
    title: str = ''

    # Pins
    pin_mapping: Mapping[str, Tuple[str, ...]] = field(default_factory=frozen)
    requires_all_pins: bool = False
    shared: bool = False                        # one settings record for all pins

    # User-facing configuration
    fields: Tuple[ConfigField, ...] = ()
    interrupts: Tuple[InterruptDescriptor, ...] = ()
    alerts: Tuple[str, ...] = ()

    # Code generation
    includes: Tuple[str, ...] = ()
    mode_key: Optional[str] = None
    mode_mapping: Mapping[str, str] = field(default_factory=frozen)
    value_mapping: Mapping[str, Mapping[Any, Any]] = field(default_factory=frozen)
    init: TemplateTable = field(default_factory=TemplateTable)
    routine: Optional[RoutineSpec] = None
    pin_change: Optional[PinChangeSpec] = None  # only the pin change interrupt peripheral

    conflicts: Tuple[ConflictRule, ...] = ()

    @property
    def is_pin_bound(self) -> bool:
        return self.kind == PIN_KIND

    @property
    def pins(self) -> List[str]:
        """ All mapped pins in declaration order """
        result = []
        for pins in self.pin_mapping.values():
            for p in pins:
                if p not in result:
                    result.append(p)
        return result

    def signal_of(self, pin:str) -> Optional[str]:
        for signal, pins in self.pin_mapping.items():
            if pin in pins:
                return signal
        return None

    def get_field(self, key:str) -> Optional[ConfigField]:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    def get_interrupt(self, key:str) -> Optional[InterruptDescriptor]:
        for i in self.interrupts:
            if i.key == key:
                return i
        return None


@dataclass(frozen=True)
class Port:
    letter: str
    ddr: str
    port: str
    pin: str


@dataclass(frozen=True)
class PinChangeGroup:
    """ Pins of one port sharing a pin change interrupt enable bit and vector """
    index: int
    port: str
    vector: str
    enable_bit: str
    mask_register: str
    first_number: int

    def number(self, bit:int) -> int:
        """ PCINT number of a bit of this port """
        return self.first_number + bit


@dataclass(frozen=True)
class Board:
    """ The target chip and board """
    mcu: str
    board: str
    clock: int
    ports: Mapping[str, Port] = field(default_factory=frozen)
    pin_change_groups: Tuple[PinChangeGroup, ...] = ()

    def port(self, letter:str) -> Optional[Port]:
        return self.ports.get(letter)

    def pin_change_group(self, letter:str) -> Optional[PinChangeGroup]:
        for g in self.pin_change_groups:
            if g.port == letter:
                return g
        return None

    def pin_symbols(self, pin:str) -> Dict[str, Any]:
        """ Register and bit symbol names for a pin, e.g. for PB3:
        DDRB/PORTB/PINB and DDB3/PORTB3/PINB3 """
        letter, bit = split_pin(pin)
        symbols = {
            'port': letter,
            'bit': bit,
            'pin': bit,
            'pinName': pin,
            'ddrBit': f"DD{letter}{bit}",
            'portBit': f"PORT{letter}{bit}",
            'pinBit': f"PIN{letter}{bit}",
        }
        regs = self.port(letter)
        if regs:
            symbols.update(ddr=regs.ddr, portReg=regs.port, pinReg=regs.pin)
        group = self.pin_change_group(letter)
        if group:
            symbols.update(pcicr=group.index, pcint=group.number(bit))
        return symbols


# Parameters every pin-bound expansion gets from the pin itself
PIN_SYMBOLS = ('port', 'bit', 'pin', 'pinName', 'signal', 'ddr', 'portReg', 'pinReg',
               'ddrBit', 'portBit', 'pinBit', 'pcicr', 'pcint')
CLOCK_TOKEN = 'F_CPU'


@dataclass(frozen=True)
class NamedRoutine:
    """ A generated C routine.

    Init routines carry their body lines without indentation, `parameters` are the
    C declarations ("unsigned long baud") and `arguments` the values the aggregate
    routine passes. Handler routines carry their complete text including the
    `ISR(...)` line and are named after their vector.
    """
    name: str
    lines: Tuple[str, ...] = ()
    parameters: Tuple[str, ...] = ()
    arguments: Tuple[str, ...] = ()
    owner: Optional[str] = None

    def extended(self, lines) -> 'NamedRoutine':
        return NamedRoutine(self.name, self.lines + tuple(lines), self.parameters, self.arguments, self.owner)
