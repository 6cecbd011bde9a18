"""
Template expansion

Selects the template sets that apply to a configured peripheral and substitutes
their parameters. The result of one peripheral is a list of sections, one per
expansion (per pin for peripherals configured pin by pin, once otherwise), which
are grouped into named init routines. Enabled interrupts add their enable lines
to the owning routine and produce one handler routine per vector.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import (CLOCK_TOKEN, GLOBAL_KIND, InterruptDescriptor, NamedRoutine,
                     PeripheralDescriptor, applies, split_pin)
from .resolver import apply_value_mapping, effective_settings, resolve_mode
from .templates import renderLines

log = logging.getLogger(__name__)

GENERIC_INTERRUPT_FLAG = 'enableInterrupt'


@dataclass(frozen=True)
class Section:
    """ One expansion of a template set """
    peripheral: str
    key: str                                    # selected template set
    pin: Optional[str]
    settings: Mapping[str, Any]                 # effective settings before value mapping
    params: Mapping[str, Any]
    lines: Tuple[str, ...]
    comment: str = ''

    def text(self) -> List[str]:
        return ([self.comment] if self.comment else []) + list(self.lines)


@dataclass(frozen=True)
class InterruptOutput:
    peripheral: str
    interrupt: str
    vector: str
    enable: Tuple[str, ...]
    handler: NamedRoutine


@dataclass(frozen=True)
class PeripheralOutput:
    peripheral: str
    includes: Tuple[str, ...] = ()
    routines: Tuple[NamedRoutine, ...] = ()
    interrupts: Tuple[InterruptOutput, ...] = field(default=())

    @property
    def handlers(self) -> List[NamedRoutine]:
        return [i.handler for i in self.interrupts]


def pin_parameters(pin:str, signal:str=None, board=None) -> Dict[str, Any]:
    """ Register and bit symbols of a pin.

    Taken from the board's port table; without a board the usual AVR register
    names of the port are assumed.
    """
    if board is not None:
        params = board.pin_symbols(pin)
    else:
        letter, bit = split_pin(pin)
        params = {'port': letter, 'bit': bit, 'pin': bit, 'pinName': pin,
                  'ddrBit': f"DD{letter}{bit}", 'portBit': f"PORT{letter}{bit}", 'pinBit': f"PIN{letter}{bit}"}
    letter = params['port']
    params.setdefault('ddr', f"DDR{letter}")
    params.setdefault('portReg', f"PORT{letter}")
    params.setdefault('pinReg', f"PIN{letter}")
    params['signal'] = signal
    return params


def inject_clock(params:Dict[str, Any], lines:Sequence, clock) -> None:
    """ Add the clock frequency, only if one of the lines mentions it """
    if clock is not None and any(l.references(CLOCK_TOKEN) for l in lines):
        params[CLOCK_TOKEN] = clock


def expand_settings(descriptor:PeripheralDescriptor, settings:Mapping, clock=None, board=None,
                    pin:str=None, keys:Sequence[str]=()) -> Optional[Section]:
    """ Resolve settings, select the template set and substitute it """
    settings = effective_settings(descriptor, settings)
    mode = resolve_mode(settings, descriptor.mode_key, descriptor.mode_mapping)
    selected = descriptor.init.select(mode, settings, keys)
    if selected is None:
        if descriptor.init:
            log.warning("%s%s: no template set for mode %r", descriptor.id, f" {pin}" if pin else '', mode)
        return None
    key, lines = selected
    log.debug("%s%s: using template set '%s'", descriptor.id, f" {pin}" if pin else '', key)
    params = apply_value_mapping(settings, descriptor.value_mapping)
    params['key'] = key.lower()
    if pin:
        params.update(pin_parameters(pin, descriptor.signal_of(pin), board))
    inject_clock(params, lines, clock)
    comment = f"// {descriptor.name} {pin}" if pin else f"// {descriptor.name}"
    return Section(descriptor.id, key, pin, settings, params, tuple(renderLines(lines, params)), comment)


def _activation_pin(descriptor:PeripheralDescriptor, activation:str) -> Tuple[Optional[str], Tuple[str, ...]]:
    """ Pin and template keys of an interrupt-only activation """
    keys = [activation]
    interrupt = descriptor.get_interrupt(activation)
    signal = activation if activation in descriptor.pin_mapping else (interrupt.signal if interrupt else None)
    if signal and signal not in keys:
        keys.append(signal)
    pins = descriptor.pin_mapping.get(signal, ()) if signal else ()
    return (pins[0] if len(pins) == 1 else None), tuple(keys)


def expand_sections(descriptor:PeripheralDescriptor, state, clock=None, board=None) -> List[Section]:
    """ All sections of a configured peripheral """
    if descriptor.kind == GLOBAL_KIND:
        if not state.enabled:
            return []
        section = expand_settings(descriptor, state.settings, clock, board)
        return [section] if section else []

    if descriptor.pin_change:
        # pin change interrupts are emitted per port group by the aggregator
        return []

    if state.pins and not descriptor.shared:
        sections = []
        for pin in state.pins:
            if pin not in descriptor.pins:
                log.warning("%s: pin %s is not mapped, skipped", descriptor.id, pin)
        for pin in descriptor.pins:
            if pin not in state.pins:
                continue
            settings = dict(state.settings)
            settings.update(state.pins[pin])
            section = expand_settings(descriptor, settings, clock, board, pin, (descriptor.signal_of(pin),))
            if section:
                sections.append(section)
        return sections

    if state.activation:
        pin, keys = _activation_pin(descriptor, state.activation)
        section = expand_settings(descriptor, state.settings, clock, board, pin, keys)
        return [section] if section else []

    if not descriptor.shared:
        return []
    section = expand_settings(descriptor, state.merged(descriptor), clock, board)
    return [section] if section else []


def expand_peripheral(descriptor:PeripheralDescriptor, state, clock=None, board=None) -> List[str]:
    """ The substituted init lines of a peripheral, each section led by a comment """
    lines = []
    for section in expand_sections(descriptor, state, clock, board):
        lines.extend(section.text())
    return lines


# ---------------------------------------------------------------------------------------------
# Routines

def routine_name(descriptor:PeripheralDescriptor, params:Mapping) -> str:
    if descriptor.routine is None:
        return f"{descriptor.id}_init"
    return descriptor.routine.name.render(params)


def routine_signature(descriptor:PeripheralDescriptor, settings:Mapping) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """ C parameter declarations and call arguments, taken from the unmapped settings """
    if descriptor.routine is None:
        return (), ()
    parameters = tuple(f"{p.ctype} {p.name}" for p in descriptor.routine.parameters)
    arguments = tuple(str(settings.get(p.setting)) for p in descriptor.routine.parameters)
    return parameters, arguments


def routines_from(descriptor:PeripheralDescriptor, sections:Sequence[Section]) -> List[NamedRoutine]:
    """ Group sections into routines by their rendered name, first seen first """
    routines = {}
    for section in sections:
        name = routine_name(descriptor, section.params)
        if name in routines:
            routines[name] = routines[name].extended(section.text())
        else:
            parameters, arguments = routine_signature(descriptor, section.settings)
            routines[name] = NamedRoutine(name, tuple(section.text()), parameters, arguments, descriptor.id)
    return list(routines.values())


def routine_for(descriptor:PeripheralDescriptor, state, clock=None, board=None) -> Optional[NamedRoutine]:
    """ The init routine of a peripheral expanding to a single routine """
    routines = routines_from(descriptor, expand_sections(descriptor, state, clock, board))
    if len(routines) > 1:
        log.debug("%s expands to %d routines, using the first", descriptor.id, len(routines))
    return routines[0] if routines else None


# ---------------------------------------------------------------------------------------------
# Interrupts

def _requested(descriptor:PeripheralDescriptor, state, interrupt:InterruptDescriptor) -> bool:
    if interrupt.key in state.interrupts:
        return state.interrupts[interrupt.key]
    per_pin = [s[interrupt.flag] for s in state.pins.values() if interrupt.flag in s]
    if per_pin:
        return any(per_pin)
    if interrupt.flag in state.settings:
        return bool(state.settings[interrupt.flag])
    single = [i for i in descriptor.interrupts if not i.pin_change]
    if len(single) == 1:
        generic = [s[GENERIC_INTERRUPT_FLAG] for s in state.pins.values() if GENERIC_INTERRUPT_FLAG in s]
        if GENERIC_INTERRUPT_FLAG in state.settings:
            generic.append(state.settings[GENERIC_INTERRUPT_FLAG])
        if generic:
            return any(generic)
    if interrupt.signal:
        if state.activation in (interrupt.key, interrupt.signal):
            return True
        pins = descriptor.pin_mapping.get(interrupt.signal, ())
        return any(p in state.pins for p in pins)
    return interrupt.default_enabled


def interrupt_enabled(descriptor:PeripheralDescriptor, state, interrupt:InterruptDescriptor,
                      settings:Mapping=None) -> bool:
    """ Whether a (not pin change) interrupt of a configured peripheral is enabled.

    Explicit `interrupts` entries win, then per-pin `enable<Key>Interrupt` flags,
    then the peripheral-level flag, then `enableInterrupt` for peripherals with a
    single interrupt, then the pin binding of the interrupt, then its default.
    The interrupt's predicate must hold for the effective settings.
    """
    if descriptor.kind == GLOBAL_KIND and not state.enabled:
        return False
    if settings is None:
        settings = effective_settings(descriptor, state.merged(descriptor))
    return _requested(descriptor, state, interrupt) and applies(interrupt.applies_to, settings)


def expand_interrupts(descriptor:PeripheralDescriptor, state, clock=None, board=None) -> List[InterruptOutput]:
    """ Enable lines and handler routines of all enabled interrupts """
    settings = effective_settings(descriptor, state.merged(descriptor))
    result = []
    for interrupt in descriptor.interrupts:
        if interrupt.pin_change or not interrupt_enabled(descriptor, state, interrupt, settings):
            continue
        params = apply_value_mapping(settings, descriptor.value_mapping)
        params.update(key=interrupt.key.lower(), vector=interrupt.vector)
        if interrupt.signal:
            pins = descriptor.pin_mapping.get(interrupt.signal, ())
            if len(pins) == 1:
                params.update(pin_parameters(pins[0], interrupt.signal, board))
        inject_clock(params, interrupt.enable + interrupt.handler, clock)
        enable = tuple(renderLines(interrupt.enable, params))
        handler = NamedRoutine(interrupt.vector, tuple(renderLines(interrupt.handler, params)), owner=descriptor.id)
        log.debug("%s: interrupt %s enabled", descriptor.id, interrupt.key)
        result.append(InterruptOutput(descriptor.id, interrupt.key, interrupt.vector, enable, handler))
    return result


def expand(descriptor:PeripheralDescriptor, state, clock=None, board=None) -> PeripheralOutput:
    """ Init routines and interrupts of one configured peripheral """
    sections = expand_sections(descriptor, state, clock, board)
    routines = routines_from(descriptor, sections)
    interrupts = expand_interrupts(descriptor, state, clock, board) if sections or descriptor.kind == GLOBAL_KIND else []
    for i in interrupts:
        if not i.enable:
            continue
        interrupt = descriptor.get_interrupt(i.interrupt)
        target = len(routines) - 1
        for n, section_key in enumerate(_routine_keys(descriptor, sections, routines)):
            if section_key & {interrupt.key, interrupt.signal}:
                target = n
                break
        if target < 0:
            log.warning("%s: no init routine for the enable lines of interrupt %s", descriptor.id, i.interrupt)
            continue
        routines[target] = routines[target].extended(i.enable)
    includes = descriptor.includes if routines or interrupts else ()
    return PeripheralOutput(descriptor.id, tuple(includes), tuple(routines), tuple(interrupts))


def _routine_keys(descriptor:PeripheralDescriptor, sections:Sequence[Section], routines:Sequence[NamedRoutine]):
    """ Template set keys and pin signals expanded into each routine """
    keys = {r.name: set() for r in routines}
    for section in sections:
        name = routine_name(descriptor, section.params)
        keys[name].add(section.key)
        if section.pin:
            keys[name].add(descriptor.signal_of(section.pin))
    return [keys[r.name] for r in routines]
