"""
Configuration validity checks

Problems of a user's configuration are reported as diagnostics, never raised:
unknown peripherals, pins a peripheral does not have, values outside the allowed
values or range, settings without effect, pins claimed twice outside of any
conflict rule and partially configured peripherals that need all of their pins.
"""
import logging
from itertools import combinations
from typing import List, Mapping

from . import conflicts
from .diagnostics import ERROR, WARNING, Diagnostic
from .expander import GENERIC_INTERRUPT_FLAG
from .models import PeripheralDescriptor, applies
from .resolver import effective_settings

log = logging.getLogger(__name__)


def _allowed(f) -> str:
    if f.kind == "select":
        return "one of " + ", ".join(str(v) for v in f.values)
    if f.kind == "boolean":
        return "true or false"
    if f.helper:
        return f"a number in {f.helper}"
    return "a number"


def _flags(registry, descriptor:PeripheralDescriptor) -> set:
    """ Boolean settings that are not fields but request interrupts """
    flags = {i.flag for i in descriptor.interrupts}
    flags.add(GENERIC_INTERRUPT_FLAG)
    owner = registry.pin_change_owner
    if owner is not None and owner.pin_change.flag:
        flags.add(owner.pin_change.flag)
    return flags


def check_settings(registry, descriptor:PeripheralDescriptor, settings:Mapping, pin:str=None) -> List[Diagnostic]:
    """ Check one settings record against the fields of a peripheral """
    result = []
    pid = descriptor.id
    effective = effective_settings(descriptor, settings)
    flags = _flags(registry, descriptor)
    for key, value in settings.items():
        f = descriptor.get_field(key)
        if f is None:
            if key not in flags:
                result.append(Diagnostic(WARNING, pid, pin, f"unknown setting '{key}' is ignored"))
            elif not isinstance(value, bool):
                result.append(Diagnostic(ERROR, pid, pin, f"'{key}' must be true or false, not {value!r}"))
        elif not f.accepts(value):
            result.append(Diagnostic(ERROR, pid, pin, f"{f.name}: {value!r} is not allowed, expected {_allowed(f)}"))
        elif not f.visible(effective):
            result.append(Diagnostic(WARNING, pid, pin, f"{f.name} has no effect with the current settings"))
    return result


def check_interrupts(descriptor:PeripheralDescriptor, state, settings:Mapping) -> List[Diagnostic]:
    result = []
    effective = effective_settings(descriptor, settings)
    for key, enabled in state.interrupts.items():
        interrupt = descriptor.get_interrupt(key)
        if interrupt is None:
            result.append(Diagnostic(ERROR, descriptor.id, None, f"unknown interrupt '{key}'"))
        elif enabled and not interrupt.pin_change and not applies(interrupt.applies_to, effective):
            result.append(Diagnostic(WARNING, descriptor.id, None,
                                     f"interrupt '{key}' has no effect with the current settings"))
    return result


def check_pin_bound(registry, descriptor:PeripheralDescriptor, state) -> List[Diagnostic]:
    result = []
    pid = descriptor.id
    declared = set(descriptor.pins)
    for pin in state.pins:
        if pin not in declared:
            result.append(Diagnostic(ERROR, pid, pin, f"pin {pin} is not available for {descriptor.name}"))

    if descriptor.shared:
        result.extend(check_settings(registry, descriptor, state.merged(descriptor)))
        seen = {}
        for pin in descriptor.pins:
            for key, value in (state.pins.get(pin) or {}).items():
                if key in seen and seen[key][1] != value and key not in state.settings:
                    result.append(Diagnostic(WARNING, pid, pin,
                                             f"'{key}' differs from pin {seen[key][0]}, using {seen[key][1]!r}"))
                seen.setdefault(key, (pin, value))
    else:
        if state.settings:
            result.extend(check_settings(registry, descriptor, state.settings))
        for pin, settings in state.pins.items():
            if pin in declared:
                merged = dict(state.settings)
                merged.update(settings)
                result.extend(d for d in check_settings(registry, descriptor, merged, pin) if d not in result)

    if state.activation:
        names = set(descriptor.init.keyed) | set(descriptor.pin_mapping) | {i.key for i in descriptor.interrupts}
        if state.activation not in names:
            result.append(Diagnostic(ERROR, pid, None, f"cannot be activated for '{state.activation}'"))
    elif not state.pins and not descriptor.shared and not descriptor.pin_change:
        result.append(Diagnostic(WARNING, pid, None, "no pins selected, nothing is generated"))

    if descriptor.requires_all_pins and state.pins:
        missing = [s for s, pins in descriptor.pin_mapping.items() if not any(p in state.pins for p in pins)]
        if missing:
            result.append(Diagnostic(WARNING, pid, None,
                                     f"{descriptor.name} needs all of its pins, not configured: {', '.join(missing)}"))

    result.extend(check_interrupts(descriptor, state, state.merged(descriptor)))
    return result


def check_global(registry, descriptor:PeripheralDescriptor, state) -> List[Diagnostic]:
    result = check_settings(registry, descriptor, state.settings)
    result.extend(check_interrupts(descriptor, state, state.settings))
    return result


def check_claims(registry, snapshot) -> List[Diagnostic]:
    """ Pins occupied by two peripherals without a conflict rule covering them.

    The pin change interrupt peripheral only watches its pins and may share them.
    """
    owner = registry.pin_change_owner
    shareable = {owner.id} if owner is not None else set()
    result = []
    for pin, occupants in snapshot.occupants(registry).items():
        occupants = [o for o in occupants if o not in shareable]
        for first, second in combinations(occupants, 2):
            if not conflicts.covered(registry, pin, first, second):
                result.append(Diagnostic(ERROR, second, pin, f"pin {pin} is claimed by {first} and {second}"))
    return result


def validate(registry, snapshot) -> List[Diagnostic]:
    """ All validity diagnostics of a snapshot """
    result = []
    for pid, state in snapshot.items():
        descriptor = registry.get(pid)
        if descriptor is None:
            result.append(Diagnostic(ERROR, pid, None, f"unknown peripheral '{pid}'"))
            continue
        if state.kind != descriptor.kind:
            result.append(Diagnostic(ERROR, pid, None, f"{descriptor.name} is a {descriptor.kind} peripheral, "
                                                       f"got a {state.kind} state"))
            continue
        if descriptor.is_pin_bound:
            result.extend(check_pin_bound(registry, descriptor, state))
        else:
            result.extend(check_global(registry, descriptor, state))
    result.extend(check_claims(registry, snapshot))
    for d in result:
        log.debug("%s", d)
    return result
