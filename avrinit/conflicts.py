"""
Pin conflict detection

Each peripheral model carries conflict rules. A rule of peripheral P reserves some of
P's pins: while P occupies one of them, none of the rule's conflicting peripherals
(any other peripheral, if the rule names none) may occupy that pin as well.
"""
import logging
from typing import List

from .diagnostics import CONFLICT, ERROR, Diagnostic
from .models import ConflictRule

log = logging.getLogger(__name__)


def applies_to(rule:ConflictRule, other:str) -> bool:
    """ True if the rule forbids peripheral other next to its trigger """
    if other == rule.trigger:
        return False
    return not rule.conflicting or other in rule.conflicting


def active_pins(rule:ConflictRule, occupied) -> List[str]:
    """ The reserved pins the trigger actually occupies """
    return [p for p in rule.reserved_pins if p in occupied]


def detect(registry, snapshot) -> List[Diagnostic]:
    """ Conflict diagnostics of a snapshot, one per rule, pin and offending peripheral """
    occupants = snapshot.occupants(registry)
    result = []
    for descriptor in registry.descriptors():
        state = snapshot.get(descriptor.id)
        if state is None:
            continue
        occupied = state.occupied(descriptor)
        for rule in descriptor.conflicts:
            for pin in active_pins(rule, occupied):
                for other in occupants.get(pin, ()):
                    if applies_to(rule, other):
                        log.debug("rule of %s: %s also occupies %s", rule.trigger, other, pin)
                        result.append(Diagnostic(ERROR, other, pin, f"{rule.message}: pin {pin}", CONFLICT))
    return result


def covered(registry, pin:str, first:str, second:str) -> bool:
    """ True if a conflict rule of either peripheral covers both of them on pin """
    for trigger, other in ((first, second), (second, first)):
        descriptor = registry.get(trigger)
        if descriptor is None:
            continue
        for rule in descriptor.conflicts:
            if pin in rule.reserved_pins and applies_to(rule, other):
                return True
    return False
