"""
Pin change interrupt aggregation

Pin change interrupts are requested two ways: by assigning pins to the pin change
interrupt peripheral, and by a flag in the settings of a pin of another peripheral
(`enablePCINT`, or the GPIO `PCINT` interrupt). Both producers feed one aggregator,
which keeps every pin once and groups the pins by their hardware port group. All
pins of a group share one enable bit, one mask register and one interrupt vector,
so the code is emitted per group: one handler reads the port once and branches
per member pin.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional

from .expander import InterruptOutput, PeripheralOutput, pin_parameters
from .models import NamedRoutine, PinChangeGroup, applies, split_pin
from .resolver import effective_settings
from .snapshot import PinBoundState
from .templates import renderLines

log = logging.getLogger(__name__)

SELECTION = "selection"
FLAG = "flag"


@dataclass(frozen=True)
class PinChangeRequest:
    pin: str
    source: str                     # SELECTION or FLAG
    peripheral: str


@dataclass(frozen=True)
class PinEntry:
    """ A member pin of a pin change group """
    pin: str
    bit: int
    number: int                     # PCINT number
    sources: FrozenSet[str]


def selection_requests(registry, snapshot) -> Iterator[PinChangeRequest]:
    """ Pins assigned to the pin change interrupt peripheral """
    owner = registry.pin_change_owner
    if owner is None:
        return
    state = snapshot.get(owner.id)
    if not isinstance(state, PinBoundState):
        return
    declared = set(owner.pins)
    for pin in state.pins:
        if pin in declared:
            yield PinChangeRequest(pin, SELECTION, owner.id)
        else:
            log.warning("%s: pin %s is not mapped, skipped", owner.id, pin)


def flag_requests(registry, snapshot) -> Iterator[PinChangeRequest]:
    """ Pins of other peripherals whose settings request a pin change interrupt """
    owner = registry.pin_change_owner
    flag = owner.pin_change.flag if owner is not None else None
    for pid, state in snapshot.items():
        descriptor = registry.get(pid)
        if descriptor is None or descriptor.pin_change or not isinstance(state, PinBoundState):
            continue
        if descriptor.kind != state.kind:
            continue
        pin_change = [i for i in descriptor.interrupts if i.pin_change]
        for pin in descriptor.pins:
            if pin not in state.pins:
                continue
            settings = dict(state.settings)
            settings.update(state.pins[pin])
            settings = effective_settings(descriptor, settings)
            if flag and settings.get(flag) is True:
                f = descriptor.get_field(flag)
                if f is None or f.visible(settings):
                    yield PinChangeRequest(pin, FLAG, pid)
                    continue
            for interrupt in pin_change:
                enabled = state.interrupts.get(interrupt.key, settings.get(interrupt.flag, False))
                if enabled and applies(interrupt.applies_to, settings):
                    yield PinChangeRequest(pin, FLAG, pid)
                    break


def collect_requests(registry, snapshot) -> List[PinChangeRequest]:
    return list(selection_requests(registry, snapshot)) + list(flag_requests(registry, snapshot))


class PinChangeAggregator:
    """ Deduplicates requests by pin and groups them by port group.

    The grouping does not depend on the order or the batching of the requests.
    """

    def __init__(self, board):
        self.board = board
        self._entries: Dict[str, PinEntry] = {}

    def add(self, requests:Iterable[PinChangeRequest]) -> 'PinChangeAggregator':
        for request in requests:
            letter, bit = split_pin(request.pin)
            group = self.board.pin_change_group(letter)
            if group is None:
                log.warning("%s: %s has no pin change interrupt, skipped", request.peripheral, request.pin)
                continue
            entry = self._entries.get(request.pin)
            sources = frozenset({request.source}) | (entry.sources if entry else frozenset())
            self._entries[request.pin] = PinEntry(request.pin, bit, group.number(bit), sources)
        return self

    def groups(self) -> Dict[PinChangeGroup, List[PinEntry]]:
        """ Member pins per group, groups by index and members by PCINT number """
        result = {}
        for group in self.board.pin_change_groups:
            members = [e for e in self._entries.values() if split_pin(e.pin)[0] == group.port]
            if members:
                result[group] = sorted(members, key=lambda e: e.number)
        return result

    def __len__(self):
        return len(self._entries)


def aggregate(registry, snapshot) -> Dict[PinChangeGroup, List[PinEntry]]:
    """ Pin change interrupt requests of a snapshot, grouped per port group """
    return PinChangeAggregator(registry.board).add(collect_requests(registry, snapshot)).groups()


def group_parameters(board, group:PinChangeGroup) -> Dict[str, object]:
    params = {'index': group.index, 'port': group.port, 'vector': group.vector, 'enableBit': group.enable_bit,
              'maskRegister': group.mask_register, 'firstNumber': group.first_number}
    regs = board.port(group.port)
    params.update(ddr=regs.ddr if regs else f"DDR{group.port}",
                  portReg=regs.port if regs else f"PORT{group.port}",
                  pinReg=regs.pin if regs else f"PIN{group.port}")
    return params


def emit(registry, groups:Dict[PinChangeGroup, List[PinEntry]]) -> Optional[PeripheralOutput]:
    """ Init routine and one handler per group """
    owner = registry.pin_change_owner
    if owner is None or not groups:
        return None
    spec = owner.pin_change
    board = registry.board
    lines = []
    interrupts = []
    for group, members in groups.items():
        params = group_parameters(board, group)
        member_params = [pin_parameters(m.pin, owner.signal_of(m.pin), board) for m in members]
        params['mask'] = ' | '.join(spec.mask_bit.render(p) for p in member_params)
        lines.append(f"// {owner.name} group {group.index} (port {group.port})")
        for p in member_params:
            lines.extend(renderLines(spec.pin_setup, p))
        lines.extend(renderLines(spec.group_enable, params))
        lines.extend(renderLines(spec.mask, params))

        handler = renderLines(spec.handler_head, params)
        for p in member_params:
            handler.extend(renderLines(spec.handler_member, p))
        handler.extend(renderLines(spec.handler_tail, params))
        log.debug("pin change group %d: %s", group.index, ', '.join(m.pin for m in members))
        interrupts.append(InterruptOutput(owner.id, f"PCINT{group.index}", group.vector, (),
                                          NamedRoutine(group.vector, tuple(handler), owner=owner.id)))
    routine = NamedRoutine(spec.routine, tuple(lines), owner=owner.id)
    return PeripheralOutput(owner.id, owner.includes, (routine,), tuple(interrupts))
