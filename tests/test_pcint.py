from avrinit.pcint import (FLAG, SELECTION, PinChangeAggregator, PinChangeRequest, aggregate, collect_requests,
                           emit)


def _members(groups):
    return {g.index: [e.pin for e in entries] for g, entries in groups.items()}


def test_two_producers(registry, snapshot):
    snap = snapshot({
        "pcint": {"pins": ["PB0", "PC1"]},
        "gpio": {"pins": {"PB2": {"mode": "INPUT", "enablePCINT": True}, "PB3": {"mode": "OUTPUT"}}},
    })
    requests = collect_requests(registry, snap)
    assert [(r.pin, r.source) for r in requests] == [("PB0", SELECTION), ("PC1", SELECTION), ("PB2", FLAG)]
    assert _members(aggregate(registry, snap)) == {0: ["PB0", "PB2"], 1: ["PC1"]}


def test_gpio_interrupt_respects_its_predicate(registry, snapshot):
    snap = snapshot({"gpio": {"interrupts": {"PCINT": True},
                              "pins": {"PD4": {"mode": "INPUT_PULLUP"}, "PD5": {"mode": "OUTPUT"}}}})
    assert _members(aggregate(registry, snap)) == {2: ["PD4"]}


def test_flag_without_effect_is_ignored(registry, snapshot):
    snap = snapshot({"gpio": {"pins": {"PD6": {"mode": "OUTPUT", "enablePCINT": True}}}})
    assert aggregate(registry, snap) == {}


def test_pin_from_both_producers_appears_once(registry, snapshot):
    snap = snapshot({
        "pcint": {"pins": ["PD7"]},
        "gpio": {"pins": {"PD7": {"mode": "INPUT_PULLUP", "enablePCINT": True}}},
    })
    groups = aggregate(registry, snap)
    (entries,) = groups.values()
    assert [e.pin for e in entries] == ["PD7"]
    assert entries[0].sources == {SELECTION, FLAG}
    assert entries[0].number == 23


def test_order_independent(board):
    a = PinChangeRequest("PB4", SELECTION, "pcint")
    b = PinChangeRequest("PD2", FLAG, "gpio")
    c = PinChangeRequest("PB1", SELECTION, "pcint")
    stepwise = PinChangeAggregator(board).add([a, b]).add([c]).groups()
    at_once = PinChangeAggregator(board).add([c, b, a]).groups()
    assert stepwise == at_once
    assert _members(at_once) == {0: ["PB1", "PB4"], 2: ["PD2"]}


def test_emit_per_group(registry, snapshot):
    snap = snapshot({
        "pcint": {"pins": ["PB0", "PC1"]},
        "gpio": {"pins": {"PB2": {"mode": "INPUT", "enablePCINT": True}}},
    })
    output = emit(registry, aggregate(registry, snap))
    (routine,) = output.routines
    assert routine.name == "pcint_init"
    assert routine.lines.count("PCICR |= (1 << PCIE0);") == 1
    assert "PCMSK0 |= (1 << PCINT0) | (1 << PCINT2);" in routine.lines
    assert "PCMSK1 |= (1 << PCINT9);" in routine.lines
    assert "PORTB |= (1 << PORTB2);" in routine.lines

    handlers = output.handlers
    assert [h.name for h in handlers] == ["PCINT0_vect", "PCINT1_vect"]
    group0 = handlers[0].lines
    assert group0[0] == "ISR(PCINT0_vect) {"
    assert sum(1 for l in group0 if "= PINB;" in l) == 1
    assert sum(1 for l in group0 if l.strip().startswith("if (")) == 2
    assert group0[-1] == "}"


def test_nothing_requested(registry, snapshot):
    assert emit(registry, aggregate(registry, snapshot({"gpio": {"pins": {"PB0": {"mode": "INPUT"}}}}))) is None
