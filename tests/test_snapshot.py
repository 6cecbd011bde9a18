import pytest

from avrinit.errors import SnapshotError
from avrinit.snapshot import GlobalState, PinBoundState, Snapshot, parse_snapshot


def test_kinds_follow_the_registry(snapshot):
    snap = snapshot({
        "gpio": {"pins": {"PB5": {"mode": "OUTPUT"}}},
        "watchdog_timer": {"settings": {"timeout": 1000}},
    })
    assert isinstance(snap["gpio"], PinBoundState)
    assert isinstance(snap["watchdog_timer"], GlobalState)
    assert snap["watchdog_timer"].enabled
    assert list(snap) == ["gpio", "watchdog_timer"]


def test_snapshot_is_read_only(snapshot):
    snap = snapshot({"gpio": {"pins": {"PB5": {"mode": "OUTPUT"}}}})
    with pytest.raises(TypeError):
        snap["gpio"] = None
    with pytest.raises(TypeError):
        snap["gpio"].pins["PB5"]["mode"] = "INPUT"


def test_pin_list_and_interrupt_list():
    snap = parse_snapshot({"pcint": {"pins": ["PB0", "PC1"]}, "timer0": {"enabled": True, "interrupts": ["OVF"]}})
    assert dict(snap["pcint"].pins) == {"PB0": {}, "PC1": {}}
    assert dict(snap["timer0"].interrupts) == {"OVF": True}


def test_kind_from_keys_without_registry():
    snap = parse_snapshot({"x": {"pins": {}}, "y": {"settings": {}}})
    assert isinstance(snap["x"], PinBoundState)
    assert isinstance(snap["y"], GlobalState)


@pytest.mark.parametrize("data", [
    ["gpio"],
    {"gpio": "PB5"},
    {"gpio": {"pins": {"PB5": "OUTPUT"}}},
    {"gpio": {"kind": "analog"}},
    {"watchdog_timer": {"pins": {"PB0": {}}}},
])
def test_malformed(data, registry):
    with pytest.raises(SnapshotError):
        parse_snapshot(data, registry)


def test_occupied_pins(registry, snapshot):
    snap = snapshot({
        "uart0": {"settings": {"baudRate": 9600}},
        "spi": {"pins": {"PB3": {}}},
        "external_interrupt": {"activation": "INT1"},
        "gpio": {},
    })
    assert snap["uart0"].occupied(registry["uart0"]) == ("PD1", "PD0")
    assert snap["spi"].occupied(registry["spi"]) == ("PB3",)
    assert snap["external_interrupt"].occupied(registry["external_interrupt"]) == ("PD3",)
    assert snap["gpio"].occupied(registry["gpio"]) == ()


def test_merged_settings_prefer_peripheral_level(registry, snapshot):
    snap = snapshot({"uart0": {"settings": {"baudRate": 19200},
                               "pins": {"PD1": {"baudRate": 9600, "parity": "Even"}, "PD0": {"parity": "Odd"}}}})
    merged = snap["uart0"].merged(registry["uart0"])
    # TX (PD1) is declared before RX (PD0)
    assert merged == {"baudRate": 19200, "parity": "Even"}


def test_parse_passes_snapshots_through(snapshot):
    snap = snapshot({})
    assert parse_snapshot(snap) is snap
    assert isinstance(snap, Snapshot) and len(snap) == 0


def test_states_built_directly_use_empty_defaults(registry):
    state = GlobalState(settings={"timeout": 1000})
    assert state.enabled and dict(state.interrupts) == {}
    pins = PinBoundState(pins={"PB5": {"mode": "OUTPUT"}})
    assert dict(pins.settings) == {} and dict(pins.interrupts) == {}
    assert pins.occupied(registry["gpio"]) == ("PB5",)
    assert PinBoundState().occupied(registry["gpio"]) == ()
