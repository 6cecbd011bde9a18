import shutil

import pytest

from avrinit import registry as reg
from avrinit.config import config
from avrinit.errors import SchemaError
from avrinit.models import GLOBAL_KIND, PIN_KIND, ConfigField, PeripheralDescriptor
from avrinit.registry import (current_registry, install_registry, load_peripheral, load_registry,
                              validate_dir)

from conftest import write_model


DEMO = """
id: demo
name: Demo
kind: global
config:
  mode:
    name: Mode
    type: select
    values: [Fast, Slow Mode]
    default: Fast
codeGenerator:
  modeKey: mode
  modeMapping:
    Fast: {fast}
  init:
    modes:
      fast: ["A = 1;"]
      slow_mode: ["A = 2;"]
"""


def test_bundled_models(registry):
    assert registry.board.mcu == "ATmega328P"
    assert registry.board.clock == 16000000
    assert list(registry)[:3] == ["gpio", "uart0", "spi"]
    assert len(registry) == 15
    assert registry["watchdog_timer"].kind == GLOBAL_KIND
    assert registry["uart0"].kind == PIN_KIND
    assert registry["uart0"].requires_all_pins and registry["uart0"].shared
    assert registry.pin_change_owner.id == "pcint"


def test_descriptor_contents(registry):
    uart = registry["uart0"]
    assert dict(uart.pin_mapping) == {"TX": ("PD1",), "RX": ("PD0",)}
    assert uart.get_field("baudRate").default == 9600
    assert uart.get_interrupt("RX").vector == "USART_RX_vect"
    assert uart.get_interrupt("RX").default_enabled
    assert [p.name for p in uart.routine.parameters] == ["baud"]
    # mapping keys are normalized to strings
    assert uart.value_mapping["stopBits"]["2"] == 1


def test_board_pin_symbols(board):
    symbols = board.pin_symbols("PC3")
    assert symbols["ddr"] == "DDRC" and symbols["ddrBit"] == "DDC3"
    assert symbols["portReg"] == "PORTC" and symbols["portBit"] == "PORTC3"
    assert symbols["pinReg"] == "PINC" and symbols["pinBit"] == "PINC3"
    assert symbols["pcicr"] == 1 and symbols["pcint"] == 11


def test_pin_change_groups(board):
    assert [(g.index, g.port, g.first_number) for g in board.pin_change_groups] == [(0, "B", 0), (1, "C", 8), (2, "D", 16)]
    assert board.pin_change_group("D").vector == "PCINT2_vect"


def test_explicit_mapping_without_collision(tmp_path):
    path = write_model(tmp_path, "demo.yaml", DEMO.format(fast="fast"))
    descriptor = load_peripheral(path)
    assert descriptor.mode_mapping["Fast"] == "fast"


def test_fallback_collision_is_refused(tmp_path):
    # "Slow Mode" is not mapped, its derived key equals the explicit target of "Fast"
    path = write_model(tmp_path, "demo.yaml", DEMO.format(fast="slow_mode"))
    with pytest.raises(SchemaError, match="collides"):
        load_peripheral(path)


def test_mode_without_template_set(tmp_path):
    path = write_model(tmp_path, "demo.yaml", DEMO.format(fast="medium"))
    with pytest.raises(SchemaError, match="no template set"):
        load_peripheral(path)


def test_unknown_placeholder(tmp_path):
    text = DEMO.format(fast="fast").replace('"A = 1;"', '"A = {{nothing}};"')
    with pytest.raises(SchemaError, match="unknown placeholder 'nothing'"):
        load_peripheral(write_model(tmp_path, "demo.yaml", text))


def test_json_schema_violation(tmp_path):
    text = DEMO.format(fast="fast").replace("kind: global", "kind: analog")
    with pytest.raises(SchemaError, match="failed validation"):
        load_peripheral(write_model(tmp_path, "demo.yaml", text))


def test_malformed_yaml(tmp_path):
    with pytest.raises(SchemaError, match="malformed YAML"):
        load_peripheral(write_model(tmp_path, "demo.yaml", "id: [demo\n"))


def test_missing_model_file(tmp_path):
    target = tmp_path / "models"
    shutil.copytree(config.schema_dir, target)
    (target / "spi.yaml").unlink()
    with pytest.raises(SchemaError, match="spi"):
        load_registry(target)


def test_dangling_conflict_reference(tmp_path):
    target = tmp_path / "models"
    shutil.copytree(config.schema_dir, target)
    board = (target / "board.yaml").read_text(encoding="utf-8")
    (target / "board.yaml").write_text(board.replace("  - i2c\n", ""), encoding="utf-8")
    with pytest.raises(SchemaError, match="unknown peripheral 'i2c'"):
        load_registry(target)


def test_validate_dir_reports_every_file(tmp_path):
    target = tmp_path / "models"
    shutil.copytree(config.schema_dir, target)
    write_model(target, "broken.yaml", "id: broken\nname: Broken\n")
    results = dict((p.name, errors) for p, errors in validate_dir(target))
    assert results["gpio.yaml"] == []
    assert results["board.yaml"] == []
    assert any("kind" in e for e in results["broken.yaml"])


def test_install_is_a_swap(registry, monkeypatch):
    monkeypatch.setattr(reg, "_current", None)
    assert install_registry(registry) is None
    assert current_registry() is registry
    other = reg.Registry(registry.board, registry.descriptors()[:1])
    assert install_registry(other) is registry
    assert current_registry() is other


def test_descriptors_built_directly_use_empty_defaults():
    field = ConfigField("mode", "Mode", "select")
    assert dict(field.applies_to) == {} and field.visible({})
    wdt = PeripheralDescriptor("wdt", "WDT", GLOBAL_KIND)
    assert dict(wdt.pin_mapping) == {} and dict(wdt.mode_mapping) == {} and dict(wdt.value_mapping) == {}
    assert wdt.pins == [] and not wdt.is_pin_bound
