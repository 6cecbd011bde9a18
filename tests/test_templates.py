import pytest

from avrinit.errors import MissingParameterError, SchemaError
from avrinit.templates import CaseTable, LineTemplate, Literal, Parameter, TemplateTable, compileLines, compileTable


def test_line_is_split_into_segments():
    line = LineTemplate("{{ddr}} |= (1 << {{ddrBit}});")
    assert line.segments == (Parameter("ddr"), Literal(" |= (1 << "), Parameter("ddrBit"), Literal(");"))
    assert line.names == ("ddr", "ddrBit")


def test_whitespace_inside_braces_is_allowed():
    assert LineTemplate("X = {{ value }};").render({"value": 3}) == "X = 3;"


def test_repeated_placeholder_is_listed_once():
    assert LineTemplate("{{a}} {{a}}").names == ("a",)


def test_plain_c_braces_are_literal():
    line = LineTemplate("ISR(USART_RX_vect) {")
    assert line.names == ()
    assert line.render({}) == "ISR(USART_RX_vect) {"


def test_malformed_placeholder_fails_at_construction():
    with pytest.raises(SchemaError, match="malformed placeholder"):
        LineTemplate("X = {{3}};", "init.modes.a", "demo")


def test_missing_parameter_names_peripheral_and_template():
    line = LineTemplate("OCR0A = {{compareValue}};", "init.modes.ctc", "timer0")
    with pytest.raises(MissingParameterError) as info:
        line.render({})
    err = info.value
    assert err.name == "compareValue"
    assert err.peripheral == "timer0"
    assert "timer0" in str(err) and "init.modes.ctc" in str(err) and "compareValue" in str(err)
    assert isinstance(err, KeyError)


def test_references_finds_placeholders_and_plain_text():
    assert LineTemplate("UBRR0L = F_CPU / 16;").references("F_CPU")
    assert LineTemplate("X = {{F_CPU}};").references("F_CPU")
    assert not LineTemplate("X = 1;").references("F_CPU")


def test_case_table_uses_default():
    table = CaseTable("level", {"LOW": compileLines(["low"], "x"), "HIGH": compileLines(["high"], "x")}, "LOW")
    assert [l.template for l in table.select({})] == ["low"]
    assert [l.template for l in table.select({"level": "HIGH"})] == ["high"]
    assert table.select({"level": "MID"}) is None


def test_table_dispatches_mode_before_keys():
    table = compileTable({
        "modes": {"fast": ["fast"]},
        "keyed": {"INT0": ["int0"], "INT1": ["int1"]},
    })
    assert table.select("fast", {})[0] == "fast"
    assert table.select(None, {}, ("INT1",))[0] == "INT1"
    assert table.select(None, {}, ("OTHER",))[0] == "INT0"
    assert table.select("slow", {}) is None


def test_empty_table_is_false():
    assert not TemplateTable()
    assert not compileTable(None)


def test_all_lines_lists_cases():
    table = compileTable({"modes": {"output": {"select": "level", "cases": {"LOW": ["a"], "HIGH": ["b"]}}}})
    assert [(origin, l.template) for origin, l in table.allLines()] == [("output.LOW", "a"), ("output.HIGH", "b")]
