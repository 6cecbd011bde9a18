import pytest

from avrinit.config import GeneratorConfig
from avrinit.emitter import InitFormatter, assemble, merge_handlers, merge_routines
from avrinit.errors import DuplicateHandlerError, SchemaError
from avrinit.expander import InterruptOutput, PeripheralOutput
from avrinit.models import NamedRoutine


def _output(pid, *routines, includes=("<avr/io.h>",), handlers=()):
    interrupts = tuple(InterruptOutput(pid, h.name, h.name, (), h) for h in handlers)
    return PeripheralOutput(pid, includes, tuple(routines), interrupts)


def test_routines_with_equal_names_are_merged():
    merged = merge_routines([NamedRoutine("a_init", ("A1;",)), NamedRoutine("b_init", ("B;",)),
                             NamedRoutine("a_init", ("A2;",))])
    assert [(r.name, r.lines) for r in merged] == [("a_init", ("A1;", "A2;")), ("b_init", ("B;",))]


def test_merged_routines_need_equal_signatures():
    with pytest.raises(SchemaError):
        merge_routines([NamedRoutine("u", (), ("long b",), ("1",)), NamedRoutine("u", (), ("long b",), ("2",))])


def test_identical_handlers_collapse_and_different_ones_fail():
    h = NamedRoutine("TIMER0_OVF_vect", ("ISR(TIMER0_OVF_vect) {", "}"), owner="timer0")
    assert merge_handlers([h, NamedRoutine(h.name, h.lines, owner="timer0_pwm")]) == [h]
    with pytest.raises(DuplicateHandlerError):
        merge_handlers([h, NamedRoutine(h.name, ("ISR(TIMER0_OVF_vect) {", "x++;", "}"))])


def test_aggregate_calls_every_routine_once():
    outputs = [_output("a", NamedRoutine("a_init", ("A;",))),
               _output("b", NamedRoutine("b_init", ("B;",)), NamedRoutine("a_init", ("A2;",))),
               _output("c", NamedRoutine("uart_init", ("U;",), ("unsigned long baud",), ("9600",)))]
    artifact = assemble(outputs)
    assert artifact.aggregate_routine.name == "pins_init_all"
    assert artifact.aggregate_routine.lines == ("a_init();", "b_init();", "uart_init(9600);")


def test_includes_are_sorted_and_interrupt_header_added():
    handler = NamedRoutine("ADC_vect", ("ISR(ADC_vect) {", "}"))
    artifact = assemble([_output("x", NamedRoutine("x_init", ()), includes=("<util/twi.h>", "<avr/io.h>")),
                         _output("y", NamedRoutine("y_init", ()), handlers=(handler,))])
    assert artifact.includes == ("<avr/interrupt.h>", "<avr/io.h>", "<util/twi.h>")
    assert artifact.aggregate_routine.lines[-1] == "sei();"


def test_no_sei_without_handlers():
    artifact = assemble([_output("x", NamedRoutine("x_init", ("X;",)))])
    assert "sei();" not in artifact.aggregate_routine.lines
    assert artifact.includes == ("<avr/io.h>",)


def test_clock_define_only_when_referenced(board):
    plain = assemble([_output("x", NamedRoutine("x_init", ("X = 1;",)))], board=board)
    assert plain.defines == ()
    clocked = assemble([_output("x", NamedRoutine("x_init", ("X = F_CPU / 16;",)))], board=board)
    assert clocked.defines == (("F_CPU", "16000000UL"),)
    assert "#ifndef F_CPU\n#define F_CPU 16000000UL\n#endif" in clocked.declarations()


def test_documents():
    handler = NamedRoutine("USART_RX_vect", ("ISR(USART_RX_vect) {", "}"))
    artifact = assemble([_output("u", NamedRoutine("uart_init", ("UCSR0B = 0;",), ("unsigned long baud",), ("9600",)),
                                 handlers=(handler,))])
    header = artifact.declarations()
    assert header.startswith("// File was generated, do not edit!\n#ifndef PINS_INIT_H\n#define PINS_INIT_H\n")
    assert "#include <avr/io.h>\n" in header
    assert "void uart_init(unsigned long baud);\nvoid pins_init_all(void);\n" in header

    source = artifact.implementation()
    assert '#include "pins_init.h"\n' in source
    assert "\nvoid uart_init(unsigned long baud) {\n    UCSR0B = 0;\n}\n" in source
    assert "\nvoid pins_init_all(void) {\n    uart_init(9600);\n    sei();\n}\n" in source
    # handlers follow the aggregate routine
    assert source.index("ISR(USART_RX_vect)") > source.index("pins_init_all")
    assert list(artifact.files()) == ["pins_init.h", "pins_init.cpp"]


def test_config_and_formatter_overrides():
    cfg = GeneratorConfig(header_name="board_init.h", source_name="board_init.c", aggregate_name="board_init",
                          indent=2)
    artifact = assemble([_output("x", NamedRoutine("x_init", ("X;",)))], config=cfg)
    assert list(artifact.files()) == ["board_init.h", "board_init.c"]
    assert "#ifndef BOARD_INIT_H" in artifact.declarations()
    assert "\nvoid x_init(void) {\n  X;\n}\n" in artifact.implementation()
    assert "void board_init(void);" in artifact.declarations()
    formatter = InitFormatter(prototype="extern void $name($params);\n")
    assert "extern void x_init(void);" in artifact.declarations(formatter)


def test_output_is_deterministic():
    outputs = [_output("x", NamedRoutine("x_init", ("X;",)), includes=("<b.h>", "<a.h>"))]
    assert assemble(outputs).files() == assemble(outputs).files()
