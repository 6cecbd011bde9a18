# Assemble the generated init code into the header and the implementation file
#
# The output is meant to be dropped into a firmware source tree as is. Formatting is kept simple and
# predictable: every run with the same input produces exactly the same text. The texts are built from
# templates which can be replaced by passing keywords to the formatter, in case a project wants e.g. a
# different banner or plain C instead of C++ linkage guards.

import logging
from dataclasses import dataclass, field
from string import Template
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import GeneratorConfig, config as default_config
from .errors import DuplicateHandlerError, SchemaError
from .models import CLOCK_TOKEN, NamedRoutine

log = logging.getLogger(__name__)

INTERRUPT_INCLUDE = "<avr/interrupt.h>"


class InitFormatter:
    def __init__(self, **keywords):
        self.includeTemplate   = Template(keywords.get('include'  , '#include $name\n'))
        self.defineTemplate    = Template(keywords.get('define'   , '#ifndef $name\n#define $name $value\n#endif\n'))
        self.prototypeTemplate = Template(keywords.get('prototype', 'void $name($params);\n'))
        self.callTemplate      = Template(keywords.get('call'     , '$name($args);'))
        self.routineTemplate   = Template(keywords.get('routine'  , '\nvoid $name($params) {\n$body}\n'))
        self.headerTemplate    = Template(keywords.get('header', """$banner
#ifndef $guard
#define $guard

$defines$includes
#ifdef __cplusplus
extern "C" {
#endif

$prototypes
#ifdef __cplusplus
}
#endif

#endif // $guard
"""))
        self.sourceTemplate    = Template(keywords.get('source', """$banner
#include "$header"
$routines$handlers"""))

    def formatIncludes(self, includes:Iterable[str]) -> str:
        return ''.join(self.includeTemplate.substitute(name=i) for i in includes)

    def formatDefines(self, defines:Iterable[Tuple[str, str]]) -> str:
        txt = ''.join(self.defineTemplate.substitute(name=n, value=v) for n, v in defines)
        return txt + '\n' if txt else ''

    def formatPrototypes(self, routines:Iterable[NamedRoutine]) -> str:
        return ''.join(self.prototypeTemplate.substitute(name=r.name, params=', '.join(r.parameters) or 'void')
                       for r in routines)

    def formatRoutine(self, routine:NamedRoutine, indent:str) -> str:
        body = ''.join(f"{indent}{line}\n" if line else '\n' for line in routine.lines)
        return self.routineTemplate.substitute(name=routine.name, params=', '.join(routine.parameters) or 'void',
                                               body=body)

    def formatCalls(self, routines:Iterable[NamedRoutine]) -> List[str]:
        """ One call statement per routine """
        return [self.callTemplate.substitute(name=r.name, args=', '.join(r.arguments))
                for r in routines]

    def formatHandler(self, handler:NamedRoutine) -> str:
        return '\n' + ''.join(f"{line}\n" for line in handler.lines)

    def formatHeader(self, artifact:'GeneratedArtifact') -> str:
        cfg = artifact.config
        routines = list(artifact.init_routines) + [artifact.aggregate_routine]
        return self.headerTemplate.substitute(
            banner=cfg.banner, guard=cfg.include_guard,
            defines=self.formatDefines(artifact.defines),
            includes=self.formatIncludes(artifact.includes),
            prototypes=self.formatPrototypes(routines))

    def formatSource(self, artifact:'GeneratedArtifact') -> str:
        cfg = artifact.config
        indent = ' ' * cfg.indent
        routines = ''.join(self.formatRoutine(r, indent) for r in artifact.init_routines)
        routines += self.formatRoutine(artifact.aggregate_routine, indent)
        handlers = ''.join(self.formatHandler(h) for h in artifact.handler_routines)
        return self.sourceTemplate.substitute(banner=cfg.banner, header=cfg.header_name,
                                              routines=routines, handlers=handlers)


@dataclass(frozen=True)
class GeneratedArtifact:
    """ Result of one generation run, split into declarations and implementation """
    includes: Tuple[str, ...]
    defines: Tuple[Tuple[str, str], ...]
    init_routines: Tuple[NamedRoutine, ...]
    aggregate_routine: NamedRoutine
    handler_routines: Tuple[NamedRoutine, ...]
    config: GeneratorConfig = field(default_factory=lambda: default_config)

    def declarations(self, formatter:InitFormatter=None) -> str:
        return (formatter or InitFormatter()).formatHeader(self)

    def implementation(self, formatter:InitFormatter=None) -> str:
        return (formatter or InitFormatter()).formatSource(self)

    def files(self, formatter:InitFormatter=None) -> Dict[str, str]:
        """ File name -> content """
        return {self.config.header_name: self.declarations(formatter),
                self.config.source_name: self.implementation(formatter)}

    def routine(self, name:str) -> Optional[NamedRoutine]:
        for r in self.init_routines + (self.aggregate_routine,) + self.handler_routines:
            if r.name == name:
                return r
        return None

    @property
    def routine_names(self) -> List[str]:
        return [r.name for r in self.init_routines]

    @property
    def vectors(self) -> List[str]:
        return [h.name for h in self.handler_routines]


def merge_routines(routines:Iterable[NamedRoutine]) -> List[NamedRoutine]:
    """ Merge routines of equal name in first seen order.

    The lines of later routines are appended, their signatures must agree.
    """
    merged: Dict[str, NamedRoutine] = {}
    for r in routines:
        first = merged.get(r.name)
        if first is None:
            merged[r.name] = r
            continue
        if first.parameters != r.parameters or first.arguments != r.arguments:
            raise SchemaError(f"routine {r.name} is generated with different signatures "
                              f"({', '.join(first.parameters + first.arguments)} and "
                              f"{', '.join(r.parameters + r.arguments)})", r.owner)
        log.debug("merging %s of %s into %s", r.name, r.owner, first.owner)
        merged[r.name] = first.extended(r.lines)
    return list(merged.values())


def merge_handlers(handlers:Iterable[NamedRoutine]) -> List[NamedRoutine]:
    """ One handler per vector; identical bodies collapse, different bodies are an error """
    merged: Dict[str, NamedRoutine] = {}
    for h in handlers:
        first = merged.get(h.name)
        if first is None:
            merged[h.name] = h
        elif first.lines != h.lines:
            raise DuplicateHandlerError(f"different handlers for {h.name} from {first.owner} and {h.owner}", h.owner)
    return list(merged.values())


def aggregate_routine(routines:Sequence[NamedRoutine], handlers:Sequence[NamedRoutine],
                      cfg:GeneratorConfig, formatter:InitFormatter=None) -> NamedRoutine:
    """ The routine calling every init routine once, in order """
    formatter = formatter or InitFormatter()
    calls = formatter.formatCalls(routines)
    if handlers:
        calls.append("sei();")
    return NamedRoutine(cfg.aggregate_name, tuple(calls))


def assemble(peripheral_outputs:Iterable, interrupt_outputs:Iterable=(), board=None, config:GeneratorConfig=None,
             clock=None, formatter:InitFormatter=None) -> GeneratedArtifact:
    """ Build the artifact from the outputs of all peripherals.

    peripheral_outputs are PeripheralOutput values, their interrupts are used as
    well. interrupt_outputs adds handler routines not attached to a peripheral
    output.
    """
    cfg = config or default_config
    peripheral_outputs = list(peripheral_outputs)
    includes = set()
    routines = []
    handlers = []
    for output in peripheral_outputs:
        includes.update(output.includes)
        routines.extend(output.routines)
        handlers.extend(output.handlers)
    handlers.extend(i.handler for i in interrupt_outputs)

    routines = merge_routines(routines)
    handlers = merge_handlers(handlers)
    if handlers:
        includes.add(INTERRUPT_INCLUDE)

    defines = []
    if clock is None and board is not None:
        clock = board.clock
    if clock is not None and any(CLOCK_TOKEN in line for r in routines + handlers for line in r.lines):
        defines.append((CLOCK_TOKEN, f"{clock}UL"))

    return GeneratedArtifact(
        includes=tuple(sorted(includes)),
        defines=tuple(defines),
        init_routines=tuple(routines),
        aggregate_routine=aggregate_routine(routines, handlers, cfg, formatter),
        handler_routines=tuple(handlers),
        config=cfg,
    )
