# Line templates and template tables of the peripheral models.
#
# A template line is a line of C source with `{{name}}` placeholders. Lines are parsed once when the
# models are loaded, so that malformed placeholders are found early and the set of parameters a
# line needs is known before any configuration is looked at.
#
import logging
from dataclasses import dataclass, field
from string import Template
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import MissingParameterError, SchemaError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Literal:
    text: str


@dataclass(frozen=True)
class Parameter:
    name: str


class LineTemplate(Template):
    """ A single template line using `{{name}}` placeholders.

    Unlike a plain `string.Template`, the line is split into literal and parameter
    segments at construction time. Malformed placeholders raise a SchemaError right
    away instead of when the line is first used.
    """
    delimiter = '{{'
    pattern = r"""
    \{\{\s*(?:
      (?P<named>[_a-zA-Z][_a-zA-Z0-9]*)\s*\}\}
    | (?P<braced>(?!))
    | (?P<escaped>(?!))
    | (?P<invalid>)
    )
    """

    def __init__(self, template:str, origin:str=None, peripheral:str=None):
        super().__init__(str(template))
        self.origin = origin
        self.peripheral = peripheral
        self.segments = self._parse()
        self.names = tuple(dict.fromkeys(s.name for s in self.segments if isinstance(s, Parameter)))

    def _parse(self):
        segments = []
        pos = 0
        for mo in self.pattern.finditer(self.template):
            if mo.group('invalid') is not None:
                raise SchemaError(f"malformed placeholder at column {mo.start() + 1} of {self.template!r}"
                                  + (f" in template '{self.origin}'" if self.origin else ''), self.peripheral)
            if mo.start() > pos:
                segments.append(Literal(self.template[pos:mo.start()]))
            segments.append(Parameter(mo.group('named')))
            pos = mo.end()
        if pos < len(self.template):
            segments.append(Literal(self.template[pos:]))
        return tuple(segments)

    def references(self, token:str) -> bool:
        """ True if the line mentions token, as placeholder or as plain text """
        return token in self.names or token in self.template

    def render(self, params:Mapping) -> str:
        """ Substitute all placeholders; a placeholder without a value is an authoring error """
        try:
            return self.substitute(params)
        except KeyError as ex:
            raise MissingParameterError(ex.args[0], self.peripheral, self.origin, self.template) from None

    def __eq__(self, other):
        return isinstance(other, LineTemplate) and self.template == other.template

    def __hash__(self):
        return hash(self.template)

    def __repr__(self):
        return f"LineTemplate({self.template!r})"


def compileLines(lines:Sequence, origin:str, peripheral:str=None) -> Tuple[LineTemplate, ...]:
    """ Turn a list of strings from a model into template lines """
    if isinstance(lines, str):
        lines = [lines]
    return tuple(LineTemplate(l, origin, peripheral) for l in lines or [])


def renderLines(lines:Sequence[LineTemplate], params:Mapping) -> List[str]:
    return [l.render(params) for l in lines]


@dataclass(frozen=True)
class CaseTable:
    """ Template sets selected by the value of a secondary setting,
    e.g. a GPIO output whose lines depend on the initial level. """
    field: str
    cases: Mapping[str, Tuple[LineTemplate, ...]]
    default: Optional[str] = None

    def select(self, settings:Mapping) -> Optional[Tuple[LineTemplate, ...]]:
        value = settings.get(self.field)
        if value is None and self.default is not None:
            value = self.default
        if value in self.cases:
            return self.cases[value]
        return self.cases.get(str(value))

    def allSets(self):
        return list(self.cases.items())


@dataclass(frozen=True)
class TemplateTable:
    """ All init template sets of a peripheral.

    `modes` holds the sets dispatched by the resolved mode key, `keyed` the sets that
    are selected directly by name (interrupt name, pin signal name, ...).
    """
    modes: Mapping[str, object] = field(default_factory=dict)
    keyed: Mapping[str, Tuple[LineTemplate, ...]] = field(default_factory=dict)

    def select(self, mode:Optional[str], settings:Mapping, keys:Sequence[str]=()):
        """ Select the template set to use.

        Returns a tuple (key, lines), or None if no set applies.
        """
        if mode:
            entry = self.modes.get(mode)
            if entry is None:
                log.debug("no template set for mode %r", mode)
                return None
            if isinstance(entry, CaseTable):
                lines = entry.select(settings)
                if lines is None:
                    log.debug("no case for %s=%r in mode %r", entry.field, settings.get(entry.field), mode)
                    return None
                return mode, lines
            return mode, entry
        for k in keys:
            if k and k in self.keyed:
                return k, self.keyed[k]
        for k, lines in self.keyed.items():
            return k, lines
        return None

    def allLines(self) -> List[Tuple[str, LineTemplate]]:
        """ Every template line together with the name of its set """
        result = []
        for name, entry in self.modes.items():
            if isinstance(entry, CaseTable):
                for case, lines in entry.allSets():
                    result.extend((f"{name}.{case}", l) for l in lines)
            else:
                result.extend((name, l) for l in entry)
        for name, lines in self.keyed.items():
            result.extend((name, l) for l in lines)
        return result

    def __bool__(self):
        return bool(self.modes or self.keyed)


def compileTable(init:Dict, peripheral:str=None) -> TemplateTable:
    """ Build a TemplateTable from the `init` section of a peripheral model

        init:
          modes:
            output:
              select: initialState
              cases: { LOW: [...], HIGH: [...] }
            input: [...]
          keyed:
            INT0: [...]
    """
    init = init or {}
    modes = {}
    for name, entry in (init.get('modes') or {}).items():
        origin = f"init.modes.{name}"
        if isinstance(entry, dict):
            cases = {str(k): compileLines(v, f"{origin}.{k}", peripheral) for k, v in entry['cases'].items()}
            default = entry.get('default')
            modes[str(name)] = CaseTable(entry['select'], cases, None if default is None else str(default))
        else:
            modes[str(name)] = compileLines(entry, origin, peripheral)
    keyed = {str(name): compileLines(lines, f"init.keyed.{name}", peripheral)
             for name, lines in (init.get('keyed') or {}).items()}
    return TemplateTable(modes, keyed)
