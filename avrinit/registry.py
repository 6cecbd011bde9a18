"""
Peripheral schema registry

Loads the board model and one YAML model per peripheral, validates them against the
JSON schemas in `data/schema` and turns them into immutable descriptors. Authoring
problems that the JSON schema cannot express (dangling references, mode keys
without template sets, unknown placeholders, ...) are checked here as well, so a
registry that loaded without error can be used for generation without surprises.

The registry in use by the process is held in a single module level reference.
`install_registry` replaces it in one assignment, a generation run that already
fetched the old registry keeps working with it unchanged.
"""
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional, Tuple

import yaml  # PyYAML, for the JSON schemas
from jsonschema import Draft202012Validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .config import config
from .errors import SchemaError
from .models import (CLOCK_TOKEN, GLOBAL_KIND, PIN_KIND, PIN_SYMBOLS, Board, ConfigField,
                     ConflictRule, InterruptDescriptor, PeripheralDescriptor, PinChangeGroup,
                     PinChangeSpec, Port, RoutineParameter, RoutineSpec, frozen, split_pin)
from .resolver import fallback_key
from .templates import LineTemplate, compileLines, compileTable

log = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "data" / "schema"
BOARD_FILE = "board.yaml"

# Parameters the pin change aggregator supplies to its templates
GROUP_SYMBOLS = ('index', 'port', 'vector', 'enableBit', 'maskRegister', 'firstNumber',
                 'ddr', 'portReg', 'pinReg', 'mask')


class Registry:
    """ The board and all peripheral descriptors, in generation order """

    def __init__(self, board:Board, peripherals, source:str=None):
        self.board = board
        self.peripherals = MappingProxyType(dict((p.id, p) for p in peripherals))
        self.source = source

    def get(self, id:str) -> Optional[PeripheralDescriptor]:
        return self.peripherals.get(id)

    def __getitem__(self, id:str) -> PeripheralDescriptor:
        return self.peripherals[id]

    def __contains__(self, id) -> bool:
        return id in self.peripherals

    def __iter__(self) -> Iterator[str]:
        return iter(self.peripherals)

    def __len__(self) -> int:
        return len(self.peripherals)

    def descriptors(self) -> List[PeripheralDescriptor]:
        return list(self.peripherals.values())

    @property
    def pin_change_owner(self) -> Optional[PeripheralDescriptor]:
        """ The peripheral carrying the pin change interrupt templates """
        for p in self.peripherals.values():
            if p.pin_change:
                return p
        return None

    def __repr__(self):
        return f"Registry({self.board.mcu}, {len(self)} peripherals)"


# ---------------------------------------------------------------------------------------------
# YAML and JSON schema

def read_yaml(path):
    """ Load a model file with ruamel.yaml """
    yaml_loader = YAML(typ='safe')
    try:
        with open(path, encoding='utf-8') as f:
            return yaml_loader.load(f)
    except YAMLError as ex:
        raise SchemaError(f"{path}: malformed YAML: {ex}") from ex


def schema_validator(name:str) -> Draft202012Validator:
    schema = yaml.safe_load((SCHEMA_DIR / name).read_text(encoding='utf-8'))
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def schema_errors(validator:Draft202012Validator, data) -> List[str]:
    """ All JSON schema violations of a document as readable strings """
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    result = []
    for e in errors:
        loc = "/".join([str(p) for p in e.path]) or "(root)"
        result.append(f"at {loc}: {e.message}")
    return result


def check_document(validator:Draft202012Validator, data, origin) -> None:
    errors = schema_errors(validator, data)
    if errors:
        raise SchemaError(f"{origin} failed validation:\n  - " + "\n  - ".join(errors))


# ---------------------------------------------------------------------------------------------
# Building descriptors

def _str_keys(mapping) -> Dict[str, object]:
    return {str(k): v for k, v in (mapping or {}).items()}


def _predicate(data) -> MappingProxyType:
    result = {}
    for key, allowed in (data or {}).items():
        result[str(key)] = tuple(allowed) if isinstance(allowed, list) else (allowed,)
    return frozen(result)


def build_field(key:str, data:dict) -> ConfigField:
    return ConfigField(
        key=key,
        name=data['name'],
        kind=data['type'],
        default=data.get('default'),
        values=tuple(data.get('values', ())),
        applies_to=_predicate(data.get('appliesTo')),
        minimum=data.get('minimum'),
        maximum=data.get('maximum'),
        helper=data.get('helper'),
    )


def build_interrupt(key:str, data:dict, peripheral:str) -> InterruptDescriptor:
    origin = f"interrupts.{key}"
    return InterruptDescriptor(
        key=key,
        vector=data.get('vector', ''),
        description=data.get('description', ''),
        default_enabled=data.get('defaultEnabled', False),
        applies_to=_predicate(data.get('appliesTo')),
        enable=compileLines(data.get('enable'), f"{origin}.enable", peripheral),
        handler=compileLines(data.get('handler'), f"{origin}.handler", peripheral),
        pin_change=data.get('pinChange', False),
        signal=data.get('signal'),
    )


def build_pin_change(data:dict, peripheral:str) -> PinChangeSpec:
    handler = data['handler']
    return PinChangeSpec(
        routine=data['routine'],
        flag=data.get('flag'),
        pin_setup=compileLines(data['pinSetup'], "pinChange.pinSetup", peripheral),
        group_enable=compileLines(data['groupEnable'], "pinChange.groupEnable", peripheral),
        mask=compileLines(data['mask'], "pinChange.mask", peripheral),
        mask_bit=LineTemplate(data['maskBit'], "pinChange.maskBit", peripheral),
        handler_head=compileLines(handler['head'], "pinChange.handler.head", peripheral),
        handler_member=compileLines(handler['member'], "pinChange.handler.member", peripheral),
        handler_tail=compileLines(handler['tail'], "pinChange.handler.tail", peripheral),
    )


def build_descriptor(data:dict) -> PeripheralDescriptor:
    """ Turn a validated peripheral model into a descriptor """
    pid = data['id']
    gen = data.get('codeGenerator') or {}
    routine = None
    if 'routine' in gen:
        r = gen['routine']
        routine = RoutineSpec(
            name=LineTemplate(r['name'], "codeGenerator.routine.name", pid),
            parameters=tuple(RoutineParameter(p['name'], p['type'], p['setting'])
                             for p in r.get('parameters', ())),
        )
    return PeripheralDescriptor(
        id=pid,
        name=data['name'],
        kind=data['kind'],
        title=data.get('title', ''),
        pin_mapping=frozen({s: tuple(pins) for s, pins in (data.get('pinMapping') or {}).items()}),
        requires_all_pins=data.get('requiresAllPins', False),
        shared=data.get('shared', False),
        fields=tuple(build_field(k, v) for k, v in (data.get('config') or {}).items()),
        interrupts=tuple(build_interrupt(k, v, pid) for k, v in (data.get('interrupts') or {}).items()),
        alerts=tuple(data.get('alerts', ())),
        includes=tuple(gen.get('includes', ())),
        mode_key=gen.get('modeKey'),
        mode_mapping=frozen(_str_keys(gen.get('modeMapping'))),
        value_mapping=frozen({k: frozen(_str_keys(v)) for k, v in (gen.get('valueMapping') or {}).items()}),
        init=compileTable(gen.get('init'), pid),
        routine=routine,
        pin_change=build_pin_change(data['pinChange'], pid) if 'pinChange' in data else None,
        conflicts=tuple(ConflictRule(pid, tuple(c['pins']), tuple(c.get('peripherals', ())), c['message'])
                        for c in data.get('conflicts', ())),
    )


def build_board(data:dict) -> Board:
    ports = {letter: Port(letter, p['ddr'], p['port'], p['pin']) for letter, p in data['ports'].items()}
    groups = tuple(sorted(
        (PinChangeGroup(g['index'], g['port'], g['vector'], g['enableBit'], g['maskRegister'], g['firstNumber'])
         for g in data.get('pinChangeGroups', ())),
        key=lambda g: g.index))
    return Board(mcu=data['mcu'], board=data['board'], clock=data['clock'],
                 ports=frozen(ports), pin_change_groups=groups)


# ---------------------------------------------------------------------------------------------
# Authoring checks

def check_modes(descriptor:PeripheralDescriptor) -> None:
    """ Every allowed value of the mode field must select an existing template set.

    A value without explicit mapping falls back to its derived key. If that key is
    also the explicit target of another value, both values would silently share a
    template set, which is refused.
    """
    if not descriptor.mode_key:
        if descriptor.mode_mapping:
            raise SchemaError("modeMapping given without modeKey", descriptor.id)
        return
    mode_field = descriptor.get_field(descriptor.mode_key)
    if mode_field is None:
        raise SchemaError(f"modeKey '{descriptor.mode_key}' is not a config field", descriptor.id)
    for raw, key in descriptor.mode_mapping.items():
        if key not in descriptor.init.modes:
            raise SchemaError(f"mode {raw!r} maps to '{key}' which has no template set", descriptor.id)
    targets = {key: raw for raw, key in descriptor.mode_mapping.items()}
    for value in mode_field.values:
        if str(value) in descriptor.mode_mapping:
            continue
        key = fallback_key(value)
        if key in targets:
            raise SchemaError(f"mode value {value!r} has no mapping and its derived key '{key}' "
                              f"collides with the mapping of {targets[key]!r}", descriptor.id)
        if key not in descriptor.init.modes:
            raise SchemaError(f"mode value {value!r} selects '{key}' which has no template set", descriptor.id)
        log.warning("%s: mode value %r has no explicit mapping, using derived key '%s'",
                    descriptor.id, value, key)


def _known_parameters(descriptor:PeripheralDescriptor) -> set:
    names = {f.key for f in descriptor.fields}
    names.update(i.flag for i in descriptor.interrupts)
    names.update(('key', CLOCK_TOKEN))
    if descriptor.is_pin_bound:
        names.update(PIN_SYMBOLS)
    return names


def check_placeholders(descriptor:PeripheralDescriptor) -> None:
    """ Every placeholder must name something resolution can supply """
    known = _known_parameters(descriptor)
    lines = list(descriptor.init.allLines())
    for i in descriptor.interrupts:
        lines.extend((f"interrupts.{i.key}", l) for l in i.enable + i.handler)
    if descriptor.routine:
        lines.append(("routine", descriptor.routine.name))
    for origin, line in lines:
        for name in line.names:
            # handlers also know their vector
            if name not in known and not (origin.startswith("interrupts.") and name == 'vector'):
                raise SchemaError(f"unknown placeholder '{name}' in template '{origin}' ({line.template!r})",
                                  descriptor.id)
    pc = descriptor.pin_change
    if pc:
        pin_known = set(PIN_SYMBOLS)
        group_known = set(GROUP_SYMBOLS)
        for origin, group, known_set in (
                ("pinSetup", pc.pin_setup, pin_known),
                ("handler.member", pc.handler_member, pin_known),
                ("maskBit", (pc.mask_bit,), pin_known),
                ("groupEnable", pc.group_enable, group_known),
                ("mask", pc.mask, group_known),
                ("handler.head", pc.handler_head, group_known),
                ("handler.tail", pc.handler_tail, group_known)):
            for line in group:
                for name in line.names:
                    if name not in known_set:
                        raise SchemaError(f"unknown placeholder '{name}' in template 'pinChange.{origin}'",
                                          descriptor.id)


def check_descriptor(descriptor:PeripheralDescriptor) -> None:
    """ Consistency checks of a single descriptor """
    pid = descriptor.id
    if descriptor.kind == GLOBAL_KIND and (descriptor.shared or descriptor.requires_all_pins):
        raise SchemaError("a global peripheral cannot be shared or require pins", pid)
    for pin in descriptor.pins:
        split_pin(pin)
    fields = {f.key for f in descriptor.fields}
    for f in descriptor.fields:
        if f.default is not None and not f.accepts(f.default):
            raise SchemaError(f"default {f.default!r} of field '{f.key}' is not an allowed value", pid)
        for other in f.applies_to:
            if other not in fields:
                raise SchemaError(f"field '{f.key}' depends on unknown field '{other}'", pid)
    for i in descriptor.interrupts:
        for other in i.applies_to:
            if other not in fields:
                raise SchemaError(f"interrupt '{i.key}' depends on unknown field '{other}'", pid)
        if i.signal and i.signal not in descriptor.pin_mapping:
            raise SchemaError(f"interrupt '{i.key}' is bound to unknown signal '{i.signal}'", pid)
    for key in descriptor.value_mapping:
        if key not in fields:
            raise SchemaError(f"valueMapping for unknown field '{key}'", pid)
    if descriptor.routine:
        for p in descriptor.routine.parameters:
            if p.setting not in fields:
                raise SchemaError(f"routine parameter '{p.name}' takes unknown setting '{p.setting}'", pid)
    own = set(descriptor.pins)
    for rule in descriptor.conflicts:
        stray = [p for p in rule.reserved_pins if p not in own]
        if stray:
            raise SchemaError(f"conflict rule reserves pins not mapped to the peripheral: {', '.join(stray)}", pid)
    if descriptor.pin_change and descriptor.kind != PIN_KIND:
        raise SchemaError("pin change interrupts need a pin-bound peripheral", pid)
    check_modes(descriptor)
    check_placeholders(descriptor)


def check_registry(registry:Registry) -> None:
    """ Checks across peripherals and against the board """
    owners = [p.id for p in registry.descriptors() if p.pin_change]
    if len(owners) > 1:
        raise SchemaError(f"more than one pin change interrupt peripheral: {', '.join(owners)}")
    for p in registry.descriptors():
        for rule in p.conflicts:
            for other in rule.conflicting:
                if other not in registry:
                    raise SchemaError(f"conflict rule names unknown peripheral '{other}'", p.id)
        for pin in p.pins:
            letter, _ = split_pin(pin)
            if registry.board.port(letter) is None:
                raise SchemaError(f"pin {pin} is on port {letter} which the board does not have", p.id)


# ---------------------------------------------------------------------------------------------
# Loading

def load_peripheral(path, validator:Draft202012Validator=None) -> PeripheralDescriptor:
    """ Load, validate and check a single peripheral model """
    validator = validator or schema_validator("peripheral.schema.yaml")
    data = read_yaml(path)
    check_document(validator, data, path)
    descriptor = build_descriptor(data)
    check_descriptor(descriptor)
    return descriptor


def load_registry(schema_dir=None) -> Registry:
    """ Load the board model and all peripheral models it lists from schema_dir """
    schema_dir = Path(schema_dir or config.schema_dir)
    board_path = schema_dir / BOARD_FILE
    if not board_path.is_file():
        raise SchemaError(f"{schema_dir}: no {BOARD_FILE} found")
    board_data = read_yaml(board_path)
    check_document(schema_validator("board.schema.yaml"), board_data, board_path)
    board = build_board(board_data)

    validator = schema_validator("peripheral.schema.yaml")
    peripherals = []
    for pid in board_data['peripherals']:
        path = schema_dir / f"{pid}.yaml"
        if not path.is_file():
            raise SchemaError(f"{path}: model of peripheral '{pid}' not found")
        descriptor = load_peripheral(path, validator)
        if descriptor.id != pid:
            raise SchemaError(f"{path}: declares id '{descriptor.id}' instead of '{pid}'")
        peripherals.append(descriptor)
        log.debug("loaded %s (%s, %d fields, %d interrupts)", pid, descriptor.kind,
                  len(descriptor.fields), len(descriptor.interrupts))
    registry = Registry(board, peripherals, str(schema_dir))
    check_registry(registry)
    log.info("loaded %d peripheral models for %s from %s", len(registry), board.mcu, schema_dir)
    return registry


def validate_dir(schema_dir=None) -> List[Tuple[Path, List[str]]]:
    """ JSON schema validation of all YAML files of a model directory.

    Returns (path, errors) for every file, errors is empty for valid files.
    """
    schema_dir = Path(schema_dir or config.schema_dir)
    board = schema_validator("board.schema.yaml")
    peripheral = schema_validator("peripheral.schema.yaml")
    result = []
    for path in sorted(schema_dir.glob("*.yaml")):
        try:
            data = read_yaml(path)
        except SchemaError as ex:
            result.append((path, [str(ex)]))
            continue
        validator = board if path.name == BOARD_FILE else peripheral
        result.append((path, schema_errors(validator, data)))
    return result


# ---------------------------------------------------------------------------------------------
# Process wide registry

_current: Optional[Registry] = None


def install_registry(registry:Registry) -> Optional[Registry]:
    """ Make registry the one used by default, returns the previous one """
    global _current
    previous, _current = _current, registry
    return previous


def current_registry() -> Registry:
    """ The installed registry, the bundled models are loaded on first use """
    registry = _current
    if registry is None:
        registry = load_registry()
        install_registry(registry)
    return registry
