#!/usr/bin/env python3
"""Generate ATmega328P register initialization code from a configuration snapshot.

Sub-commands:
  generate  write pins_init.h and pins_init.cpp for a snapshot
  check     report pin conflicts and configuration problems of a snapshot
  validate  check the peripheral models against their JSON schemas
  list      list the available peripherals

A snapshot is a YAML (or JSON) document mapping peripheral ids to their state,
see `avrinit.snapshot`.
"""
import argparse
import logging
import sys
from pathlib import Path

from .config import config
from .errors import AvrInitError
from .generator import check, generate
from .registry import load_registry, read_yaml, validate_dir
from .snapshot import parse_snapshot

logger = logging.getLogger(__name__)


class MainFormatter(logging.Formatter):

    def format(self, record):
        message = super().format(record)

        # Continuation lines are indented below the level prefix
        prefix = f'[{record.levelname}] '
        lines = message.splitlines() or ['']
        message = '\n'.join([lines[0], *[' ' * len(prefix) + line for line in lines[1:]]])
        return prefix + message


def setup_logging(verbose:int) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(MainFormatter())
    root = logging.getLogger('avrinit')
    if not root.handlers:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose > 1 else logging.INFO if verbose else logging.WARNING)


def read_snapshot(path, registry):
    if not Path(path).is_file():
        raise AvrInitError(f"{path}: snapshot not found")
    data = read_yaml(path)
    return parse_snapshot(data or {}, registry)


def print_diagnostics(diagnostics) -> None:
    for d in diagnostics:
        print(f"  {d}")


def cmd_generate(args) -> int:
    registry = load_registry(args.schema_dir)
    snapshot = read_snapshot(args.snapshot, registry)
    result = generate(registry, snapshot, clock=args.clock)
    if result.diagnostics:
        print(f"{len(result.diagnostics)} diagnostics:")
        print_diagnostics(result.diagnostics)
    if args.strict and result.errors:
        print("Not writing output, the configuration has errors")
        return 1
    out = Path(args.output)
    out.mkdir(parents=True, exist_ok=True)
    for name, text in result.artifact.files().items():
        path = out / name
        path.write_text(text, encoding='utf-8')
        print(f"Wrote {path}")
    return 0


def cmd_check(args) -> int:
    registry = load_registry(args.schema_dir)
    diagnostics = check(registry, read_snapshot(args.snapshot, registry))
    if not diagnostics:
        print("✅ no problems found")
        return 0
    print(f"❌ {len(diagnostics)} problems found:")
    print_diagnostics(diagnostics)
    return 1 if any(d.is_error for d in diagnostics) else 0


def cmd_validate(args) -> int:
    schema_dir = args.schema_dir or config.schema_dir
    had_errors = False
    for path, errors in validate_dir(schema_dir):
        if errors:
            had_errors = True
            print(f"❌ {path} failed validation:")
            for e in errors:
                print(f"   - {e}")
        else:
            print(f"✅ {path} is valid")
    if not had_errors:
        # schema validation passed, now the checks across models
        try:
            registry = load_registry(schema_dir)
        except AvrInitError as ex:
            print(f"❌ {ex}")
            return 1
        print(f"✅ {len(registry)} peripheral models of {registry.board.mcu} are consistent")
    return 1 if had_errors else 0


def cmd_list(args) -> int:
    registry = load_registry(args.schema_dir)
    print(f"{registry.board.mcu} ({registry.board.board}, {registry.board.clock} Hz)")
    for p in registry.descriptors():
        pins = ', '.join(f"{s}={'/'.join(pins)}" for s, pins in p.pin_mapping.items())
        print(f"  {p.id:20} {p.kind:6} {p.name}" + (f"  [{pins}]" if pins and not p.pin_change else ''))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='avrinit', description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('-v', '--verbose', action='count', default=0, help='more output, repeat for debug output')
    parser.add_argument('--schema-dir', default=None, help='directory of the peripheral models')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('generate', help='write the init code for a snapshot')
    p.add_argument('snapshot', help='configuration snapshot (YAML or JSON)')
    p.add_argument('-o', '--output', default='.', help='output directory (default: current directory)')
    p.add_argument('--strict', action='store_true', help='do not write anything if there are errors or conflicts')
    p.add_argument('--clock', type=int, default=None, help='CPU clock in Hz, overrides the board model')
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser('check', help='report conflicts and configuration problems')
    p.add_argument('snapshot', help='configuration snapshot (YAML or JSON)')
    p.set_defaults(func=cmd_check)

    p = sub.add_parser('validate', help='validate the peripheral models')
    p.add_argument('models', nargs='?', default=None, help='directory of the peripheral models')
    p.set_defaults(func=lambda a: cmd_validate(argparse.Namespace(schema_dir=a.models or a.schema_dir)))

    p = sub.add_parser('list', help='list the available peripherals')
    p.set_defaults(func=cmd_list)

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        return args.func(args)
    except AvrInitError as ex:
        logger.error("%s", ex)
        return 2


if __name__ == '__main__':
    sys.exit(main())
