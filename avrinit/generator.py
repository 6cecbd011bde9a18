"""
Generation of the init code for a configuration snapshot

    from avrinit import generate, load_registry

    result = generate(load_registry(), {'gpio': {'pins': {'PB5': {'mode': 'OUTPUT'}}}})
    for name, text in result.artifact.files().items():
        ...

Diagnostics never stop a generation run, deciding whether output with conflicts
is acceptable is up to the caller.
"""
import logging
from dataclasses import dataclass
from typing import List, Tuple

from . import conflicts, expander, pcint, validation
from .config import GeneratorConfig, config as default_config
from .diagnostics import CONFLICT, Diagnostic
from .emitter import GeneratedArtifact, InitFormatter, assemble
from .registry import current_registry
from .snapshot import parse_snapshot

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    artifact: GeneratedArtifact
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def conflicts(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.category == CONFLICT]

    @property
    def ok(self) -> bool:
        return not self.errors


def check(registry, snapshot) -> List[Diagnostic]:
    """ Conflict and validity diagnostics of a snapshot """
    if registry is None:
        registry = current_registry()
    snapshot = parse_snapshot(snapshot, registry)
    return conflicts.detect(registry, snapshot) + validation.validate(registry, snapshot)


def peripheral_outputs(registry, snapshot, clock=None) -> list:
    """ Outputs of all configured peripherals in registry order.

    The pin change interrupt code takes the place of the pin change peripheral,
    whether that peripheral itself is configured or only requested through flags.
    """
    outputs = []
    board = registry.board
    for pid in registry:
        descriptor = registry[pid]
        if descriptor.pin_change:
            output = pcint.emit(registry, pcint.aggregate(registry, snapshot))
            if output:
                outputs.append(output)
            continue
        state = snapshot.get(pid)
        if state is None:
            continue
        if state.kind != descriptor.kind:
            log.warning("%s: state does not match the peripheral kind, skipped", pid)
            continue
        output = expander.expand(descriptor, state, clock, board)
        if output.routines or output.interrupts:
            outputs.append(output)
    for pid in snapshot:
        if pid not in registry:
            log.warning("unknown peripheral %s, skipped", pid)
    return outputs


def generate(registry, snapshot, config:GeneratorConfig=None, clock=None,
             formatter:InitFormatter=None) -> GenerationResult:
    """ Generate the init code and the diagnostics of a snapshot.

    registry None uses the installed registry; it is fetched once, so a registry
    installed while the run is in progress does not affect it.
    """
    if registry is None:
        registry = current_registry()
    snapshot = parse_snapshot(snapshot, registry)
    cfg = config or default_config
    clock = registry.board.clock if clock is None else clock

    diagnostics = check(registry, snapshot)
    outputs = peripheral_outputs(registry, snapshot, clock)
    artifact = assemble(outputs, board=registry.board, config=cfg, clock=clock, formatter=formatter)
    log.info("generated %d init routines and %d handlers, %d diagnostics",
             len(artifact.init_routines), len(artifact.handler_routines), len(diagnostics))
    return GenerationResult(artifact, tuple(diagnostics))
