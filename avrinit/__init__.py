"""Register initialization code generator for ATmega328P boards"""
from .diagnostics import Diagnostic
from .emitter import GeneratedArtifact
from .errors import AvrInitError, DuplicateHandlerError, MissingParameterError, SchemaError, SnapshotError
from .generator import GenerationResult, check, generate
from .registry import Registry, current_registry, install_registry, load_registry
from .snapshot import GlobalState, PinBoundState, Snapshot, parse_snapshot

__all__ = [
    'AvrInitError', 'Diagnostic', 'DuplicateHandlerError', 'GeneratedArtifact', 'GenerationResult',
    'GlobalState', 'MissingParameterError', 'PinBoundState', 'Registry', 'SchemaError', 'Snapshot',
    'SnapshotError', 'check', 'current_registry', 'generate', 'install_registry', 'load_registry',
    'parse_snapshot',
]
