"""Diagnostics reported about a configuration snapshot"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

ERROR = "error"
WARNING = "warning"

CONFLICT = "conflict"
VALIDITY = "validity"


@dataclass(frozen=True)
class Diagnostic:
    """ A problem of a configuration, attached to a peripheral and optionally a pin """
    severity: str
    peripheral: Optional[str]
    pin: Optional[str]
    message: str
    category: str = VALIDITY

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    def __str__(self):
        where = '/'.join(p for p in (self.peripheral, self.pin) if p)
        prefix = f"{where}: " if where else ''
        return f"{self.severity}: {prefix}{self.message}"


def errors(diagnostics:Iterable[Diagnostic]) -> List[Diagnostic]:
    return [d for d in diagnostics if d.is_error]
