"""Exceptions raised by the code generator.

Only schema authoring problems and structurally broken input are raised.
Problems with a user's configuration are reported as diagnostics instead.
"""


class AvrInitError(Exception):
    """Base class of all errors raised by avrinit."""


class SchemaError(AvrInitError, ValueError):
    """A peripheral model is malformed or inconsistent."""

    def __init__(self, message, peripheral=None):
        self.peripheral = peripheral
        if peripheral:
            message = f"{peripheral}: {message}"
        super().__init__(message)


class MissingParameterError(SchemaError, KeyError):
    """A template line references a parameter that resolution never supplies."""

    def __init__(self, name, peripheral=None, template=None, line=None):
        self.name = name
        self.template = template
        self.line = line
        where = f" in template '{template}'" if template else ''
        text = f" ({line!r})" if line else ''
        super().__init__(f"template parameter '{name}' not found{where}{text}", peripheral)

    def __str__(self):
        # KeyError would quote the message otherwise
        return self.args[0]


class DuplicateHandlerError(SchemaError):
    """Two different bodies were generated for the same interrupt vector."""


class SnapshotError(AvrInitError, ValueError):
    """A configuration snapshot has the wrong shape."""
