"""
Value and mode resolution

Translates the symbolic settings of a peripheral into the key of the template set
to use and into register-ready template parameters.
"""
import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

log = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_MISSING = object()


def fallback_key(value) -> str:
    """ Mode key derived from a raw value without explicit mapping: "Free Running" -> "free_running" """
    return _WHITESPACE.sub('_', str(value).lower())


def lookup(table:Mapping, value) -> Tuple[bool, Any]:
    """ Look up a value in a mapping table, first as-is, then in its string form """
    result = table.get(value, _MISSING) if _hashable(value) else _MISSING
    if result is _MISSING and not isinstance(value, str):
        result = table.get(str(value), _MISSING)
    if result is _MISSING:
        return False, None
    return True, result


def _hashable(value) -> bool:
    try:
        hash(value)
    except TypeError:
        return False
    return True


def resolve_mode(settings:Mapping, mode_key:str=None, mode_mapping:Mapping=None) -> Optional[str]:
    """ Return the template set key selected by the mode field of settings.

    None if the peripheral declares no mode field or the field is absent or empty.
    An explicit mapping entry always wins over the derived fallback key.
    """
    if not mode_key:
        return None
    value = settings.get(mode_key)
    if not value:
        return None
    found, mapped = lookup(mode_mapping or {}, value)
    if found:
        return mapped
    key = fallback_key(value)
    log.debug("mode %r has no explicit mapping, using %r", value, key)
    return key


def apply_value_mapping(settings:Mapping, value_mapping:Mapping=None) -> Dict[str, Any]:
    """ Return a copy of settings with every mapped field replaced by its register value """
    params = dict(settings)
    for key, table in (value_mapping or {}).items():
        if key not in params:
            continue
        found, mapped = lookup(table, params[key])
        if found:
            params[key] = mapped
        else:
            log.debug("no value mapping for %s=%r, passing it through", key, params[key])
    return params


def effective_settings(descriptor, settings:Mapping) -> Dict[str, Any]:
    """ Fill in the defaults of all fields that are visible for the given settings.

    Applied until nothing changes, so that a default which makes another field
    visible gets that field's default as well. Values set by the user always win.
    """
    result = dict(settings or {})
    changed = True
    while changed:
        changed = False
        for f in descriptor.fields:
            if f.key in result or f.default is None:
                continue
            if f.visible(result):
                result[f.key] = f.default
                changed = True
    return result
