"""Cross-step reference resolution.

A step can name its output with ``result_key``; later steps refer to it with a
string value of the form ``"$<result_key>"``, which resolves to the ``id`` of
the first record the earlier step produced. Only flat keys are supported:
composite lookups such as ``"$new_client.company_name"`` are rejected as
unresolved.

A string is only a reference when its key is declared as a result_key by some
step of the same plan. Any other text, ``"$500"`` or ``"$client is happy"``
included, is a literal value.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Mapping
from typing import Any

from salesdesk.actions.errors import UnresolvedReferenceError

_REFERENCE = re.compile(r"^\$(?P<key>[A-Za-z_][A-Za-z0-9_]*)(?P<path>\.\S+)?$")


def reference_key(value: Any) -> str | None:
    """Key named by a reference-shaped string, or None for anything else."""
    if not isinstance(value, str):
        return None
    match = _REFERENCE.match(value)
    return match.group("key") if match else None


def is_reference(value: Any, declared: Collection[str]) -> bool:
    return reference_key(value) in declared


def is_composite(value: str) -> bool:
    match = _REFERENCE.match(value)
    return bool(match and match.group("path"))


def find_references(mapping: Mapping[str, Any], declared: Collection[str]) -> list[str]:
    """Return the references (as written) a where/values mapping makes to declared keys, in order."""
    return [value for value in mapping.values() if is_reference(value, declared)]


def resolve_value(value: Any, results: Mapping[str, Any], declared: Collection[str]) -> Any:
    """Resolve one value against the captured results of earlier steps."""
    if not is_reference(value, declared):
        return value

    if is_composite(value):
        raise UnresolvedReferenceError(
            f"UnresolvedReference: composite reference '{value}' is not supported",
            details={"reference": value},
        )
    key = reference_key(value)
    if key not in results:
        raise UnresolvedReferenceError(
            f"UnresolvedReference: no earlier step produced '{key}'",
            details={"reference": value},
        )
    resolved = results[key]
    if resolved is None:
        raise UnresolvedReferenceError(
            f"UnresolvedReference: step producing '{key}' returned no record",
            details={"reference": value},
        )
    return resolved


def resolve_mapping(
    mapping: Mapping[str, Any],
    results: Mapping[str, Any],
    declared: Collection[str],
) -> dict[str, Any]:
    return {column: resolve_value(value, results, declared) for column, value in mapping.items()}


def captured_value(rows: list[dict[str, Any]]) -> Any:
    """Value recorded under a step's result_key: the id of its first row, if any."""
    if not rows:
        return None
    return rows[0].get("id")
