"""Reconcile metadata mappings from several sources."""

import json
from collections.abc import Mapping, Sequence
from typing import Any

CONFLICT_SUFFIX = "_conflicts"


def _render(value: Any, sort_keys: bool = False) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=sort_keys)


def reconcile_metadata(sources: Sequence[Mapping[str, Any] | None]) -> dict[str, Any]:
    """Merge metadata mappings, recording disagreements.

    Every key present in any source appears in the result, in order of
    first appearance. Values are compared by deep equality; a key missing
    from a source compares as ``None``. When all sources agree the value is
    kept as is. Otherwise the first source's value is kept and a sibling
    ``{key}_conflicts`` holds the other distinct values, e.g.
    ``"ALT: 7 | ALT: 9"``.
    """
    mappings = [source or {} for source in sources]
    keys: dict[str, None] = {}
    for mapping in mappings:
        keys.update(dict.fromkeys(mapping))

    merged: dict[str, Any] = {}
    for key in keys:
        values = [mapping.get(key) for mapping in mappings]
        merged[key] = values[0]
        # compare key-sorted JSON so that 1, 1.0 and true stay distinct;
        # alternatives are shown in their own key order
        seen = {_render(values[0], sort_keys=True)}
        alternatives: list[str] = []
        for value in values[1:]:
            key_sorted = _render(value, sort_keys=True)
            if key_sorted not in seen:
                seen.add(key_sorted)
                alternatives.append(_render(value))
        if alternatives:
            merged[key + CONFLICT_SUFFIX] = " | ".join(f"ALT: {alt}" for alt in alternatives)
    return merged
