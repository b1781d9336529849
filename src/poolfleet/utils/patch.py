""" Strategic merge of a partial document over a full object.

Only the parts of strategic merge patch semantics the pool patches rely
on are supported:

- maps merge recursively, ``null`` removes a key;
- a map carrying ``"$patch": "replace"`` replaces its target wholesale,
  ``"$patch": "delete"`` removes it;
- lists of well-known pod fields merge item by item on their merge key,
  a ``{"$patch": "replace"}`` item replaces the whole list;
- every other list replaces the original list.
"""

import copy

PATCH_DIRECTIVE = "$patch"

# Merge keys of list fields in pod and workload specs.
MERGE_KEYS = {
    "containers": "name",
    "initContainers": "name",
    "ephemeralContainers": "name",
    "volumes": "name",
    "env": "name",
    "imagePullSecrets": "name",
    "volumeMounts": "mountPath",
    "ports": "containerPort",
}


class PatchError(ValueError):
    """The patch document cannot be applied."""


def strategic_merge(original, patch):
    """ Return ``original`` with ``patch`` merged over it.

    Neither argument is modified.

    Raises:
        PatchError: unknown directive or non-map patch
    """
    if not isinstance(patch, dict):
        raise PatchError(f"patch must be a map, got {type(patch).__name__}")
    merged = _merge_map(copy.deepcopy(original) or {}, patch)
    return merged if merged is not None else {}


def _directive(patch):
    directive = patch.get(PATCH_DIRECTIVE)
    if directive not in (None, "replace", "delete", "merge"):
        raise PatchError(f"unknown patch directive {directive!r}")
    return directive


def _merge_map(original, patch):
    directive = _directive(patch)
    if directive == "replace":
        return strip_directives(patch)
    if directive == "delete":
        return None

    for key, value in patch.items():
        if key == PATCH_DIRECTIVE:
            continue
        if value is None:
            original.pop(key, None)
            continue

        current = original.get(key)
        if isinstance(value, dict):
            merged = _merge_map(current if isinstance(current, dict) else {}, value)
            if merged is None:
                original.pop(key, None)
            else:
                original[key] = merged
        elif isinstance(value, list) and key in MERGE_KEYS and isinstance(current, list):
            original[key] = _merge_list(current, value, MERGE_KEYS[key])
        else:
            original[key] = strip_directives(value)
    return original


def _merge_list(original, patch, merge_key):
    if any(_is_directive_item(item, "replace") for item in patch):
        return strip_directives(patch)
    if not all(isinstance(item, dict) and merge_key in item for item in patch):
        return strip_directives(patch)

    merged = list(original)
    for item in patch:
        position = next(
            (
                i
                for i, existing in enumerate(merged)
                if isinstance(existing, dict) and existing.get(merge_key) == item[merge_key]
            ),
            None,
        )
        if _directive(item) == "delete":
            if position is not None:
                del merged[position]
            continue
        if position is None:
            merged.append(strip_directives(item))
        else:
            merged[position] = _merge_map(merged[position], item)
    return merged


def _is_directive_item(item, directive):
    return isinstance(item, dict) and item.get(PATCH_DIRECTIVE) == directive and len(item) == 1


def strip_directives(value):
    """ Copy of ``value`` without any ``$patch`` markers.
    """
    if isinstance(value, dict):
        return {k: strip_directives(v) for k, v in value.items() if k != PATCH_DIRECTIVE}
    if isinstance(value, list):
        return [
            strip_directives(item)
            for item in value
            if not (isinstance(item, dict) and set(item) == {PATCH_DIRECTIVE})
        ]
    return copy.deepcopy(value)
