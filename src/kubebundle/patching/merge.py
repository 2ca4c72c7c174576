"""
Merge-patch algorithms over plain JSON-like values.

json_merge_patch follows RFC 7386: null deletes, maps merge recursively,
everything else replaces.

strategic_merge_patch additionally consults a PatchMeta tree: keyed lists
merge element by element, primitive-union lists merge as sets, and the
$patch / $deleteFromPrimitiveList directives are honoured.
"""

import copy
from typing import Any, Dict, List

from kubebundle.core.errors import PatchError
from kubebundle.patching.scheme import PatchMeta

PATCH_DIRECTIVE = "$patch"
DELETE_FROM_PRIMITIVE_LIST = "$deleteFromPrimitiveList/"
SET_ELEMENT_ORDER = "$setElementOrder/"
RETAIN_KEYS = "$retainKeys"

_DELETE = object()


def json_merge_patch(target: Any, patch: Any) -> Any:
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = json_merge_patch(result.get(key), value)
    return result


def strategic_merge_patch(original: Dict[str, Any], patch: Dict[str, Any], meta: PatchMeta) -> Dict[str, Any]:
    if not isinstance(original, dict) or not isinstance(patch, dict):
        raise PatchError("strategic merge patch requires both the object and the patch to be maps")
    merged = _merge_map(copy.deepcopy(original), patch, meta)
    if merged is _DELETE:
        return {}
    return merged


def _merge_map(original: Dict[str, Any], patch: Dict[str, Any], meta: PatchMeta) -> Any:
    directive = patch.get(PATCH_DIRECTIVE)
    if directive is not None:
        if directive == "delete":
            return _DELETE
        if directive == "replace":
            return _strip_directives(patch)
        if directive != "merge":
            raise PatchError(f"unknown patch type: {directive!r} in map")

    for key, value in patch.items():
        if key == PATCH_DIRECTIVE or key == RETAIN_KEYS or key.startswith(SET_ELEMENT_ORDER):
            continue
        if key.startswith(DELETE_FROM_PRIMITIVE_LIST):
            field_name = key[len(DELETE_FROM_PRIMITIVE_LIST):]
            if not isinstance(value, list):
                raise PatchError(f"{key} must hold a list")
            current = original.get(field_name)
            if isinstance(current, list):
                original[field_name] = [v for v in current if v not in value]
            continue
        if value is None:
            original.pop(key, None)
            continue

        child = meta.child(key)
        current = original.get(key)
        if isinstance(value, dict):
            merged = _merge_map(current if isinstance(current, dict) else {}, value, child)
            if merged is _DELETE:
                original.pop(key, None)
            else:
                original[key] = merged
        elif isinstance(value, list):
            original[key] = _merge_list(current if isinstance(current, list) else [], value, child, key)
        else:
            original[key] = copy.deepcopy(value)
    return original


def _merge_list(original: List[Any], patch: List[Any], meta: PatchMeta, name: str) -> List[Any]:
    if meta.primitive_union:
        result = list(original)
        for item in patch:
            if item not in result:
                result.append(copy.deepcopy(item))
        return result

    if meta.merge_key is None:
        return _strip_directives(patch)

    key = meta.merge_key
    if any(isinstance(item, dict) and item.get(PATCH_DIRECTIVE) == "replace" for item in patch):
        return [_strip_directives(item) for item in patch
                if not (isinstance(item, dict) and item.get(PATCH_DIRECTIVE) == "replace")]

    result = list(original)
    for item in patch:
        if not isinstance(item, dict):
            raise PatchError(f"list {name!r} merges by key {key!r} but the patch holds a non-map element {item!r}")
        if key not in item:
            raise PatchError(f"map: {item!r} does not contain declared merge key: {key}")
        index = _find(result, key, item[key])
        if item.get(PATCH_DIRECTIVE) == "delete":
            if index is not None:
                del result[index]
            continue
        if index is None:
            result.append(_strip_directives(item))
        else:
            merged = _merge_map(result[index], item, meta)
            if merged is _DELETE:
                del result[index]
            else:
                result[index] = merged
    return result


def _find(items: List[Any], key: str, value: Any):
    for i, item in enumerate(items):
        if isinstance(item, dict) and item.get(key) == value:
            return i
    return None


def _strip_directives(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip_directives(v) for k, v in value.items()
                if k != PATCH_DIRECTIVE and k != RETAIN_KEYS
                and not k.startswith(SET_ELEMENT_ORDER) and not k.startswith(DELETE_FROM_PRIMITIVE_LIST)}
    if isinstance(value, list):
        return [_strip_directives(v) for v in value]
    return copy.deepcopy(value)
