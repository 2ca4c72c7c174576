#!/usr/bin/env python3
"""
KUBEBUNDLE FILTER - The Sorting Hat
-----------------------------------
Predicate-based selection over objects and components. Matching is an AND
of ORs:

    (kind1 OR kind2) AND (name1 OR name2) AND (ns1) AND ...

Empty dimensions are vacuously true. A kind containing a comma is treated
as qualified ("apps/v1,Deployment") and compared against "apiVersion,kind".

Partitioning always splits on the positive criteria; InvertMatch is only
honored by the select/filter views and by the single-item predicates.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kubebundle.core.models import (
    Component, ObjectSelector, object_annotations, object_api_version,
    object_kind, object_labels, object_name, object_namespace,
)


@dataclass
class FilterOptions:
    """Match criteria. A None FilterOptions matches everything."""
    kinds: List[str] = field(default_factory=list)
    names: List[str] = field(default_factory=list)
    namespaces: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    invert_match: bool = False

    @classmethod
    def from_selector(cls, sel: Optional[ObjectSelector]) -> Optional["FilterOptions"]:
        if sel is None:
            return None
        return cls(
            kinds=list(sel.kinds),
            names=list(sel.names),
            namespaces=list(sel.namespaces),
            annotations=dict(sel.annotations),
            labels=dict(sel.labels),
            invert_match=bool(sel.invert_match),
        )

    def copy(self) -> "FilterOptions":
        return copy.deepcopy(self)


@dataclass
class _Projection:
    api_version: str
    kind: str
    name: str
    namespace: str
    annotations: Dict[str, str]
    labels: Dict[str, str]


def _project_object(obj: Dict[str, Any]) -> _Projection:
    return _Projection(
        api_version=object_api_version(obj),
        kind=object_kind(obj),
        name=object_name(obj),
        namespace=object_namespace(obj),
        annotations=object_annotations(obj),
        labels=object_labels(obj),
    )


def _project_component(comp: Component) -> _Projection:
    meta = comp.metadata or {}
    return _Projection(
        api_version=comp.api_version,
        kind=comp.kind,
        name=comp.component_name,
        namespace=meta.get("namespace") or "",
        annotations=meta.get("annotations") or {},
        labels=meta.get("labels") or {},
    )


def _matches_kind(d: _Projection, wanted: str) -> bool:
    if "," in wanted:
        return wanted == f"{d.api_version},{d.kind}"
    return wanted == d.kind


def _matches_pairs(actual: Dict[str, str], wanted: Dict[str, str]) -> bool:
    for key, value in wanted.items():
        if key in actual and (value == "" or actual[key] == value):
            return True
    return False


def _positive_match(d: _Projection, o: FilterOptions) -> bool:
    if o.kinds and not any(_matches_kind(d, k) for k in o.kinds):
        return False
    if o.namespaces and d.namespace not in o.namespaces:
        return False
    if o.names and d.name not in o.names:
        return False
    if o.annotations and not _matches_pairs(d.annotations, o.annotations):
        return False
    if o.labels and not _matches_pairs(d.labels, o.labels):
        return False
    return True


def matches_object(obj: Dict[str, Any], o: Optional[FilterOptions]) -> bool:
    """Whether an object matches, honoring invert_match."""
    if o is None:
        return True
    result = _positive_match(_project_object(obj), o)
    return not result if o.invert_match else result


def matches_component(comp: Component, o: Optional[FilterOptions]) -> bool:
    """Whether a component matches on its own metadata, honoring invert_match."""
    if o is None:
        return True
    result = _positive_match(_project_component(comp), o)
    return not result if o.invert_match else result


def partition_objects(objs: Sequence[Dict[str, Any]],
                      o: Optional[FilterOptions]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Splits deep copies of objs into (matched, not_matched). Every input lands
    in exactly one side and the input sequence is never modified.
    """
    data = [copy.deepcopy(obj) for obj in objs]
    if o is None:
        return data, []
    matched, not_matched = [], []
    for obj in data:
        if _positive_match(_project_object(obj), o):
            matched.append(obj)
        else:
            not_matched.append(obj)
    return matched, not_matched


def partition_components(comps: Sequence[Component],
                         o: Optional[FilterOptions]) -> Tuple[List[Component], List[Component]]:
    """Splits deep copies of comps into (matched, not_matched) on component metadata."""
    data = [c.deep_copy() for c in comps]
    if o is None:
        return data, []
    matched, not_matched = [], []
    for comp in data:
        if _positive_match(_project_component(comp), o):
            matched.append(comp)
        else:
            not_matched.append(comp)
    return matched, not_matched


def select_objects(objs: Sequence[Dict[str, Any]], o: Optional[FilterOptions]) -> List[Dict[str, Any]]:
    matched, not_matched = partition_objects(objs, o)
    if o is not None and o.invert_match:
        return not_matched
    return matched


def filter_objects(objs: Sequence[Dict[str, Any]], o: Optional[FilterOptions]) -> List[Dict[str, Any]]:
    """Removes matching objects; the opposite of select_objects."""
    matched, not_matched = partition_objects(objs, o)
    if o is not None and o.invert_match:
        return matched
    return not_matched


def select_components(comps: Sequence[Component], o: Optional[FilterOptions]) -> List[Component]:
    matched, not_matched = partition_components(comps, o)
    if o is not None and o.invert_match:
        return not_matched
    return matched


def filter_components(comps: Sequence[Component], o: Optional[FilterOptions]) -> List[Component]:
    matched, not_matched = partition_components(comps, o)
    if o is not None and o.invert_match:
        return matched
    return not_matched
