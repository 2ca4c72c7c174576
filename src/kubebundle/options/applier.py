#!/usr/bin/env python3
"""
KUBEBUNDLE OPTIONS - The Applier Contract
-----------------------------------------
Every options strategy takes a Component plus caller options and returns a
new Component. Strategies never mutate the Component they are given.
"""

import copy
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from kubebundle.core.models import (
    TEMPLATE_TYPE_GO, Component, ComponentReference, object_kind,
)

JSONOptions = Dict[str, Any]

# Behaviour when a template references an option that was not supplied.
MISSING_KEY_ERROR = "error"
MISSING_KEY_DEFAULT = "default"
MISSING_KEY_INVALID = "invalid"
MISSING_KEY_ZERO = "zero"
MISSING_KEY_POLICIES = (MISSING_KEY_ERROR, MISSING_KEY_DEFAULT, MISSING_KEY_INVALID, MISSING_KEY_ZERO)

ObjHandler = Callable[[Dict[str, Any], ComponentReference, JSONOptions], List[Dict[str, Any]]]


def check_missing_key(policy: str) -> str:
    if policy not in MISSING_KEY_POLICIES:
        raise ValueError(f"unknown missing-key policy {policy!r}; expected one of {', '.join(MISSING_KEY_POLICIES)}")
    return policy


class Applier(ABC):
    """An options strategy. template_types names the ObjectTemplate types it consumes."""

    template_types: Tuple[str, ...] = ()

    @abstractmethod
    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        ...


def template_type(obj: Dict[str, Any]) -> str:
    """The strategy tag of an ObjectTemplate; an untyped template is a go-template."""
    return obj.get("type") or TEMPLATE_TYPE_GO


def partition_object_templates(objs: Sequence[Dict[str, Any]],
                               tmpl_type: str) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Splits deep copies of objs into ObjectTemplates of tmpl_type and everything else."""
    matched, not_matched = [], []
    for obj in objs:
        obj = copy.deepcopy(obj)
        if object_kind(obj) == "ObjectTemplate" and template_type(obj) == tmpl_type:
            matched.append(obj)
        else:
            not_matched.append(obj)
    return matched, not_matched


def apply_common(ref: ComponentReference, objs: Sequence[Dict[str, Any]],
                 opts: JSONOptions, obj_fn: ObjHandler) -> List[Dict[str, Any]]:
    """Runs obj_fn over each object, concatenating what it produces. Stops at the first error."""
    new_objs: List[Dict[str, Any]] = []
    for obj in objs:
        new_objs.extend(obj_fn(obj, ref, opts))
    return new_objs
