#!/usr/bin/env python3
"""
KUBEBUNDLE PATCH RENDERER - The Tailor
--------------------------------------
Renders PatchTemplates into concrete patches and folds them into target
objects.

A patch applies to an object only when every one of apiVersion, kind and
metadata.name that the rendered patch spells out equals the object's value;
fields the patch leaves empty are wildcards. The PatchTemplate's selector
narrows the candidates further.

Patches matching the same object apply one after another in document
order, each against the output of the previous one.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from kubebundle.core import codec
from kubebundle.core.errors import PatchError, SchemaValidationError, StructuralError, TemplateError
from kubebundle.core.models import (
    PATCH_TYPE_AUTO, PATCH_TYPE_JSON_MERGE, PATCH_TYPES, PatchTemplate,
    object_api_version, object_kind, object_name,
)
from kubebundle.filtering.filter import FilterOptions, matches_object
from kubebundle.options.applier import MISSING_KEY_ERROR, JSONOptions
from kubebundle.options.openapi import apply_defaults
from kubebundle.options.templater import Templater
from kubebundle.patching.merge import json_merge_patch, strategic_merge_patch
from kubebundle.patching.scheme import PatcherScheme

logger = logging.getLogger("kubebundle.patch")


@dataclass
class ParsedPatch:
    """A PatchTemplate after options were applied."""
    template: PatchTemplate
    obj: Dict[str, Any]
    raw: str

    def __str__(self) -> str:
        return self.raw

    @property
    def selector(self) -> Optional[FilterOptions]:
        return FilterOptions.from_selector(self.template.selector)


def check_patch_type(patch_type: str, name: str = "") -> str:
    if patch_type not in PATCH_TYPES:
        where = f" in patch template {name!r}" if name else ""
        raise PatchError(
            f"unsupported patch type {patch_type!r}{where}; expected one of "
            f"{', '.join(repr(p) for p in PATCH_TYPES)}")
    return patch_type


def render_patch_template(pto: PatchTemplate, opts: Optional[JSONOptions], index: int = 0,
                          missing_key: str = MISSING_KEY_ERROR, safe_yaml: bool = False) -> ParsedPatch:
    """
    Applies options to one PatchTemplate. Schema defaults from the template's
    optionsSchema sit beneath the caller's options. An empty rendering is the
    no-op patch {}.
    """
    label = pto.name or f"patch-tmpl-{index}"
    check_patch_type(pto.patch_type, label)

    new_opts = opts or {}
    if pto.options_schema is not None:
        try:
            new_opts = apply_defaults(new_opts, pto.options_schema)
        except SchemaValidationError as e:
            raise SchemaValidationError(f"applying schema defaults for patch template {label!r}", e.details) from e

    templater = Templater(f"patch-{label}", pto.template, safe_yaml=safe_yaml, missing_key=missing_key)
    try:
        rendered = templater.execute(new_opts)
    except TemplateError as e:
        raise TemplateError(f"while applying options to patch template {label!r}: {e}", templater.name) from e

    try:
        obj = codec.load_yaml(rendered)
    except StructuralError as e:
        raise PatchError(f"while converting patch template {label!r}: {e}") from e
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise PatchError(f"patch template {label!r} rendered a {type(obj).__name__}, not a map")
    return ParsedPatch(template=pto, obj=obj, raw=codec.to_json(obj))


def can_apply_patch(pat: ParsedPatch, obj: Dict[str, Any]) -> bool:
    if object_api_version(pat.obj) and object_api_version(pat.obj) != object_api_version(obj):
        return False
    if object_kind(pat.obj) and object_kind(pat.obj) != object_kind(obj):
        return False
    if object_name(pat.obj) and object_name(pat.obj) != object_name(obj):
        return False
    return True


def patch_targets(pat: ParsedPatch, obj: Dict[str, Any]) -> bool:
    """Whether pat's selector and its identity fields both admit obj."""
    return matches_object(obj, pat.selector) and can_apply_patch(pat, obj)


def apply_patch(obj: Dict[str, Any], pat: ParsedPatch, scheme: PatcherScheme) -> Dict[str, Any]:
    """Merges one patch into obj, returning the new object."""
    patch_type = pat.template.patch_type
    meta = scheme.decode(obj)
    try:
        if patch_type == PATCH_TYPE_JSON_MERGE or (patch_type == PATCH_TYPE_AUTO and meta is None):
            return json_merge_patch(obj, pat.obj)
        if meta is None:
            raise PatchError(
                f"strategic merge requires a registered type but {object_api_version(obj)}, "
                f"Kind={object_kind(obj)} is not registered")
        return strategic_merge_patch(obj, pat.obj, meta)
    except PatchError as e:
        raise PatchError(f"while applying patch\n{pat.raw}\nto\n{codec.to_json(obj)}: {e}") from e


def apply_patches(obj: Dict[str, Any], patches: Sequence[ParsedPatch], scheme: PatcherScheme) -> Dict[str, Any]:
    """Folds every applicable patch into obj in order."""
    for pat in patches:
        if not patch_targets(pat, obj):
            continue
        obj = apply_patch(obj, pat, scheme)
        logger.debug(f"Applied patch {pat.template.name or '<unnamed>'} to "
                     f"{object_kind(obj)}/{object_name(obj)}")
    return obj


def render_all(templates: Sequence[PatchTemplate], opts: Optional[JSONOptions],
               missing_key: str = MISSING_KEY_ERROR, safe_yaml: bool = False) -> List[ParsedPatch]:
    return [render_patch_template(pto, opts, j, missing_key, safe_yaml) for j, pto in enumerate(templates)]
