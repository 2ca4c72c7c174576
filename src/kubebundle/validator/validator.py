#!/usr/bin/env python3
"""
KUBEBUNDLE VALIDATOR - The Judge
--------------------------------
The final gate before a bundle is written out. Validators never raise on a
bad document: every problem found is collected so a single run reports all
of them at once.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from kubebundle.core.errors import StructuralError
from kubebundle.core.models import Bundle, Component, ComponentReference, ComponentSet, object_kind, object_ref
from kubebundle.options.openapi import schema_errors
from kubebundle.validator.names import validate_name

logger = logging.getLogger("kubebundle.validator")

API_VERSION_PATTERN = re.compile(r"^bundle\.gke\.io/\w+$")

_NUMBER = r"([1-9]\d*|0)"
VERSION_PATTERN = re.compile(rf"^{_NUMBER}\.{_NUMBER}\.{_NUMBER}$")

# Template kinds and the keys under which they carry JSON schemas.
SCHEMA_FIELDS = {
    "ObjectTemplate": ("optionsSchema",),
    "ObjectTemplateBuilder": ("optionsSchema",),
    "PatchTemplate": ("optionsSchema",),
    "PatchTemplateBuilder": ("buildSchema", "targetSchema"),
}


def _name_error(name: str) -> Optional[str]:
    try:
        validate_name(name)
    except StructuralError as e:
        return str(e)
    return None


class ComponentValidator:
    """
    Checks a list of Components, and optionally the ComponentSet that
    references them, for naming, versioning and uniqueness problems.
    """

    def __init__(self, components: List[Component], component_set: Optional[ComponentSet] = None):
        self.components = components
        self.component_set = component_set

    def validate(self) -> List[str]:
        errs: List[str] = []
        errs.extend(self._validate_component_set())
        errs.extend(self._validate_components())
        errs.extend(self._validate_objects())
        logger.debug(f"Validated {len(self.components)} components: {len(errs)} problems")
        return errs

    def _validate_components(self) -> List[str]:
        errs: List[str] = []
        seen: Set[ComponentReference] = set()
        for comp in self.components:
            n = comp.component_name
            problem = _name_error(n)
            if problem:
                errs.append(f"the component name {n!r} was invalid: {problem}")

            if not API_VERSION_PATTERN.match(comp.api_version):
                errs.append(
                    f"component apiVersion must be of the form \"bundle.gke.io/<version>\". "
                    f"was {comp.api_version!r} for component {n!r}")

            if comp.kind != "Component":
                errs.append(f"component kind must be \"Component\". was {comp.kind!r} for component {n!r}")

            if not comp.version:
                errs.append(f"component spec version missing for component {n!r}")
            elif not VERSION_PATTERN.match(comp.version):
                errs.append(
                    f"component spec version is invalid. was {comp.version!r} for component {n!r} "
                    f"but must be of the form X.Y.Z")

            ref = comp.reference()
            if ref in seen:
                errs.append(f"duplicate component key {ref}")
                continue
            seen.add(ref)
        return errs

    def _validate_component_set(self) -> List[str]:
        cset = self.component_set
        if cset is None:
            return []
        errs: List[str] = []
        problem = _name_error(cset.set_name)
        if problem:
            errs.append(f"the component set name {cset.set_name!r} was invalid: {problem}")

        if not API_VERSION_PATTERN.match(cset.api_version):
            errs.append(
                f"component set apiVersion must be of the form \"bundle.gke.io/<version>\". "
                f"was {cset.api_version!r}")

        if cset.kind != "ComponentSet":
            errs.append(f"component set kind must be \"ComponentSet\". was {cset.kind!r}")

        if not cset.version:
            errs.append("component set spec version missing")
        elif not VERSION_PATTERN.match(cset.version):
            errs.append(f"component set spec version is invalid. was {cset.version!r} but must be of the form X.Y.Z")

        known = {c.reference() for c in self.components}
        for ref in cset.components:
            if ref not in known:
                errs.append(f"could not find component reference {ref} for any of the components")
        return errs

    def _validate_objects(self) -> List[str]:
        errs: List[str] = []
        for comp in self.components:
            comp_name = comp.component_name
            seen: Set[Tuple[str, str, str, str]] = set()
            for i, obj in enumerate(comp.objects):
                api, kind, _, name = object_ref(obj)
                if not name:
                    errs.append(
                        f"objects must always have a metadata.name. was empty for object {i} "
                        f"in component {comp_name!r}")
                    continue
                problem = _name_error(name)
                if problem:
                    errs.append(f"invalid name {name!r} for object {i} in component {comp_name!r}: {problem}")
                if not kind:
                    errs.append(f"objects must always have a kind. was empty for object {name!r} "
                                f"in component {comp_name!r}")
                    continue
                if not api:
                    errs.append(f"objects must always have an apiVersion. was empty for object {name!r} "
                                f"in component {comp_name!r}")
                    continue

                ref = object_ref(obj)
                if ref in seen:
                    errs.append(f"duplicate object found with object reference {'/'.join(ref)} "
                                f"for component {comp_name!r}")
                seen.add(ref)
                errs.extend(_schema_problems(obj, comp_name))
        return errs


def _schema_problems(obj: Dict[str, Any], comp_name: str) -> List[str]:
    errs = []
    for key in SCHEMA_FIELDS.get(object_kind(obj), ()):
        schema: Any = obj.get(key)
        if schema is None:
            continue
        for problem in schema_errors(schema):
            errs.append(f"invalid {key} for {object_kind(obj)} {obj.get('metadata', {}).get('name', '')!r} "
                        f"in component {comp_name!r}: {problem}")
    return errs


class BundleValidator:
    """Validates a Bundle: its own set name and version, then its components."""

    def __init__(self, bundle: Bundle):
        self.bundle = bundle

    def validate(self) -> List[str]:
        errs: List[str] = []
        b = self.bundle
        if not API_VERSION_PATTERN.match(b.api_version):
            errs.append(f"bundle apiVersion must have form \"bundle.gke.io/<version>\". was {b.api_version!r}")
        if b.kind != "Bundle":
            errs.append(f"bundle kind must be \"Bundle\". was {b.kind!r}")
        if b.version and not VERSION_PATTERN.match(b.version):
            errs.append(f"bundle version string is not a X.Y.Z version string, was {b.version!r}")

        # The derived ComponentSet carries set name, version and references.
        cset = b.component_set() if b.set_name or b.version else None
        errs.extend(ComponentValidator(b.components, cset).validate())
        return errs
