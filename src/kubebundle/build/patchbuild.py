"""
Build-time compilation of PatchTemplateBuilders into PatchTemplates.

Build options resolve part of a builder's template now. Every property of
the builder's target schema is defaulted to a placeholder for itself, so
the parts meant for apply time survive the build render untouched:

    targetSchema: {properties: {PodName: {type: string}}}
    template:     "metadata:\n  name: {{.PodName}}"

renders back to the same text, ready for the patch-template applier.
"""

import copy
import logging
from typing import Any, Dict, Optional

from kubebundle.core.errors import SchemaValidationError, StructuralError, TemplateError
from kubebundle.core.models import Component, PatchTemplate, PatchTemplateBuilder
from kubebundle.core.wrapper import BundleWrapper
from kubebundle.filtering.filter import FilterOptions, partition_objects
from kubebundle.options.applier import MISSING_KEY_ERROR, JSONOptions
from kubebundle.options.openapi import apply_defaults
from kubebundle.options.templater import Templater

logger = logging.getLogger("kubebundle.patchbuild")


def add_param_defaults(prefix: str, props: Dict[str, Any], op: Dict[str, Any]) -> None:
    """
    Points each target-schema property at a placeholder for its own dotted
    path, recursing into properties that have nested properties.
    """
    for key, val in props.items():
        tmpl_key = f"{prefix}.{key}"
        nested = val.get("properties") if isinstance(val, dict) else None
        if nested:
            current = op.get(key)
            if current is None:
                current = {}
                op[key] = current
            elif not isinstance(current, dict):
                raise SchemaValidationError(
                    f"option value with key {tmpl_key!r} was expected to be an object-type, but was {current!r}")
            add_param_defaults(tmpl_key, nested, current)
        else:
            op[key] = "{{" + tmpl_key + "}}"


def patch_template(ptb: PatchTemplateBuilder, opts: Optional[JSONOptions]) -> PatchTemplate:
    """Renders one PatchTemplate from a PatchTemplateBuilder and build options."""
    name = ptb.name
    if not ptb.template:
        raise TemplateError(
            f"cannot build PatchTemplate from PatchTemplateBuilder {name!r}: it has an empty template", name)

    templater = Templater(f"ptb-{name}", ptb.template, missing_key=MISSING_KEY_ERROR)

    build_opts = copy.deepcopy(opts) if opts else {}
    if ptb.build_schema is not None:
        build_opts = apply_defaults(build_opts, ptb.build_schema)

    if ptb.target_schema and ptb.target_schema.get("properties"):
        add_param_defaults("", ptb.target_schema["properties"], build_opts)

    try:
        rendered = templater.execute(build_opts)
    except TemplateError as e:
        raise TemplateError(
            f"cannot build PatchTemplate from PatchTemplateBuilder {name!r}: error executing template: {e}",
            templater.name) from e

    return PatchTemplate(
        template=rendered,
        selector=copy.deepcopy(ptb.selector),
        options_schema=copy.deepcopy(ptb.target_schema),
        patch_type=ptb.patch_type,
        metadata=copy.deepcopy(ptb.metadata),
    )


def component_patch_templates(comp: Component, fopts: Optional[FilterOptions],
                              opts: Optional[JSONOptions]) -> Component:
    """
    Replaces the PatchTemplateBuilders of a component (optionally narrowed
    by fopts) with compiled PatchTemplates, appended after the other objects.
    """
    comp = comp.deep_copy()
    ptb_filter = fopts.copy() if fopts is not None else FilterOptions()
    ptb_filter.kinds = ["PatchTemplateBuilder"]
    ptb_filter.invert_match = False

    ptbs, objs = partition_objects(comp.objects, ptb_filter)
    for obj in ptbs:
        pt = patch_template(PatchTemplateBuilder.from_dict(obj), opts)
        objs.append(pt.to_dict())
    logger.debug(f"Compiled {len(ptbs)} patch template builders for {comp.reference()}")
    comp.objects = objs
    return comp


def all_patch_templates(bw: BundleWrapper, fopts: Optional[FilterOptions],
                        opts: Optional[JSONOptions]) -> BundleWrapper:
    """Compiles PatchTemplateBuilders for a Component or every Component of a Bundle."""
    if bw.kind == "Component":
        return BundleWrapper.from_component(component_patch_templates(bw.component, fopts, opts))
    if bw.kind == "Bundle":
        bun = bw.bundle.deep_copy()
        bun.components = [component_patch_templates(c, fopts, opts) for c in bun.components]
        return BundleWrapper.from_bundle(bun)
    raise StructuralError(f"bundle kind {bw.kind!r} not supported for patching")
