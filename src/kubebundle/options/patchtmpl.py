"""
The patch-template strategy: finds PatchTemplates in a component, renders
them with the options, and merges them into the objects they target.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from kubebundle.core.models import Component, ComponentReference, PatchTemplate
from kubebundle.filtering.filter import FilterOptions, partition_objects
from kubebundle.options.applier import MISSING_KEY_ERROR, Applier, JSONOptions, apply_common, check_missing_key
from kubebundle.options.templater import has_safe_yaml_annotation
from kubebundle.patching.renderer import ParsedPatch, apply_patches, render_all
from kubebundle.patching.scheme import PatcherScheme, default_patcher_scheme

logger = logging.getLogger("kubebundle.patchtmpl")


class PatchTemplateApplier(Applier):
    """
    tmpl_filter narrows which PatchTemplates are considered; its kinds are
    always replaced with PatchTemplate. With include_templates the applied
    PatchTemplates stay in the output, after the patched objects.
    """

    def __init__(self, scheme: Optional[PatcherScheme] = None, tmpl_filter: Optional[FilterOptions] = None,
                 include_templates: bool = False, missing_key: str = MISSING_KEY_ERROR):
        self.scheme = scheme or default_patcher_scheme()
        self.tmpl_filter = tmpl_filter
        self.include_templates = include_templates
        self.missing_key = check_missing_key(missing_key or MISSING_KEY_ERROR)

    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        comp = comp.deep_copy()
        patches, objs, pt_objs = self._make_patches(comp, opts or {})

        def patch_object(obj: Dict[str, Any], ref: ComponentReference, _: JSONOptions) -> List[Dict[str, Any]]:
            return [apply_patches(obj, patches, self.scheme)]

        new_objs = apply_common(comp.reference(), objs, opts or {}, patch_object)
        if self.include_templates:
            new_objs.extend(pt_objs)
        logger.debug(f"Applied {len(patches)} patch templates to {len(objs)} objects for {comp.reference()}")
        comp.objects = new_objs
        return comp

    def _make_patches(self, comp: Component, opts: JSONOptions) -> Tuple[List[ParsedPatch], List[Dict[str, Any]], List[Dict[str, Any]]]:
        tfil = self.tmpl_filter.copy() if self.tmpl_filter is not None else FilterOptions()
        tfil.kinds = ["PatchTemplate"]
        tfil.invert_match = False

        pt_objs, objs = partition_objects(comp.objects, tfil)
        templates = [PatchTemplate.from_dict(o) for o in pt_objs]
        patches = render_all(templates, opts, self.missing_key, has_safe_yaml_annotation(comp.metadata))
        return patches, objs, pt_objs
