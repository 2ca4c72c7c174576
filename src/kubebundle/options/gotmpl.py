"""
The go-template strategy: renders ObjectTemplates of type "go-template"
into objects. Rendered output is YAML, one document or a '---' stream; the
ObjectTemplate itself is dropped from the result.
"""

import logging
from typing import Any, Dict, List, Optional

from kubebundle.core import codec
from kubebundle.core.errors import SchemaValidationError, StructuralError, TemplateError
from kubebundle.core.models import TEMPLATE_TYPE_GO, Component, ComponentReference, ObjectTemplate, object_name
from kubebundle.options.applier import (
    MISSING_KEY_ERROR, Applier, JSONOptions, apply_common, check_missing_key, partition_object_templates,
)
from kubebundle.options.openapi import apply_defaults
from kubebundle.options.templater import Templater, has_safe_yaml_annotation

logger = logging.getLogger("kubebundle.gotmpl")


class GoTemplateApplier(Applier):
    template_types = (TEMPLATE_TYPE_GO,)

    def __init__(self, missing_key: str = MISSING_KEY_ERROR):
        self.missing_key = check_missing_key(missing_key)

    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        comp = comp.deep_copy()
        matched, not_matched = partition_object_templates(comp.objects, TEMPLATE_TYPE_GO)
        safe_yaml = has_safe_yaml_annotation(comp.metadata)

        def render(obj: Dict[str, Any], ref: ComponentReference, o: JSONOptions) -> List[Dict[str, Any]]:
            return self._render(obj, ref, o, safe_yaml)

        new_objs = apply_common(comp.reference(), matched, opts or {}, render)
        logger.debug(f"Rendered {len(matched)} go-templates into {len(new_objs)} objects for {comp.reference()}")
        comp.objects = not_matched + new_objs
        return comp

    def _render(self, obj: Dict[str, Any], ref: ComponentReference, opts: JSONOptions,
                safe_yaml: bool) -> List[Dict[str, Any]]:
        name = object_name(obj)
        obj_tmpl = ObjectTemplate.from_dict(obj)
        if obj_tmpl.options_schema is not None:
            try:
                opts = apply_defaults(opts, obj_tmpl.options_schema)
            except SchemaValidationError as e:
                raise SchemaValidationError(
                    f"applying schema defaults for object template named {name!r}", e.details) from e

        tmpl_name = f"{ref.component_name}-{name}"
        templater = Templater(tmpl_name, obj_tmpl.template, safe_yaml=safe_yaml, missing_key=self.missing_key)
        try:
            text = templater.execute(opts)
        except TemplateError as e:
            raise TemplateError(f"error executing template for object {name!r}: {e}", templater.name) from e

        out = []
        for i, doc in enumerate(codec.split_documents(text)):
            try:
                out.append(codec.load_object(doc))
            except StructuralError as e:
                raise StructuralError(
                    f"rendered document number {i} of object template {name!r} is not an object: {e}") from e
        return out
