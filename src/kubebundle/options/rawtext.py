"""
The raw-text strategy: renders ConfigMaps produced from rawTextFiles groups.
Each data entry of such a ConfigMap is a go-template for exactly one object.
The rendered objects replace the ConfigMap in the Component.
"""

import logging
from typing import Any, Dict, List, Optional

from kubebundle.core import codec
from kubebundle.core.errors import StructuralError, TemplateError
from kubebundle.core.models import INLINE_TYPE_ANNOTATION, RAW_STRING_INLINE, Component, object_name
from kubebundle.filtering.filter import FilterOptions, partition_objects
from kubebundle.options.applier import MISSING_KEY_ERROR, Applier, JSONOptions, check_missing_key
from kubebundle.options.templater import Templater, has_safe_yaml_annotation

logger = logging.getLogger("kubebundle.rawtext")

RAW_TEXT_FILTER = FilterOptions(kinds=["ConfigMap"], annotations={INLINE_TYPE_ANNOTATION: RAW_STRING_INLINE})


class RawTextApplier(Applier):
    """Consumes raw-string ConfigMaps rather than ObjectTemplates, so it claims no template type."""

    template_types = ()

    def __init__(self, missing_key: str = MISSING_KEY_ERROR):
        self.missing_key = check_missing_key(missing_key)

    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        comp = comp.deep_copy()
        ref = comp.reference()
        cfg_maps, others = partition_objects(comp.objects, RAW_TEXT_FILTER)
        safe_yaml = has_safe_yaml_annotation(comp.metadata)

        new_objs: List[Dict[str, Any]] = []
        for cfg in cfg_maps:
            name = object_name(cfg)
            data = cfg.get("data") or {}
            if not isinstance(data, dict):
                raise StructuralError(f"data of config map {name!r} in component {ref} must be a mapping")
            where = f"error rendering object with name {name!r} in component {ref.component_name!r}"
            for key in sorted(data):
                try:
                    new_objs.append(self._render(name, key, data[key], opts or {}, safe_yaml))
                except TemplateError as e:
                    raise TemplateError(f"{where}: {e}", e.template_name) from e
                except StructuralError as e:
                    raise StructuralError(f"{where}: {e}") from e

        logger.debug(f"Rendered {len(new_objs)} raw-text objects from {len(cfg_maps)} config maps for {ref}")
        comp.objects = others + new_objs
        return comp

    def _render(self, cfg_name: str, key: str, text: Any, opts: JSONOptions, safe_yaml: bool) -> Dict[str, Any]:
        templater = Templater(f"{cfg_name}-{key}", str(text), safe_yaml=safe_yaml, missing_key=self.missing_key)
        try:
            out = templater.execute(opts)
        except TemplateError as e:
            raise TemplateError(f"error executing template for config map {cfg_name!r}, data key {key!r}: {e}",
                                templater.name) from e
        try:
            return codec.load_object(out)
        except StructuralError as e:
            raise StructuralError(f"config map {cfg_name!r}, data key {key!r} did not render an object: {e}") from e
