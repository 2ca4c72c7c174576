"""
The jsonnet strategy: evaluates ObjectTemplates of type "jsonnet" with the
options passed as the top-level argument "opts". A template evaluates to a
single object or to an array of objects.

    function(opts) {
      apiVersion: 'v1',
      kind: 'ConfigMap',
      metadata: { name: opts.name },
    }
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kubebundle.core.errors import InlineIOError, SchemaValidationError, StructuralError, TemplateError
from kubebundle.core.models import (
    INLINE_PATH_ANNOTATION, TEMPLATE_TYPE_JSONNET, Component, ComponentReference, ObjectTemplate, object_name,
)
from kubebundle.options.applier import Applier, JSONOptions, apply_common, partition_object_templates
from kubebundle.options.openapi import apply_defaults

logger = logging.getLogger("kubebundle.jsonnet")


class Importer(ABC):
    """Resolves jsonnet import statements."""

    @abstractmethod
    def import_file(self, imported_from: str, import_path: str) -> Tuple[str, bytes]:
        """Returns the resolved path and the file contents."""


class DisabledImporter(Importer):

    def import_file(self, imported_from: str, import_path: str) -> Tuple[str, bytes]:
        raise InlineIOError("jsonnet imports are disabled", path=import_path)


class DirectoryImporter(Importer):
    """Looks next to the importing file first, then in each search path in order."""

    def __init__(self, search_paths: Sequence[str] = ()):
        self.search_paths = list(search_paths)

    def import_file(self, imported_from: str, import_path: str) -> Tuple[str, bytes]:
        candidates = [os.path.join(imported_from, import_path)]
        candidates.extend(os.path.join(p, import_path) for p in self.search_paths)
        for candidate in candidates:
            if os.path.isfile(candidate):
                with open(candidate, "rb") as f:
                    return candidate, f.read()
        raise InlineIOError(f"couldn't open import {import_path!r}: no match locally or in search paths",
                            path=import_path)


class JsonnetApplier(Applier):
    template_types = (TEMPLATE_TYPE_JSONNET,)

    def __init__(self, importer: Optional[Importer] = None):
        self.importer = importer or DisabledImporter()

    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        comp = comp.deep_copy()
        matched, not_matched = partition_object_templates(comp.objects, TEMPLATE_TYPE_JSONNET)
        new_objs = apply_common(comp.reference(), matched, opts or {}, self._render)
        logger.debug(f"Evaluated {len(matched)} jsonnet templates into {len(new_objs)} objects for {comp.reference()}")
        comp.objects = not_matched + new_objs
        return comp

    def _render(self, obj: Dict[str, Any], ref: ComponentReference, opts: JSONOptions) -> List[Dict[str, Any]]:
        name = object_name(obj)
        obj_tmpl = ObjectTemplate.from_dict(obj)
        if obj_tmpl.options_schema is not None:
            try:
                opts = apply_defaults(opts, obj_tmpl.options_schema)
            except SchemaValidationError as e:
                raise SchemaValidationError(
                    f"applying schema defaults for object template named {name!r}", e.details) from e

        snippet_path = (obj_tmpl.metadata.get("annotations") or {}).get(INLINE_PATH_ANNOTATION) \
            or f"{ref.component_name}.jsonnet"
        output = self._evaluate(snippet_path, obj_tmpl.template, opts, name)

        try:
            result = json.loads(output)
        except json.JSONDecodeError as e:
            raise StructuralError(f"jsonnet template {name!r} did not produce JSON: {e}") from e
        docs = result if isinstance(result, list) else [result]
        for i, doc in enumerate(docs):
            if not isinstance(doc, dict):
                raise StructuralError(
                    f"jsonnet template {name!r} produced a non-object value at position {i}")
        return docs

    def _evaluate(self, snippet_path: str, template: str, opts: JSONOptions, name: str) -> str:
        import _jsonnet

        def import_callback(imported_from: str, import_path: str) -> Tuple[str, bytes]:
            return self.importer.import_file(imported_from, import_path)

        try:
            return _jsonnet.evaluate_snippet(
                snippet_path, template,
                tla_codes={"opts": json.dumps(opts)},
                import_callback=import_callback,
            )
        except RuntimeError as e:
            raise TemplateError(f"error evaluating jsonnet template for object {name!r}: {e}", name) from e
