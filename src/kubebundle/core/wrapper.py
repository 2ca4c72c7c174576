#!/usr/bin/env python3
"""
KUBEBUNDLE WRAPPER
------------------
BundleWrapper holds exactly one of the four top-level bundle documents
(Bundle, BundleBuilder, Component, ComponentBuilder) so commands can accept
any of them and dispatch on kind.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from kubebundle.core import codec
from kubebundle.core.errors import StructuralError, UnsupportedKindError
from kubebundle.core.models import Bundle, BundleBuilder, Component, ComponentBuilder, object_kind
from kubebundle.options.multi import default_applier

TOP_LEVEL_KINDS = ["Bundle", "BundleBuilder", "Component", "ComponentBuilder"]

WrappedObject = Union[Bundle, BundleBuilder, Component, ComponentBuilder]


@dataclass
class BundleWrapper:
    obj: WrappedObject
    kind: str

    @classmethod
    def from_raw(cls, text: str, name: str = "") -> "BundleWrapper":
        """Decodes YAML or JSON (picked from name's extension) into a wrapper."""
        if not text or not text.strip():
            raise StructuralError("content was empty")
        return cls.from_dict(codec.load_object(text, name))

    @classmethod
    def from_dict(cls, doc: Dict[str, Any]) -> "BundleWrapper":
        kind = object_kind(doc)
        if kind == "Bundle":
            return cls(Bundle.from_dict(doc), kind)
        if kind == "BundleBuilder":
            return cls(BundleBuilder.from_dict(doc), kind)
        if kind == "Component":
            return cls(Component.from_dict(doc), kind)
        if kind == "ComponentBuilder":
            return cls(ComponentBuilder.from_dict(doc), kind)
        raise UnsupportedKindError(kind, TOP_LEVEL_KINDS, "bundle document")

    @classmethod
    def from_bundle(cls, b: Bundle) -> "BundleWrapper":
        return cls(b, "Bundle")

    @classmethod
    def from_component(cls, c: Component) -> "BundleWrapper":
        return cls(c, "Component")

    @property
    def bundle(self) -> Optional[Bundle]:
        return self.obj if self.kind == "Bundle" else None

    @property
    def component(self) -> Optional[Component]:
        return self.obj if self.kind == "Component" else None

    @property
    def bundle_builder(self) -> Optional[BundleBuilder]:
        return self.obj if self.kind == "BundleBuilder" else None

    @property
    def component_builder(self) -> Optional[ComponentBuilder]:
        return self.obj if self.kind == "ComponentBuilder" else None

    def all_components(self) -> List[Component]:
        if self.bundle is not None:
            return self.bundle.components
        if self.component is not None:
            return [self.component]
        return []

    def to_dict(self) -> Dict[str, Any]:
        return self.obj.to_dict()

    def export_as_objects(self, opts: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        A Component exports its objects, with options applied through the
        default multi-applier when opts are given. A Bundle exports its
        ComponentSet followed by its Components.
        """
        if self.kind == "Component":
            comp = self.component
            if opts is not None:
                comp = default_applier().apply_options(comp, opts)
            return copy.deepcopy(comp.objects)
        if self.kind == "Bundle":
            objs = [self.bundle.component_set().to_dict()]
            objs.extend(c.to_dict() for c in self.bundle.components)
            return objs
        raise StructuralError(f"bundle kind {self.kind!r} not supported for exporting")
