#!/usr/bin/env python3
"""
KUBEBUNDLE CORE MODELS
----------------------
Typed views over the untyped document model. Objects stay plain dicts so
any resource kind can flow through the pipeline; the bundle kinds the core
understands get dataclasses with wire-format conversion.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import ParseResult, urlparse

from kubebundle.core.errors import StructuralError

BUNDLE_API_VERSION = "bundle.gke.io/v1alpha1"

# Annotation keys understood by the core.
INLINE_PATH_ANNOTATION = "bundle.gke.io/inline-path"
INLINE_TYPE_ANNOTATION = "bundle.gke.io/inline-type"
SAFE_YAML_ANNOTATION = "bundle.gke.io/safe-yaml"

KUBE_OBJECT_INLINE = "kube-object"
RAW_STRING_INLINE = "raw-string"

TEMPLATE_TYPE_GO = "go-template"
TEMPLATE_TYPE_JSONNET = "jsonnet"

PATCH_TYPE_AUTO = ""
PATCH_TYPE_STRATEGIC = "StrategicMerge"
PATCH_TYPE_JSON_MERGE = "JSONMerge"
PATCH_TYPES = (PATCH_TYPE_AUTO, PATCH_TYPE_STRATEGIC, PATCH_TYPE_JSON_MERGE)

COMPONENT_NAME_POLICY_SET_AND_COMPONENT = "SetAndComponent"

KNOWN_KINDS = (
    "Component", "ComponentBuilder", "Bundle", "BundleBuilder", "ComponentSet",
    "ObjectTemplate", "ObjectTemplateBuilder", "PatchTemplate", "PatchTemplateBuilder",
)


# --- Object accessors -------------------------------------------------------

def object_metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    meta = obj.get("metadata")
    return meta if isinstance(meta, dict) else {}


def object_api_version(obj: Dict[str, Any]) -> str:
    return obj.get("apiVersion") or ""


def object_kind(obj: Dict[str, Any]) -> str:
    return obj.get("kind") or ""


def object_name(obj: Dict[str, Any]) -> str:
    return object_metadata(obj).get("name") or ""


def object_namespace(obj: Dict[str, Any]) -> str:
    return object_metadata(obj).get("namespace") or ""


def object_labels(obj: Dict[str, Any]) -> Dict[str, str]:
    return object_metadata(obj).get("labels") or {}


def object_annotations(obj: Dict[str, Any]) -> Dict[str, str]:
    return object_metadata(obj).get("annotations") or {}


def _expect_dict(data: Any, what: str) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StructuralError(f"{what} must be a map but was {type(data).__name__}")
    return data


def _expect_list(data: Any, what: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise StructuralError(f"{what} must be a list but was {type(data).__name__}")
    return data


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drops empty values, mirroring omitempty on the wire."""
    return {k: v for k, v in data.items() if v not in (None, "", [], {})}


# --- Shared records ---------------------------------------------------------

@dataclass(frozen=True)
class ComponentReference:
    """The identity of a component inside a bundle."""
    component_name: str
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {"componentName": self.component_name, "version": self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentReference":
        return cls(data.get("componentName") or "", data.get("version") or "")

    def __str__(self) -> str:
        return f"{self.component_name}/{self.version}"


@dataclass
class FileRef:
    """A file referenced from a builder document; the URL may carry file://."""
    url: str = ""
    hash: str = ""

    def parsed_url(self) -> ParseResult:
        if not self.url:
            raise StructuralError(f"file {self} was specified but no URL was provided")
        return urlparse(self.url)

    def to_dict(self) -> Dict[str, Any]:
        return _compact({"url": self.url, "hash": self.hash})

    @classmethod
    def from_dict(cls, data: Any) -> "FileRef":
        data = _expect_dict(data, "file reference")
        return cls(url=data.get("url") or "", hash=data.get("hash") or "")


@dataclass
class FileGroup:
    """Raw files inlined together into one ConfigMap."""
    name: str = ""
    files: List[FileRef] = field(default_factory=list)
    as_binary: bool = False
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "name": self.name,
            "files": [f.to_dict() for f in self.files],
            "asBinary": self.as_binary or None,
            "annotations": dict(self.annotations),
            "labels": dict(self.labels),
        })

    @classmethod
    def from_dict(cls, data: Any) -> "FileGroup":
        data = _expect_dict(data, "file group")
        return cls(
            name=data.get("name") or "",
            files=[FileRef.from_dict(f) for f in _expect_list(data.get("files"), "files")],
            as_binary=bool(data.get("asBinary", False)),
            annotations=dict(_expect_dict(data.get("annotations"), "annotations")),
            labels=dict(_expect_dict(data.get("labels"), "labels")),
        )


@dataclass
class ObjectSelector:
    """Restricts which objects a PatchTemplate may touch."""
    kinds: List[str] = field(default_factory=list)
    names: List[str] = field(default_factory=list)
    namespaces: List[str] = field(default_factory=list)
    annotations: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    invert_match: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "kinds": list(self.kinds),
            "names": list(self.names),
            "namespaces": list(self.namespaces),
            "annotations": dict(self.annotations),
            "labels": dict(self.labels),
            "invertMatch": self.invert_match,
        })

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ObjectSelector"]:
        if data is None:
            return None
        data = _expect_dict(data, "selector")
        invert = data.get("invertMatch")
        return cls(
            kinds=list(_expect_list(data.get("kinds"), "selector.kinds")),
            names=list(_expect_list(data.get("names"), "selector.names")),
            namespaces=list(_expect_list(data.get("namespaces"), "selector.namespaces")),
            annotations=dict(_expect_dict(data.get("annotations"), "selector.annotations")),
            labels=dict(_expect_dict(data.get("labels"), "selector.labels")),
            invert_match=None if invert is None else bool(invert),
        )


# --- Components and bundles -------------------------------------------------

@dataclass
class Component:
    """
    A named, versioned collection of objects. Objects are plain dicts; some
    of them may still be ObjectTemplates or PatchTemplates awaiting options.
    """
    component_name: str = ""
    version: str = ""
    app_version: str = ""
    objects: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    api_version: str = BUNDLE_API_VERSION
    kind: str = "Component"

    def reference(self) -> ComponentReference:
        return ComponentReference(self.component_name, self.version)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    def deep_copy(self) -> "Component":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        spec = _compact({
            "componentName": self.component_name,
            "version": self.version,
            "appVersion": self.app_version,
        })
        if self.objects:
            spec["objects"] = copy.deepcopy(self.objects)
        out: Dict[str, Any] = {"apiVersion": self.api_version, "kind": self.kind}
        if self.metadata:
            out["metadata"] = copy.deepcopy(self.metadata)
        out["spec"] = spec
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Component":
        data = _expect_dict(data, "component")
        spec = _expect_dict(data.get("spec"), "component spec")
        objects = _expect_list(spec.get("objects"), "component spec.objects")
        for i, obj in enumerate(objects):
            if not isinstance(obj, dict):
                raise StructuralError(f"object number {i} of component is not a map")
        return cls(
            component_name=spec.get("componentName") or "",
            version=str(spec.get("version") or ""),
            app_version=str(spec.get("appVersion") or ""),
            objects=copy.deepcopy(objects),
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
            api_version=data.get("apiVersion") or BUNDLE_API_VERSION,
            kind=data.get("kind") or "Component",
        )


@dataclass
class ComponentBuilder:
    """A Component whose objects are still file references."""
    component_name: str = ""
    version: str = ""
    app_version: str = ""
    object_files: List[FileRef] = field(default_factory=list)
    raw_text_files: List[FileGroup] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def reference(self) -> ComponentReference:
        return ComponentReference(self.component_name, self.version)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "apiVersion": BUNDLE_API_VERSION,
            "kind": "ComponentBuilder",
            "metadata": copy.deepcopy(self.metadata),
            "componentName": self.component_name,
            "version": self.version,
            "appVersion": self.app_version,
            "objectFiles": [f.to_dict() for f in self.object_files],
            "rawTextFiles": [g.to_dict() for g in self.raw_text_files],
        })

    @classmethod
    def from_dict(cls, data: Any) -> "ComponentBuilder":
        data = _expect_dict(data, "component builder")
        return cls(
            component_name=data.get("componentName") or "",
            version=str(data.get("version") or ""),
            app_version=str(data.get("appVersion") or ""),
            object_files=[FileRef.from_dict(f) for f in _expect_list(data.get("objectFiles"), "objectFiles")],
            raw_text_files=[FileGroup.from_dict(g) for g in _expect_list(data.get("rawTextFiles"), "rawTextFiles")],
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


@dataclass
class ComponentSet:
    """A versioned selection of component references."""
    set_name: str = ""
    version: str = ""
    components: List[ComponentReference] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    api_version: str = BUNDLE_API_VERSION
    kind: str = "ComponentSet"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"apiVersion": self.api_version, "kind": self.kind}
        if self.metadata:
            out["metadata"] = copy.deepcopy(self.metadata)
        out["spec"] = _compact({
            "setName": self.set_name,
            "version": self.version,
            "components": [c.to_dict() for c in self.components],
        })
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "ComponentSet":
        data = _expect_dict(data, "component set")
        spec = _expect_dict(data.get("spec"), "component set spec")
        return cls(
            set_name=spec.get("setName") or "",
            version=str(spec.get("version") or ""),
            components=[ComponentReference.from_dict(_expect_dict(c, "component reference"))
                        for c in _expect_list(spec.get("components"), "components")],
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
            api_version=data.get("apiVersion") or BUNDLE_API_VERSION,
            kind=data.get("kind") or "ComponentSet",
        )


@dataclass
class Bundle:
    """An ordered set of components released together under one version."""
    set_name: str = ""
    version: str = ""
    components: List[Component] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    api_version: str = BUNDLE_API_VERSION
    kind: str = "Bundle"

    def deep_copy(self) -> "Bundle":
        return copy.deepcopy(self)

    def component_set(self) -> ComponentSet:
        cset = ComponentSet(set_name=self.set_name, version=self.version,
                            components=[c.reference() for c in self.components])
        name = create_name(self.set_name, self.version)
        if name:
            cset.metadata = {"name": name}
        return cset

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"apiVersion": self.api_version, "kind": self.kind}
        if self.metadata:
            out["metadata"] = copy.deepcopy(self.metadata)
        out.update(_compact({"setName": self.set_name, "version": self.version}))
        if self.components:
            out["components"] = [c.to_dict() for c in self.components]
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "Bundle":
        data = _expect_dict(data, "bundle")
        return cls(
            set_name=data.get("setName") or "",
            version=str(data.get("version") or ""),
            components=[Component.from_dict(c) for c in _expect_list(data.get("components"), "components")],
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
            api_version=data.get("apiVersion") or BUNDLE_API_VERSION,
            kind=data.get("kind") or "Bundle",
        )


@dataclass
class BundleBuilder:
    """A Bundle whose components are still file references."""
    set_name: str = ""
    version: str = ""
    component_files: List[FileRef] = field(default_factory=list)
    component_name_policy: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "apiVersion": BUNDLE_API_VERSION,
            "kind": "BundleBuilder",
            "metadata": copy.deepcopy(self.metadata),
            "setName": self.set_name,
            "version": self.version,
            "componentNamePolicy": self.component_name_policy,
            "componentFiles": [f.to_dict() for f in self.component_files],
        })

    @classmethod
    def from_dict(cls, data: Any) -> "BundleBuilder":
        data = _expect_dict(data, "bundle builder")
        return cls(
            set_name=data.get("setName") or "",
            version=str(data.get("version") or ""),
            component_files=[FileRef.from_dict(f) for f in _expect_list(data.get("componentFiles"), "componentFiles")],
            component_name_policy=data.get("componentNamePolicy") or "",
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


# --- Templates --------------------------------------------------------------

@dataclass
class ObjectTemplate:
    """A template producing one or more objects once options are known."""
    template: str = ""
    type: str = ""
    options_schema: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"apiVersion": BUNDLE_API_VERSION, "kind": "ObjectTemplate"}
        if self.metadata:
            out["metadata"] = copy.deepcopy(self.metadata)
        out.update(_compact({"type": self.type, "template": self.template}))
        if self.options_schema is not None:
            out["optionsSchema"] = copy.deepcopy(self.options_schema)
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "ObjectTemplate":
        data = _expect_dict(data, "object template")
        schema = data.get("optionsSchema")
        return cls(
            template=_expect_str(data.get("template"), "template"),
            type=data.get("type") or "",
            options_schema=copy.deepcopy(_expect_dict(schema, "optionsSchema")) if schema is not None else None,
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


@dataclass
class ObjectTemplateBuilder:
    file: FileRef = field(default_factory=FileRef)
    type: str = ""
    options_schema: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    @classmethod
    def from_dict(cls, data: Any) -> "ObjectTemplateBuilder":
        data = _expect_dict(data, "object template builder")
        schema = data.get("optionsSchema")
        return cls(
            file=FileRef.from_dict(data.get("file")),
            type=data.get("type") or "",
            options_schema=copy.deepcopy(_expect_dict(schema, "optionsSchema")) if schema is not None else None,
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


@dataclass
class PatchTemplate:
    """A templated partial document merged into matching objects."""
    template: str = ""
    selector: Optional[ObjectSelector] = None
    options_schema: Optional[Dict[str, Any]] = None
    patch_type: str = PATCH_TYPE_AUTO
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"apiVersion": BUNDLE_API_VERSION, "kind": "PatchTemplate"}
        if self.metadata:
            out["metadata"] = copy.deepcopy(self.metadata)
        if self.patch_type:
            out["patchType"] = self.patch_type
        if self.selector is not None:
            out["selector"] = self.selector.to_dict()
        if self.options_schema is not None:
            out["optionsSchema"] = copy.deepcopy(self.options_schema)
        out["template"] = self.template
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "PatchTemplate":
        data = _expect_dict(data, "patch template")
        schema = data.get("optionsSchema")
        return cls(
            template=_expect_str(data.get("template"), "template"),
            selector=ObjectSelector.from_dict(data.get("selector")),
            options_schema=copy.deepcopy(_expect_dict(schema, "optionsSchema")) if schema is not None else None,
            patch_type=data.get("patchType") or PATCH_TYPE_AUTO,
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


@dataclass
class PatchTemplateBuilder:
    """
    Build-time precursor of a PatchTemplate. The build schema covers options
    resolved now; the target schema names options left for apply time.
    """
    template: str = ""
    selector: Optional[ObjectSelector] = None
    build_schema: Optional[Dict[str, Any]] = None
    target_schema: Optional[Dict[str, Any]] = None
    patch_type: str = PATCH_TYPE_AUTO
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    @classmethod
    def from_dict(cls, data: Any) -> "PatchTemplateBuilder":
        data = _expect_dict(data, "patch template builder")
        build_schema = data.get("buildSchema")
        target_schema = data.get("targetSchema")
        return cls(
            template=_expect_str(data.get("template"), "template"),
            selector=ObjectSelector.from_dict(data.get("selector")),
            build_schema=copy.deepcopy(_expect_dict(build_schema, "buildSchema")) if build_schema is not None else None,
            target_schema=copy.deepcopy(_expect_dict(target_schema, "targetSchema")) if target_schema is not None else None,
            patch_type=data.get("patchType") or PATCH_TYPE_AUTO,
            metadata=copy.deepcopy(_expect_dict(data.get("metadata"), "metadata")),
        )


def _expect_str(data: Any, what: str) -> str:
    if data is None:
        return ""
    if not isinstance(data, str):
        raise StructuralError(f"{what} must be a string but was {type(data).__name__}")
    return data


def create_name(in_name: str, version: str) -> str:
    """Builds a standardized metadata.name from a name and version."""
    if not in_name:
        return ""
    if not version:
        return in_name
    return f"{in_name}-{version}"


def object_ref(obj: Dict[str, Any]) -> Tuple[str, str, str, str]:
    """(apiVersion, kind, namespace, name) identity of an object."""
    return (object_api_version(obj), object_kind(obj), object_namespace(obj), object_name(obj))
