#!/usr/bin/env python3
"""
KUBEBUNDLE INLINER - The Gatherer
---------------------------------
Walks BundleBuilder and ComponentBuilder documents and replaces every file
reference with the content it points at, producing self-contained Bundles
and Components.

Every reference is resolved against the document that declared it:

    bundle.yaml -> components/etcd/component.yaml -> manifests/pod.yaml
                                                  -> templates/pod.tmpl
"""

import copy
import logging
import os
import re
import threading
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import ParseResult

from kubebundle.build.config_map import ConfigMapMaker
from kubebundle.build.paths import (
    make_abs_for_file_scheme, make_abs_with_parent, parse_url, url_to_string,
)
from kubebundle.core import codec
from kubebundle.core.errors import InlineIOError, StructuralError, UnsupportedKindError
from kubebundle.core.models import (
    BUNDLE_API_VERSION, COMPONENT_NAME_POLICY_SET_AND_COMPONENT, INLINE_PATH_ANNOTATION,
    TEMPLATE_TYPE_GO, Bundle, BundleBuilder, Component, ComponentBuilder, ComponentReference,
    FileGroup, FileRef, ObjectTemplate, ObjectTemplateBuilder, object_kind, object_name,
)
from kubebundle.files.reader import (
    EMPTY_SCHEME, FILE_SCHEME, FileObjReader, LocalFileObjReader, LocalFileSystemReader,
    check_cancelled, decode_text,
)
from kubebundle.validator.names import is_dns1123_subdomain

logger = logging.getLogger("kubebundle.inline")

_NON_DNS = re.compile(r"[^-a-z0-9.]")
_MULTI_DOC_EXTENSIONS = (".yaml", ".yml")


class Inliner:
    """Inlines file references using one FileObjReader per URL scheme."""

    def __init__(self, readers: Dict[str, FileObjReader]):
        self.readers = dict(readers)

    @classmethod
    def with_scheme(cls, scheme: str, reader: FileObjReader) -> "Inliner":
        return cls({scheme: reader})

    @classmethod
    def local(cls) -> "Inliner":
        """An inliner that only reads from the local disk."""
        return cls.with_scheme(FILE_SCHEME, LocalFileObjReader(rdr=LocalFileSystemReader()))

    # --- Bundles -------------------------------------------------------------

    def bundle_files(self, data: BundleBuilder, bundle_path: str,
                     cancel: Optional[threading.Event] = None) -> Bundle:
        """
        Inlines every component file of a BundleBuilder. bundle_path is made
        absolute for file-based schemes and must end up absolute.
        """
        bundle_url = make_abs_for_file_scheme(parse_url(bundle_path))
        if not os.path.isabs(bundle_url.path):
            raise StructuralError(f"bundle path must be absolute but was {bundle_url.path!r}")

        comps: List[Component] = []
        for f in data.component_files:
            check_cancelled(cancel, "bundle inlining")
            ref = FileRef(url=url_to_string(make_abs_with_parent(bundle_url, f.parsed_url())), hash=f.hash)
            try:
                contents = self._read_text(ref, cancel)
            except InlineIOError as e:
                raise InlineIOError(f"error reading file {ref.url!r}: {e}", path=ref.url) from e
            doc = codec.load_object(contents, ref.url)

            kind = object_kind(doc)
            if kind == "Component":
                comps.append(Component.from_dict(doc))
            elif kind == "ComponentBuilder":
                builder = ComponentBuilder.from_dict(doc)
                if not builder.name and data.component_name_policy == COMPONENT_NAME_POLICY_SET_AND_COMPONENT:
                    builder.metadata["name"] = "-".join(
                        [data.set_name, data.version, builder.component_name, builder.version])
                comps.append(self.component_files(builder, ref.url, cancel))
            else:
                raise UnsupportedKindError(kind, ["Component", "ComponentBuilder"], "component")

        logger.debug(f"Inlined bundle {data.set_name!r} with {len(comps)} components")
        return Bundle(
            set_name=data.set_name,
            version=data.version,
            components=comps,
            metadata=copy.deepcopy(data.metadata),
        )

    # --- Components ----------------------------------------------------------

    def component_files(self, comp: ComponentBuilder, component_path: str = "",
                        cancel: Optional[threading.Event] = None) -> Component:
        """
        Reads the file references of a ComponentBuilder. The result is a new
        Component; the builder is left untouched.
        """
        # Without a path, references resolve against the working directory.
        component_url = make_abs_for_file_scheme(parse_url(component_path or os.getcwd() + os.sep))
        if not os.path.isabs(component_url.path):
            raise StructuralError(f"component path must be absolute but was {component_url.path!r}")

        ref = comp.reference()
        new_objs, tmpl_builders = self._object_files(comp.object_files, ref, component_url, cancel)
        new_objs.extend(self._object_template_builders(tmpl_builders, ref, cancel))
        new_objs.extend(self._raw_text_files(comp.raw_text_files, ref, component_url, cancel))

        meta = copy.deepcopy(comp.metadata)
        if not meta.get("name"):
            name = f"{comp.component_name}-{comp.version}".lower()
            meta["name"] = _NON_DNS.sub("-", name)
        errs = is_dns1123_subdomain(meta["name"])
        if errs:
            raise StructuralError(
                f"metadata.name {meta['name']!r} is not a valid DNS 1123 subdomain in component "
                f"{ref.component_name!r}/{ref.version!r}: {errs}")

        logger.debug(f"Inlined component {ref} with {len(new_objs)} objects")
        return Component(
            component_name=comp.component_name,
            version=comp.version,
            app_version=comp.app_version,
            objects=new_objs,
            metadata=meta,
            api_version=BUNDLE_API_VERSION,
            kind="Component",
        )

    def all_component_files(self, builders: List[ComponentBuilder],
                            cancel: Optional[threading.Event] = None) -> List[Component]:
        return [self.component_files(b, "", cancel) for b in builders]

    def _object_files(self, obj_files: List[FileRef], ref: ComponentReference, component_url: ParseResult,
                      cancel: Optional[threading.Event]) -> Tuple[List[Dict[str, Any]], Dict[str, List[Dict[str, Any]]]]:
        """
        Returns the inlined objects and, keyed by the declaring file's URL,
        the ObjectTemplateBuilders found along the way.
        """
        new_objs: List[Dict[str, Any]] = []
        tmpl_builders: Dict[str, List[Dict[str, Any]]] = {}
        for f in obj_files:
            check_cancelled(cancel, f"inlining component {ref}")
            file_ref = FileRef(url=url_to_string(make_abs_with_parent(component_url, f.parsed_url())), hash=f.hash)
            try:
                contents = self._read_text(file_ref, cancel)
            except InlineIOError as e:
                raise InlineIOError(f"error reading file {file_ref.url!r} for component {ref}: {e}",
                                    path=file_ref.url) from e

            ext = os.path.splitext(file_ref.url)[1].lower()
            if ext in _MULTI_DOC_EXTENSIONS and codec.is_multi_doc(contents):
                docs = []
                for i, segment in enumerate(codec.split_documents(contents)):
                    try:
                        docs.append(codec.load_object(segment))
                    except StructuralError as e:
                        raise StructuralError(
                            f"converting multi-doc object number {i} for component {ref}: {e}") from e
            else:
                try:
                    docs = [codec.load_object(contents, file_ref.url)]
                except StructuralError as e:
                    raise StructuralError(f"for component {ref}: {e}") from e

            for obj in docs:
                if object_kind(obj) == "ObjectTemplateBuilder":
                    tmpl_builders.setdefault(file_ref.url, []).append(obj)
                else:
                    new_objs.append(obj)
        return new_objs, tmpl_builders

    def _object_template_builders(self, builders: Dict[str, List[Dict[str, Any]]], ref: ComponentReference,
                                  cancel: Optional[threading.Event]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for parent_path, objs in builders.items():
            parent_url = parse_url(parent_path)
            for obj in objs:
                name = object_name(obj)
                try:
                    builder = ObjectTemplateBuilder.from_dict(obj)
                    file_ref = FileRef(
                        url=url_to_string(make_abs_with_parent(parent_url, builder.file.parsed_url())),
                        hash=builder.file.hash)
                    contents = self._read_text(file_ref, cancel)
                except InlineIOError as e:
                    raise InlineIOError(f"for component {ref} and object {name!r}: {e}", path=e.path) from e
                except StructuralError as e:
                    raise StructuralError(f"for component {ref} and object {name!r}: {e}") from e

                meta = copy.deepcopy(builder.metadata)
                annotations = dict(meta.get("annotations") or {})
                annotations[INLINE_PATH_ANNOTATION] = file_ref.url
                meta["annotations"] = annotations

                tmpl = ObjectTemplate(
                    template=contents,
                    type=builder.type or TEMPLATE_TYPE_GO,
                    options_schema=builder.options_schema,
                    metadata=meta,
                )
                out.append(tmpl.to_dict())
        return out

    def _raw_text_files(self, groups: List[FileGroup], ref: ComponentReference, component_url: ParseResult,
                        cancel: Optional[threading.Event]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for group in groups:
            if not group.name:
                raise StructuralError(
                    f"error reading raw text file group object for component {ref}; name was empty")
            maker = ConfigMapMaker(group.name)
            for f in group.files:
                file_ref = FileRef(url=url_to_string(make_abs_with_parent(component_url, f.parsed_url())), hash=f.hash)
                try:
                    raw = self._read(file_ref, cancel)
                except InlineIOError as e:
                    raise InlineIOError(f"error reading raw text file for component {ref}: {e}",
                                        path=file_ref.url) from e
                data_name = os.path.basename(parse_url(file_ref.url).path)
                if group.as_binary:
                    maker.add_binary_data(data_name, raw)
                else:
                    maker.add_data(data_name, decode_text(raw, file_ref.url))
            maker.annotations.update(group.annotations)
            maker.labels.update(group.labels)
            try:
                out.append(maker.to_object())
            except StructuralError as e:
                raise StructuralError(f"for component {ref} and file group {group.name!r}: {e}") from e
        return out

    # --- Reading -------------------------------------------------------------

    def _read(self, file_ref: FileRef, cancel: Optional[threading.Event]) -> bytes:
        parsed = file_ref.parsed_url()
        scheme = parsed.scheme or EMPTY_SCHEME
        if scheme == EMPTY_SCHEME:
            scheme = FILE_SCHEME
        rdr = self.readers.get(scheme)
        if rdr is None:
            raise InlineIOError(
                f"could not find file reader for scheme {parsed.scheme!r} for url {file_ref.url!r}",
                path=file_ref.url)
        return rdr.read_file_obj(file_ref, cancel)

    def _read_text(self, file_ref: FileRef, cancel: Optional[threading.Event]) -> str:
        return decode_text(self._read(file_ref, cancel), file_ref.url)
