#!/usr/bin/env python3
"""
KUBEBUNDLE ENGINE - The High Orchestrator
-----------------------------------------
BundleEngine takes a bundle document through its lifecycle:

    read -> inline -> build -> apply -> validate -> filter -> export

Every stage takes a BundleWrapper and returns a new one, so the CLI can
stop after any of them. Output is written atomically.
"""

import copy
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from kubebundle.build.inline import Inliner
from kubebundle.build.patchbuild import all_patch_templates
from kubebundle.core import codec
from kubebundle.core.config import BundleConfig
from kubebundle.core.errors import ConfigError, StructuralError
from kubebundle.core.wrapper import BundleWrapper
from kubebundle.files.reader import (
    FileReader, FileWriter, LocalFileSystemReader, LocalFileSystemWriter, check_cancelled, decode_text,
)
from kubebundle.filtering.filter import (
    FilterOptions, filter_components, filter_objects, select_components, select_objects,
)
from kubebundle.find.images import ContainerImage, ImageFinder
from kubebundle.options.applier import Applier, JSONOptions
from kubebundle.options.jsonnet_applier import DirectoryImporter
from kubebundle.options.multi import default_applier
from kubebundle.validator.validator import BundleValidator, ComponentValidator

logger = logging.getLogger("kubebundle.engine")

FILTER_OBJECTS = "objects"
FILTER_COMPONENTS = "components"


def merge_options(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Nested merge: maps merge key by key, anything else in override wins."""
    out = copy.deepcopy(base)
    for key, val in override.items():
        if isinstance(val, dict) and isinstance(out.get(key), dict):
            out[key] = merge_options(out[key], val)
        else:
            out[key] = copy.deepcopy(val)
    return out


class BundleEngine:
    """
    Coordinates the inliner, the build-time compiler, the options appliers
    and the validators under one BundleConfig.
    """

    def __init__(self, config: Optional[BundleConfig] = None, inliner: Optional[Inliner] = None,
                 reader: Optional[FileReader] = None, writer: Optional[FileWriter] = None,
                 applier: Optional[Applier] = None):
        self.config = config or BundleConfig()
        self.inliner = inliner or Inliner.local()
        self.reader = reader or LocalFileSystemReader()
        self.writer = writer or LocalFileSystemWriter()
        self.applier = applier or self._make_applier()

    def _make_applier(self) -> Applier:
        importer = None
        if self.config.allow_jsonnet_imports:
            importer = DirectoryImporter(self.config.jsonnet_import_paths)
        return default_applier(
            missing_key=self.config.missing_key,
            importer=importer,
            include_templates=self.config.include_patch_templates,
            raw_text=self.config.apply_raw_text,
        )

    # --- Reading ---------------------------------------------------------------

    def read_text(self, path: str, cancel: Optional[threading.Event] = None) -> str:
        return decode_text(self.reader.read_file(path, cancel), path)

    def read(self, path: str, cancel: Optional[threading.Event] = None) -> BundleWrapper:
        """Reads a Bundle, BundleBuilder, Component or ComponentBuilder file."""
        bw = BundleWrapper.from_raw(self.read_text(path, cancel), path)
        logger.debug(f"Read {bw.kind} from {path}")
        return bw

    def load_options(self, paths: Sequence[str], cancel: Optional[threading.Event] = None) -> JSONOptions:
        """Merges option files left to right; later files win."""
        opts: JSONOptions = {}
        for path in paths:
            data = codec.load_for_name(path, self.read_text(path, cancel))
            if data is None:
                continue
            if not isinstance(data, dict):
                raise ConfigError(f"options file {path} must contain a mapping, got {type(data).__name__}")
            opts = merge_options(opts, data)
        return opts

    # --- Stages ----------------------------------------------------------------

    def inline(self, bw: BundleWrapper, path: str, cancel: Optional[threading.Event] = None) -> BundleWrapper:
        """
        Inlines builders relative to path. Already-inlined Bundles and
        Components pass through unchanged.
        """
        abs_path = os.path.abspath(path) if path and "://" not in path else path
        if bw.kind == "BundleBuilder":
            return BundleWrapper.from_bundle(self.inliner.bundle_files(bw.bundle_builder, abs_path, cancel))
        if bw.kind == "ComponentBuilder":
            return BundleWrapper.from_component(
                self.inliner.component_files(bw.component_builder, abs_path, cancel))
        return bw

    def build(self, bw: BundleWrapper, opts: Optional[JSONOptions] = None,
              fopts: Optional[FilterOptions] = None) -> BundleWrapper:
        """Compiles PatchTemplateBuilders with build options."""
        return all_patch_templates(bw, fopts, opts)

    def apply(self, bw: BundleWrapper, opts: Optional[JSONOptions],
              cancel: Optional[threading.Event] = None) -> BundleWrapper:
        if bw.kind == "Component":
            check_cancelled(cancel, "applying options")
            return BundleWrapper.from_component(self.applier.apply_options(bw.component, opts))
        if bw.kind == "Bundle":
            bun = bw.bundle.deep_copy()
            comps = []
            for comp in bun.components:
                check_cancelled(cancel, "applying options")
                comps.append(self.applier.apply_options(comp, opts))
            bun.components = comps
            logger.debug(f"Applied options to {len(comps)} components")
            return BundleWrapper.from_bundle(bun)
        raise StructuralError(f"bundle kind {bw.kind!r} not supported for applying options")

    def validate(self, bw: BundleWrapper) -> List[str]:
        if bw.kind == "Bundle":
            return BundleValidator(bw.bundle).validate()
        if bw.kind == "Component":
            return ComponentValidator([bw.component]).validate()
        raise StructuralError(f"bundle kind {bw.kind!r} not supported for validation; inline it first")

    def filter(self, bw: BundleWrapper, fopts: Optional[FilterOptions], keep_only: bool = False,
               target: str = FILTER_OBJECTS) -> BundleWrapper:
        """
        Removes matching objects (or components of a Bundle), or keeps only
        the matches when keep_only is set.
        """
        pick_objects = select_objects if keep_only else filter_objects
        if bw.kind == "Component":
            comp = bw.component.deep_copy()
            comp.objects = pick_objects(comp.objects, fopts)
            return BundleWrapper.from_component(comp)
        if bw.kind == "Bundle":
            bun = bw.bundle.deep_copy()
            if target == FILTER_COMPONENTS:
                pick = select_components if keep_only else filter_components
                bun.components = pick(bun.components, fopts)
            else:
                for comp in bun.components:
                    comp.objects = pick_objects(comp.objects, fopts)
            return BundleWrapper.from_bundle(bun)
        raise StructuralError(f"bundle kind {bw.kind!r} not supported for filtering")

    def find_images(self, bw: BundleWrapper) -> List[ContainerImage]:
        return ImageFinder(bw.all_components()).find_images()

    def distinct_images(self, bw: BundleWrapper) -> List[str]:
        return ImageFinder(bw.all_components()).flattened()

    # --- Output ----------------------------------------------------------------

    def export(self, bw: BundleWrapper, opts: Optional[JSONOptions] = None) -> str:
        """Renders the exported objects as a document stream in the configured format."""
        if opts is not None and bw.kind == "Component":
            bw = self.apply(bw, opts)
        objs = bw.export_as_objects()
        if self.config.output_format == "json":
            return codec.dump(objs, "json")
        return codec.dump_documents(objs)

    def render(self, bw: BundleWrapper) -> str:
        return codec.dump(bw.to_dict(), self.config.output_format)

    def write(self, text: str, path: str) -> None:
        self.writer.write_file(path, text)
        logger.info(f"Wrote {Path(path).name}")
