#!/usr/bin/env python3
"""
KUBEBUNDLE MULTI-APPLIER - The Conductor
----------------------------------------
Runs options strategies in a fixed order over one copy of a Component:

    [raw-text]  ->  go-template  ->  jsonnet  ->  patch-template

Templating goes first so patches can target the concrete kinds and names
the templates expand into. The raw-text stage only runs when asked for.
The first failing stage aborts the run.
"""

import logging
from typing import Dict, List, Optional, Sequence

from kubebundle.core.models import Component
from kubebundle.options.applier import MISSING_KEY_ERROR, Applier, JSONOptions
from kubebundle.options.gotmpl import GoTemplateApplier
from kubebundle.options.jsonnet_applier import Importer, JsonnetApplier
from kubebundle.options.patchtmpl import PatchTemplateApplier
from kubebundle.options.rawtext import RawTextApplier

logger = logging.getLogger("kubebundle.multi")


class MultiApplier(Applier):
    """
    Threads a Component through each applier in turn. Two appliers may not
    claim the same ObjectTemplate type tag.
    """

    def __init__(self, appliers: Sequence[Applier]):
        self.appliers: List[Applier] = list(appliers)
        owners: Dict[str, Applier] = {}
        for applier in self.appliers:
            for tag in applier.template_types:
                if tag in owners:
                    raise ValueError(
                        f"template type {tag!r} is claimed by both {type(owners[tag]).__name__} "
                        f"and {type(applier).__name__}")
                owners[tag] = applier
        self.template_types = tuple(owners)

    def apply_options(self, comp: Component, opts: Optional[JSONOptions]) -> Component:
        comp = comp.deep_copy()
        for applier in self.appliers:
            logger.debug(f"Running {type(applier).__name__} on {comp.reference()}")
            comp = applier.apply_options(comp, opts)
        return comp


def default_applier(missing_key: str = MISSING_KEY_ERROR, importer: Optional[Importer] = None,
                    include_templates: bool = False, raw_text: bool = False) -> MultiApplier:
    appliers: List[Applier] = [RawTextApplier(missing_key=missing_key)] if raw_text else []
    appliers += [
        GoTemplateApplier(missing_key=missing_key),
        JsonnetApplier(importer=importer),
        PatchTemplateApplier(include_templates=include_templates, missing_key=missing_key),
    ]
    return MultiApplier(appliers)
