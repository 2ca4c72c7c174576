#!/usr/bin/env python3
"""
KUBEBUNDLE CLI
--------------
Command surface over BundleEngine:

    inline       read a BundleBuilder/ComponentBuilder and inline its files
    build        compile PatchTemplateBuilders with build options
    apply        apply options through go-template, jsonnet and patch templates
    filter       remove (or keep only) matching objects or components
    validate     report structural problems
    export       write the objects of a component or bundle as a stream
    find-images  list container images
    version      print the version
"""

import argparse
import logging
import sys
import threading
from typing import Dict, List, Optional

from rich.logging import RichHandler

from kubebundle.cli.formatter import BundleFormatter, err_console
from kubebundle.core.config import OUTPUT_FORMATS, BundleConfig, load_config
from kubebundle.core.engine import FILTER_COMPONENTS, FILTER_OBJECTS, BundleEngine
from kubebundle.core.errors import BundleError, error_chain
from kubebundle.core.wrapper import BundleWrapper
from kubebundle.filtering.filter import FilterOptions
from kubebundle.options.applier import MISSING_KEY_POLICIES

VERSION = "0.1.0"

logger = logging.getLogger("kubebundle.cli")

_logging_ready = False


def setup_logging(level: str) -> None:
    """Installs the rich handler on the kubebundle logger tree, once."""
    global _logging_ready
    root = logging.getLogger("kubebundle")
    root.setLevel(level)
    if _logging_ready:
        return
    root.addHandler(RichHandler(console=err_console, show_path=False, rich_tracebacks=False))
    root.propagate = False
    _logging_ready = True


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _split_pairs(value: Optional[str]) -> Dict[str, str]:
    """Parses 'k1=v1,k2' into a map; a bare key matches any value."""
    out = {}
    for item in _split_list(value):
        key, _, val = item.partition("=")
        out[key.strip()] = val.strip()
    return out


def filter_options_from_args(args: argparse.Namespace) -> Optional[FilterOptions]:
    fopts = FilterOptions(
        kinds=_split_list(args.kinds),
        names=_split_list(args.names),
        namespaces=_split_list(args.namespaces),
        annotations=_split_pairs(args.annotations),
        labels=_split_pairs(args.labels),
        invert_match=args.invert_match,
    )
    if fopts == FilterOptions(invert_match=fopts.invert_match):
        return None
    return fopts


class KubeBundleCLI:
    """
    Translates command lines into BundleEngine calls and renders the
    results. Errors print their full cause chain and give a non-zero exit.
    """

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = environ
        self.formatter = BundleFormatter()
        self.cancel = threading.Event()
        self.parser = argparse.ArgumentParser(
            prog="kubebundle",
            description="kubebundle - package, template and patch Kubernetes components",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self._setup_args()

    def _setup_args(self):
        p = self.parser
        p.add_argument("--config", help="YAML config file (KUBEBUNDLE_* variables override it)")
        p.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
        subparsers = p.add_subparsers(dest="command", metavar="Command")

        def with_io(sp: argparse.ArgumentParser):
            sp.add_argument("path", help="Bundle, BundleBuilder, Component or ComponentBuilder file")
            sp.add_argument("-o", "--output", help="Write to this file instead of stdout")
            sp.add_argument("--format", choices=OUTPUT_FORMATS, dest="output_format", help="Output format")

        def with_options(sp: argparse.ArgumentParser):
            sp.add_argument("--options", action="append", default=[], metavar="FILE",
                            help="Options file (YAML or JSON); repeat to merge, later files win")

        def with_filter(sp: argparse.ArgumentParser):
            sp.add_argument("--kinds", help="Comma separated kinds")
            sp.add_argument("--names", help="Comma separated names")
            sp.add_argument("--namespaces", help="Comma separated namespaces")
            sp.add_argument("--annotations", help="Comma separated key=value annotations")
            sp.add_argument("--labels", help="Comma separated key=value labels")
            sp.add_argument("--invert-match", action="store_true", help="Invert the match")

        sp = subparsers.add_parser("inline", help="Inline the files of a builder")
        with_io(sp)

        sp = subparsers.add_parser("build", help="Compile PatchTemplateBuilders into PatchTemplates")
        with_io(sp)
        with_options(sp)
        with_filter(sp)

        sp = subparsers.add_parser("apply", help="Apply options to components")
        with_io(sp)
        with_options(sp)
        sp.add_argument("--missing-key", choices=MISSING_KEY_POLICIES, help="Policy for options a template lacks")
        sp.add_argument("--include-patch-templates", action="store_true", default=None,
                        help="Keep applied PatchTemplates in the output")
        sp.add_argument("--raw-text", action="store_true", default=None, dest="apply_raw_text",
                        help="Render raw-string ConfigMaps from rawTextFiles into objects")

        sp = subparsers.add_parser("filter", help="Remove or keep only matching objects")
        with_io(sp)
        with_filter(sp)
        sp.add_argument("--keep-only", action="store_true", help="Keep the matches instead of removing them")
        sp.add_argument("--filter-type", choices=(FILTER_OBJECTS, FILTER_COMPONENTS), default=FILTER_OBJECTS,
                        help="Filter the objects or the components of a bundle")

        sp = subparsers.add_parser("validate", help="Validate a bundle or component")
        sp.add_argument("path", help="Bundle or Component file")

        sp = subparsers.add_parser("export", help="Export objects as a document stream")
        with_io(sp)
        with_options(sp)

        sp = subparsers.add_parser("find-images", help="List container images")
        sp.add_argument("path", help="Bundle or Component file")
        sp.add_argument("--flatten", action="store_true", help="Only print distinct image names")

        subparsers.add_parser("version", help="Print the version")

    # --- Plumbing ---------------------------------------------------------------

    def _config(self, args: argparse.Namespace) -> BundleConfig:
        cfg = load_config(args.config, self.environ)
        return cfg.with_overrides(
            log_level=args.log_level,
            output_format=getattr(args, "output_format", None),
            missing_key=getattr(args, "missing_key", None),
            include_patch_templates=getattr(args, "include_patch_templates", None),
            apply_raw_text=getattr(args, "apply_raw_text", None),
        )

    def _load(self, engine: BundleEngine, path: str) -> BundleWrapper:
        """Reads path and inlines it when it is a builder."""
        return engine.inline(engine.read(path, self.cancel), path, self.cancel)

    def _emit(self, engine: BundleEngine, text: str, args: argparse.Namespace):
        if getattr(args, "output", None):
            engine.write(text, args.output)
        else:
            self.formatter.print_document(text, engine.config.output_format, pretty=True)

    # --- Commands ---------------------------------------------------------------

    def cmd_inline(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        self._emit(engine, engine.render(bw), args)
        return 0

    def cmd_build(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        opts = engine.load_options(args.options, self.cancel)
        bw = engine.build(bw, opts, filter_options_from_args(args))
        self._emit(engine, engine.render(bw), args)
        return 0

    def cmd_apply(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        opts = engine.load_options(args.options, self.cancel)
        bw = engine.apply(bw, opts, self.cancel)
        self._emit(engine, engine.render(bw), args)
        return 0

    def cmd_filter(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        bw = engine.filter(bw, filter_options_from_args(args), keep_only=args.keep_only,
                           target=args.filter_type)
        self._emit(engine, engine.render(bw), args)
        return 0

    def cmd_validate(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        errors = engine.validate(self._load(engine, args.path))
        self.formatter.print_validation(args.path, errors)
        return 1 if errors else 0

    def cmd_export(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        opts = engine.load_options(args.options, self.cancel) if args.options else None
        self._emit(engine, engine.export(bw, opts), args)
        return 0

    def cmd_find_images(self, engine: BundleEngine, args: argparse.Namespace) -> int:
        bw = self._load(engine, args.path)
        if args.flatten:
            images = engine.distinct_images(bw)
            self.formatter.print_document("".join(f"{img}\n" for img in images))
        else:
            self.formatter.print_images(engine.find_images(bw))
        return 0

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Primary routing entry point. Returns the process exit code."""
        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return 0
        if args.command == "version":
            self.formatter.print_document(f"kubebundle v{VERSION}\n")
            return 0

        try:
            cfg = self._config(args)
            setup_logging(cfg.log_level)
            engine = BundleEngine(cfg)
            handler = getattr(self, "cmd_" + args.command.replace("-", "_"))
            return handler(engine, args)
        except BundleError as e:
            logger.debug(f"{args.command} failed", exc_info=True)
            self.formatter.print_error_chain(error_chain(e))
            return 1


def main():
    """Application entry point with interrupt handling."""
    cli = KubeBundleCLI()
    try:
        code = cli.run()
    except KeyboardInterrupt:
        cli.cancel.set()
        err_console.print("\n[bold red]Terminated by user.[/bold red]")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
