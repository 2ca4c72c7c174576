#!/usr/bin/env python3
"""
KUBEBUNDLE CODEC - YAML/JSON In, Canonical YAML Out
---------------------------------------------------
YAML and JSON are two spellings of the same document model here. Reading
goes through the ruamel safe loader; writing goes through the round-trip
dumper so exported manifests keep the familiar Kubernetes key order and
2-space layout.
"""

import io
import json
import re
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from ruamel.yaml import YAML, YAMLError
from ruamel.yaml.comments import CommentedMap
from ruamel.yaml.scalarstring import LiteralScalarString

from kubebundle.core.errors import StructuralError

# A document separator is a line holding only '---' (trailing blanks allowed).
DOC_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)
ONLY_WHITESPACE = re.compile(r"^\s*$")

PREFERRED_ORDER = ["apiVersion", "kind", "metadata", "spec", "data", "status"]


def _loader() -> YAML:
    return YAML(typ="safe", pure=True)


def _dumper() -> YAML:
    yaml = YAML(typ="rt")
    # Standard K8s: 2 spaces, sequences indented 4 (offset 2)
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.width = 4096
    return yaml


def load_yaml(text: str) -> Any:
    """Parses a single YAML document."""
    try:
        return _loader().load(text)
    except YAMLError as e:
        raise StructuralError(f"malformed YAML document: {e}") from e


def load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise StructuralError(f"malformed JSON document: {e}") from e


def is_multi_doc(text: str) -> bool:
    return bool(DOC_SEPARATOR.search(text))


def split_documents(text: str) -> List[str]:
    """Splits a multi-document YAML stream, dropping empty segments."""
    return [doc for doc in DOC_SEPARATOR.split(text) if not ONLY_WHITESPACE.match(doc)]


def load_documents(text: str) -> List[Any]:
    """Loads every non-empty document of a YAML stream."""
    docs = []
    for i, segment in enumerate(split_documents(text)):
        try:
            docs.append(_loader().load(segment))
        except YAMLError as e:
            raise StructuralError(f"malformed YAML in document number {i}: {e}") from e
    return [d for d in docs if d is not None]


def load_for_name(name: str, text: str) -> Any:
    """Decodes a file's contents, picking JSON or YAML from its extension."""
    if PurePosixPath(name).suffix.lower() == ".json":
        return load_json(text)
    return load_yaml(text)


def load_object(text: str, name: str = "") -> Dict[str, Any]:
    """Decodes a document that must be a single structured object."""
    data = load_for_name(name, text) if name else load_yaml(text)
    if not isinstance(data, dict):
        where = f" in {name}" if name else ""
        raise StructuralError(f"expected a structured object{where} but got {type(data).__name__}")
    return data


def _ordered(data: Any) -> Any:
    """
    Recursively re-keys maps so identity fields lead, leaving every other key
    at its original relative position. Multi-line strings become literal blocks.
    """
    if isinstance(data, dict):
        keys = list(data.keys())

        def sort_logic(key):
            if key in PREFERRED_ORDER:
                return PREFERRED_ORDER.index(key)
            return len(PREFERRED_ORDER) + keys.index(key)

        ordered = CommentedMap()
        for key in sorted(keys, key=sort_logic):
            ordered[key] = _ordered(data[key])
        return ordered
    if isinstance(data, list):
        return [_ordered(item) for item in data]
    if isinstance(data, str) and "\n" in data and not _has_trailing_blanks(data):
        return LiteralScalarString(data)
    return data


def _has_trailing_blanks(text: str) -> bool:
    return any(line != line.rstrip(" \t") for line in text.split("\n"))


def dump_yaml(data: Any) -> str:
    stream = io.StringIO()
    _dumper().dump(_ordered(data), stream)
    return stream.getvalue()


def dump_documents(docs: List[Any]) -> str:
    """Exports documents as one stream with explicit separators."""
    stream = io.StringIO()
    for i, doc in enumerate(docs):
        if i > 0:
            stream.write("---\n")
        stream.write(dump_yaml(doc))
    return stream.getvalue()


def to_json(data: Any, indent: Optional[int] = None) -> str:
    return json.dumps(data, indent=indent, sort_keys=indent is None)


def dump(data: Any, output_format: str = "yaml") -> str:
    if output_format == "json":
        return to_json(data, indent=2) + "\n"
    return dump_yaml(data)
