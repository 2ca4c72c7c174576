#!/usr/bin/env python3
"""
KUBEBUNDLE NAMES - metadata.name helpers
----------------------------------------
Sanitizing and validating names the way Kubernetes expects them.
"""

import re
from typing import List

from kubebundle.core.errors import StructuralError

MAX_NAME_LENGTH = 253

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_.-]")
_BAD_FIRST_CHAR = re.compile(r"^[^a-z0-9]")
_BAD_LAST_CHAR = re.compile(r"[^a-z0-9]$")

_FIRST_CHAR = re.compile(r"^[a-z0-9]")
_LAST_CHAR = re.compile(r"[a-z0-9]$")
_NAME_CHARS = re.compile(r"^[a-z0-9_.-]+$")

_DNS1123_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS1123_SUBDOMAIN = re.compile(rf"^{_DNS1123_LABEL}(\.{_DNS1123_LABEL})*$")


def sanitize_name(name: str) -> str:
    """Replaces unsafe characters with '_' and truncates to 253 characters."""
    name = name.lower()
    name = _UNSAFE_CHARS.sub("_", name)
    name = _BAD_FIRST_CHAR.sub("z", name)
    name = _BAD_LAST_CHAR.sub("z", name)
    return name[:MAX_NAME_LENGTH]


def validate_name(name: str) -> None:
    """Raises StructuralError when name breaks Kubernetes naming conventions."""
    if not name:
        raise StructuralError("name field was empty")
    if len(name) > MAX_NAME_LENGTH:
        raise StructuralError(f"name {name!r} was longer than {MAX_NAME_LENGTH} characters")
    if not _FIRST_CHAR.search(name):
        raise StructuralError(
            f"name {name!r} did not have a first character with the pattern {_FIRST_CHAR.pattern!r}")
    if not _LAST_CHAR.search(name):
        raise StructuralError(
            f"name {name!r} did not have a last character with the pattern {_LAST_CHAR.pattern!r}")
    if not _NAME_CHARS.match(name):
        raise StructuralError(f"name {name!r} did not match allowed characters {_NAME_CHARS.pattern!r}")


def is_dns1123_subdomain(value: str) -> List[str]:
    """Returns the reasons value is not a DNS-1123 subdomain; empty when it is."""
    errs = []
    if len(value) > MAX_NAME_LENGTH:
        errs.append(f"must be no more than {MAX_NAME_LENGTH} characters")
    if not _DNS1123_SUBDOMAIN.match(value):
        errs.append(
            "a DNS-1123 subdomain must consist of lower case alphanumeric characters, "
            "'-' or '.', and must start and end with an alphanumeric character")
    return errs
