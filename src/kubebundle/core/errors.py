#!/usr/bin/env python3
"""
KUBEBUNDLE ERRORS
-----------------
Exception taxonomy shared by every stage of the toolkit. Each stage raises
on the first failure; nothing here is ever logged and swallowed.
"""

from typing import List, Optional


class BundleError(Exception):
    """Base exception for kubebundle errors."""


class ConfigError(BundleError):
    """Raised when configuration cannot be loaded or holds invalid values."""


class StructuralError(BundleError):
    """Malformed documents, bad names, or kinds found where they don't belong."""


class UnsupportedKindError(StructuralError):
    """A document kind is not allowed at this position."""

    def __init__(self, kind: str, expected: List[str], context: str = ""):
        self.kind = kind
        self.expected = list(expected)
        where = f" for {context}" if context else ""
        super().__init__(
            f"unsupported kind{where}: {kind!r}; only supported kinds are "
            f"{' and '.join(self.expected)}"
        )


class TemplateError(BundleError):
    """Template parsing or execution failed."""

    def __init__(self, message: str, template_name: str = ""):
        super().__init__(message)
        self.template_name = template_name


class SchemaValidationError(BundleError):
    """Options did not satisfy an OpenAPI options schema."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        self.details = list(details or [])
        if self.details:
            message = f"{message}: {'; '.join(self.details)}"
        super().__init__(message)


class PatchError(BundleError):
    """A patch could not be decoded, matched, or merged."""


class InlineIOError(BundleError):
    """A referenced file could not be read."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class OperationCancelled(BundleError):
    """The caller cancelled a long-running operation."""


def error_chain(err: BaseException) -> List[str]:
    """Flattens an exception and its causes into printable lines."""
    lines = []
    seen = set()
    current: Optional[BaseException] = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return lines
