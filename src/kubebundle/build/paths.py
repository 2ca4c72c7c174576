"""
Path rewriting for file references. A reference is relative to the document
that declared it, never to the process working directory.
"""

import os
import posixpath
from urllib.parse import ParseResult, urlparse, urlunparse

from kubebundle.files.reader import EMPTY_SCHEME, FILE_SCHEME


def parse_url(raw: str) -> ParseResult:
    return urlparse(raw)


def url_to_string(url: ParseResult) -> str:
    return urlunparse((url.scheme, url.netloc, url.path, "", "", ""))


def make_abs_with_parent(parent: ParseResult, obj: ParseResult) -> ParseResult:
    """
    Rewrites a relative obj path against the directory of parent. Given a
    parent of foo/bar/biff.yaml and an obj of zed/fred.yaml, the result is
    foo/bar/zed/fred.yaml. Absolute obj paths are returned unchanged.
    """
    if parent is None or obj is None:
        return obj
    if posixpath.isabs(obj.path):
        return obj
    joined = posixpath.normpath(posixpath.join(posixpath.dirname(parent.path), obj.path))
    return ParseResult(scheme=parent.scheme, netloc=parent.netloc, path=joined,
                       params="", query="", fragment="")


def make_abs_for_file_scheme(obj: ParseResult) -> ParseResult:
    """Absolutizes file-scheme (or scheme-less) URLs against the working directory."""
    if obj.scheme in (FILE_SCHEME, EMPTY_SCHEME) and not os.path.isabs(obj.path):
        return ParseResult(scheme=obj.scheme, netloc=obj.netloc, path=os.path.abspath(obj.path),
                           params="", query="", fragment="")
    return obj
