#!/usr/bin/env python3
"""
KUBEBUNDLE FILES - Readers and Writers
--------------------------------------
The only blocking I/O in the toolkit. Readers take an optional
threading.Event; a set event aborts before the read starts.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from kubebundle.core.errors import InlineIOError, OperationCancelled
from kubebundle.core.models import FileRef

logger = logging.getLogger("kubebundle.files")

FILE_SCHEME = "file"
EMPTY_SCHEME = ""


def check_cancelled(cancel: Optional[threading.Event], what: str = "operation") -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{what} was cancelled")


def decode_text(raw: bytes, path: str) -> str:
    """Decodes UTF-8 file contents, dropping a leading BOM."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InlineIOError(f"file {path!r} is not valid UTF-8 text: {e.reason} at byte {e.start}", path=path) from e


class FileReader(ABC):
    """Reads raw bytes from a path."""

    @abstractmethod
    def read_file(self, path: str, cancel: Optional[threading.Event] = None) -> bytes:
        ...


class LocalFileSystemReader(FileReader):

    def read_file(self, path: str, cancel: Optional[threading.Event] = None) -> bytes:
        check_cancelled(cancel, f"reading {path}")
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise InlineIOError(f"could not read file {path!r}: {e.strerror or e}", path=path) from e


class FileObjReader(ABC):
    """Reads the file a FileRef points at."""

    @abstractmethod
    def read_file_obj(self, file_ref: FileRef, cancel: Optional[threading.Event] = None) -> bytes:
        ...


class LocalFileObjReader(FileObjReader):
    """
    Resolves a FileRef against the local filesystem. Relative paths are
    joined onto working_dir; file:// prefixes are stripped.
    """

    def __init__(self, working_dir: str = "", rdr: Optional[FileReader] = None):
        self.working_dir = working_dir
        self.rdr = rdr or LocalFileSystemReader()

    def read_file_obj(self, file_ref: FileRef, cancel: Optional[threading.Event] = None) -> bytes:
        url = file_ref.url
        if not url:
            raise InlineIOError(f"file {file_ref} was specified but no file url was provided")
        if url.startswith("file://"):
            url = url[len("file://"):]
        path = os.path.join(self.working_dir, url) if self.working_dir else url
        return self.rdr.read_file(path, cancel)


class FileWriter(ABC):

    @abstractmethod
    def write_file(self, path: str, content: Union[str, bytes],
                   cancel: Optional[threading.Event] = None) -> None:
        ...


class LocalFileSystemWriter(FileWriter):
    """Writes through a temp file and os.replace so readers never see partial output."""

    def write_file(self, path: str, content: Union[str, bytes],
                   cancel: Optional[threading.Event] = None) -> None:
        check_cancelled(cancel, f"writing {path}")
        target_path = Path(path)
        if not os.access(target_path.parent, os.W_OK):
            raise InlineIOError(f"no write access to {target_path.parent}", path=path)
        temp_file = target_path.with_name(target_path.name + ".kubebundle.tmp")
        data = content.encode("utf-8") if isinstance(content, str) else content
        try:
            temp_file.write_bytes(data)
            os.replace(temp_file, target_path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise InlineIOError(f"atomic write to {path!r} failed: {e}", path=path) from e
        logger.debug(f"Wrote {len(data)} bytes to {path}")
