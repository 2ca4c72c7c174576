import threading
from typing import Dict, Optional

import pytest

from kubebundle.core import codec
from kubebundle.core.errors import InlineIOError
from kubebundle.core.models import Component, FileRef
from kubebundle.files.reader import FileObjReader, check_cancelled


class FakeObjReader(FileObjReader):
    """In-memory files keyed by URL; records every read."""

    def __init__(self, files: Dict[str, str]):
        self.files = {k: v.encode("utf-8") if isinstance(v, str) else v for k, v in files.items()}
        self.reads = []

    def read_file_obj(self, file_ref: FileRef, cancel: Optional[threading.Event] = None) -> bytes:
        check_cancelled(cancel, f"reading {file_ref.url}")
        self.reads.append(file_ref.url)
        if file_ref.url not in self.files:
            raise InlineIOError(f"no such file {file_ref.url!r}", path=file_ref.url)
        return self.files[file_ref.url]


@pytest.fixture
def fake_reader():
    return FakeObjReader


def component_from_yaml(text: str) -> Component:
    return Component.from_dict(codec.load_yaml(text))


@pytest.fixture
def make_component():
    return component_from_yaml
