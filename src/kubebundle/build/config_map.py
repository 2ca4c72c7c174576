"""ConfigMap assembly for inlined raw text file groups."""

import base64
import copy
from typing import Any, Dict

from kubebundle.core.errors import StructuralError
from kubebundle.core.models import INLINE_TYPE_ANNOTATION, RAW_STRING_INLINE
from kubebundle.validator.names import sanitize_name


class ConfigMapMaker:
    """
    Accumulates files into a v1 ConfigMap. The map name and every data key
    are sanitized since metadata.name and ConfigMap keys are restricted.
    """

    def __init__(self, name: str):
        self.name = sanitize_name(name)
        self.annotations: Dict[str, str] = {INLINE_TYPE_ANNOTATION: RAW_STRING_INLINE}
        self.labels: Dict[str, str] = {}
        self.data: Dict[str, str] = {}
        self.binary_data: Dict[str, str] = {}

    def add_data(self, key: str, value: str) -> None:
        self.data[sanitize_name(key)] = value

    def add_binary_data(self, key: str, value: bytes) -> None:
        self.binary_data[sanitize_name(key)] = base64.b64encode(value).decode("ascii")

    def to_object(self) -> Dict[str, Any]:
        if self.data and self.binary_data:
            raise StructuralError(f"both data and binary data were filled out for config map {self.name!r}")
        meta: Dict[str, Any] = {"name": self.name, "annotations": dict(self.annotations)}
        if self.labels:
            meta["labels"] = dict(self.labels)
        obj: Dict[str, Any] = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": meta}
        if self.binary_data:
            obj["binaryData"] = copy.deepcopy(self.binary_data)
        else:
            obj["data"] = copy.deepcopy(self.data)
        return obj
