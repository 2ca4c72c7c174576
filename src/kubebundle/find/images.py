"""
Container image discovery.

An image is any string under an `image` key whose parent key mentions
containers (`containers`, `initContainers`, `ephemeralContainers`, ...).
NodeConfig-style `osImage.url` values count too.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from kubebundle.core.models import Component, ComponentReference, object_ref

logger = logging.getLogger("kubebundle.images")

ImageFn = Callable[[ComponentReference, Tuple[str, str, str, str], str], str]


@dataclass(frozen=True)
class ContainerImage:
    component: ComponentReference
    object: Tuple[str, str, str, str]
    image: str

    def to_dict(self):
        api, kind, ns, name = self.object
        return {
            "component": self.component.to_dict(),
            "object": {"apiVersion": api, "kind": kind, "namespace": ns, "name": name},
            "image": self.image,
        }


def _is_image_field(field_name: str, parent: str) -> bool:
    if field_name == "image" and ("container" in parent or "Container" in parent):
        return True
    return field_name == "url" and parent == "osImage"


def _walk(field_name: str, parent: str, elem: Any, fn: Callable[[str], str]) -> Optional[str]:
    """Returns a replacement when elem is an image string that fn changed."""
    if isinstance(elem, dict):
        for key in list(elem):
            new = _walk(key, field_name, elem[key], fn)
            if new is not None:
                elem[key] = new
        return None
    if isinstance(elem, list):
        for val in elem:
            _walk(field_name, parent, val, fn)
        return None
    if isinstance(elem, str) and _is_image_field(field_name, parent):
        ret = fn(elem)
        return ret if ret != elem else None
    return None


class ImageFinder:
    def __init__(self, components: List[Component]):
        self.components = components

    def walk_images(self, fn: ImageFn) -> List[Component]:
        """
        Calls fn(component_ref, object_ref, image) for every image and writes
        back what it returns. Works on copies; the originals are untouched.
        """
        out = []
        for comp in self.components:
            comp = comp.deep_copy()
            ref = comp.reference()
            for obj in comp.objects:
                oref = object_ref(obj)
                _walk("", "", obj, lambda img, oref=oref: fn(ref, oref, img))
            out.append(comp)
        return out

    def find_images(self) -> List[ContainerImage]:
        found: List[ContainerImage] = []

        def collect(ref: ComponentReference, oref: Tuple[str, str, str, str], img: str) -> str:
            found.append(ContainerImage(ref, oref, img))
            return img

        for comp in self.components:
            ref = comp.reference()
            for obj in comp.objects:
                oref = object_ref(obj)
                _walk("", "", copy.deepcopy(obj), lambda img, oref=oref: collect(ref, oref, img))
        logger.debug(f"Found {len(found)} container images in {len(self.components)} components")
        return found

    def flattened(self) -> List[str]:
        """Distinct images in first-seen order."""
        seen = set()
        images = []
        for ci in self.find_images():
            if ci.image not in seen:
                seen.add(ci.image)
                images.append(ci.image)
        return images
