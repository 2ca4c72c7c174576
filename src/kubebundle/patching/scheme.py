#!/usr/bin/env python3
"""
KUBEBUNDLE PATCHER SCHEME - Known Types for Strategic Merge
-----------------------------------------------------------
Strategic merge needs to know, per field, how lists combine: merged by a
key (containers by name), merged as a set of scalars (finalizers), or
replaced wholesale. PatchMeta trees carry that knowledge for the types the
default scheme registers. Anything unregistered falls back to JSON merge.

The default scheme is built once at import time and is read-only after.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from kubebundle.core.errors import PatchError
from kubebundle.core.models import object_api_version, object_kind


@dataclass(frozen=True)
class PatchMeta:
    """How one field (and everything below it) merges."""
    merge_key: Optional[str] = None
    primitive_union: bool = False
    fields: Mapping[str, "PatchMeta"] = field(default_factory=dict)

    def child(self, name: str) -> "PatchMeta":
        return self.fields.get(name, EMPTY_META)

    @property
    def is_list(self) -> bool:
        return self.merge_key is not None or self.primitive_union


EMPTY_META = PatchMeta()


def _struct(**fields: PatchMeta) -> PatchMeta:
    return PatchMeta(fields=fields)


def _keyed(key: str, **fields: PatchMeta) -> PatchMeta:
    return PatchMeta(merge_key=key, fields=fields)


OBJECT_META = _struct(
    finalizers=PatchMeta(primitive_union=True),
    ownerReferences=_keyed("uid"),
)

CONTAINER = dict(
    ports=_keyed("containerPort"),
    env=_keyed("name"),
    volumeMounts=_keyed("mountPath"),
    volumeDevices=_keyed("devicePath"),
)

POD_SPEC = _struct(
    containers=_keyed("name", **CONTAINER),
    initContainers=_keyed("name", **CONTAINER),
    ephemeralContainers=_keyed("name", **CONTAINER),
    volumes=_keyed("name"),
    imagePullSecrets=_keyed("name"),
    hostAliases=_keyed("ip"),
    topologySpreadConstraints=_keyed("topologyKey"),
)

POD_TEMPLATE = _struct(metadata=OBJECT_META, spec=POD_SPEC)

CONDITIONS_STATUS = _struct(conditions=_keyed("type"))


def _kind(**fields: PatchMeta) -> PatchMeta:
    fields.setdefault("metadata", OBJECT_META)
    return PatchMeta(fields=fields)


POD = _kind(spec=POD_SPEC, status=CONDITIONS_STATUS)
WORKLOAD = _kind(spec=_struct(template=POD_TEMPLATE), status=CONDITIONS_STATUS)
JOB = _kind(spec=_struct(template=POD_TEMPLATE), status=CONDITIONS_STATUS)
CRON_JOB = _kind(spec=_struct(jobTemplate=_struct(spec=_struct(template=POD_TEMPLATE))))
SERVICE = _kind(spec=_struct(ports=_keyed("port")))
PLAIN = _kind()


class PatcherScheme:
    """A registry of (apiVersion, kind) -> PatchMeta."""

    def __init__(self):
        self._types: Dict[Tuple[str, str], PatchMeta] = {}

    def register(self, api_version: str, kind: str, meta: PatchMeta = PLAIN) -> None:
        self._types[(api_version, kind)] = meta

    def is_registered(self, api_version: str, kind: str) -> bool:
        return (api_version, kind) in self._types

    def lookup(self, obj: Dict[str, Any]) -> Optional[PatchMeta]:
        return self._types.get((object_api_version(obj), object_kind(obj)))

    def decode(self, obj: Dict[str, Any]) -> Optional[PatchMeta]:
        """
        Returns the PatchMeta for a registered object after checking that the
        object's shape agrees with it. Unregistered objects return None.
        """
        meta = self.lookup(obj)
        if meta is not None:
            _check_shape(obj, meta, f"{object_api_version(obj)}, Kind={object_kind(obj)}")
        return meta


def _check_shape(value: Any, meta: PatchMeta, path: str) -> None:
    if meta.is_list:
        if not isinstance(value, list):
            raise PatchError(f"while decoding object via scheme: {path}: expected a list, got {type(value).__name__}")
        if meta.merge_key is not None:
            for i, item in enumerate(value):
                if not isinstance(item, dict):
                    raise PatchError(
                        f"while decoding object via scheme: {path}[{i}]: expected an object, got {type(item).__name__}")
                _check_fields(item, meta, f"{path}[{i}]")
        return
    if meta.fields:
        if not isinstance(value, dict):
            raise PatchError(f"while decoding object via scheme: {path}: expected an object, got {type(value).__name__}")
        _check_fields(value, meta, path)


def _check_fields(value: Dict[str, Any], meta: PatchMeta, path: str) -> None:
    for name, child in meta.fields.items():
        if name in value and value[name] is not None:
            _check_shape(value[name], child, f"{path}.{name}")


def _build_default_scheme() -> PatcherScheme:
    s = PatcherScheme()
    for kind in ("ConfigMap", "Secret", "ServiceAccount", "Namespace", "PersistentVolumeClaim",
                 "PersistentVolume", "Endpoints", "LimitRange", "ResourceQuota", "Node"):
        s.register("v1", kind)
    s.register("v1", "Pod", POD)
    s.register("v1", "Service", SERVICE)
    s.register("v1", "ReplicationController", WORKLOAD)
    s.register("v1", "PodTemplate", _kind(template=POD_TEMPLATE))

    for group in ("apps/v1", "apps/v1beta1", "apps/v1beta2", "extensions/v1beta1"):
        for kind in ("Deployment", "DaemonSet", "StatefulSet", "ReplicaSet"):
            s.register(group, kind, WORKLOAD)
    s.register("apps/v1", "ControllerRevision")
    s.register("extensions/v1beta1", "Ingress")
    s.register("extensions/v1beta1", "PodSecurityPolicy")

    s.register("batch/v1", "Job", JOB)
    s.register("batch/v1", "CronJob", CRON_JOB)
    s.register("batch/v1beta1", "CronJob", CRON_JOB)

    s.register("policy/v1beta1", "PodDisruptionBudget")
    s.register("policy/v1beta1", "PodSecurityPolicy")

    for kind in ("Role", "RoleBinding", "ClusterRole", "ClusterRoleBinding"):
        s.register("rbac.authorization.k8s.io/v1", kind)

    for kind in ("StorageClass", "VolumeAttachment"):
        s.register("storage.k8s.io/v1", kind)

    s.register("apiextensions.k8s.io/v1beta1", "CustomResourceDefinition")
    return s


_DEFAULT_SCHEME = _build_default_scheme()


def default_patcher_scheme() -> PatcherScheme:
    return _DEFAULT_SCHEME
