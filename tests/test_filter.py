import pytest

from kubebundle.core.models import Component
from kubebundle.filtering.filter import (
    FilterOptions, filter_components, filter_objects, matches_component, matches_object,
    partition_components, partition_objects, select_components, select_objects,
)

OBJECTS = [
    {
        "apiVersion": "v1", "kind": "ConfigMap",
        "metadata": {"name": "zed", "namespace": "kube-system",
                     "annotations": {"foo": "bar"}, "labels": {"tier": "backend"}},
    },
    {
        "apiVersion": "v1", "kind": "Pod",
        "metadata": {"name": "biff", "namespace": "default", "labels": {"tier": "frontend"}},
    },
    {
        "apiVersion": "apps/v1", "kind": "Deployment",
        "metadata": {"name": "fred", "namespace": "kube-system"},
    },
]


def _names(objs):
    return [o["metadata"]["name"] for o in objs]


PARTITION_CASES = [
    (FilterOptions(kinds=["Pod"]), ["biff"], ["zed", "fred"]),
    (FilterOptions(kinds=["apps/v1,Deployment"]), ["fred"], ["zed", "biff"]),
    (FilterOptions(kinds=["v1,Deployment"]), [], ["zed", "biff", "fred"]),
    (FilterOptions(namespaces=["kube-system"]), ["zed", "fred"], ["biff"]),
    (FilterOptions(names=["zed", "biff"]), ["zed", "biff"], ["fred"]),
    (FilterOptions(annotations={"foo": "bar"}), ["zed"], ["biff", "fred"]),
    (FilterOptions(annotations={"foo": ""}), ["zed"], ["biff", "fred"]),
    (FilterOptions(annotations={"foo": "baz"}), [], ["zed", "biff", "fred"]),
    (FilterOptions(labels={"tier": "frontend"}), ["biff"], ["zed", "fred"]),
    (FilterOptions(labels={"tier": ""}), ["zed", "biff"], ["fred"]),
    (FilterOptions(kinds=["ConfigMap"], names=["biff"]), [], ["zed", "biff", "fred"]),
    (FilterOptions(), ["zed", "biff", "fred"], []),
]


@pytest.mark.parametrize("opts, matched, not_matched", PARTITION_CASES)
def test_partition_objects(opts, matched, not_matched):
    m, nm = partition_objects(OBJECTS, opts)
    assert _names(m) == matched
    assert _names(nm) == not_matched


@pytest.mark.parametrize("opts, matched, not_matched", PARTITION_CASES)
def test_partition_is_idempotent(opts, matched, not_matched):
    m, _ = partition_objects(OBJECTS, opts)
    again, rest = partition_objects(m, opts)
    assert again == m
    assert rest == []


DEPLOYMENTS = [
    {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "new"}},
    {"apiVersion": "extensions/v1beta1", "kind": "Deployment", "metadata": {"name": "old"}},
]


@pytest.mark.parametrize("kind, expected", [
    ("apps/v1,Deployment", ["new"]),
    ("extensions/v1beta1,Deployment", ["old"]),
    ("Deployment", ["new", "old"]),
])
def test_qualified_kinds_pick_one_api_version(kind, expected):
    assert _names(select_objects(DEPLOYMENTS, FilterOptions(kinds=[kind]))) == expected


def test_partition_without_options_matches_everything():
    m, nm = partition_objects(OBJECTS, None)
    assert _names(m) == ["zed", "biff", "fred"]
    assert nm == []


def test_partition_ignores_invert_match():
    plain = partition_objects(OBJECTS, FilterOptions(kinds=["Pod"]))
    inverted = partition_objects(OBJECTS, FilterOptions(kinds=["Pod"], invert_match=True))
    assert plain == inverted


def test_partition_returns_copies():
    m, nm = partition_objects(OBJECTS, FilterOptions(kinds=["Pod"]))
    m[0]["metadata"]["name"] = "changed"
    nm[0]["metadata"]["labels"]["tier"] = "changed"
    assert OBJECTS[1]["metadata"]["name"] == "biff"
    assert OBJECTS[0]["metadata"]["labels"]["tier"] == "backend"


def test_select_and_filter_objects():
    opts = FilterOptions(kinds=["Pod"])
    assert _names(select_objects(OBJECTS, opts)) == ["biff"]
    assert _names(filter_objects(OBJECTS, opts)) == ["zed", "fred"]

    opts.invert_match = True
    assert _names(select_objects(OBJECTS, opts)) == ["zed", "fred"]
    assert _names(filter_objects(OBJECTS, opts)) == ["biff"]


def test_matches_object_honors_invert():
    pod = OBJECTS[1]
    assert matches_object(pod, None)
    assert matches_object(pod, FilterOptions(kinds=["Pod"]))
    assert not matches_object(pod, FilterOptions(kinds=["Pod"], invert_match=True))
    assert matches_object(pod, FilterOptions(kinds=["ConfigMap"], invert_match=True))


def test_from_selector_none():
    assert FilterOptions.from_selector(None) is None


COMPONENTS = [
    Component(component_name="etcd", version="1.0.0",
              metadata={"name": "etcd-1.0.0", "labels": {"tier": "storage"}}),
    Component(component_name="kube-apiserver", version="1.2.0",
              metadata={"name": "kube-apiserver-1.2.0", "annotations": {"critical": "yes"}}),
]


def test_components_match_on_component_name():
    m, nm = partition_components(COMPONENTS, FilterOptions(names=["etcd"]))
    assert [c.component_name for c in m] == ["etcd"]
    assert [c.component_name for c in nm] == ["kube-apiserver"]

    # metadata.name is not the name dimension for components
    m, _ = partition_components(COMPONENTS, FilterOptions(names=["etcd-1.0.0"]))
    assert m == []


def test_select_and_filter_components():
    by_label = FilterOptions(labels={"tier": "storage"})
    assert [c.component_name for c in select_components(COMPONENTS, by_label)] == ["etcd"]
    assert [c.component_name for c in filter_components(COMPONENTS, by_label)] == ["kube-apiserver"]

    by_annotation = FilterOptions(annotations={"critical": ""}, invert_match=True)
    assert [c.component_name for c in select_components(COMPONENTS, by_annotation)] == ["etcd"]
    assert matches_component(COMPONENTS[0], by_annotation)
    assert not matches_component(COMPONENTS[1], by_annotation)


def test_partition_components_copies():
    m, _ = partition_components(COMPONENTS, None)
    m[0].objects.append({"kind": "Pod"})
    assert COMPONENTS[0].objects == []
