import pytest

from kubebundle.core.errors import StructuralError
from kubebundle.core.models import Bundle, Component, ComponentReference, ComponentSet
from kubebundle.validator.names import is_dns1123_subdomain, sanitize_name, validate_name
from kubebundle.validator.validator import BundleValidator, ComponentValidator


def pod(name, kind="Pod", api="v1"):
    obj = {"apiVersion": api, "kind": kind, "metadata": {}}
    if name:
        obj["metadata"]["name"] = name
    return obj


def component(name="etcd", version="1.0.0", objects=None, **kwargs):
    return Component(component_name=name, version=version, objects=objects or [], **kwargs)


def test_valid_components_have_no_errors():
    comps = [component(objects=[pod("a"), pod("b")]), component(name="dns", version="2.10.0")]
    cset = ComponentSet(set_name="set", version="1.0.0",
                        components=[c.reference() for c in comps])
    assert ComponentValidator(comps, cset).validate() == []


@pytest.mark.parametrize("comp, fragment", [
    (component(name="Bad_Name"), "component name 'Bad_Name' was invalid"),
    (component(version=""), "version missing"),
    (component(version="1.0"), "must be of the form X.Y.Z"),
    (component(version="01.0.0"), "must be of the form X.Y.Z"),
    (component(api_version="v1"), "apiVersion must be of the form"),
    (component(kind="ComponentBuilder"), "kind must be \"Component\""),
])
def test_component_problems(comp, fragment):
    errs = ComponentValidator([comp]).validate()
    assert any(fragment in e for e in errs), errs


def test_duplicate_components():
    errs = ComponentValidator([component(), component()]).validate()
    assert errs == ["duplicate component key etcd/1.0.0"]


def test_component_set_problems():
    cset = ComponentSet(set_name="", version="x", kind="Set",
                        components=[ComponentReference("missing", "1.0.0")])
    errs = ComponentValidator([component()], cset).validate()
    assert len(errs) == 4
    assert "could not find component reference missing/1.0.0 for any of the components" in errs


@pytest.mark.parametrize("obj, fragment", [
    (pod(""), "must always have a metadata.name"),
    (pod("Upper"), "invalid name 'Upper'"),
    (pod("a", kind=""), "must always have a kind"),
    (pod("a", api=""), "must always have an apiVersion"),
])
def test_object_problems(obj, fragment):
    errs = ComponentValidator([component(objects=[obj])]).validate()
    assert len(errs) == 1
    assert fragment in errs[0]


def test_duplicate_objects_within_a_component():
    errs = ComponentValidator([component(objects=[pod("a"), pod("a"), pod("a", kind="Service")])]).validate()
    assert errs == ["duplicate object found with object reference v1/Pod//a for component 'etcd'"]


def test_same_object_in_two_components_is_fine():
    comps = [component(objects=[pod("a")]), component(name="dns", objects=[pod("a")])]
    assert ComponentValidator(comps).validate() == []


def test_broken_template_schemas_are_reported():
    tmpl = {
        "apiVersion": "bundle.gke.io/v1alpha1",
        "kind": "PatchTemplateBuilder",
        "metadata": {"name": "ptb"},
        "buildSchema": {"type": "object"},
        "targetSchema": {"type": "notatype"},
    }
    errs = ComponentValidator([component(objects=[tmpl])]).validate()
    assert len(errs) == 1
    assert "invalid targetSchema for PatchTemplateBuilder 'ptb'" in errs[0]


def test_bundle_validation_collects_everything():
    bun = Bundle(set_name="set", version="1.0", kind="Bundles",
                 components=[component(version="bad")])
    errs = BundleValidator(bun).validate()
    assert any("bundle kind must be" in e for e in errs)
    assert any("bundle version string" in e for e in errs)
    assert any("component spec version is invalid" in e for e in errs)


def test_bundle_without_set_name_skips_set_checks():
    assert BundleValidator(Bundle(components=[component()])).validate() == []


@pytest.mark.parametrize("name, expected", [
    ("foo", "foo"),
    ("Foo Bar", "foo_bar"),
    ("-lead", "zlead"),
    ("trail.", "trailz"),
    ("a" * 300, "a" * 253),
])
def test_sanitize_name(name, expected):
    assert sanitize_name(name) == expected


@pytest.mark.parametrize("name", ["", "-a", "a-", "a b", "a" * 254])
def test_validate_name_rejects(name):
    with pytest.raises(StructuralError):
        validate_name(name)


def test_dns_subdomain():
    assert is_dns1123_subdomain("etcd-1.0.0") == []
    assert is_dns1123_subdomain("Etcd") != []
