import pytest

from kubebundle.core.errors import StructuralError, TemplateError
from kubebundle.core.models import INLINE_TYPE_ANNOTATION, Component
from kubebundle.options.rawtext import RawTextApplier


def raw_config_map(name, data, inline_type="raw-string"):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "annotations": {INLINE_TYPE_ANNOTATION: inline_type}},
        "data": data,
    }


def component(*objects, metadata=None):
    return Component(component_name="etcd", version="1.0.0", objects=list(objects), metadata=metadata or {})


SERVICE = "apiVersion: v1\nkind: Service\nmetadata:\n  name: {{.Name}}-svc\n"
POD_JSON = '{"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "{{.Name}}-pod"}}'


def test_each_data_key_becomes_one_object():
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE, "pod.json": POD_JSON}))
    out = RawTextApplier().apply_options(comp, {"Name": "etcd"})
    # data keys render in sorted order
    assert out.objects == [
        {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "etcd-pod"}},
        {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "etcd-svc"}},
    ]


def test_other_objects_come_first_and_are_kept():
    plain_cm = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "plain"}, "data": {"a": "b"}}
    other_inline = raw_config_map("other", {"x": "y"}, inline_type="something-else")
    pod = {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "p"}}
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE}), plain_cm, other_inline, pod)

    out = RawTextApplier().apply_options(comp, {"Name": "web"})
    assert [o["metadata"]["name"] for o in out.objects] == ["plain", "other", "p", "web-svc"]


def test_input_component_unchanged():
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE}))
    RawTextApplier().apply_options(comp, {"Name": "web"})
    assert comp.objects[0]["kind"] == "ConfigMap"


def test_missing_option_names_config_map():
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE}))
    with pytest.raises(TemplateError) as exc:
        RawTextApplier().apply_options(comp, {})
    assert "files" in str(exc.value)
    assert "etcd" in str(exc.value)
    assert exc.value.template_name == "files-svc.yaml-tmpl"


def test_missing_key_policy():
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE}))
    out = RawTextApplier(missing_key="default").apply_options(comp, {})
    assert out.objects[0]["metadata"]["name"] == "<no value>-svc"


def test_rendered_text_must_be_an_object():
    comp = component(raw_config_map("files", {"list.yaml": "- a\n- b\n"}))
    with pytest.raises(StructuralError) as exc:
        RawTextApplier().apply_options(comp, {})
    assert "list.yaml" in str(exc.value)


def test_safe_yaml_annotation_quotes_values():
    comp = component(raw_config_map("files", {"svc.yaml": SERVICE.replace("{{.Name}}-svc", "{{.Name}}")}),
                     metadata={"annotations": {"bundle.gke.io/safe-yaml": "true"}})
    out = RawTextApplier().apply_options(comp, {"Name": "a: b"})
    assert out.objects[0]["metadata"]["name"] == "a: b"


def test_claims_no_template_types():
    assert RawTextApplier().template_types == ()
