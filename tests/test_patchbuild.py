import pytest

from kubebundle.build.patchbuild import add_param_defaults, all_patch_templates, component_patch_templates
from kubebundle.core.errors import SchemaValidationError, StructuralError, TemplateError
from kubebundle.core.models import Bundle, Component, ComponentBuilder
from kubebundle.core.wrapper import BundleWrapper
from kubebundle.filtering.filter import FilterOptions
from kubebundle.options.patchtmpl import PatchTemplateApplier

POD = {"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "biff", "namespace": "derp"}}


def builder(template, name="ptb", **extra):
    obj = {
        "apiVersion": "bundle.gke.io/v1alpha1",
        "kind": "PatchTemplateBuilder",
        "metadata": {"name": name},
        "template": template,
    }
    obj.update(extra)
    return obj


def component(*objects):
    return Component(component_name="kube-apiserver", version="1.0.0", objects=list(objects))


def templates_of(comp):
    return [o for o in comp.objects if o["kind"] == "PatchTemplate"]


def test_build_renders_build_options():
    comp = component(POD, builder("kind: Pod\nmetadata:\n  namespace: {{.Namespace}}"))
    out = component_patch_templates(comp, None, {"Namespace": "foo"})

    assert [o["kind"] for o in out.objects] == ["Pod", "PatchTemplate"]
    assert "namespace: foo" in templates_of(out)[0]["template"]
    assert templates_of(out)[0]["metadata"] == {"name": "ptb"}


def test_target_schema_properties_pass_through():
    ptb = builder(
        "metadata:\n  name: {{.PodName}}\n  namespace: {{.Namespace}}",
        targetSchema={"type": "object", "properties": {"PodName": {"type": "string"}}},
    )
    out = component_patch_templates(component(ptb), None, {"Namespace": "foo"})
    pt = templates_of(out)[0]

    assert "name: {{.PodName}}" in pt["template"]
    assert "namespace: foo" in pt["template"]
    assert pt["optionsSchema"] == {"type": "object", "properties": {"PodName": {"type": "string"}}}


def test_compiled_template_applies_later():
    ptb = builder(
        "kind: Pod\nmetadata:\n  namespace: {{.Namespace}}",
        targetSchema={"type": "object", "properties": {"Namespace": {"type": "string"}}},
    )
    built = component_patch_templates(component(POD, ptb), None, None)
    applied = PatchTemplateApplier().apply_options(built, {"Namespace": "zed"})
    assert applied.objects == [dict(POD, metadata={"name": "biff", "namespace": "zed"})]


def test_build_schema_defaults():
    ptb = builder(
        "metadata:\n  namespace: {{.Namespace}}",
        buildSchema={"type": "object", "properties": {"Namespace": {"type": "string", "default": "dflt"}}},
    )
    out = component_patch_templates(component(ptb), None, {})
    assert "namespace: dflt" in templates_of(out)[0]["template"]


def test_missing_build_option_fails():
    with pytest.raises(TemplateError) as exc:
        component_patch_templates(component(builder("x: {{.Missing}}")), None, {})
    assert "ptb" in str(exc.value)
    assert "Missing" in str(exc.value)


def test_empty_template_fails():
    with pytest.raises(TemplateError) as exc:
        component_patch_templates(component(builder("", name="blank")), None, {})
    assert "blank" in str(exc.value)


def test_filter_selects_builders_without_mutating_options():
    comp = component(builder("a: {{.A}}", name="one"), builder("b: {{.B}}", name="two"))
    fopts = FilterOptions(names=["one"], kinds=["Something"])
    out = component_patch_templates(comp, fopts, {"A": "1"})

    assert fopts.kinds == ["Something"]
    assert [o["kind"] for o in out.objects] == ["PatchTemplateBuilder", "PatchTemplate"]
    assert out.objects[0]["metadata"]["name"] == "two"


def test_nested_target_properties():
    op = {}
    add_param_defaults("", {"Foo": {"properties": {"Bar": {"type": "string"}}}, "Baz": {}}, op)
    assert op == {"Foo": {"Bar": "{{.Foo.Bar}}"}, "Baz": "{{.Baz}}"}


def test_nested_target_property_conflict():
    with pytest.raises(SchemaValidationError):
        add_param_defaults("", {"Foo": {"properties": {"Bar": {}}}}, {"Foo": "scalar"})


def test_bundle_wrapper_compiles_every_component():
    bun = Bundle(set_name="set", version="1.0.0", components=[
        component(builder("a: {{.A}}")),
        Component(component_name="other", version="2.0.0", objects=[builder("b: {{.A}}")]),
    ])
    out = all_patch_templates(BundleWrapper.from_bundle(bun), None, {"A": "x"})
    assert [templates_of(c)[0]["template"] for c in out.bundle.components] == ["a: x", "b: x"]


def test_builders_are_not_supported_kinds():
    with pytest.raises(StructuralError):
        all_patch_templates(BundleWrapper(ComponentBuilder(), "ComponentBuilder"), None, {})
