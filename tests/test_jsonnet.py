import _jsonnet
import pytest

from kubebundle.core.errors import InlineIOError, TemplateError
from kubebundle.core.models import Component
from kubebundle.options.jsonnet_applier import DirectoryImporter, DisabledImporter, JsonnetApplier

CONFIGMAP = """
function(opts) {
  apiVersion: 'v1',
  kind: 'ConfigMap',
  metadata: { name: opts.name },
  data: { replicas: std.toString(opts.replicas) },
}
"""


def jsonnet_template(template, name="js", **extra):
    obj = {
        "apiVersion": "bundle.gke.io/v1alpha1",
        "kind": "ObjectTemplate",
        "type": "jsonnet",
        "metadata": {"name": name},
        "template": template,
    }
    obj.update(extra)
    return obj


def component(*objects):
    return Component(component_name="etcd", version="1.0.0", objects=list(objects))


def test_single_object():
    out = JsonnetApplier().apply_options(component(jsonnet_template(CONFIGMAP)), {"name": "cm", "replicas": 2})
    assert out.objects == [{
        "apiVersion": "v1", "kind": "ConfigMap",
        "metadata": {"name": "cm"}, "data": {"replicas": "2"},
    }]


def test_array_of_objects():
    tmpl = "function(opts) [{kind: 'A', n: n} for n in opts.names]"
    out = JsonnetApplier().apply_options(component(jsonnet_template(tmpl)), {"names": ["x", "y"]})
    assert out.objects == [{"kind": "A", "n": "x"}, {"kind": "A", "n": "y"}]


def test_go_templates_are_left_alone():
    go = jsonnet_template("kind: A", name="go", type="go-template")
    out = JsonnetApplier().apply_options(component(go), {})
    assert out.objects == [go]


def test_schema_defaults():
    tmpl = jsonnet_template(
        "function(opts) {kind: 'A', name: opts.name}",
        optionsSchema={"type": "object", "properties": {"name": {"type": "string", "default": "dflt"}}},
    )
    out = JsonnetApplier().apply_options(component(tmpl), {})
    assert out.objects == [{"kind": "A", "name": "dflt"}]


def test_evaluation_error():
    with pytest.raises(TemplateError) as exc:
        JsonnetApplier().apply_options(component(jsonnet_template("function(opts) error 'boom'", name="bad")), {})
    assert "bad" in str(exc.value)


def test_imports_disabled_by_default():
    tmpl = "local lib = import 'lib.libsonnet'; function(opts) lib"
    with pytest.raises(TemplateError):
        JsonnetApplier().apply_options(component(jsonnet_template(tmpl)), {})


def test_directory_importer(tmp_path):
    (tmp_path / "lib.libsonnet").write_text("{kind: 'FromLib'}")
    tmpl = "local lib = import 'lib.libsonnet'; function(opts) lib"
    applier = JsonnetApplier(importer=DirectoryImporter([str(tmp_path)]))
    out = applier.apply_options(component(jsonnet_template(tmpl)), {})
    assert out.objects == [{"kind": "FromLib"}]


def test_disabled_importer_raises():
    with pytest.raises(InlineIOError):
        DisabledImporter().import_file("/", "x.libsonnet")


def test_binding_is_installed():
    assert callable(_jsonnet.evaluate_snippet)
