import json

import pytest

from kubebundle.cli.main import KubeBundleCLI, filter_options_from_args
from kubebundle.core import codec

COMPONENT = """\
apiVersion: bundle.gke.io/v1alpha1
kind: Component
metadata:
  name: web-1.0.0
spec:
  componentName: web
  version: 1.0.0
  objects:
  - apiVersion: apps/v1
    kind: Deployment
    metadata:
      name: web
      labels:
        app: web
    spec:
      template:
        spec:
          containers:
          - name: web
            image: nginx:1.25
          - name: proxy
            image: envoy:1.28
  - apiVersion: v1
    kind: Service
    metadata:
      name: web
  - apiVersion: bundle.gke.io/v1alpha1
    kind: ObjectTemplate
    metadata:
      name: cm
    template: |
      apiVersion: v1
      kind: ConfigMap
      metadata:
        name: {{.Name}}
"""

COMPONENT_BUILDER = """\
apiVersion: bundle.gke.io/v1alpha1
kind: ComponentBuilder
componentName: web
version: 1.0.0
objectFiles:
- url: svc.yaml
"""


@pytest.fixture
def component_path(tmp_path):
    path = tmp_path / "component.yaml"
    path.write_text(COMPONENT)
    return str(path)


@pytest.fixture
def options_path(tmp_path):
    path = tmp_path / "options.yaml"
    path.write_text("Name: web-config\n")
    return str(path)


def run(argv, environ=None):
    return KubeBundleCLI(environ=environ or {}).run(argv)


def test_version(capsys):
    assert run(["version"]) == 0
    assert "kubebundle v0.1.0" in capsys.readouterr().out


def test_inline_to_file(tmp_path):
    (tmp_path / "svc.yaml").write_text("apiVersion: v1\nkind: Service\nmetadata:\n  name: web\n")
    builder = tmp_path / "builder.yaml"
    builder.write_text(COMPONENT_BUILDER)
    out = tmp_path / "inlined.yaml"

    assert run(["inline", str(builder), "-o", str(out)]) == 0
    doc = codec.load_yaml(out.read_text())
    assert doc["kind"] == "Component"
    assert doc["metadata"]["name"] == "web-1.0.0"
    assert doc["spec"]["objects"] == [{"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"}}]


def test_apply_with_options(component_path, options_path, capsys):
    assert run(["apply", component_path, "--options", options_path]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    kinds = [o["kind"] for o in doc["spec"]["objects"]]
    assert kinds == ["Deployment", "Service", "ConfigMap"]
    assert doc["spec"]["objects"][2]["metadata"]["name"] == "web-config"


def test_apply_missing_option_fails(component_path, capsys):
    assert run(["apply", component_path]) == 1
    assert "Error" in capsys.readouterr().err


def test_apply_missing_key_flag(component_path, capsys):
    assert run(["apply", component_path, "--missing-key", "default"]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    assert doc["spec"]["objects"][2]["metadata"]["name"] == "<no value>"


def test_export_json_from_environment(component_path, options_path, capsys):
    code = run(["export", component_path, "--options", options_path],
               environ={"KUBEBUNDLE_OUTPUT_FORMAT": "json"})
    assert code == 0
    objs = json.loads(capsys.readouterr().out)
    assert [o["kind"] for o in objs] == ["Deployment", "Service", "ConfigMap"]


def test_filter_keep_only(component_path, capsys):
    assert run(["filter", component_path, "--kinds", "Service", "--keep-only"]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    assert [o["kind"] for o in doc["spec"]["objects"]] == ["Service"]


def test_filter_by_label(component_path, capsys):
    assert run(["filter", component_path, "--labels", "app=web"]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    assert [o["kind"] for o in doc["spec"]["objects"]] == ["Service", "ObjectTemplate"]


def test_find_images_flatten(component_path, capsys):
    assert run(["find-images", component_path, "--flatten"]) == 0
    assert capsys.readouterr().out == "nginx:1.25\nenvoy:1.28\n"


def test_validate(component_path, tmp_path):
    assert run(["validate", component_path]) == 0

    bad = tmp_path / "bad.yaml"
    bad.write_text(COMPONENT.replace("version: 1.0.0", "version: one"))
    assert run(["validate", str(bad)]) == 1


def test_missing_input_file(tmp_path, capsys):
    assert run(["inline", str(tmp_path / "nope.yaml")]) == 1
    assert "InlineIOError" in capsys.readouterr().err


def test_bad_config_file(component_path, tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("output_format: xml\n")
    assert run(["--config", str(cfg), "inline", component_path]) == 1


def test_bad_missing_key_choice(component_path):
    with pytest.raises(SystemExit):
        run(["apply", component_path, "--missing-key", "sometimes"])


def test_filter_options_from_args():
    cli = KubeBundleCLI(environ={})
    args = cli.parser.parse_args(["filter", "x.yaml", "--kinds", "Pod, Service", "--annotations", "a=1,b"])
    fopts = filter_options_from_args(args)
    assert fopts.kinds == ["Pod", "Service"]
    assert fopts.annotations == {"a": "1", "b": ""}

    args = cli.parser.parse_args(["filter", "x.yaml"])
    assert filter_options_from_args(args) is None


RAW_TEXT_COMPONENT = """\
apiVersion: bundle.gke.io/v1alpha1
kind: Component
metadata:
  name: web-1.0.0
spec:
  componentName: web
  version: 1.0.0
  objects:
  - apiVersion: v1
    kind: ConfigMap
    metadata:
      name: files
      annotations:
        bundle.gke.io/inline-type: raw-string
    data:
      svc.yaml: |
        apiVersion: v1
        kind: Service
        metadata:
          name: {{.Name}}
"""


def test_apply_raw_text_flag(tmp_path, options_path, capsys):
    path = tmp_path / "raw.yaml"
    path.write_text(RAW_TEXT_COMPONENT)

    assert run(["apply", str(path), "--options", options_path]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    assert [o["kind"] for o in doc["spec"]["objects"]] == ["ConfigMap"]

    assert run(["apply", str(path), "--options", options_path, "--raw-text"]) == 0
    doc = codec.load_yaml(capsys.readouterr().out)
    assert doc["spec"]["objects"] == [{"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web-config"}}]
