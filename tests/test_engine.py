import threading

import pytest

from kubebundle.core import codec
from kubebundle.core.config import BundleConfig
from kubebundle.core.engine import FILTER_COMPONENTS, BundleEngine, merge_options
from kubebundle.core.errors import ConfigError, InlineIOError, OperationCancelled, StructuralError
from kubebundle.filtering.filter import FilterOptions

COMPONENT_BUILDER = """\
apiVersion: bundle.gke.io/v1alpha1
kind: ComponentBuilder
componentName: etcd
version: 1.0.0
objectFiles:
- url: manifests/pod.yaml
- url: manifests/tmpl.yaml
- url: manifests/patch.yaml
"""

POD = """\
apiVersion: v1
kind: Pod
metadata:
  name: etcd-server
  namespace: kube-system
spec:
  containers:
  - name: etcd
    image: etcd:3.5
"""

TEMPLATE_BUILDER = """\
apiVersion: bundle.gke.io/v1alpha1
kind: ObjectTemplateBuilder
metadata:
  name: cm-tmpl
file:
  url: cm.tmpl
"""

CM_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: {{.Name}}
  namespace: kube-system
data:
  size: '{{.Size}}'
"""

PATCH = """\
apiVersion: bundle.gke.io/v1alpha1
kind: PatchTemplate
metadata:
  name: pod-patch
selector:
  kinds: [Pod]
template: |
  kind: Pod
  metadata:
    labels:
      tier: {{.Tier}}
"""


@pytest.fixture
def builder_path(tmp_path):
    manifests = tmp_path / "manifests"
    manifests.mkdir()
    (manifests / "pod.yaml").write_text(POD)
    (manifests / "tmpl.yaml").write_text(TEMPLATE_BUILDER)
    (manifests / "cm.tmpl").write_text(CM_TEMPLATE)
    (manifests / "patch.yaml").write_text(PATCH)
    path = tmp_path / "component.yaml"
    path.write_text(COMPONENT_BUILDER)
    return str(path)


OPTIONS = {"Name": "etcd-config", "Size": 3, "Tier": "control-plane"}


def test_read_inline_apply(builder_path):
    engine = BundleEngine()
    bw = engine.inline(engine.read(builder_path), builder_path)
    assert bw.kind == "Component"
    assert [o["kind"] for o in bw.component.objects] == ["Pod", "PatchTemplate", "ObjectTemplate"]

    applied = engine.apply(bw, OPTIONS)
    objs = {o["kind"]: o for o in applied.component.objects}
    assert set(objs) == {"Pod", "ConfigMap"}
    assert objs["Pod"]["metadata"]["labels"] == {"tier": "control-plane"}
    assert objs["ConfigMap"]["data"] == {"size": "3"}
    assert engine.validate(applied) == []


def test_export_applies_options(builder_path):
    engine = BundleEngine()
    bw = engine.inline(engine.read(builder_path), builder_path)
    docs = codec.load_documents(engine.export(bw, OPTIONS))
    assert sorted(d["kind"] for d in docs) == ["ConfigMap", "Pod"]


def test_export_json(builder_path):
    engine = BundleEngine(BundleConfig(output_format="json"))
    bw = engine.inline(engine.read(builder_path), builder_path)
    objs = codec.load_json(engine.export(bw))
    assert [o["kind"] for o in objs] == ["Pod", "PatchTemplate", "ObjectTemplate"]


def test_include_patch_templates(builder_path):
    engine = BundleEngine(BundleConfig(include_patch_templates=True))
    bw = engine.inline(engine.read(builder_path), builder_path)
    kinds = [o["kind"] for o in engine.apply(bw, OPTIONS).component.objects]
    assert kinds.count("PatchTemplate") == 1


def test_missing_key_zero(builder_path):
    engine = BundleEngine(BundleConfig(missing_key="zero"))
    bw = engine.inline(engine.read(builder_path), builder_path)
    objs = engine.apply(bw, {"Name": "cm", "Tier": "x"}).component.objects
    cm = [o for o in objs if o["kind"] == "ConfigMap"][0]
    assert cm["data"] == {"size": ""}


def test_apply_honours_cancel(builder_path):
    engine = BundleEngine()
    bw = engine.inline(engine.read(builder_path), builder_path)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        engine.apply(bw, OPTIONS, cancel)


def test_builders_must_be_inlined_first(builder_path):
    engine = BundleEngine()
    bw = engine.read(builder_path)
    with pytest.raises(StructuralError):
        engine.apply(bw, {})
    with pytest.raises(StructuralError):
        engine.validate(bw)


def test_load_options_merges_in_order(tmp_path):
    first = tmp_path / "a.yaml"
    first.write_text("a: 1\nnested:\n  x: 1\n  y: 1\n")
    second = tmp_path / "b.json"
    second.write_text('{"b": 2, "nested": {"y": 2}}')
    opts = BundleEngine().load_options([str(first), str(second)])
    assert opts == {"a": 1, "b": 2, "nested": {"x": 1, "y": 2}}


def test_load_options_rejects_lists(tmp_path):
    path = tmp_path / "opts.yaml"
    path.write_text("- a\n")
    with pytest.raises(ConfigError):
        BundleEngine().load_options([str(path)])


def test_read_text_rejects_invalid_utf8(tmp_path):
    path = tmp_path / "opts.yaml"
    path.write_bytes(b"name: \xff\xfe\n")
    with pytest.raises(InlineIOError) as exc:
        BundleEngine().load_options([str(path)])
    assert exc.value.path == str(path)


def test_read_text_drops_bom(tmp_path):
    path = tmp_path / "opts.yaml"
    path.write_bytes(b"\xef\xbb\xbfname: web\n")
    assert BundleEngine().read_text(str(path)) == "name: web\n"


def test_merge_options_does_not_mutate():
    base = {"a": {"b": 1}}
    assert merge_options(base, {"a": {"c": 2}, "d": [1]}) == {"a": {"b": 1, "c": 2}, "d": [1]}
    assert base == {"a": {"b": 1}}


BUNDLE = """\
apiVersion: bundle.gke.io/v1alpha1
kind: Bundle
setName: infra
version: 1.0.0
components:
- apiVersion: bundle.gke.io/v1alpha1
  kind: Component
  metadata:
    name: etcd-1.0.0
  spec:
    componentName: etcd
    version: 1.0.0
    objects:
    - apiVersion: v1
      kind: Pod
      metadata:
        name: etcd
      spec:
        containers:
        - name: etcd
          image: etcd:3.5
    - apiVersion: v1
      kind: Service
      metadata:
        name: etcd
- apiVersion: bundle.gke.io/v1alpha1
  kind: Component
  metadata:
    name: dns-1.0.0
  spec:
    componentName: dns
    version: 1.0.0
    objects:
    - apiVersion: v1
      kind: Pod
      metadata:
        name: dns
      spec:
        containers:
        - name: dns
          image: coredns:1.11
"""


@pytest.fixture
def bundle_path(tmp_path):
    path = tmp_path / "bundle.yaml"
    path.write_text(BUNDLE)
    return str(path)


def test_bundle_filter_objects(bundle_path):
    engine = BundleEngine()
    bw = engine.read(bundle_path)
    out = engine.filter(bw, FilterOptions(kinds=["Service"]))
    assert [[o["kind"] for o in c.objects] for c in out.bundle.components] == [["Pod"], ["Pod"]]
    assert len(bw.bundle.components[0].objects) == 2


def test_bundle_filter_components(bundle_path):
    engine = BundleEngine()
    bw = engine.read(bundle_path)
    out = engine.filter(bw, FilterOptions(names=["dns"]), keep_only=True, target=FILTER_COMPONENTS)
    assert [c.component_name for c in out.bundle.components] == ["dns"]


def test_bundle_images_and_export(bundle_path):
    engine = BundleEngine()
    bw = engine.read(bundle_path)
    assert engine.distinct_images(bw) == ["etcd:3.5", "coredns:1.11"]
    assert [ci.component.component_name for ci in engine.find_images(bw)] == ["etcd", "dns"]
    assert engine.validate(bw) == []

    docs = codec.load_documents(engine.export(bw))
    assert [d["kind"] for d in docs] == ["ComponentSet", "Component", "Component"]
    assert docs[0]["metadata"]["name"] == "infra-1.0.0"


def test_render_and_write(bundle_path, tmp_path):
    engine = BundleEngine()
    text = engine.render(engine.read(bundle_path))
    assert text.startswith("apiVersion: bundle.gke.io/v1alpha1\nkind: Bundle\n")

    out = tmp_path / "rendered.yaml"
    engine.write(text, str(out))
    assert out.read_text() == text
