import pytest

from nextgen_routes.cache import ResourceCache
from nextgen_routes.config import ControllerSettings, ExtendedParsedSpec, ExtendedRouteGroupSpec
from nextgen_routes.errors import ValidationError
from nextgen_routes.extended_spec import (
    ExtendedSpecReconciler,
    get_operational_specs,
    parse_extended_spec,
    set_namespace_label_mode,
)
from nextgen_routes.resources import from_manifest
from nextgen_routes.store import ResourceStore

GLOBAL_CM = "kube-system/global-cm"


class RecordingBuilder:
    def __init__(self):
        self.calls = []

    def process_route_group(self, group_key, trigger_delete=False):
        self.calls.append(("teardown" if trigger_delete else "rebuild", group_key))


def config_map(namespace, name, text, created=1):
    return from_manifest(
        {
            "kind": "ConfigMap",
            "metadata": {"namespace": namespace, "name": name, "creationTimestamp": created},
            "data": {"extendedSpec": text},
        }
    )


def group(namespace, vserver_name, *extra, allow_override=True):
    lines = [
        f"  - namespace: {namespace}",
        "    vserverAddr: 10.8.0.4",
        f"    vserverName: {vserver_name}",
        f"    allowOverride: {str(allow_override).lower()}",
    ]
    return "\n".join(lines + [f"    {line}" for line in extra])


def document(*groups, base=""):
    return "\n".join(([base] if base else []) + ["extendedRouteSpec:", *groups])


def reconciler(*resources, settings=None):
    settings = settings or ControllerSettings(route_spec_configmap=GLOBAL_CM)
    store = ResourceStore(settings)
    builder = RecordingBuilder()
    return ExtendedSpecReconciler(store, ResourceCache(resources), builder), store, builder


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------
def test_parse_applies_defaults():
    doc = parse_extended_spec(
        document(group("tenant", "gw", "healthMonitors:", "  - path: example.com/")),
        default_partition="k8s",
    )

    (entry,) = doc.groups
    assert entry.route_group == "tenant"
    assert entry.bigip_partition == "k8s"
    assert entry.spec.allow_override is True
    assert entry.spec.health_monitors[0].type == "http"
    assert entry.spec.depends_on_tls_cipher is True
    assert doc.base_route_config is None


def test_parse_base_route_spec_defaults():
    doc = parse_extended_spec("baseRouteSpec:\n  tlsCipher:\n    tlsVersion: '1.3'\nextendedRouteSpec: []\n")

    cipher = doc.base_route_config.tls_cipher
    assert (cipher.tls_version, cipher.ciphers, cipher.cipher_group) == ("1.3", "DEFAULT", "/Common/f5-default")


@pytest.mark.parametrize(
    "text",
    [
        "extendedRouteSpec:\n  - namespace: a\n    unknownField: 1\n",
        "extendedRouteSpec:\n  - namespace: a\n    tls:\n      reference: vault\n",
        "extendedRouteSpec:\n  - namespace: a\n    healthMonitors:\n      - type: http\n",
        "extendedRouteSpec:\n  - namespace: a\n    allowOverride: maybe\n",
        "extendedRouteSpec: not-a-list\n",
        "extendedRouteSpec: [\n",
    ],
)
def test_parse_rejects_malformed_documents(text):
    with pytest.raises(ValidationError):
        parse_extended_spec(text)


def test_namespace_and_label_are_mutually_exclusive():
    doc = parse_extended_spec(
        "extendedRouteSpec:\n  - namespace: a\n  - namespaceLabel: team=b\n"
    )
    with pytest.raises(ValidationError):
        set_namespace_label_mode(doc, "team")


def test_namespace_label_requires_option():
    doc = parse_extended_spec("extendedRouteSpec:\n  - namespaceLabel: team=b\n")

    with pytest.raises(ValidationError):
        set_namespace_label_mode(doc, "")
    assert set_namespace_label_mode(doc, "team") is True


# ----------------------------------------------------------------------
# Deltas
# ----------------------------------------------------------------------
def parsed(vserver_name="gw", override=True, partition="k8s", snat="", depends=True):
    return ExtendedParsedSpec(
        override=override,
        global_=ExtendedRouteGroupSpec(
            vserver_name=vserver_name, snat=snat, depends_on_tls_cipher=depends
        ),
        namespaces=("ns",),
        partition=partition,
    )


def test_operational_specs_classify_changes():
    cached = {
        "same": parsed(),
        "renamed": parsed(),
        "moved": parsed(),
        "tweaked": parsed(),
        "gone": parsed(),
        "local-only": ExtendedParsedSpec(local=ExtendedRouteGroupSpec()),
    }
    new = {
        "same": parsed(),
        "renamed": parsed(vserver_name="gw2"),
        "moved": parsed(partition="other"),
        "tweaked": parsed(snat="none"),
        "local-only": parsed(),
        "fresh": parsed(),
    }

    deleted, modified, updated, created = get_operational_specs(cached, new)

    assert deleted == ["gone"]
    assert modified == ["moved", "renamed"]
    assert updated == ["tweaked"]
    assert created == ["fresh", "local-only"]


def test_cipher_change_updates_dependent_groups_only():
    cached = {"secret": parsed(depends=True), "bigip": parsed(depends=False)}
    new = {"secret": parsed(depends=True), "bigip": parsed(depends=False)}

    assert get_operational_specs(cached, new, cipher_changed=True)[2] == ["secret"]
    assert get_operational_specs(cached, new)[2] == []


def test_delete_of_global_document_deletes_every_group():
    cached = {"a": parsed(), "b": parsed(), "local": ExtendedParsedSpec(local=ExtendedRouteGroupSpec())}

    assert get_operational_specs(cached, {}, is_delete=True) == (["a", "b"], [], [], [])


# ----------------------------------------------------------------------
# Global documents
# ----------------------------------------------------------------------
def test_global_document_creates_updates_and_deletes_groups():
    rec, store, builder = reconciler()
    rec.process_config_map(
        config_map("kube-system", "global-cm", document(group("tenant", "gw"), group("other", "o")))
    )
    assert builder.calls == [("rebuild", "other"), ("rebuild", "tenant")]
    assert store.group_for_namespace("tenant") == "tenant"

    builder.calls.clear()
    rec.process_config_map(
        config_map(
            "kube-system",
            "global-cm",
            document(group("tenant", "gw-new"), group("other", "o", "snat: none")),
        )
    )
    assert builder.calls == [("teardown", "tenant"), ("rebuild", "tenant"), ("rebuild", "other")]
    assert store.effective_spec("tenant").vserver_name == "gw-new"

    builder.calls.clear()
    rec.process_config_map(config_map("kube-system", "global-cm", document(group("tenant", "gw-new"))))
    assert builder.calls == [("teardown", "other")]
    assert "other" not in store.extd_spec_map
    assert store.group_for_namespace("other") is None


def test_cipher_change_rebuilds_cipher_dependent_groups():
    rec, _, builder = reconciler()
    bigip = group("a", "a", "tls:", "  reference: bigip", "  clientSSL: /Common/clientssl")
    rec.process_global(config_map("kube-system", "global-cm", document(bigip, group("b", "b"))))
    builder.calls.clear()

    base = "baseRouteSpec:\n  tlsCipher:\n    tlsVersion: '1.3'"
    rec.process_global(config_map("kube-system", "global-cm", document(bigip, group("b", "b"), base=base)))

    assert builder.calls == [("rebuild", "b")]


def test_init_state_only_stores_the_map():
    local = config_map("tenant", "local", document(group("tenant", "gw2")))
    rec, store, builder = reconciler(local)
    rec.process_local(local)

    rec.process_global(
        config_map("kube-system", "global-cm", document(group("tenant", "gw"))), init_state=True
    )

    assert builder.calls == []
    assert store.extd_spec_map["tenant"].local.vserver_name == "gw2"
    assert store.effective_spec("tenant").vserver_name == "gw2"


def test_namespace_label_mode_selects_namespaces():
    namespaces = [
        from_manifest({"kind": "Namespace", "metadata": {"name": name, "labels": labels}})
        for name, labels in (
            ("ns1", {"routegroup": "blue"}),
            ("ns2", {"routegroup": "blue"}),
            ("ns3", {"routegroup": "green"}),
            ("ns4", {}),
        )
    ]
    settings = ControllerSettings(route_spec_configmap=GLOBAL_CM, namespace_label="routegroup")
    rec, store, builder = reconciler(*namespaces, settings=settings)
    text = "\n".join(
        [
            "extendedRouteSpec:",
            "  - namespaceLabel: routegroup=blue",
            "    vserverAddr: 10.8.0.4",
            "    allowOverride: true",
        ]
    )

    rec.process_global(config_map("kube-system", "global-cm", text))

    assert store.namespace_label_mode
    assert store.group_namespaces("routegroup=blue") == ["ns1", "ns2"]
    assert store.group_for_namespace("ns2") == "routegroup=blue"
    assert store.group_for_namespace("ns3") is None
    assert store.effective_spec("routegroup=blue").allow_override is False

    local = config_map("ns1", "local", document(group("ns1", "x")))
    assert rec.process_local(local) is False


# ----------------------------------------------------------------------
# Local documents
# ----------------------------------------------------------------------
def global_with_override(rec, allow_override=True):
    rec.process_global(
        config_map(
            "kube-system",
            "global-cm",
            document(group("tenant", "gw", allow_override=allow_override)),
        )
    )


def test_local_identity_change_tears_down_then_rebuilds():
    rec, store, builder = reconciler()
    global_with_override(rec)
    builder.calls.clear()

    rec.process_config_map(config_map("tenant", "local", document(group("tenant", "gw2"))))

    assert builder.calls == [("teardown", "tenant"), ("rebuild", "tenant")]
    assert store.effective_spec("tenant").vserver_name == "gw2"


def test_local_updates_without_identity_change_rebuild_in_place():
    rec, _, builder = reconciler()
    global_with_override(rec)
    builder.calls.clear()

    rec.process_config_map(config_map("tenant", "local", document(group("tenant", "gw", "snat: s1"))))
    rec.process_config_map(config_map("tenant", "local", document(group("tenant", "gw", "snat: s2"))))

    assert builder.calls == [("rebuild", "tenant"), ("rebuild", "tenant")]


def test_local_without_override_permission_is_only_stored():
    rec, store, builder = reconciler()
    global_with_override(rec, allow_override=False)
    builder.calls.clear()

    assert rec.process_config_map(config_map("tenant", "local", document(group("tenant", "gw2"))))

    assert builder.calls == []
    assert store.extd_spec_map["tenant"].local.vserver_name == "gw2"
    assert store.effective_spec("tenant").vserver_name == "gw"


def test_local_namespace_mismatch_is_rejected():
    rec, _, _ = reconciler()
    global_with_override(rec)

    with pytest.raises(ValidationError):
        rec.process_config_map(config_map("tenant", "local", document(group("other", "gw2"))))


def test_local_delete_prefers_latest_alternative_then_global():
    older = config_map("tenant", "local-a", document(group("tenant", "gw-a")), created=1)
    newer = config_map("tenant", "local-b", document(group("tenant", "gw-b")), created=2)
    rec, store, builder = reconciler(older, newer)
    global_with_override(rec)
    rec.process_config_map(newer)
    assert store.effective_spec("tenant").vserver_name == "gw-b"

    rec._cache.remove(newer)
    builder.calls.clear()
    rec.process_config_map(newer, is_delete=True)
    assert store.effective_spec("tenant").vserver_name == "gw-a"
    assert builder.calls == [("teardown", "tenant"), ("rebuild", "tenant")]

    rec._cache.remove(older)
    builder.calls.clear()
    rec.process_config_map(older, is_delete=True)
    assert store.effective_spec("tenant").vserver_name == "gw"
    assert builder.calls == [("teardown", "tenant"), ("rebuild", "tenant")]
