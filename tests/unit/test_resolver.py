from nextgen_routes.cache import ResourceCache
from nextgen_routes.config import ControllerSettings
from nextgen_routes.controller import RouteController
from nextgen_routes.errors import AdmissionRejection
from nextgen_routes.resources import from_manifest
from nextgen_routes.status import ADMITTED

GLOBAL_CM = "kube-system/global-cm"


def route(name, host, path="", created=1, namespace="tenant", service="svc", **spec):
    body = {"host": host, "path": path, "to": {"kind": "Service", "name": service}}
    body.update(spec)
    return from_manifest(
        {
            "kind": "Route",
            "metadata": {"namespace": namespace, "name": name, "creationTimestamp": created},
            "spec": body,
        }
    )


def service(name="svc", namespace="tenant"):
    return from_manifest(
        {
            "kind": "Service",
            "metadata": {"namespace": namespace, "name": name},
            "spec": {
                "ports": [
                    {"name": "http", "port": 8080, "targetPort": 8080},
                    {"name": "admin", "port": 9090, "targetPort": 9090},
                ]
            },
        }
    )


def global_cm(tls=""):
    text = "\n".join(
        [
            "extendedRouteSpec:",
            "  - namespace: tenant",
            "    vserverAddr: 10.8.0.4",
            "    vserverName: gw",
            tls,
        ]
    )
    return from_manifest(
        {
            "kind": "ConfigMap",
            "metadata": {"namespace": "kube-system", "name": "global-cm"},
            "data": {"extendedSpec": text},
        }
    )


def build(*resources, cm=None) -> RouteController:
    cache = ResourceCache([service(), cm or global_cm(), *resources])
    controller = RouteController(ControllerSettings(route_spec_configmap=GLOBAL_CM), cache)
    controller.process_global_extended_route_config(init_state=False)
    return controller


def admitted(controller, key):
    """Return (status, reason) of this controller's Admitted condition."""

    route = controller.cache.get_route(key)
    for ingress in route.ingress:
        if ingress.router_name == controller.settings.router_name:
            (condition,) = ingress.conditions
            assert condition.type == ADMITTED
            return condition.status, condition.reason
    return None


def test_routes_ordered_by_host_then_path_then_age():
    controller = build(
        route("b", "x.example.com", "/b", created=1),
        route("a", "x.example.com", "/a", created=2),
        route("z", "a.example.com", "/z", created=5),
        route("root", "y.example.com", "", created=3),
        route("older", "y.example.com", "/p", created=1),
    )

    names = [r.name for r in controller.resolver.get_ordered_routes("tenant")]

    assert names == ["z", "a", "b", "older", "root"]


def test_oldest_route_wins_host_path_and_replacement_is_admitted():
    r1 = route("r1", "example.com", created=1)
    r2 = route("r2", "example.com", "/", created=2)
    controller = build(r1, r2)
    controller.status.drain()

    assert admitted(controller, "tenant/r1") == ("True", "")
    assert admitted(controller, "tenant/r2") == ("False", AdmissionRejection.HOST_ALREADY_CLAIMED)
    rs_cfg = controller.store.config.get("k8s", "gw_80")
    assert list(rs_cfg.metadata.base_resources) == ["tenant/r1"]

    controller.cache.remove(r1)
    controller.on_route(r1, deleted=True)
    controller.status.drain()

    assert admitted(controller, "tenant/r2") == ("True", "")
    rs_cfg = controller.store.config.get("k8s", "gw_80")
    assert list(rs_cfg.metadata.base_resources) == ["tenant/r2"]


def test_equal_timestamps_admit_first_in_order():
    # Implementation choice, not a contract: ties go to the first route observed.
    controller = build(route("b", "example.com", created=4), route("a", "example.com", created=4))
    controller.status.drain()

    assert admitted(controller, "tenant/a") == ("True", "")
    assert admitted(controller, "tenant/b")[1] == AdmissionRejection.HOST_ALREADY_CLAIMED


def test_missing_service_is_rejected_and_siblings_continue():
    controller = build(
        route("ok", "ok.example.com"),
        route("orphan", "orphan.example.com", service="absent"),
    )
    controller.status.drain()

    assert admitted(controller, "tenant/orphan") == ("False", AdmissionRejection.SERVICE_NOT_FOUND)
    rs_cfg = controller.store.config.get("k8s", "gw_80")
    assert list(rs_cfg.metadata.base_resources) == ["tenant/ok"]


def test_service_port_resolution():
    controller = build()
    resolver = controller.resolver

    assert resolver.get_service_port(route("r", "h")) == 8080
    assert resolver.get_service_port(route("r", "h", port={"targetPort": "admin"})) == 9090
    assert resolver.get_service_port(route("r", "h", port={"targetPort": 7000})) == 7000


def test_bigip_reference_requires_client_profile():
    tls_block = "\n".join(["    tls:", "      reference: bigip", "      serverSSL: /Common/serverssl"])
    controller = build(
        route("r1", "example.com", tls={"termination": "edge"}),
        cm=global_cm(tls_block),
    )
    controller.status.drain()

    assert admitted(controller, "tenant/r1") == (
        "False",
        AdmissionRejection.EXTENDED_VALIDATION_FAILED,
    )


def test_inline_certificate_must_cover_host():
    controller = build(
        route(
            "r1",
            "example.com",
            tls={"termination": "edge", "certificate": "garbage", "key": "garbage"},
        )
    )
    controller.status.drain()

    assert admitted(controller, "tenant/r1")[1] == AdmissionRejection.EXTENDED_VALIDATION_FAILED
    assert controller.store.config.get("k8s", "gw_443") is None


def test_path_change_moves_claim():
    controller = build(route("r1", "example.com", "/old", created=1))
    assert controller.store.claims.lookup("example.com/old").owner == "tenant/r1"

    controller.cache.upsert(route("r1", "example.com", "/new", created=1))
    controller.builder.process_route_group("tenant")

    assert controller.store.claims.lookup("example.com/old") is None
    assert controller.store.claims.lookup("example.com/new").owner == "tenant/r1"
