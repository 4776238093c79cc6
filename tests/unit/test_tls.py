import base64
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from nextgen_routes import irules
from nextgen_routes.cache import ResourceCache
from nextgen_routes.config import ExtendedRouteGroupSpec, TLSCipher, BaseRouteConfig, TLSReference, TLSSpec
from nextgen_routes.errors import ResolutionError
from nextgen_routes.ltm import PROFILE_CONTEXT_CLIENT, PROFILE_CONTEXT_SERVER, Virtual, VirtualServerConfig
from nextgen_routes.resources import Secret, ObjectMeta, from_manifest
from nextgen_routes.tls import (
    PoolPathRef,
    SecretCache,
    TLSResolver,
    check_certificate_host,
    convert_profile_ref,
)


def make_cert(*hostnames, key=None):
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostnames[0])])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(h) for h in hostnames]), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return cert_pem, key_pem


def make_route(name="r1", host="example.com", path="", tls=None, namespace="tenant"):
    spec = {"host": host, "path": path, "to": {"kind": "Service", "name": "svc"}}
    if tls is not None:
        spec["tls"] = tls
    return from_manifest(
        {"kind": "Route", "metadata": {"namespace": namespace, "name": name}, "spec": spec}
    )


def make_vs(port: int) -> VirtualServerConfig:
    virtual = Virtual(name=f"gw_{port}", partition="k8s")
    virtual.set_virtual_address("10.8.0.4", port)
    return VirtualServerConfig(virtual=virtual)


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class CountingClient:
    def __init__(self, *secrets):
        self.cache = ResourceCache(secrets)
        self.calls = 0

    def get_secret(self, namespace, name):
        self.calls += 1
        return self.cache.get_secret(namespace, name)


def resolver_for(client=None, base=None) -> TLSResolver:
    return TLSResolver(SecretCache(client or CountingClient(), retries=3), base)


# ----------------------------------------------------------------------
# Certificate checks
# ----------------------------------------------------------------------
def test_certificate_matches_exact_and_wildcard_names():
    cert, key = make_cert("example.com", "*.apps.example.com")

    assert check_certificate_host(cert, key, "example.com")
    assert check_certificate_host(cert, key, "shop.apps.example.com")
    assert not check_certificate_host(cert, key, "deep.shop.apps.example.com")
    assert not check_certificate_host(cert, key, "other.com")


def test_certificate_with_foreign_key_is_rejected():
    cert, _ = make_cert("example.com")
    _, other_key = make_cert("example.com")

    assert not check_certificate_host(cert, other_key, "example.com")


def test_unparseable_certificate_is_rejected():
    assert not check_certificate_host("not a certificate", "", "example.com")


def test_convert_profile_ref():
    ref = convert_profile_ref("/Common/clientssl", PROFILE_CONTEXT_CLIENT, "tenant", "k8s")
    assert (ref.partition, ref.name) == ("Common", "clientssl")

    ref = convert_profile_ref("clientssl", PROFILE_CONTEXT_CLIENT, "tenant", "k8s")
    assert (ref.partition, ref.name) == ("k8s", "clientssl")

    assert convert_profile_ref("/a/b/c", PROFILE_CONTEXT_CLIENT, "tenant", "k8s") is None


# ----------------------------------------------------------------------
# Resolution table
# ----------------------------------------------------------------------
def test_inline_edge_certificate_builds_client_profile_and_datagroups():
    cert, key = make_cert("example.com")
    route = make_route(
        path="/api",
        tls={"termination": "edge", "certificate": cert, "key": key},
    )
    base = BaseRouteConfig(tls_cipher=TLSCipher(tls_version="1.3", ciphers="", cipher_group="/Common/g"))
    resolver = resolver_for(base=base)
    rs_cfg = make_vs(443)

    ctx = resolver.route_context(route, ExtendedRouteGroupSpec(), [PoolPathRef("/api", "svc_8080_tenant")])
    assert ctx.reference == TLSReference.CERTIFICATE
    resolver.handle_tls(rs_cfg, ctx)

    profile = rs_cfg.custom_profiles["tenant/r1-client-ssl"]
    assert profile.context == PROFILE_CONTEXT_CLIENT
    assert profile.cert == cert and profile.server_name == "example.com"
    assert profile.tls_version == "1.3" and profile.cipher_group == "/Common/g"
    assert [p.name for p in rs_cfg.virtual.profiles] == ["r1-client-ssl"]

    hosts = rs_cfg.int_dg_map["/k8s/gw_443_ssl_edge_servername_dg"]
    ssl = rs_cfg.int_dg_map["/k8s/gw_443_ssl_edge_serverssl_dg"]
    assert hosts.get("example.com/api") == "svc_8080_tenant"
    assert ssl.get("example.com/api") == "false"
    assert rs_cfg.virtual.irules == ["/k8s/gw_443_tls_irule"]


def test_tls_irule_attached_once_for_many_routes():
    resolver = resolver_for()
    spec = ExtendedRouteGroupSpec(tls=TLSSpec(reference="bigip", client_ssl="/Common/clientssl"))
    rs_cfg = make_vs(443)
    for index in range(3):
        route = make_route(name=f"r{index}", host=f"h{index}.example.com", tls={"termination": "edge"})
        resolver.handle_tls(rs_cfg, resolver.route_context(route, spec, [PoolPathRef("", "pool")]))

    assert rs_cfg.virtual.irules == ["/k8s/gw_443_tls_irule"]
    assert list(rs_cfg.irules_map) == ["/k8s/gw_443_tls_irule"]
    hosts = rs_cfg.int_dg_map["/k8s/gw_443_ssl_edge_servername_dg"]
    assert [r.name for r in hosts.records] == ["h0.example.com", "h1.example.com", "h2.example.com"]


def test_bigip_reencrypt_binds_both_profiles():
    resolver = resolver_for()
    spec = ExtendedRouteGroupSpec(
        tls=TLSSpec(reference="bigip", client_ssl="/Common/clientssl", server_ssl="/Common/serverssl")
    )
    route = make_route(tls={"termination": "reencrypt"})
    rs_cfg = make_vs(443)

    resolver.handle_tls(rs_cfg, resolver.route_context(route, spec, [PoolPathRef("", "pool")]))

    contexts = {p.name: p.context for p in rs_cfg.virtual.profiles}
    assert contexts == {"clientssl": PROFILE_CONTEXT_CLIENT, "serverssl": PROFILE_CONTEXT_SERVER}
    ssl = rs_cfg.int_dg_map["/k8s/gw_443_ssl_reencrypt_serverssl_dg"]
    assert ssl.get("example.com") == "/Common/serverssl"
    assert not rs_cfg.custom_profiles


def test_secret_reference_is_fetched_once_per_secret():
    cert, key = make_cert("example.com")
    secret = Secret(
        metadata=ObjectMeta(namespace="tenant", name="client-secret"),
        data={"tls.crt": b64(cert), "tls.key": b64(key)},
    )
    client = CountingClient(secret)
    resolver = resolver_for(client)
    spec = ExtendedRouteGroupSpec(tls=TLSSpec(reference="secret", client_ssl="client-secret"))
    rs_cfg = make_vs(443)

    for index in range(2):
        route = make_route(name=f"r{index}", host=f"h{index}.example.com", tls={"termination": "edge"})
        resolver.handle_tls(rs_cfg, resolver.route_context(route, spec, [PoolPathRef("", "pool")]))

    assert client.calls == 1
    profile = rs_cfg.custom_profiles["tenant/client-secret"]
    assert profile.cert == cert and profile.key == key


def test_missing_secret_fails_after_bounded_retries():
    client = CountingClient()
    resolver = resolver_for(client)
    spec = ExtendedRouteGroupSpec(tls=TLSSpec(reference="secret", client_ssl="absent"))
    route = make_route(tls={"termination": "edge"})

    with pytest.raises(ResolutionError):
        resolver.handle_tls(make_vs(443), resolver.route_context(route, spec, [PoolPathRef("", "pool")]))
    assert client.calls == 3


def test_reencrypt_with_allow_is_rejected():
    resolver = resolver_for()
    route = make_route(
        tls={
            "termination": "reencrypt",
            "insecureEdgeTerminationPolicy": "Allow",
            "destinationCACertificate": "ca",
        }
    )

    for port in (80, 443):
        rs_cfg = make_vs(port)
        ctx = resolver.route_context(route, ExtendedRouteGroupSpec(), [PoolPathRef("", "pool")])
        with pytest.raises(ResolutionError):
            resolver.handle_tls(rs_cfg, ctx)


def test_passthrough_leaves_https_virtual_untouched():
    resolver = resolver_for()
    route = make_route(tls={"termination": "passthrough"})
    rs_cfg = make_vs(443)

    resolver.handle_tls(rs_cfg, resolver.route_context(route, ExtendedRouteGroupSpec(), [PoolPathRef("", "pool")]))

    assert rs_cfg.virtual.profiles == []
    assert rs_cfg.int_dg_map == {}
    assert rs_cfg.virtual.irules == []


def test_redirect_policy_on_http_virtual():
    resolver = resolver_for()
    route = make_route(tls={"termination": "edge", "insecureEdgeTerminationPolicy": "Redirect"})
    rs_cfg = make_vs(80)

    resolver.handle_tls(rs_cfg, resolver.route_context(route, ExtendedRouteGroupSpec(), [PoolPathRef("", "pool")]))

    name = irules.redirect_irule_name("gw_80", 443)
    assert rs_cfg.virtual.irules == [f"/k8s/{name}"]
    redirect = rs_cfg.int_dg_map["/k8s/gw_80_https_redirect_dg"]
    assert redirect.get("example.com/") == "/"
    assert rs_cfg.virtual.profiles == []
