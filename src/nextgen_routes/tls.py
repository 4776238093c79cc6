"""TLS profile resolution for route virtual servers.

The resolver is a table keyed by (reference kind, termination):

* passthrough never touches profiles;
* ``bigip`` references bind load-balancer resident profiles by path;
* ``secret`` references build custom profiles from cluster secrets;
* inline certificates build custom profiles from the route's own material.

Edge and reencrypt additionally publish per-host datagroup records consulted
by the shared TLS iRule.  The HTTP virtual server only cares about the
insecure traffic policy (redirect iRule and redirect datagroup).
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtensionOID, NameOID

from . import irules
from .config import BaseRouteConfig, DEFAULT_HTTPS_PORT, ExtendedRouteGroupSpec, TLSReference
from .errors import ResolutionError, SecretNotFound
from .ltm import (
    PEER_CERT_REQUIRED,
    PROFILE_CONTEXT_CLIENT,
    PROFILE_CONTEXT_SERVER,
    CustomProfile,
    ProfileRef,
    VirtualServerConfig,
)
from .naming import join_bigip_path, resource_name
from .resources import InsecurePolicy, Route, Secret, Termination

LOG = logging.getLogger(__name__)

TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY = "tls.key"
CA_CERT_KEY = "ca.crt"


# ----------------------------------------------------------------------
# Certificate checks
# ----------------------------------------------------------------------
def _host_matches(pattern: str, hostname: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    hostname = hostname.lower().rstrip(".")
    if pattern == hostname:
        return True
    if not pattern.startswith("*."):
        return False
    suffix = pattern[1:]
    if hostname.startswith("*."):
        return False
    head, _, rest = hostname.partition(".")
    return bool(head) and "." + rest == suffix


def certificate_hostnames(cert: x509.Certificate) -> List[str]:
    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        san = None
    if san is not None:
        names = san.value.get_values_for_type(x509.DNSName)
        if names:
            return list(names)
    return [str(a.value) for a in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]


def check_certificate_host(certificate: str, key: str, hostname: str) -> bool:
    """Return True when ``certificate`` is valid for ``hostname``.

    When ``key`` is supplied it must be the private key of the certificate.
    """

    try:
        cert = x509.load_pem_x509_certificate(certificate.encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as exc:
        LOG.warning("Unable to parse certificate for host %s: %s", hostname, exc)
        return False

    if not any(_host_matches(name, hostname) for name in certificate_hostnames(cert)):
        LOG.debug("Certificate names %s do not cover host %s", certificate_hostnames(cert), hostname)
        return False

    if key:
        try:
            private_key = serialization.load_pem_private_key(key.encode("utf-8"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            LOG.warning("Unable to parse private key for host %s: %s", hostname, exc)
            return False
        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        pem = serialization.Encoding.PEM
        if private_key.public_key().public_bytes(pem, spki) != cert.public_key().public_bytes(pem, spki):
            LOG.debug("Private key does not belong to the certificate for host %s", hostname)
            return False
    return True


# ----------------------------------------------------------------------
# Secrets
# ----------------------------------------------------------------------
class SecretCache:
    """Secrets keyed by (namespace, name) so each is fetched once."""

    def __init__(self, client, retries: int = 3) -> None:
        self._client = client
        self._retries = max(1, retries)
        self._lock = Lock()
        self._secrets: Dict[Tuple[str, str], Secret] = {}
        self.fetches = 0

    def get(self, namespace: str, name: str) -> Secret:
        key = (namespace, name)
        with self._lock:
            cached = self._secrets.get(key)
        if cached is not None:
            LOG.debug("Secret %s/%s served from cache", namespace, name)
            return cached

        last_error: Optional[SecretNotFound] = None
        for attempt in range(1, self._retries + 1):
            self.fetches += 1
            try:
                secret = self._client.get_secret(namespace, name)
            except SecretNotFound as exc:
                LOG.debug("Secret fetch %d/%d for %s/%s failed", attempt, self._retries, namespace, name)
                last_error = exc
                continue
            with self._lock:
                self._secrets[key] = secret
            return secret
        raise ResolutionError(str(last_error)) from last_error

    def invalidate(self, namespace: str, name: str) -> None:
        with self._lock:
            self._secrets.pop((namespace, name), None)


def secret_value(secret: Secret, key: str) -> str:
    raw = secret.data.get(key, "")
    if not raw:
        return ""
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ResolutionError(
            f"secret {secret.namespace}/{secret.name} key {key} is not valid base64"
        ) from exc


# ----------------------------------------------------------------------
# Contexts
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class PoolPathRef:
    path: str
    pool_name: str


@dataclass
class TLSContext:
    name: str
    namespace: str
    reference: TLSReference
    hostname: str
    https_port: int
    vs_address: str
    termination: Termination
    http_traffic: str
    pool_path_refs: Sequence[PoolPathRef] = ()
    client_ssl: str = ""
    server_ssl: str = ""
    certificate: str = ""
    key: str = ""
    ca_certificate: str = ""
    destination_ca_certificate: str = ""


def route_reference(spec: Optional[ExtendedRouteGroupSpec]) -> TLSReference:
    if spec is not None and spec.tls.reference:
        return TLSReference(spec.tls.reference.lower())
    return TLSReference.CERTIFICATE


def convert_profile_ref(profile: str, context: str, namespace: str, default_partition: str) -> Optional[ProfileRef]:
    parts = profile.strip().lstrip("/").split("/")
    if len(parts) == 2 and all(parts):
        return ProfileRef(name=parts[1], partition=parts[0], context=context, namespace=namespace)
    if len(parts) == 1 and parts[0]:
        LOG.debug("Profile %s has no partition, using %s", profile, default_partition)
        return ProfileRef(name=parts[0], partition=default_partition, context=context, namespace=namespace)
    LOG.warning("Ignoring malformed profile name '%s'", profile)
    return None


class TLSResolver:
    def __init__(self, secrets: SecretCache, base_route_config: Optional[BaseRouteConfig] = None) -> None:
        self._secrets = secrets
        self.base_route_config = base_route_config or BaseRouteConfig()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def route_context(
        self,
        route: Route,
        spec: ExtendedRouteGroupSpec,
        pool_path_refs: Sequence[PoolPathRef],
        https_port: int = DEFAULT_HTTPS_PORT,
    ) -> TLSContext:
        tls = route.tls
        if tls is None:
            raise ResolutionError(f"route {route.key} is not TLS secured")
        return TLSContext(
            name=route.name,
            namespace=route.namespace,
            reference=route_reference(spec),
            hostname=route.host,
            https_port=https_port,
            vs_address=spec.vserver_addr,
            termination=tls.termination,
            http_traffic=tls.http_traffic,
            pool_path_refs=tuple(pool_path_refs),
            client_ssl=spec.tls.client_ssl,
            server_ssl=spec.tls.server_ssl,
            certificate=tls.certificate,
            key=tls.key,
            ca_certificate=tls.ca_certificate,
            destination_ca_certificate=tls.destination_ca_certificate,
        )

    def handle_tls(self, rs_cfg: VirtualServerConfig, ctx: TLSContext) -> None:
        """Apply ``ctx`` to ``rs_cfg``; raises :class:`ResolutionError`."""

        if ctx.termination == Termination.REENCRYPT and ctx.http_traffic == InsecurePolicy.ALLOW.value:
            raise ResolutionError(
                f"route {ctx.namespace}/{ctx.name}: httpTraffic allow is not supported "
                "with reencrypt termination"
            )

        address = rs_cfg.virtual.virtual_address
        if address is not None and address.port == ctx.https_port:
            if ctx.termination == Termination.PASSTHROUGH:
                return
            server_profile = self._bind_profiles(rs_cfg, ctx)
            self._bind_datagroups(rs_cfg, ctx, server_profile)
            self._attach_tls_irule(rs_cfg, ctx)
            return

        self._handle_http_traffic(rs_cfg, ctx)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def _bind_profiles(self, rs_cfg: VirtualServerConfig, ctx: TLSContext) -> str:
        """Bind client/server profiles and return the server profile path."""

        if ctx.reference == TLSReference.BIGIP:
            LOG.debug("Processing BIG-IP referenced profiles for route %s/%s", ctx.namespace, ctx.name)
            server_path = ""
            for profile, context in (
                (ctx.client_ssl, PROFILE_CONTEXT_CLIENT),
                (ctx.server_ssl, PROFILE_CONTEXT_SERVER),
            ):
                if not profile:
                    continue
                ref = convert_profile_ref(profile, context, ctx.namespace, "Common")
                if ref is None:
                    raise ResolutionError(f"malformed {context} profile reference '{profile}'")
                rs_cfg.virtual.add_or_update_profile(ref)
                if context == PROFILE_CONTEXT_SERVER:
                    server_path = join_bigip_path(ref.partition, ref.name)
            return server_path

        if ctx.reference == TLSReference.SECRET:
            server_path = ""
            if ctx.client_ssl:
                secret = self._secrets.get(ctx.namespace, ctx.client_ssl)
                self._add_custom_profile(
                    rs_cfg,
                    ctx,
                    name=ctx.client_ssl,
                    context=PROFILE_CONTEXT_CLIENT,
                    cert=secret_value(secret, TLS_CERT_KEY),
                    key=secret_value(secret, TLS_PRIVATE_KEY),
                    chain_ca=secret_value(secret, CA_CERT_KEY),
                )
            if ctx.server_ssl:
                secret = self._secrets.get(ctx.namespace, ctx.server_ssl)
                profile = self._add_custom_profile(
                    rs_cfg,
                    ctx,
                    name=ctx.server_ssl,
                    context=PROFILE_CONTEXT_SERVER,
                    ca_file=secret_value(secret, TLS_CERT_KEY),
                    chain_ca=secret_value(secret, CA_CERT_KEY),
                )
                server_path = join_bigip_path(profile.partition, profile.name)
            return server_path

        if ctx.reference == TLSReference.CERTIFICATE:
            server_path = ""
            if ctx.termination == Termination.EDGE or ctx.certificate:
                if not (ctx.certificate and ctx.key):
                    raise ResolutionError(
                        f"route {ctx.namespace}/{ctx.name} has no certificate/key for its client profile"
                    )
                self._add_custom_profile(
                    rs_cfg,
                    ctx,
                    name=f"{ctx.name}-client-ssl",
                    context=PROFILE_CONTEXT_CLIENT,
                    cert=ctx.certificate,
                    key=ctx.key,
                    chain_ca=ctx.ca_certificate,
                )
            if ctx.termination == Termination.REENCRYPT:
                if not ctx.destination_ca_certificate:
                    raise ResolutionError(
                        f"route {ctx.namespace}/{ctx.name} has no destination CA certificate"
                    )
                profile = self._add_custom_profile(
                    rs_cfg,
                    ctx,
                    name=f"{ctx.name}-server-ssl",
                    context=PROFILE_CONTEXT_SERVER,
                    ca_file=ctx.destination_ca_certificate,
                    chain_ca=ctx.ca_certificate,
                )
                server_path = join_bigip_path(profile.partition, profile.name)
            return server_path

        raise ResolutionError(f"invalid TLS reference type '{ctx.reference}'")

    def _add_custom_profile(
        self,
        rs_cfg: VirtualServerConfig,
        ctx: TLSContext,
        name: str,
        context: str,
        cert: str = "",
        key: str = "",
        ca_file: str = "",
        chain_ca: str = "",
    ) -> CustomProfile:
        cipher = self.base_route_config.tls_cipher
        profile = CustomProfile(
            name=name,
            partition=rs_cfg.partition,
            context=context,
            cert=cert,
            key=key,
            server_name=ctx.hostname if context == PROFILE_CONTEXT_CLIENT else "",
            peer_cert_mode=PEER_CERT_REQUIRED if context == PROFILE_CONTEXT_SERVER else "ignore",
            ca_file=ca_file,
            chain_ca=chain_ca,
            tls_version=cipher.tls_version,
            ciphers=cipher.ciphers,
            cipher_group=cipher.cipher_group,
        )
        rs_cfg.custom_profiles[f"{ctx.namespace}/{name}"] = profile
        rs_cfg.virtual.add_or_update_profile(
            ProfileRef(
                name=name,
                partition=rs_cfg.partition,
                context=context,
                namespace=ctx.namespace,
                bigip_profile=False,
            )
        )
        return profile

    # ------------------------------------------------------------------
    # Datagroups and iRules
    # ------------------------------------------------------------------
    def _bind_datagroups(self, rs_cfg: VirtualServerConfig, ctx: TLSContext, server_profile: str) -> None:
        vs_name = rs_cfg.name
        partition = rs_cfg.partition
        if ctx.termination == Termination.EDGE:
            hosts_dg, ssl_dg, ssl_value = irules.EDGE_HOSTS_DG, irules.EDGE_SERVER_SSL_DG, "false"
        else:
            hosts_dg, ssl_dg, ssl_value = (
                irules.REENCRYPT_HOSTS_DG,
                irules.REENCRYPT_SERVER_SSL_DG,
                server_profile,
            )

        hosts = rs_cfg.add_internal_data_group(resource_name(vs_name, hosts_dg), partition)
        ssl = rs_cfg.add_internal_data_group(resource_name(vs_name, ssl_dg), partition)
        for ref in ctx.pool_path_refs:
            key = (ctx.hostname + ref.path).rstrip("/")
            hosts.add_or_update_record(key, ref.pool_name)
            if ssl_value:
                ssl.add_or_update_record(key, ssl_value)

    def _attach_tls_irule(self, rs_cfg: VirtualServerConfig, ctx: TLSContext) -> None:
        name = resource_name(rs_cfg.name, irules.TLS_IRULE)
        rs_cfg.add_irule(name, rs_cfg.partition, irules.tls_irule(rs_cfg.name, rs_cfg.partition))
        if ctx.hostname:
            rs_cfg.virtual.add_irule(join_bigip_path(rs_cfg.partition, name))

    def _handle_http_traffic(self, rs_cfg: VirtualServerConfig, ctx: TLSContext) -> None:
        if ctx.http_traffic == InsecurePolicy.REDIRECT.value:
            LOG.debug("Redirecting insecure requests for route %s/%s", ctx.namespace, ctx.name)
            partition = rs_cfg.partition
            if ctx.hostname:
                name = irules.redirect_irule_name(rs_cfg.name, ctx.https_port)
                code = irules.http_redirect_irule(ctx.https_port, rs_cfg.name, partition)
            else:
                name = irules.redirect_irule_name(rs_cfg.name, ctx.https_port, with_host=False)
                code = irules.http_redirect_irule_no_host(ctx.https_port)
            rs_cfg.add_irule(name, partition, code)
            rs_cfg.virtual.add_irule(join_bigip_path(partition, name))

            redirect = rs_cfg.add_internal_data_group(
                resource_name(rs_cfg.name, irules.HTTPS_REDIRECT_DG), partition
            )
            for ref in ctx.pool_path_refs:
                path = ref.path or "/"
                redirect.add_or_update_record(ctx.hostname + path, path)
        elif ctx.http_traffic == InsecurePolicy.ALLOW.value:
            LOG.debug("Allowing insecure requests for route %s/%s", ctx.namespace, ctx.name)
        else:
            LOG.debug("Insecure requests disabled for route %s/%s", ctx.namespace, ctx.name)
