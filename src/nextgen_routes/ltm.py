"""Load-balancer (LTM) configuration model produced by the controller.

A :class:`VirtualServerConfig` is the unit handed to the downstream agent.
It is always rebuilt from scratch and replaced wholesale in the store, so the
helpers here only need to support building one up.
"""

from __future__ import annotations

import bisect
import copy
import dataclasses
import hashlib
import ipaddress
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .naming import join_bigip_path

RESOURCE_TYPE_VIRTUAL_SERVER = "virtualServer"
POLICY_CONTROL_FORWARD = "forwarding"

PROFILE_CONTEXT_CLIENT = "clientside"
PROFILE_CONTEXT_SERVER = "serverside"
PEER_CERT_REQUIRED = "require"
PEER_CERT_IGNORED = "ignore"


@dataclass
class ProfileRef:
    name: str
    partition: str
    context: str
    namespace: str = ""
    bigip_profile: bool = True

    @property
    def sort_key(self) -> tuple:
        return self.partition, self.name


@dataclass
class CustomProfile:
    name: str
    partition: str
    context: str
    cert: str = ""
    key: str = ""
    server_name: str = ""
    sni_default: bool = False
    peer_cert_mode: str = PEER_CERT_IGNORED
    ca_file: str = ""
    chain_ca: str = ""
    tls_version: str = ""
    ciphers: str = ""
    cipher_group: str = ""


@dataclass
class Monitor:
    name: str
    partition: str
    type: str
    path: str = ""
    interval: int = 0
    timeout: int = 0
    send: str = ""
    recv: str = ""
    in_use: bool = False


@dataclass
class PoolMember:
    address: str
    port: int
    session: str = "user-enabled"


@dataclass
class Pool:
    name: str
    partition: str
    service_name: str
    service_namespace: str
    service_port: int
    balance: str = "round-robin"
    monitor_names: List[str] = field(default_factory=list)
    members: List[PoolMember] = field(default_factory=list)


@dataclass
class Condition:
    values: List[str]
    http_host: bool = False
    http_uri: bool = False
    path: bool = False
    host: bool = False
    equals: bool = False
    ends_with: bool = False
    starts_with: bool = False
    tcp: bool = False
    address: bool = False
    request: bool = True


@dataclass
class Action:
    name: str = ""
    forward: bool = False
    replace: bool = False
    reset: bool = False
    pool: str = ""
    http_host: bool = False
    http_uri: bool = False
    path: str = ""
    value: str = ""
    request: bool = True


@dataclass
class Rule:
    name: str
    full_uri: str
    ordinal: int = 0
    actions: List[Action] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)

    @property
    def wildcard(self) -> bool:
        return self.full_uri.startswith("*.")

    def host_condition(self) -> Optional[Condition]:
        return next((c for c in self.conditions if c.http_host), None)


@dataclass
class Policy:
    name: str
    partition: str
    controls: List[str] = field(default_factory=lambda: [POLICY_CONTROL_FORWARD])
    requires: List[str] = field(default_factory=lambda: ["http"])
    strategy: str = "/Common/first-match"
    legacy: bool = True
    rules: List[Rule] = field(default_factory=list)


@dataclass
class InternalDataGroupRecord:
    name: str
    data: str


@dataclass
class InternalDataGroup:
    name: str
    partition: str
    type: str = "string"
    records: List[InternalDataGroupRecord] = field(default_factory=list)

    def add_or_update_record(self, name: str, data: str) -> bool:
        """Insert or update a record; records stay sorted by name."""

        names = [r.name for r in self.records]
        index = bisect.bisect_left(names, name)
        if index < len(self.records) and self.records[index].name == name:
            if self.records[index].data == data:
                return False
            self.records[index].data = data
            return True
        self.records.insert(index, InternalDataGroupRecord(name=name, data=data))
        return True

    def remove_record(self, name: str) -> bool:
        for index, record in enumerate(self.records):
            if record.name == name:
                del self.records[index]
                return True
        return False

    def get(self, name: str) -> Optional[str]:
        return next((r.data for r in self.records if r.name == name), None)


@dataclass
class IRule:
    name: str
    partition: str
    code: str


@dataclass
class VirtualAddress:
    bind_addr: str
    port: int


@dataclass
class Virtual:
    name: str
    partition: str
    enabled: bool = True
    destination: str = ""
    virtual_address: Optional[VirtualAddress] = None
    snat: str = ""
    waf: str = ""
    irules: List[str] = field(default_factory=list)
    policies: List[Dict[str, str]] = field(default_factory=list)
    profiles: List[ProfileRef] = field(default_factory=list)
    allow_source_range: List[str] = field(default_factory=list)

    def set_virtual_address(self, bind_addr: str, port: int) -> None:
        self.destination = ""
        if not bind_addr and not port:
            self.virtual_address = None
            return
        self.virtual_address = VirtualAddress(bind_addr=bind_addr, port=port)
        ip, route_domain = split_ip_with_route_domain(bind_addr)
        rd = f"%{route_domain}" if route_domain else ""
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return
        separator = ":" if addr.version == 4 else "."
        self.destination = f"/{self.partition}/{ip}{rd}{separator}{port}"

    def add_irule(self, rule_name: str) -> bool:
        if rule_name in self.irules:
            return False
        self.irules.append(rule_name)
        return True

    def add_or_update_profile(self, profile: ProfileRef) -> bool:
        """Keep ``profiles`` sorted by (partition, name); return True on change."""

        keys = [p.sort_key for p in self.profiles]
        index = bisect.bisect_left(keys, profile.sort_key)
        if index < len(self.profiles) and self.profiles[index].sort_key == profile.sort_key:
            if self.profiles[index].context == profile.context:
                return False
            self.profiles[index] = profile
            return True
        self.profiles.insert(index, profile)
        return True


def split_ip_with_route_domain(address: str) -> tuple[str, str]:
    """Split ``<ip>[%<route domain id>]``; non-numeric route domains are kept."""

    parts = address.split("%")
    if len(parts) == 2 and parts[1].isdigit():
        return parts[0], parts[1]
    if len(parts) == 2:
        return address, ""
    return parts[0], ""


@dataclass
class MetaData:
    resource_type: str = RESOURCE_TYPE_VIRTUAL_SERVER
    protocol: str = ""
    base_resources: Dict[str, str] = field(default_factory=dict)
    hosts: List[str] = field(default_factory=list)
    active: bool = False


@dataclass
class VirtualServerConfig:
    virtual: Virtual
    metadata: MetaData = field(default_factory=MetaData)
    pools: List[Pool] = field(default_factory=list)
    monitors: List[Monitor] = field(default_factory=list)
    policies: List[Policy] = field(default_factory=list)
    int_dg_map: Dict[str, InternalDataGroup] = field(default_factory=dict)
    irules_map: Dict[str, IRule] = field(default_factory=dict)
    custom_profiles: Dict[str, CustomProfile] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.virtual.name

    @property
    def partition(self) -> str:
        return self.virtual.partition

    def find_pool(self, name: str) -> Optional[Pool]:
        return next((p for p in self.pools if p.name == name), None)

    def add_irule(self, name: str, partition: str, code: str) -> IRule:
        """Create the iRule unless one with the same path already exists."""

        key = join_bigip_path(partition, name)
        if key not in self.irules_map:
            self.irules_map[key] = IRule(name=name, partition=partition, code=code)
        return self.irules_map[key]

    def add_internal_data_group(self, name: str, partition: str) -> InternalDataGroup:
        key = join_bigip_path(partition, name)
        if key not in self.int_dg_map:
            self.int_dg_map[key] = InternalDataGroup(name=name, partition=partition)
        return self.int_dg_map[key]

    def find_policy(self, control: str) -> Optional[Policy]:
        return next((p for p in self.policies if control in p.controls), None)

    def set_policy(self, policy: Policy) -> None:
        ref = {"name": policy.name, "partition": policy.partition}
        if ref not in self.virtual.policies:
            self.virtual.policies.append(ref)
        for index, existing in enumerate(self.policies):
            if existing.name == policy.name and existing.partition == policy.partition:
                self.policies[index] = policy
                return
        self.policies.append(policy)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def digest(self) -> str:
        payload = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def copy(self) -> "VirtualServerConfig":
        return copy.deepcopy(self)
