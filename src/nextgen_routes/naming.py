"""Deterministic naming of generated load-balancer objects."""

from __future__ import annotations

_SPECIAL_CHARS = (
    (".", "_"),
    (":", "_"),
    ("/", "_"),
    ("%", "."),
    ("-", "_"),
    ("=", "_"),
)


def as3_name(name: str) -> str:
    """Replace characters the load balancer does not accept in object names."""

    for char, replacement in _SPECIAL_CHARS:
        name = name.replace(char, replacement)
    return name


def join_bigip_path(partition: str, name: str) -> str:
    if not name:
        return ""
    if not partition:
        return name
    return f"/{partition}/{name}"


def split_bigip_path(path: str) -> tuple[str, str]:
    """Return ``(partition, name)`` for ``/partition/name`` style paths."""

    parts = path.split("/")
    if len(parts) == 3:
        return parts[1], parts[2]
    return "", path


def format_custom_vs_name(name: str, port: int) -> str:
    return f"{as3_name(name)}_{port}"


def frame_route_vs_name(vserver_name: str, vserver_addr: str, port: int) -> str:
    if vserver_name:
        return format_custom_vs_name(vserver_name, port)
    return format_custom_vs_name("routes_" + vserver_addr, port)


def format_pool_name(namespace: str, service: str, port: int, route_group: str = "") -> str:
    name = f"{service}_{port}_{namespace}"
    if route_group and route_group != namespace:
        name = f"{name}_{route_group}"
    return as3_name(name)


def format_monitor_name(path: str) -> str:
    return as3_name(path) + "_monitor"


def format_policy_name(hostname: str, host_group: str, vs_name: str) -> str:
    host = host_group or hostname
    if host.startswith("*"):
        host = host.replace("*", "wildcard", 1)
    return as3_name(f"{vs_name}_{host}_policy")


def format_rule_name(hostname: str, host_group: str, path: str, pool: str) -> str:
    host = host_group or hostname
    if host.startswith("*"):
        host = host.replace("*", "wildcard", 1)
    if not path or path == "/":
        rule = f"vs_{host}_{pool}"
    else:
        rule = f"vs_{host}_{path.strip('/')}_{pool}"
    return as3_name(rule)


def resource_name(vs_name: str, suffix: str) -> str:
    """Name of an iRule/datagroup owned by virtual server ``vs_name``."""

    return f"{vs_name}_{suffix}"
