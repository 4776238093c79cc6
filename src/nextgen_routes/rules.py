"""Traffic-steering policy rule synthesis for routes.

Rules fall into two sets: exact-host rules and wildcard-domain rules (hosts
starting with ``*.``).  Each set is numbered by an independent fold and the
wildcard set continues numbering where the exact set stops, so exact matches
are always evaluated first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ResolutionError
from .ltm import (
    POLICY_CONTROL_FORWARD,
    Action,
    Condition,
    Policy,
    Rule,
    VirtualServerConfig,
)
from .naming import format_rule_name
from .resources import Route

LOG = logging.getLogger(__name__)

REWRITE_ANNOTATION = "virtual-server.f5.com/rewrite-target-url"

_WHITESPACE = re.compile(r"\s")


def is_root_path(path: str) -> bool:
    return not path or path == "/"


# ----------------------------------------------------------------------
# Rule construction
# ----------------------------------------------------------------------
def create_rule(uri: str, pool_name: str, rule_name: str, allow_source_range: Sequence[str] = ()) -> Rule:
    """Build a forward rule matching ``uri`` (``host[/path]``)."""

    if not uri:
        raise ResolutionError(f"cannot build rule {rule_name}: empty host")
    host, sep, path = uri.partition("/")
    path = sep + path

    conditions = []
    if host.startswith("*."):
        conditions.append(
            Condition(values=[host[1:]], http_host=True, host=True, ends_with=True)
        )
    elif host:
        conditions.append(Condition(values=[host], http_host=True, host=True, equals=True))
    if not is_root_path(path):
        conditions.append(
            Condition(values=[path], http_uri=True, path=True, starts_with=True)
        )
    if allow_source_range:
        conditions.append(Condition(values=list(allow_source_range), tcp=True, address=True))

    return Rule(
        name=rule_name,
        full_uri=uri,
        actions=[Action(name="0", forward=True, pool=pool_name)],
        conditions=conditions,
    )


def _split_target(target: str) -> Tuple[str, str]:
    if target.startswith("/"):
        return "", target
    host, sep, path = target.partition("/")
    return host, sep + path


def rewrite_actions(path: str, target: str, index: int) -> List[Action]:
    """Actions rewriting a request matched on ``path`` to ``target``.

    ``target`` is ``[host][/path]``.  Action names continue from ``index``.
    """

    if not target:
        raise ResolutionError("rewrite target URL is empty")
    if _WHITESPACE.search(target):
        raise ResolutionError(f"rewrite target URL '{target}' contains whitespace")

    host, new_path = _split_target(target)
    old_path = path or "/"
    if not host and new_path == old_path:
        raise ResolutionError(f"rewrite target URL '{target}' is identical to the match path")

    actions = []
    if new_path and new_path != old_path:
        if old_path == "/" and not new_path.endswith("/"):
            new_path += "/"
        actions.append(
            Action(
                name=str(index + len(actions)),
                replace=True,
                http_uri=True,
                value=f"tcl:[string map {{{old_path} {new_path}}} [HTTP::uri]]",
            )
        )
    if host:
        actions.append(
            Action(name=str(index + len(actions)), replace=True, http_host=True, value=host)
        )
    return actions


# ----------------------------------------------------------------------
# Ordering
# ----------------------------------------------------------------------
def number_rules(rules: Iterable[Rule], start: int) -> List[Rule]:
    return [replace(rule, ordinal=ordinal) for ordinal, rule in enumerate(rules, start)]


def order_rules(rules: Sequence[Rule]) -> List[Rule]:
    """Renumber ``rules``: exact rules from 0, then wildcard rules."""

    exact = [r for r in rules if not r.wildcard]
    wildcards = [r for r in rules if r.wildcard]
    numbered = number_rules(exact, 0) + number_rules(wildcards, len(exact))
    return sorted(numbered, key=lambda r: r.ordinal)


# ----------------------------------------------------------------------
# Policy merging
# ----------------------------------------------------------------------
def merge_rules(policy: Policy, rules: Sequence[Rule]) -> List[Rule]:
    """Fold same-named rules into ``policy`` and return the net-new ones."""

    existing = {rule.name: rule for rule in policy.rules}
    new_rules = []
    for rule in rules:
        current = existing.get(rule.name)
        if current is None:
            new_rules.append(rule)
            existing[rule.name] = rule
            continue
        current_host = current.host_condition()
        new_host = rule.host_condition()
        if current_host is None or new_host is None:
            continue
        for value in new_host.values:
            if value not in current_host.values:
                current_host.values.append(value)
    return new_rules


def add_rules(policy: Policy, rules: Sequence[Rule]) -> List[Rule]:
    new_rules = merge_rules(policy, rules)
    if "tcp" not in policy.requires and any(
        c.tcp for rule in new_rules for c in rule.conditions
    ):
        policy.requires.append("tcp")
    policy.rules = order_rules(policy.rules + new_rules)
    return policy.rules


class RuleEngine:
    """Build and merge forward rules for the routes of a virtual server."""

    def build_rules(
        self, route: Route, pool_name: str, allow_source_range: Sequence[str] = ()
    ) -> List[Rule]:
        uri = route.host + route.path
        # Wildcard rules never merge with exact ones of the same namespace.
        host_group = f"*.{route.namespace}" if uri.startswith("*.") else route.namespace
        rule_name = format_rule_name(route.host, host_group, route.path, pool_name)

        rule = create_rule(uri, pool_name, rule_name, allow_source_range)
        target = route.annotations.get(REWRITE_ANNOTATION)
        if target is not None:
            rule.actions.extend(rewrite_actions(route.path, target, len(rule.actions)))

        if rule.wildcard:
            exact, wildcards = [], [rule]
        else:
            exact, wildcards = [rule], []
        return number_rules(exact, 0) + number_rules(wildcards, len(exact))

    def add_rule_to_policy(
        self, rs_cfg: VirtualServerConfig, policy_name: str, rules: Sequence[Rule]
    ) -> Policy:
        policy: Optional[Policy] = rs_cfg.find_policy(POLICY_CONTROL_FORWARD)
        if policy is None:
            policy = Policy(name=policy_name, partition=rs_cfg.partition)
        add_rules(policy, rules)
        rs_cfg.set_policy(policy)
        LOG.debug("Policy %s now has %d rules", policy.name, len(policy.rules))
        return policy
