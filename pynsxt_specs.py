# Desired-state structures for pyNSXT

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################

"""
Desired-state descriptions for the NSX-T objects pyNSXT manages, one tagged
structure per resource kind:

    GroupSpec           - inventory group in a policy domain
    Tier0GatewaySpec    - tier-0 gateway
    Tier1GatewaySpec    - tier-1 gateway, optionally linked to a tier-0

Each spec validates itself locally, renders the full policy API body used for
create and replace calls, and exposes the subset of fields that decide whether
an existing remote object already matches.
"""

import ipaddress
import json
from dataclasses import dataclass, field
from os.path import exists

from pynsxt_errors import InvalidArgument

KIND_GROUP = "group"
KIND_TIER0 = "tier0"
KIND_TIER1 = "tier1"
KINDS = (KIND_GROUP, KIND_TIER0, KIND_TIER1)

EXPRESSION_TYPES = (
    "Condition",
    "ConjunctionOperator",
    "ExternalIDExpression",
    "IPAddressExpression",
    "MACAddressExpression",
    "NestedExpression",
    "PathExpression",
)
CONDITION_MEMBER_TYPES = ("VirtualMachine", "Segment", "SegmentPort", "IPSet", "Group")
CONDITION_KEYS = ("Name", "Tag", "OSName", "ComputerName", "NodeType")
CONDITION_OPERATORS = ("EQUALS", "NOTEQUALS", "CONTAINS", "STARTSWITH", "ENDSWITH")
CONJUNCTIONS = ("AND", "OR")
GROUP_TYPES = ("ip-based", "member-based", "group-based", "criteria-based")

HA_MODES = ("ACTIVE_ACTIVE", "ACTIVE_STANDBY")
FAILOVER_MODES = ("PREEMPTIVE", "NON_PREEMPTIVE")
ROUTE_ADVERTISEMENT_TYPES = (
    "TIER1_CONNECTED",
    "TIER1_STATIC_ROUTES",
    "TIER1_NAT",
    "TIER1_LB_VIP",
    "TIER1_LB_SNAT",
    "TIER1_DNS_FORWARDER_IP",
    "TIER1_IPSEC_LOCAL_ENDPOINT",
)

# Keys the manager adds to objects and expression clauses on its own.
SERVER_MANAGED_KEYS = (
    "id",
    "path",
    "relative_path",
    "parent_path",
    "remote_path",
    "unique_id",
    "realization_id",
    "marked_for_delete",
    "overridden",
    "owner_id",
    "origin_site_id",
)


# ============================
# Helpers
# ============================

def _check_name(name):
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgument("A non-empty name is required.")


def _check_choice(label, value, choices):
    if value not in choices:
        raise InvalidArgument(f'{label} must be one of {", ".join(choices)}; got "{value}".')


def _check_strings(label, values):
    if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
        raise InvalidArgument(f"{label} must be a list of strings; got {values!r}.")


def clean_clause(clause):
    """Strips server-managed keys from an expression clause, recursing into nested expressions."""
    cleaned = {}
    for k, v in clause.items():
        if k.startswith("_") or k in SERVER_MANAGED_KEYS:
            continue
        if k == "expressions" and isinstance(v, list):
            v = [clean_clause(c) for c in v]
        cleaned[k] = v
    return cleaned


@dataclass(frozen=True)
class Tag:
    scope: str = ""
    tag: str = ""

    @classmethod
    def parse(cls, text):
        """Parses 'scope=tag' (or a bare 'tag') as typed on the command line."""
        if isinstance(text, Tag):
            return text
        if isinstance(text, dict):
            return cls(scope=text.get("scope") or "", tag=text.get("tag") or "")
        if not isinstance(text, str):
            raise InvalidArgument(f"Tags must be 'scope=tag' strings or objects; got {text!r}.")
        if "=" in text:
            scope, value = text.split("=", 1)
            return cls(scope=scope.strip(), tag=value.strip())
        return cls(tag=text.strip())

    def to_json(self):
        return {"scope": self.scope, "tag": self.tag}


def _tags_tuple(tags):
    return tuple(Tag.parse(t) for t in tags or ())


def _tags_json(body):
    return [Tag.parse(t).to_json() for t in body.get("tags") or []]


# ============================
# Groups
# ============================

def _validate_clause(clause):
    if not isinstance(clause, dict):
        raise InvalidArgument(f"Expression clauses must be objects; got {clause!r}.")
    resource_type = clause.get("resource_type")
    _check_choice("Expression resource_type", resource_type, EXPRESSION_TYPES)

    match resource_type:
        case "Condition":
            for k in ("member_type", "key", "operator", "value"):
                if not clause.get(k):
                    raise InvalidArgument(f'A Condition clause requires "{k}".')
            _check_choice("Condition member_type", clause["member_type"], CONDITION_MEMBER_TYPES)
            _check_choice("Condition key", clause["key"], CONDITION_KEYS)
            _check_choice("Condition operator", clause["operator"], CONDITION_OPERATORS)
            if clause["key"] == "Tag" and clause["operator"] == "NOTEQUALS":
                raise InvalidArgument("The Tag key does not support the NOTEQUALS operator.")
        case "ConjunctionOperator":
            _check_choice("conjunction_operator", clause.get("conjunction_operator"), CONJUNCTIONS)
        case "IPAddressExpression":
            addresses = clause.get("ip_addresses") or []
            if not addresses:
                raise InvalidArgument("An IPAddressExpression requires at least one address.")
            for addr in addresses:
                if not isinstance(addr, str):
                    raise InvalidArgument(f"IP addresses must be strings; got {addr!r}.")
                try:
                    if "-" in addr:
                        for part in addr.split("-", 1):
                            ipaddress.ip_address(part.strip())
                    else:
                        ipaddress.ip_network(addr, strict=False)
                except ValueError:
                    raise InvalidArgument(f'"{addr}" is not a valid IP address, range or network.')
        case "MACAddressExpression":
            if not clause.get("mac_addresses"):
                raise InvalidArgument("A MACAddressExpression requires at least one MAC address.")
        case "PathExpression":
            if not clause.get("paths"):
                raise InvalidArgument("A PathExpression requires at least one path.")
            _check_strings("PathExpression paths", clause["paths"])
        case "ExternalIDExpression":
            if not clause.get("member_type") or not clause.get("external_ids"):
                raise InvalidArgument('An ExternalIDExpression requires "member_type" and "external_ids".')
            _check_strings("ExternalIDExpression external_ids", clause["external_ids"])
        case "NestedExpression":
            for c in clause.get("expressions") or []:
                _validate_clause(c)


@dataclass(frozen=True)
class GroupSpec:
    name: str
    description: str = ""
    expression: tuple = ()
    tags: tuple = ()
    domain: str = "default"

    kind = KIND_GROUP

    def __post_init__(self):
        object.__setattr__(self, "description", self.description or "")
        object.__setattr__(self, "expression", tuple(dict(c) if isinstance(c, dict) else c for c in self.expression or ()))
        object.__setattr__(self, "tags", _tags_tuple(self.tags))

    @classmethod
    def from_membership(cls, name, group_type, members=None, key=None, operator=None, filter_value=None,
                        domain="default", description="", tags=()):
        """Builds a group from one of the common membership shapes used on the command line."""
        members = list(members or [])
        match group_type:
            case "ip-based":
                expression = [{"resource_type": "IPAddressExpression", "ip_addresses": members}]
            case "member-based":
                expression = [{"resource_type": "ExternalIDExpression", "member_type": "VirtualMachine", "external_ids": members}]
            case "group-based":
                # non-string members are left for validate() to reject
                paths = [m if not isinstance(m, str) or m.startswith("/") else f"/infra/domains/{domain}/groups/{m}" for m in members]
                expression = [{"resource_type": "PathExpression", "paths": paths}]
            case "criteria-based":
                if key is None or operator is None or filter_value is None:
                    raise InvalidArgument("A criteria-based group requires a key, an operator and a filter value.")
                expression = [{
                    "resource_type": "Condition",
                    "member_type": "VirtualMachine",
                    "key": key,
                    "operator": operator,
                    "value": filter_value,
                }]
            case _:
                raise InvalidArgument(f'Unknown group type "{group_type}"; choose one of {", ".join(GROUP_TYPES)}.')
        if group_type != "criteria-based" and not members:
            raise InvalidArgument(f"A {group_type} group requires at least one member.")
        return cls(name=name, description=description, expression=tuple(expression), tags=tags, domain=domain)

    def validate(self):
        _check_name(self.name)
        if not self.domain:
            raise InvalidArgument("Groups must be defined within a domain.")
        for clause in self.expression:
            _validate_clause(clause)

    def to_payload(self):
        return {
            "resource_type": "Group",
            "display_name": self.name,
            "description": self.description,
            "expression": [dict(c) for c in self.expression],
            "tags": [t.to_json() for t in self.tags],
        }

    @staticmethod
    def fields_from_json(body):
        return {"expression": [clean_clause(c) for c in body.get("expression") or []]}

    def comparable(self):
        return comparable_fields(self.kind, self.to_payload())


# ============================
# Gateways
# ============================

@dataclass(frozen=True)
class Tier0GatewaySpec:
    name: str
    description: str = ""
    ha_mode: str = "ACTIVE_ACTIVE"
    failover_mode: str = "NON_PREEMPTIVE"
    tags: tuple = ()

    kind = KIND_TIER0

    def __post_init__(self):
        object.__setattr__(self, "description", self.description or "")
        object.__setattr__(self, "tags", _tags_tuple(self.tags))

    def validate(self):
        _check_name(self.name)
        _check_choice("ha_mode", self.ha_mode, HA_MODES)
        _check_choice("failover_mode", self.failover_mode, FAILOVER_MODES)

    def to_payload(self):
        return {
            "resource_type": "Tier0",
            "display_name": self.name,
            "description": self.description,
            "ha_mode": self.ha_mode,
            "failover_mode": self.failover_mode,
            "tags": [t.to_json() for t in self.tags],
        }

    @staticmethod
    def fields_from_json(body):
        return {
            "ha_mode": body.get("ha_mode") or "ACTIVE_ACTIVE",
            "failover_mode": body.get("failover_mode") or "NON_PREEMPTIVE",
        }

    def comparable(self):
        return comparable_fields(self.kind, self.to_payload())


@dataclass(frozen=True)
class Tier1GatewaySpec:
    name: str
    description: str = ""
    failover_mode: str = "NON_PREEMPTIVE"
    tier0_path: str = None
    route_advertisement_types: tuple = ()
    tags: tuple = ()

    kind = KIND_TIER1

    def __post_init__(self):
        object.__setattr__(self, "description", self.description or "")
        object.__setattr__(self, "route_advertisement_types", tuple(self.route_advertisement_types or ()))
        object.__setattr__(self, "tags", _tags_tuple(self.tags))

    def validate(self):
        _check_name(self.name)
        _check_choice("failover_mode", self.failover_mode, FAILOVER_MODES)
        if self.tier0_path is not None and not isinstance(self.tier0_path, str):
            raise InvalidArgument(f"tier0_path must be a tier-0 name, id or policy path; got {self.tier0_path!r}.")
        for adv in self.route_advertisement_types:
            _check_choice("route advertisement type", adv, ROUTE_ADVERTISEMENT_TYPES)

    def to_payload(self):
        json_data = {
            "resource_type": "Tier1",
            "display_name": self.name,
            "description": self.description,
            "failover_mode": self.failover_mode,
            "route_advertisement_types": list(self.route_advertisement_types),
            "tags": [t.to_json() for t in self.tags],
        }
        if self.tier0_path:
            # a bare reference is a tier-0 id
            json_data["tier0_path"] = self.tier0_path if self.tier0_path.startswith("/") else f"/infra/tier-0s/{self.tier0_path}"
        return json_data

    @staticmethod
    def fields_from_json(body):
        return {
            "failover_mode": body.get("failover_mode") or "NON_PREEMPTIVE",
            "tier0_path": body.get("tier0_path") or "",
            "route_advertisement_types": list(body.get("route_advertisement_types") or []),
        }

    def comparable(self):
        return comparable_fields(self.kind, self.to_payload())


SPEC_CLASSES = {
    KIND_GROUP: GroupSpec,
    KIND_TIER0: Tier0GatewaySpec,
    KIND_TIER1: Tier1GatewaySpec,
}


def comparable_fields(kind, body):
    """Returns the fields of a policy API body that decide whether it matches a spec of the given kind."""
    result = {"description": body.get("description") or ""}
    result.update(SPEC_CLASSES[kind].fields_from_json(body))
    result["tags"] = _tags_json(body)
    return result


# ============================
# Remote objects
# ============================

@dataclass
class RemoteObject:
    """An object as currently stored by the NSX-T Manager."""
    kind: str
    name: str
    remote_id: str
    resource_url: str = None
    description: str = ""
    tags: tuple = ()
    revision: int = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_json(cls, kind, body, resource_url=None):
        return cls(
            kind=kind,
            name=body.get("display_name") or body.get("id"),
            remote_id=body["id"],
            resource_url=resource_url,
            description=body.get("description") or "",
            tags=_tags_tuple(body.get("tags")),
            revision=body.get("_revision"),
            raw=body,
        )

    @property
    def fields(self):
        return SPEC_CLASSES[self.kind].fields_from_json(self.raw)

    def comparable(self):
        return comparable_fields(self.kind, self.raw)


# ============================
# Desired-state files
# ============================

def spec_from_dict(data, default_domain="default"):
    """Builds a spec from one entry of a desired-state file. Each entry carries a "kind".

    Groups that name no domain are placed in `default_domain`.
    """
    if not isinstance(data, dict):
        raise InvalidArgument(f"Desired-state entries must be objects; got {data!r}.")
    data = dict(data)
    kind = data.pop("kind", None)
    if kind not in SPEC_CLASSES:
        raise InvalidArgument(f'Unknown kind "{kind}"; choose one of {", ".join(KINDS)}.')
    if kind == KIND_GROUP:
        data.setdefault("domain", default_domain)
    try:
        if kind == KIND_GROUP and "type" in data:
            group_type = data.pop("type")
            return GroupSpec.from_membership(group_type=group_type, **data)
        return SPEC_CLASSES[kind](**data)
    except TypeError as e:
        raise InvalidArgument(f"Invalid {kind} entry {data.get('name', '')!r}: {e}")


def load_desired_file(path, default_domain="default"):
    """Reads a JSON file holding a list of desired objects (or {"objects": [...]}) and returns the specs."""
    if not exists(path):
        raise InvalidArgument(f"{path} not found.")
    with open(path, "r") as infile:
        try:
            json_data = json.load(infile)
        except json.JSONDecodeError as e:
            raise InvalidArgument(f"{path} is not valid JSON: {e}")
    if isinstance(json_data, dict):
        json_data = json_data.get("objects", [])
    return [spec_from_dict(d, default_domain) for d in json_data]
