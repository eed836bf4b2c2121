"""
tenantplane.tier0_core.labels
──────────────────────────────
Fixed label/annotation keys and label selectors.

A Selector is a conjunction of requirements. It is evaluated locally by the
in-memory store and rendered to the cluster's selector syntax
("a=b,c,d notin (x,y)") by the Kubernetes store, so both backends agree on
what matches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Mapping

from tenantplane.tier0_core.config import GROUP

TENANT_LABEL = f"{GROUP}/tenant"
NETWORK_POLICY_LABEL = f"{GROUP}/network-policy"
LIMIT_RANGE_LABEL = f"{GROUP}/limit-range"
RESOURCE_QUOTA_LABEL = f"{GROUP}/resource-quota"

INGRESS_CLASSES_ANNOTATION = f"{GROUP}/ingress-classes"
STORAGE_CLASSES_ANNOTATION = f"{GROUP}/storage-classes"
NODE_SELECTOR_ANNOTATION = "scheduler.alpha.kubernetes.io/node-selector"


def used_quota_annotation(resource_name: str) -> str:
    """Annotation recording the tenant-wide usage of one resource on a quota object."""
    return f"quota.{GROUP}/used-{resource_name}"


Operator = Literal["Equals", "In", "NotIn", "Exists", "DoesNotExist"]


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "Exists":
            return self.key in labels
        if self.operator == "DoesNotExist":
            return self.key not in labels
        if self.operator == "Equals":
            return labels.get(self.key) == self.values[0]
        if self.operator == "In":
            return labels.get(self.key) in self.values
        # NotIn also matches when the key is absent; callers pair it with Exists.
        return labels.get(self.key) not in self.values

    def __str__(self) -> str:
        if self.operator == "Exists":
            return self.key
        if self.operator == "DoesNotExist":
            return f"!{self.key}"
        if self.operator == "Equals":
            return f"{self.key}={self.values[0]}"
        op = "in" if self.operator == "In" else "notin"
        return f"{self.key} {op} ({','.join(sorted(self.values))})"


@dataclass(frozen=True)
class Selector:
    requirements: tuple[Requirement, ...] = field(default_factory=tuple)

    def add(self, requirement: Requirement) -> Selector:
        return Selector(self.requirements + (requirement,))

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return all(r.matches(labels) for r in self.requirements)

    def empty(self) -> bool:
        return not self.requirements

    def __str__(self) -> str:
        return ",".join(str(r) for r in self.requirements)


def equals(key: str, value: str) -> Requirement:
    return Requirement(key, "Equals", (value,))


def exists(key: str) -> Requirement:
    return Requirement(key, "Exists")


def not_in(key: str, values: Iterable[str]) -> Requirement:
    return Requirement(key, "NotIn", tuple(values))


def selector_from(labels: Mapping[str, str]) -> Selector:
    """Equality selector for every key/value pair."""
    return Selector(tuple(equals(k, v) for k, v in sorted(labels.items())))


def outer_join_selector(key: str, declared: Iterable[str]) -> Selector:
    """
    Select objects carrying `key` whose value is not one of `declared`:
    the managed objects that have fallen out of the declared list.
    """
    selector = Selector((exists(key),))
    declared = tuple(declared)
    if declared:
        selector = selector.add(not_in(key, declared))
    return selector


__all__ = [
    "TENANT_LABEL", "NETWORK_POLICY_LABEL", "LIMIT_RANGE_LABEL", "RESOURCE_QUOTA_LABEL",
    "INGRESS_CLASSES_ANNOTATION", "STORAGE_CLASSES_ANNOTATION", "NODE_SELECTOR_ANNOTATION",
    "used_quota_annotation", "Requirement", "Selector",
    "equals", "exists", "not_in", "selector_from", "outer_join_selector",
]
