"""Typed views over the stored objects the reconcilers work with."""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from grantsync.exceptions import ConfigurationError
from grantsync.models.kinds import (
    CLUSTER_ROLE_TEMPLATE_BINDING,
    PROJECT_ROLE_TEMPLATE_BINDING,
    RBAC_GROUP,
    ResourceKind,
)

PSP_RESOURCE = "podsecuritypolicies"
MAX_NAME_LENGTH = 253

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9.-]+")


# ============================================================================
# METADATA HELPERS
# ============================================================================


def metadata(body: Dict[str, Any]) -> Dict[str, Any]:
    return body.get("metadata") or {}


def labels_of(body: Dict[str, Any]) -> Dict[str, str]:
    return metadata(body).get("labels") or {}


def finalizers_of(body: Dict[str, Any]) -> List[str]:
    return list(metadata(body).get("finalizers") or [])


def is_deletion_requested(body: Dict[str, Any]) -> bool:
    return bool(metadata(body).get("deletionTimestamp"))


def object_key(body: Dict[str, Any]) -> Tuple[Optional[str], str]:
    meta = metadata(body)
    return meta.get("namespace"), meta["name"]


# ============================================================================
# ENUMS
# ============================================================================


class BindingScope(str, Enum):
    PROJECT = "project"
    CLUSTER = "cluster"


class BindingState(str, Enum):
    """Lifecycle state of a binding, derived from deletion marker and finalizer."""

    ACTIVE = "Active"
    TERMINATING = "Terminating"
    GONE = "Gone"

    @classmethod
    def of(cls, body: Optional[Dict[str, Any]], finalizer: str) -> "BindingState":
        if body is None:
            return cls.GONE
        if not is_deletion_requested(body):
            return cls.ACTIVE
        if finalizer in finalizers_of(body):
            return cls.TERMINATING
        return cls.GONE


# ============================================================================
# RULES AND SUBJECTS
# ============================================================================


@dataclass(frozen=True)
class PolicyRule:
    """One access rule: verbs over API groups, resources and resource names."""

    verbs: Tuple[str, ...] = ()
    api_groups: Tuple[str, ...] = ()
    resources: Tuple[str, ...] = ()
    resource_names: Tuple[str, ...] = ()
    non_resource_urls: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyRule":
        return cls(
            verbs=tuple(data.get("verbs") or ()),
            api_groups=tuple(data.get("apiGroups") or ()),
            resources=tuple(data.get("resources") or ()),
            resource_names=tuple(data.get("resourceNames") or ()),
            non_resource_urls=tuple(data.get("nonResourceURLs") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        rule: Dict[str, Any] = {"verbs": list(self.verbs)}
        if self.api_groups:
            rule["apiGroups"] = list(self.api_groups)
        if self.resources:
            rule["resources"] = list(self.resources)
        if self.resource_names:
            rule["resourceNames"] = list(self.resource_names)
        if self.non_resource_urls:
            rule["nonResourceURLs"] = list(self.non_resource_urls)
        return rule

    def names_resource(self, resource: str) -> bool:
        """Case-insensitive check whether the rule covers a resource kind."""
        resource = resource.lower()
        return any(r.lower() == resource for r in self.resources)


def rules_from(items: Optional[List[Dict[str, Any]]]) -> List[PolicyRule]:
    return [PolicyRule.from_dict(item) for item in items or []]


@dataclass(frozen=True)
class Subject:
    kind: str
    name: str
    api_group: Optional[str] = None
    namespace: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Subject":
        data = data or {}
        return cls(
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            api_group=data.get("apiGroup"),
            namespace=data.get("namespace"),
        )

    def to_dict(self) -> Dict[str, Any]:
        subject = {"kind": self.kind, "name": self.name}
        if self.kind == "ServiceAccount":
            if self.namespace:
                subject["namespace"] = self.namespace
        else:
            subject["apiGroup"] = self.api_group or RBAC_GROUP
        return subject


# ============================================================================
# TEMPLATES
# ============================================================================


@dataclass
class RoleTemplate:
    """Named bundle of rules, optionally composed from other templates."""

    name: str
    rules: List[PolicyRule] = field(default_factory=list)
    role_template_names: List[str] = field(default_factory=list)
    builtin: bool = False

    @classmethod
    def from_dict(cls, body: Dict[str, Any]) -> "RoleTemplate":
        return cls(
            name=metadata(body)["name"],
            rules=rules_from(body.get("rules")),
            role_template_names=list(body.get("roleTemplateNames") or []),
            builtin=bool(body.get("builtin", False)),
        )


# ============================================================================
# BINDINGS
# ============================================================================


@dataclass
class RoleTemplateBinding:
    """Project- or cluster-scoped grant of a role template to a subject."""

    kind: ResourceKind
    name: str
    namespace: Optional[str]
    uid: str
    subject: Subject
    role_template_name: str
    project_name: Optional[str] = None
    finalizers: List[str] = field(default_factory=list)
    deletion_requested: bool = False

    @classmethod
    def from_dict(cls, kind: ResourceKind, body: Dict[str, Any]) -> "RoleTemplateBinding":
        meta = metadata(body)
        return cls(
            kind=kind,
            name=meta["name"],
            namespace=meta.get("namespace"),
            uid=meta.get("uid", ""),
            subject=Subject.from_dict(body.get("subject")),
            role_template_name=body.get("roleTemplateName", ""),
            project_name=(
                body.get("projectName")
                if kind == PROJECT_ROLE_TEMPLATE_BINDING
                else None
            ),
            finalizers=finalizers_of(body),
            deletion_requested=is_deletion_requested(body),
        )

    @property
    def scope(self) -> BindingScope:
        if self.kind == CLUSTER_ROLE_TEMPLATE_BINDING:
            return BindingScope.CLUSTER
        return BindingScope.PROJECT

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def validate(self) -> None:
        """Raise ConfigurationError for bindings that can never be reconciled."""
        if not self.role_template_name:
            raise ConfigurationError(
                f"{self.kind} {self.key} has no role template set"
            )
        if not self.subject.name:
            raise ConfigurationError(f"{self.kind} {self.key} has no subject")
        if self.scope == BindingScope.PROJECT and not self.project_name:
            raise ConfigurationError(f"{self.kind} {self.key} has no project set")
        if not self.uid:
            raise ConfigurationError(f"{self.kind} {self.key} has no uid")


def binding_object_name(role_name: str, subject: Subject, uid: str) -> str:
    """Deterministic RoleBinding/ClusterRoleBinding name for one grant.

    Qualified by the binding UID so two bindings granting the same role to the
    same subject own distinct objects. A sanitized or truncated name carries a
    digest of the raw name, so ``system:foo`` and ``system-foo`` never collide.
    """
    raw = f"{role_name}-{subject.name}-{uid}".lower()
    name = _INVALID_NAME_CHARS.sub("-", raw).strip("-.")
    if name == raw and len(name) <= MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha256(raw.encode()).hexdigest()[:10]
    return f"{name[:MAX_NAME_LENGTH - len(digest) - 1].rstrip('-.')}-{digest}"
