"""Selection policy model.

A policy document looks like::

    discovery:
      services:
        - name: checkout
          k8s_namespace: shop
          k8s_deployment_name: "^checkout-"
        - name: labelled
          pod_labels:
            app: "api|web"

Every entry needs at least one metadata key or pod label. Metadata keys are
restricted to ``ALLOWED_ATTRIBUTE_NAMES``; pod label keys are free. An empty
(or null) pattern means "match anything".
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigParseError, ConfigValidationError

ATTR_NAMESPACE = "k8s_namespace"
ATTR_POD_NAME = "k8s_pod_name"
ATTR_DEPLOYMENT_NAME = "k8s_deployment_name"
ATTR_REPLICASET_NAME = "k8s_replicaset_name"
ATTR_DAEMONSET_NAME = "k8s_daemonset_name"
ATTR_STATEFULSET_NAME = "k8s_statefulset_name"
ATTR_CRONJOB_NAME = "k8s_cronjob_name"
ATTR_JOB_NAME = "k8s_job_name"
# Generic key: the name of the pod's top-level owner, whatever its kind.
ATTR_OWNER_NAME = "k8s_owner_name"

ALLOWED_ATTRIBUTE_NAMES = frozenset(
    {
        ATTR_NAMESPACE,
        ATTR_POD_NAME,
        ATTR_DEPLOYMENT_NAME,
        ATTR_REPLICASET_NAME,
        ATTR_DAEMONSET_NAME,
        ATTR_STATEFULSET_NAME,
        ATTR_CRONJOB_NAME,
        ATTR_JOB_NAME,
        ATTR_OWNER_NAME,
    }
)

# Constraints that identify pods directly rather than through an owner.
IDENTITY_ATTRIBUTE_NAMES = frozenset({ATTR_NAMESPACE, ATTR_POD_NAME})


class RegexPattern:
    """A compiled regular expression that compares by its source text.

    An empty source is the unset pattern and matches every value, including
    the empty string. A set pattern uses search semantics: it matches when any
    substring matches, unless the author anchors it.
    """

    __slots__ = ("source", "_re")

    def __init__(self, source: str | None = None):
        self.source = source or ""
        if not self.source:
            self._re = None
            return
        try:
            self._re = re.compile(self.source)
        except re.error as e:
            raise ConfigParseError(f"invalid regular expression {self.source!r}: {e}") from e

    @property
    def is_set(self) -> bool:
        return self._re is not None

    def match(self, value: str) -> bool:
        if self._re is None:
            return True
        return self._re.search(value) is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RegexPattern):
            return NotImplemented
        return self.source == other.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __repr__(self) -> str:
        return f"RegexPattern({self.source!r})"


def _patterns(raw: Mapping[str, RegexPattern | str | None] | None) -> Mapping[str, RegexPattern]:
    out: dict[str, RegexPattern] = {}
    for k, v in (raw or {}).items():
        out[k] = v if isinstance(v, RegexPattern) else RegexPattern(v)
    return MappingProxyType(out)


@dataclass(frozen=True)
class Criterion:
    """One selection rule. Immutable once part of a committed policy."""

    name: str = ""
    namespace: str = ""
    metadata: Mapping[str, RegexPattern] = field(default_factory=dict)
    pod_labels: Mapping[str, RegexPattern] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _patterns(self.metadata))
        object.__setattr__(self, "pod_labels", _patterns(self.pod_labels))

    def __hash__(self) -> int:
        return hash(
            (
                self.name,
                self.namespace,
                tuple(sorted((k, v.source) for k, v in self.metadata.items())),
                tuple(sorted((k, v.source) for k, v in self.pod_labels.items())),
            )
        )

    def describe(self) -> str:
        if self.name:
            return self.name
        parts = [f"{k}={v.source}" for k, v in sorted(self.metadata.items())]
        parts += [f"label:{k}={v.source}" for k, v in sorted(self.pod_labels.items())]
        return ",".join(parts) or "<empty>"

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if self.name:
            doc["name"] = self.name
        if self.namespace:
            doc["namespace"] = self.namespace
        for k, v in self.metadata.items():
            doc[k] = v.source
        if self.pod_labels:
            doc["pod_labels"] = {k: v.source for k, v in self.pod_labels.items()}
        return doc


@dataclass(frozen=True)
class Policy:
    """The ordered criteria currently in effect."""

    services: tuple[Criterion, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return {"discovery": {"services": [c.to_document() for c in self.services]}}


def _scalar_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"expected a scalar value, got {type(value).__name__}")


class CriterionDocument(BaseModel):
    # Metadata keys sit inline next to name/namespace; they land in model_extra.
    model_config = ConfigDict(extra="allow")

    name: str = ""
    namespace: str = ""
    pod_labels: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("pod_labels", "k8s_pod_labels")
    )

    @field_validator("name", "namespace", mode="before")
    @classmethod
    def _text(cls, v: Any) -> str:
        return _scalar_to_text(v)


class DiscoveryDocument(BaseModel):
    services: list[CriterionDocument] | None = None


class PolicyDocument(BaseModel):
    discovery: DiscoveryDocument | None = None


def _pattern_map(raw: Mapping[str, Any], where: str) -> dict[str, RegexPattern]:
    out: dict[str, RegexPattern] = {}
    for k, v in raw.items():
        try:
            out[str(k)] = RegexPattern(_scalar_to_text(v))
        except ValueError as e:
            raise ConfigParseError(f"{where}.{k}: {e}") from e
    return out


def _to_criterion(index: int, entry: CriterionDocument) -> Criterion:
    where = f"discovery.services[{index}]"
    return Criterion(
        name=entry.name,
        namespace=entry.namespace,
        metadata=_pattern_map(entry.model_extra or {}, where),
        pod_labels=_pattern_map(entry.pod_labels or {}, f"{where}.pod_labels"),
    )


def deserialize(text: str | None) -> Policy:
    """Parse a policy document. Does not validate; see ``validate``."""
    try:
        raw = yaml.safe_load(text or "")
    except yaml.YAMLError as e:
        raise ConfigParseError(f"error unmarshaling YAML: {e}") from e
    if raw is None:
        return Policy()
    if not isinstance(raw, dict):
        raise ConfigParseError("policy document must be a mapping")

    try:
        doc = PolicyDocument.model_validate(raw)
    except ValidationError as e:
        raise ConfigParseError(f"invalid policy document: {e}") from e

    if doc.discovery is None or not doc.discovery.services:
        return Policy()
    return Policy(services=tuple(_to_criterion(i, entry) for i, entry in enumerate(doc.discovery.services)))


def validate(policy: Policy) -> None:
    # an empty policy is valid
    for i, c in enumerate(policy.services):
        if not c.metadata and not c.pod_labels:
            raise ConfigValidationError(f"discovery.services[{i}] should define at least one selection criteria")
        for k in c.metadata:
            if k not in ALLOWED_ATTRIBUTE_NAMES:
                raise ConfigValidationError(f"unknown attribute in discovery.services[{i}]: {k}")


def load_policy(text: str | None) -> Policy:
    policy = deserialize(text)
    validate(policy)
    return policy
