from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .criteria import (
    ATTR_CRONJOB_NAME,
    ATTR_DAEMONSET_NAME,
    ATTR_DEPLOYMENT_NAME,
    ATTR_JOB_NAME,
    ATTR_NAMESPACE,
    ATTR_OWNER_NAME,
    ATTR_POD_NAME,
    ATTR_REPLICASET_NAME,
    ATTR_STATEFULSET_NAME,
)

OWNER_KIND_ATTRIBUTES: dict[str, str] = {
    "Deployment": ATTR_DEPLOYMENT_NAME,
    "StatefulSet": ATTR_STATEFULSET_NAME,
    "DaemonSet": ATTR_DAEMONSET_NAME,
    "ReplicaSet": ATTR_REPLICASET_NAME,
    "CronJob": ATTR_CRONJOB_NAME,
    "Job": ATTR_JOB_NAME,
}


@dataclass(frozen=True)
class OwnerRef:
    kind: str
    name: str


@dataclass(frozen=True)
class Workload:
    """The parts of a pod the matcher looks at."""

    name: str
    namespace: str
    labels: Mapping[str, str] = field(default_factory=dict)
    owners: tuple[OwnerRef, ...] = ()


@dataclass(frozen=True)
class AttributeSnapshot:
    metadata: Mapping[str, str]
    labels: Mapping[str, str]


def owner_attribute(kind: str) -> str | None:
    return OWNER_KIND_ATTRIBUTES.get(kind)


def _get(obj: Any, attr: str, key: str | None = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key or attr)
    return getattr(obj, attr, None)


def workload_from_pod(pod: Any) -> Workload:
    """Build a Workload from a ``kubernetes`` V1Pod or its JSON (dict) form."""
    if isinstance(pod, Workload):
        return pod
    meta = _get(pod, "metadata") or {}
    owners = tuple(
        OwnerRef(kind=str(_get(o, "kind") or ""), name=str(_get(o, "name") or ""))
        for o in (_get(meta, "owner_references", "ownerReferences") or [])
    )
    return Workload(
        name=_get(meta, "name") or "",
        namespace=_get(meta, "namespace") or "",
        labels=dict(_get(meta, "labels") or {}),
        owners=owners,
    )


def extract(workload: Workload) -> AttributeSnapshot:
    """Derive the attribute map the matcher works on.

    ``k8s_owner_name`` is the last-listed (outermost) owner, or the pod's own
    name when it has no owner. Every direct owner of a known controller kind
    also sets its typed key; other kinds are ignored.
    """
    owner_name = workload.owners[-1].name if workload.owners else workload.name

    metadata = {
        ATTR_NAMESPACE: workload.namespace,
        ATTR_POD_NAME: workload.name,
        ATTR_OWNER_NAME: owner_name,
    }
    for owner in workload.owners:
        key = owner_attribute(owner.kind)
        if key is None:
            continue
        metadata[key] = owner.name

    return AttributeSnapshot(metadata=metadata, labels=dict(workload.labels))
