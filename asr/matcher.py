from __future__ import annotations

from typing import Any

from .attributes import AttributeSnapshot, extract, workload_from_pod
from .criteria import Criterion, Policy


def matches(snapshot: AttributeSnapshot | None, criterion: Criterion | None) -> bool:
    """All metadata and pod label constraints must hold; a missing key fails."""
    if criterion is None:
        return True
    if snapshot is None:
        return False

    for key, pattern in criterion.metadata.items():
        value = snapshot.metadata.get(key)
        if value is None or not pattern.match(value):
            return False

    for key, pattern in criterion.pod_labels.items():
        value = snapshot.labels.get(key)
        if value is None or not pattern.match(value):
            return False
    return True


def first_match(snapshot: AttributeSnapshot, policy: Policy) -> Criterion | None:
    # Earlier criteria take precedence.
    for criterion in policy.services:
        if matches(snapshot, criterion):
            return criterion
    return None


def is_in_scope(snapshot: AttributeSnapshot, policy: Policy) -> bool:
    return first_match(snapshot, policy) is not None


def workload_in_scope(pod: Any, policy: Policy) -> bool:
    return is_in_scope(extract(workload_from_pod(pod)), policy)
