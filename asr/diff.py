from __future__ import annotations

from typing import Mapping, NamedTuple

from .criteria import Criterion, Policy, RegexPattern


class PolicyDiff(NamedTuple):
    removed: list[Criterion]
    added: list[Criterion]

    @property
    def is_empty(self) -> bool:
        return not self.removed and not self.added


def _pattern_maps_equal(a: Mapping[str, RegexPattern], b: Mapping[str, RegexPattern]) -> bool:
    if len(a) != len(b):
        return False
    for k, v in a.items():
        other = b.get(k)
        if other is None or v.source != other.source:
            return False
    return True


def criteria_equal(a: Criterion, b: Criterion) -> bool:
    return (
        a.name == b.name
        and a.namespace == b.namespace
        and _pattern_maps_equal(a.metadata, b.metadata)
        and _pattern_maps_equal(a.pod_labels, b.pod_labels)
    )


def _missing_from(source: Policy, other: Policy) -> list[Criterion]:
    return [c for c in source.services if not any(criteria_equal(c, o) for o in other.services)]


def diff(old: Policy, new: Policy) -> PolicyDiff:
    """Set difference between two policies; order is irrelevant.

    A criterion whose regex text changed shows up in both lists.
    """
    return PolicyDiff(removed=_missing_from(old, new), added=_missing_from(new, old))
