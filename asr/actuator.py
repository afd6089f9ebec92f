from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Event, Lock
from typing import Protocol

from .attributes import Workload, extract
from .criteria import (
    ATTR_CRONJOB_NAME,
    ATTR_DAEMONSET_NAME,
    ATTR_DEPLOYMENT_NAME,
    ATTR_JOB_NAME,
    ATTR_NAMESPACE,
    ATTR_OWNER_NAME,
    ATTR_REPLICASET_NAME,
    ATTR_STATEFULSET_NAME,
    IDENTITY_ATTRIBUTE_NAMES,
    Criterion,
    RegexPattern,
)
from .db import log_event, utc_now
from .errors import ActuationError, ConvergenceCancelled, MatchConfigurationError
from .k8s_ops import CONTROLLER_KINDS, PARENT_KINDS, ControllerRef, exact_name
from .matcher import matches
from .settings import settings

# Typed metadata key -> controller kinds whose names it selects.
KEY_KINDS: dict[str, tuple[str, ...]] = {
    ATTR_DEPLOYMENT_NAME: ("Deployment",),
    ATTR_REPLICASET_NAME: ("ReplicaSet",),
    ATTR_DAEMONSET_NAME: ("DaemonSet",),
    ATTR_STATEFULSET_NAME: ("StatefulSet",),
    ATTR_CRONJOB_NAME: ("CronJob",),
    ATTR_JOB_NAME: ("Job",),
    ATTR_OWNER_NAME: ("Deployment", "ReplicaSet", "DaemonSet", "StatefulSet"),
}


class Orchestrator(Protocol):
    def list_controllers(self, kind: str, namespace: str, name: str | None = None) -> list[ControllerRef]: ...

    def patch_restart(self, ref: ControllerRef, ts: str | None = None) -> None: ...

    def list_pods(self, namespace: str) -> list[Workload]: ...

    def controller_owner(self, ref: ControllerRef) -> ControllerRef | None: ...


@dataclass
class ConvergenceReport:
    criterion: str
    restarted: list[ControllerRef] = field(default_factory=list)
    errors: list[ActuationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def check_compatible(criterion: Criterion) -> None:
    """Pod labels can only be combined with namespace / pod name constraints."""
    if not criterion.pod_labels:
        return
    for key in criterion.metadata:
        if key not in IDENTITY_ATTRIBUTE_NAMES:
            raise MatchConfigurationError(
                f"criterion {criterion.describe()!r}: pod labels are not compatible with metadata key {key}"
            )


def _strip_anchors(source: str) -> str:
    if source.startswith("^"):
        source = source[1:]
    if source.endswith("$") and not source.endswith("\\$"):
        source = source[:-1]
    return source


class ConvergenceActuator:
    """Restarts the controllers selected by a criterion.

    Restarts go through the pod template's ``restartedAt`` annotation, which
    makes the controller roll its pods; the new pods then pass through the
    admission-time injector under the new policy.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        default_namespace: str | None = None,
        max_workers: int | None = None,
        stop: Event | None = None,
    ):
        self.orchestrator = orchestrator
        self.default_namespace = default_namespace or settings.default_namespace
        self.max_workers = max(1, int(max_workers or settings.max_parallel_patches))
        self.stop = stop or Event()

    def _check_cancelled(self) -> None:
        if self.stop.is_set():
            raise ConvergenceCancelled("convergence cancelled")

    def target_namespace(self, criterion: Criterion) -> str:
        ns = criterion.metadata.get(ATTR_NAMESPACE)
        if ns is not None and ns.is_set:
            return _strip_anchors(ns.source)
        return self.default_namespace

    def converge(self, criterion: Criterion) -> ConvergenceReport:
        """Find and restart every controller the criterion selects.

        Raises MatchConfigurationError before touching the API if the
        criterion is not convergible, ConvergenceCancelled if the stop event
        fires. Per-target API failures are collected in the report.
        """
        check_compatible(criterion)
        report = ConvergenceReport(criterion=criterion.describe())
        namespace = self.target_namespace(criterion)

        typed = {k: v for k, v in criterion.metadata.items() if k in KEY_KINDS}
        if typed:
            targets = self._targets_by_name(namespace, typed, report)
        else:
            # Only pod-level constraints: locate the pods, then their controllers.
            targets = self._targets_by_pods(namespace, criterion, report)

        self._patch_all(targets, report)
        if report.ok:
            log_event("INFO", f"Converged {len(report.restarted)} controller(s)", criterion=report.criterion)
        else:
            log_event(
                "WARN",
                f"Converged {len(report.restarted)} controller(s), {len(report.errors)} failed",
                criterion=report.criterion,
            )
        return report

    def _targets_by_name(
        self, namespace: str, typed: dict[str, RegexPattern], report: ConvergenceReport
    ) -> list[ControllerRef]:
        targets: list[ControllerRef] = []
        for key, pattern in typed.items():
            name = exact_name(pattern)
            for kind in KEY_KINDS[key]:
                self._check_cancelled()
                try:
                    found = self.orchestrator.list_controllers(kind, namespace, name)
                except ActuationError as e:
                    self._record_error(report, e)
                    continue
                if name is None:
                    found = [ref for ref in found if pattern.match(ref.name)]
                targets.extend(found)
        return _unique(targets)

    def _targets_by_pods(self, namespace: str, criterion: Criterion, report: ConvergenceReport) -> list[ControllerRef]:
        self._check_cancelled()
        try:
            pods = self.orchestrator.list_pods(namespace)
        except ActuationError as e:
            self._record_error(report, e)
            return []

        targets: list[ControllerRef] = []
        for pod in pods:
            if not matches(extract(pod), criterion):
                continue
            for owner in pod.owners:
                if owner.kind not in CONTROLLER_KINDS:
                    continue
                ref = ControllerRef(kind=owner.kind, namespace=namespace, name=owner.name)
                if ref.kind in PARENT_KINDS:
                    self._check_cancelled()
                    try:
                        ref = self.orchestrator.controller_owner(ref) or ref
                    except ActuationError as e:
                        self._record_error(report, e)
                        continue
                targets.append(ref)
        return _unique(targets)

    def _patch_all(self, targets: list[ControllerRef], report: ConvergenceReport) -> None:
        if not targets:
            return
        ts = utc_now()
        lock = Lock()

        def patch(ref: ControllerRef) -> None:
            self._check_cancelled()
            try:
                self.orchestrator.patch_restart(ref, ts)
            except ActuationError as e:
                with lock:
                    self._record_error(report, e)
                return
            except Exception as e:
                err = ActuationError(
                    f"restart patch failed: {type(e).__name__}: {e}",
                    kind=ref.kind,
                    namespace=ref.namespace,
                    name=ref.name,
                )
                with lock:
                    self._record_error(report, err)
                return
            with lock:
                report.restarted.append(ref)

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as pool:
            futures = [pool.submit(patch, ref) for ref in targets]
        for f in futures:
            # re-raises ConvergenceCancelled from a worker
            f.result()

    def _record_error(self, report: ConvergenceReport, e: ActuationError) -> None:
        report.errors.append(e)
        log_event("ERROR", str(e), criterion=report.criterion, target=e.target)


def _unique(refs: list[ControllerRef]) -> list[ControllerRef]:
    return list(dict.fromkeys(refs))
