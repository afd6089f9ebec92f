from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from . import db
from .actuator import ConvergenceActuator, ConvergenceReport
from .alerts import alert_reload
from .criteria import Criterion, Policy, load_policy
from .db import log_event
from .diff import diff
from .errors import ConvergenceCancelled, MatchConfigurationError, PolicyLoadError, SubscriptionError
from .matcher import workload_in_scope
from .runtime import IDLE, RECONCILING, PolicyState, ReloadStatus

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
ERROR = "ERROR"


@dataclass(frozen=True)
class PolicyEvent:
    type: str
    document: str | None = None
    source: str = ""
    error: str | None = None


@dataclass
class ReloadResult:
    outcome: str  # committed|rejected
    revision: int
    removed: list[Criterion] = field(default_factory=list)
    added: list[Criterion] = field(default_factory=list)
    reports: list[ConvergenceReport] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)  # (criterion, reason)
    cancelled: bool = False
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.outcome == "committed"

    @property
    def failed_targets(self) -> int:
        return sum(len(r.errors) for r in self.reports)


class PolicyReconciler:
    """Owns the committed policy and applies reloads one at a time.

    A reload is parsed and validated first; a bad document is rejected and
    the old policy stays in effect. A good one is diffed against the old
    policy, every removed and added criterion is converged (best effort), and
    the new policy is committed regardless of convergence failures.
    """

    def __init__(
        self,
        actuator: ConvergenceActuator,
        state: PolicyState | None = None,
        handled_types: tuple[str, ...] = (MODIFIED,),
    ):
        self.actuator = actuator
        self.state = state or PolicyState()
        self.handled_types = handled_types
        self._lock = Lock()

    def policy(self) -> Policy:
        return self.state.snapshot()

    def is_pod_enabled(self, pod: Any) -> bool:
        return workload_in_scope(pod, self.state.snapshot())

    def reconcile(self, event: PolicyEvent) -> ReloadResult | None:
        if event.type == ERROR:
            err = SubscriptionError(event.error or "watch error")
            log_event("WARN", f"Dropped subscription error event: {err}")
            return None
        if event.type not in self.handled_types:
            log_event("DEBUG", f"Ignored {event.type} event for {event.source or 'policy'}")
            return None
        log_event("INFO", f"Policy {event.type.lower()} event for {event.source or 'policy'}")
        return self.apply(event.document)

    def apply(self, text: str | None) -> ReloadResult:
        with self._lock:
            self.state.set_phase(RECONCILING)
            try:
                return self._apply(text)
            finally:
                self.state.set_phase(IDLE)

    def _apply(self, text: str | None) -> ReloadResult:
        try:
            new = load_policy(text)
        except PolicyLoadError as e:
            result = ReloadResult(outcome="rejected", revision=self.state.revision, error=str(e))
            log_event("ERROR", f"Policy reload rejected ({type(e).__name__}): {e}")
            self._finish(result)
            return result

        old = self.state.snapshot()
        removed, added = diff(old, new)
        result = ReloadResult(outcome="committed", revision=0, removed=removed, added=added)
        log_event("INFO", f"Policy loaded: {len(new.services)} criteria, {len(removed)} removed, {len(added)} added")

        for criterion in [*removed, *added]:
            try:
                result.reports.append(self.actuator.converge(criterion))
            except MatchConfigurationError as e:
                result.skipped.append((criterion.describe(), str(e)))
                log_event("ERROR", f"Skipped convergence: {e}", criterion=criterion.describe())
            except ConvergenceCancelled:
                result.cancelled = True
                log_event("WARN", "Convergence cancelled; committing policy without finishing", criterion=criterion.describe())
                break
            except Exception as e:
                result.skipped.append((criterion.describe(), f"{type(e).__name__}: {e}"))
                log_event("ERROR", f"Convergence failed: {type(e).__name__}: {e}", criterion=criterion.describe())

        result.revision = self.state.commit(new)
        self._finish(result)
        return result

    def _finish(self, result: ReloadResult) -> None:
        message = result.error or (
            f"{len(result.removed)} removed, {len(result.added)} added, {result.failed_targets} failed target(s)"
        )
        self.state.record(
            ReloadStatus(
                revision=result.revision,
                outcome=result.outcome,
                message=message,
                removed=len(result.removed),
                added=len(result.added),
                failed_targets=result.failed_targets,
            )
        )
        db.record_reload(
            result.outcome,
            result.revision,
            removed=len(result.removed),
            added=len(result.added),
            failed_targets=result.failed_targets,
            error=result.error,
        )
        alert_reload(result)
