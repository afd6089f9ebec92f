from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock

from .criteria import Policy
from .db import utc_now

IDLE = "idle"
RECONCILING = "reconciling"


@dataclass
class ReloadStatus:
    revision: int
    outcome: str  # committed|rejected
    message: str
    removed: int = 0
    added: int = 0
    failed_targets: int = 0
    updated_at: str = field(default_factory=utc_now)


class PolicyState:
    """In-memory holder of the committed policy.

    The policy object is immutable; ``commit`` swaps the reference under the
    lock, so readers see either the old or the new policy, never a mix.
    """

    def __init__(self, policy: Policy | None = None) -> None:
        self.lock = Lock()
        self._policy = policy or Policy()
        self._revision = 0
        self._phase = IDLE
        self._last: ReloadStatus | None = None

    def snapshot(self) -> Policy:
        with self.lock:
            return self._policy

    def current(self) -> tuple[int, Policy]:
        with self.lock:
            return self._revision, self._policy

    @property
    def revision(self) -> int:
        with self.lock:
            return self._revision

    @property
    def phase(self) -> str:
        with self.lock:
            return self._phase

    def set_phase(self, phase: str) -> None:
        with self.lock:
            self._phase = phase

    def commit(self, policy: Policy) -> int:
        with self.lock:
            self._policy = policy
            self._revision += 1
            return self._revision

    def record(self, status: ReloadStatus) -> None:
        with self.lock:
            status.updated_at = utc_now()
            self._last = status

    def last_reload(self) -> ReloadStatus | None:
        with self.lock:
            return self._last
