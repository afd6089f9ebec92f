import os
import sys
from threading import Event

import pytest

# Ensure project root is importable (so `import cli` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from asr import db
from asr.actuator import ConvergenceActuator
from asr.errors import ActuationError
from asr.k8s_ops import ControllerRef
from asr.reconciler import PolicyReconciler
from asr.settings import Settings


class FakeOrchestrator:
    """In-memory stand-in for KubeOrchestrator."""

    def __init__(self):
        self.controllers: list[ControllerRef] = []
        self.pods: dict[str, list] = {}
        self.rs_owners: dict[str, str] = {}  # replicaset name -> deployment name
        self.job_owners: dict[str, str] = {}  # job name -> cronjob name
        self.fail_patch: set[str] = set()
        self.fail_list: set[str] = set()  # kinds
        self.list_calls: list[tuple[str, str, str | None]] = []
        self.patched: list[ControllerRef] = []
        self.on_patch = None

    def add(self, kind, namespace, *names):
        for n in names:
            self.controllers.append(ControllerRef(kind=kind, namespace=namespace, name=n))

    def list_controllers(self, kind, namespace, name=None):
        self.list_calls.append((kind, namespace, name))
        if kind in self.fail_list:
            raise ActuationError("listing failed: HTTP 500", kind=kind, namespace=namespace, name=name or "*")
        return [
            c
            for c in self.controllers
            if c.kind == kind and c.namespace == namespace and (name is None or c.name == name)
        ]

    def patch_restart(self, ref, ts=None):
        if self.on_patch:
            self.on_patch(ref)
        if ref.name in self.fail_patch:
            raise ActuationError("restart patch failed: HTTP 403", kind=ref.kind, namespace=ref.namespace, name=ref.name)
        self.patched.append(ref)

    def list_pods(self, namespace):
        return list(self.pods.get(namespace, []))

    def controller_owner(self, ref):
        if ref.kind == "Job":
            owner = self.job_owners.get(ref.name)
            return ControllerRef(kind="CronJob", namespace=ref.namespace, name=owner) if owner else None
        owner = self.rs_owners.get(ref.name)
        return ControllerRef(kind="Deployment", namespace=ref.namespace, name=owner) if owner else None

    def patched_names(self):
        return sorted(r.name for r in self.patched)


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "asr.db")))
    db.init_db()


@pytest.fixture
def stop():
    return Event()


@pytest.fixture
def orchestrator():
    return FakeOrchestrator()


@pytest.fixture
def actuator(orchestrator, stop):
    return ConvergenceActuator(orchestrator, default_namespace="default", max_workers=2, stop=stop)


@pytest.fixture
def reconciler(actuator):
    return PolicyReconciler(actuator)
