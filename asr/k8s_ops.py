from __future__ import annotations

import re
from dataclasses import dataclass
from threading import Lock
from typing import Any, Iterator

import urllib3
from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .attributes import Workload, workload_from_pod
from .criteria import RegexPattern
from .db import log_event, utc_now
from .errors import ActuationError
from .settings import settings

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"

# A fully anchored pattern with no regex syntax between the anchors.
_EXACT_NAME_RE = re.compile(r"^\^([a-z0-9]([-a-z0-9]*[a-z0-9])?)\$$")


@dataclass(frozen=True)
class ControllerKind:
    kind: str
    api: str  # apps|batch
    resource: str  # suffix of list_namespaced_* / patch_namespaced_*
    template_path: tuple[str, ...]  # where the pod template lives under the object root


CONTROLLER_KINDS: dict[str, ControllerKind] = {
    k.kind: k
    for k in (
        ControllerKind("Deployment", "apps", "deployment", ("spec", "template")),
        ControllerKind("ReplicaSet", "apps", "replica_set", ("spec", "template")),
        ControllerKind("DaemonSet", "apps", "daemon_set", ("spec", "template")),
        ControllerKind("StatefulSet", "apps", "stateful_set", ("spec", "template")),
        ControllerKind("CronJob", "batch", "cron_job", ("spec", "jobTemplate", "spec", "template")),
        ControllerKind("Job", "batch", "job", ("spec", "template")),
    )
}

# Controllers that are usually managed by another controller; restart the parent instead.
PARENT_KINDS: dict[str, str] = {"ReplicaSet": "Deployment", "Job": "CronJob"}


@dataclass(frozen=True)
class ControllerRef:
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


def restart_patch(kind: str, ts: str | None = None) -> dict[str, Any]:
    """Strategic-merge body that bumps the pod template's restart annotation."""
    body: dict[str, Any] = {"metadata": {"annotations": {RESTARTED_AT_ANNOTATION: ts or utc_now()}}}
    for key in reversed(CONTROLLER_KINDS[kind].template_path):
        body = {key: body}
    return body


def exact_name(pattern: RegexPattern) -> str | None:
    """Return the literal name if ``pattern`` only matches that exact name.

    The API server cannot filter by regex, so only ``^name$`` patterns can be
    pushed down as a ``metadata.name`` field selector.
    """
    m = _EXACT_NAME_RE.match(pattern.source)
    return m.group(1) if m else None


def load_kube_config(in_cluster: bool | None = None) -> None:
    if settings.in_cluster if in_cluster is None else in_cluster:
        config.load_incluster_config()
    else:
        config.load_kube_config()


class KubeOrchestrator:
    """Thin wrapper over the Kubernetes API calls the reconciler needs.

    Every call carries a client-side timeout so a hung API server surfaces as
    an error instead of blocking the worker. API failures are raised as
    ``ActuationError`` with the target attached.
    """

    def __init__(
        self,
        core: client.CoreV1Api | None = None,
        apps: client.AppsV1Api | None = None,
        batch: client.BatchV1Api | None = None,
        request_timeout_s: int | None = None,
    ):
        self.core = core or client.CoreV1Api()
        self.apps = apps or client.AppsV1Api()
        self.batch = batch or client.BatchV1Api()
        self._watches: set[watch.Watch] = set()
        self._watch_lock = Lock()
        self.request_timeout_s = request_timeout_s or settings.request_timeout_s

    def _api(self, kind: ControllerKind) -> Any:
        return self.apps if kind.api == "apps" else self.batch

    def list_controllers(self, kind: str, namespace: str, name: str | None = None) -> list[ControllerRef]:
        k = CONTROLLER_KINDS[kind]
        lister = getattr(self._api(k), f"list_namespaced_{k.resource}")
        kwargs: dict[str, Any] = {"_request_timeout": self.request_timeout_s}
        if name:
            kwargs["field_selector"] = f"metadata.name={name}"
        try:
            resp = lister(namespace, **kwargs)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise ActuationError(f"listing {kind} failed: {_reason(e)}", kind=kind, namespace=namespace, name=name or "*") from e
        return [ControllerRef(kind=kind, namespace=namespace, name=item.metadata.name) for item in resp.items]

    def patch_restart(self, ref: ControllerRef, ts: str | None = None) -> None:
        k = CONTROLLER_KINDS[ref.kind]
        patcher = getattr(self._api(k), f"patch_namespaced_{k.resource}")
        try:
            patcher(ref.name, ref.namespace, restart_patch(ref.kind, ts), _request_timeout=self.request_timeout_s)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise ActuationError(
                f"restart patch failed: {_reason(e)}", kind=ref.kind, namespace=ref.namespace, name=ref.name
            ) from e
        log_event("INFO", "Patched restart annotation", target=str(ref))

    def list_pods(self, namespace: str) -> list[Workload]:
        try:
            resp = self.core.list_namespaced_pod(namespace, _request_timeout=self.request_timeout_s)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise ActuationError(f"listing pods failed: {_reason(e)}", kind="Pod", namespace=namespace, name="*") from e
        return [workload_from_pod(p) for p in resp.items]

    def controller_owner(self, ref: ControllerRef) -> ControllerRef | None:
        """Return the Deployment owning a ReplicaSet or the CronJob owning a Job, if any."""
        parent_kind = PARENT_KINDS.get(ref.kind)
        if parent_kind is None:
            return None
        k = CONTROLLER_KINDS[ref.kind]
        reader = getattr(self._api(k), f"read_namespaced_{k.resource}")
        try:
            obj = reader(ref.name, ref.namespace, _request_timeout=self.request_timeout_s)
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise ActuationError(
                f"reading owner failed: {_reason(e)}", kind=ref.kind, namespace=ref.namespace, name=ref.name
            ) from e
        for owner in obj.metadata.owner_references or []:
            if owner.kind == parent_kind:
                return ControllerRef(kind=parent_kind, namespace=ref.namespace, name=owner.name)
        return None

    def watch_configmap(
        self, name: str, namespace: str, timeout_s: int, resource_version: str | None = None
    ) -> Iterator[tuple[str, Any, str | None]]:
        """Stream (event type, object, resource version) for one ConfigMap.

        The stream ends after ``timeout_s``; callers loop to keep watching.
        API errors come through as ERROR events.
        """
        w = watch.Watch()
        with self._watch_lock:
            self._watches.add(w)
        kwargs: dict[str, Any] = {
            "field_selector": f"metadata.name={name}",
            "timeout_seconds": timeout_s,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            for event in w.stream(self.core.list_namespaced_config_map, namespace, **kwargs):
                yield event["type"], event["object"], w.resource_version
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            # 410 Gone: the resource version is too old, restart from scratch.
            status = getattr(e, "status", None)
            yield "ERROR", {"code": status, "message": _reason(e)}, None if status == 410 else resource_version
        finally:
            w.stop()
            with self._watch_lock:
                self._watches.discard(w)

    def stop_watches(self) -> None:
        """Ask every open watch to end; each stream returns at its next event or window end."""
        with self._watch_lock:
            watches = list(self._watches)
        for w in watches:
            w.stop()


def _reason(e: Exception) -> str:
    if isinstance(e, ApiException):
        return f"HTTP {e.status} {e.reason}"
    return f"{type(e).__name__}: {e}"
