from __future__ import annotations

import queue
from threading import Event, Thread
from typing import Any, Iterator, Protocol

from .db import log_event
from .k8s_ops import KubeOrchestrator
from .reconciler import ADDED, ERROR, MODIFIED, PolicyEvent, PolicyReconciler, ReloadResult
from .settings import settings


class DynamicConfig(Protocol):
    """A live policy: a stream of change events plus the scope query."""

    def subscribe(self) -> Iterator[PolicyEvent]: ...

    def reconcile(self, event: PolicyEvent) -> ReloadResult | None: ...

    def is_pod_enabled(self, pod: Any) -> bool: ...


class ConfigMapLoader:
    """Policy backed by a ConfigMap, delivered through a Kubernetes watch."""

    def __init__(
        self,
        reconciler: PolicyReconciler,
        orchestrator: KubeOrchestrator,
        stop: Event,
        name: str | None = None,
        namespace: str | None = None,
        key: str | None = None,
        watch_timeout_s: int | None = None,
    ):
        self.reconciler = reconciler
        self.orchestrator = orchestrator
        self.stop = stop
        self.name = name or settings.configmap_name
        self.namespace = namespace or settings.configmap_namespace
        self.key = key or settings.configmap_key
        self.watch_timeout_s = max(1, int(watch_timeout_s or settings.watch_timeout_s))

    @property
    def source(self) -> str:
        return f"ConfigMap/{self.namespace}/{self.name}"

    def subscribe(self) -> Iterator[PolicyEvent]:
        resource_version: str | None = None
        log_event("INFO", f"Watching {self.source} key {self.key}")
        while not self.stop.is_set():
            for etype, obj, resource_version in self.orchestrator.watch_configmap(
                self.name, self.namespace, self.watch_timeout_s, resource_version
            ):
                if self.stop.is_set():
                    return
                event = self._to_event(etype, obj)
                yield event
                if event.type == ERROR:
                    # pause before re-watching so a failing API server is not hammered
                    self.stop.wait(1)
                    break

    def close(self) -> None:
        """Stop watching; an in-flight watch window ends at its next event."""
        self.stop.set()
        self.orchestrator.stop_watches()

    def _to_event(self, etype: str, obj: Any) -> PolicyEvent:
        if etype == ERROR:
            message = obj.get("message") if isinstance(obj, dict) else str(obj)
            return PolicyEvent(type=ERROR, source=self.source, error=message)
        data = getattr(obj, "data", None) or {}
        return PolicyEvent(type=etype, document=data.get(self.key, ""), source=self.source)

    def reconcile(self, event: PolicyEvent) -> ReloadResult | None:
        return self.reconciler.reconcile(event)

    def is_pod_enabled(self, pod: Any) -> bool:
        return self.reconciler.is_pod_enabled(pod)


class StaticConfigLoader:
    """In-memory policy source fed through ``push``; for tests and local runs."""

    def __init__(self, reconciler: PolicyReconciler, stop: Event, poll_s: float = 0.2):
        self.reconciler = reconciler
        self.stop = stop
        self.poll_s = poll_s
        self._events: queue.Queue[PolicyEvent | None] = queue.Queue()

    def push(self, document: str | None, event_type: str = MODIFIED) -> None:
        self._events.put(PolicyEvent(type=event_type, document=document, source="static"))

    def push_error(self, message: str) -> None:
        self._events.put(PolicyEvent(type=ERROR, source="static", error=message))

    def close(self) -> None:
        self._events.put(None)

    def subscribe(self) -> Iterator[PolicyEvent]:
        while not self.stop.is_set():
            try:
                event = self._events.get(timeout=self.poll_s)
            except queue.Empty:
                continue
            if event is None:
                return
            yield event

    def reconcile(self, event: PolicyEvent) -> ReloadResult | None:
        return self.reconciler.reconcile(event)

    def is_pod_enabled(self, pod: Any) -> bool:
        return self.reconciler.is_pod_enabled(pod)


def run(loader: DynamicConfig, stop: Event) -> None:
    """Consume events one at a time until the stream ends or ``stop`` is set."""
    log_event("INFO", "Policy reconciler started")
    for event in loader.subscribe():
        if stop.is_set():
            break
        try:
            loader.reconcile(event)
        except Exception as e:
            log_event("ERROR", f"Reconcile failed: {type(e).__name__}: {e}")
    log_event("INFO", "Policy reconciler stopped")


def start(loader: DynamicConfig, stop: Event) -> Thread:
    thr = Thread(target=run, args=(loader, stop), name="asr-reconciler", daemon=True)
    thr.start()
    return thr


def handled_event_types() -> tuple[str, ...]:
    return (ADDED, MODIFIED) if settings.reconcile_on_added else (MODIFIED,)
