"""Service entry point.

Run with ``python main.py`` or ``uvicorn main:build_app --factory``.
"""
from __future__ import annotations

from threading import Event

import uvicorn
from fastapi import FastAPI

from asr import db
from asr.actuator import ConvergenceActuator
from asr.api import create_app
from asr.k8s_ops import KubeOrchestrator, load_kube_config
from asr.reconciler import PolicyReconciler
from asr.settings import settings
from asr.subscription import ConfigMapLoader, handled_event_types, start


def build_app() -> FastAPI:
    db.configure_logging()
    db.init_db()
    load_kube_config()

    stop = Event()
    orchestrator = KubeOrchestrator()
    actuator = ConvergenceActuator(orchestrator, stop=stop)
    reconciler = PolicyReconciler(actuator, handled_types=handled_event_types())
    loader = ConfigMapLoader(reconciler, orchestrator, stop)

    app = create_app(reconciler)

    @app.on_event("startup")
    def startup() -> None:
        start(loader, stop)

    @app.on_event("shutdown")
    def shutdown() -> None:
        # the worker exits at its next suspension point (watch event or API call)
        loader.close()

    return app


if __name__ == "__main__":
    uvicorn.run(build_app(), host=settings.api_host, port=settings.api_port)
