from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Query

from . import db
from .api_models import ScopeResponse, ValidateRequest, ValidateResponse, WorkloadRequest
from .attributes import OwnerRef, Workload, extract
from .criteria import load_policy
from .errors import PolicyLoadError
from .matcher import first_match
from .reconciler import PolicyReconciler


def create_app(reconciler: PolicyReconciler) -> FastAPI:
    app = FastAPI(title="Auto-instrumentation Scope Reconciler")
    state = reconciler.state

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "healthy", "phase": state.phase, "revision": state.revision}

    @app.get("/policy")
    def get_policy() -> dict[str, Any]:
        last = state.last_reload()
        return {
            "revision": state.revision,
            "policy": state.snapshot().to_document(),
            "last_reload": asdict(last) if last else None,
        }

    @app.post("/policy/validate", response_model=ValidateResponse)
    def validate_policy(req: ValidateRequest) -> ValidateResponse:
        try:
            policy = load_policy(req.document)
        except PolicyLoadError as e:
            return ValidateResponse(valid=False, error=str(e))
        return ValidateResponse(valid=True, criteria=len(policy.services))

    @app.post("/scope", response_model=ScopeResponse)
    def scope(req: WorkloadRequest) -> ScopeResponse:
        revision, policy = state.current()
        workload = Workload(
            name=req.name,
            namespace=req.namespace,
            labels=req.labels,
            owners=tuple(OwnerRef(kind=o.kind, name=o.name) for o in req.owner_references),
        )
        criterion = first_match(extract(workload), policy)
        return ScopeResponse(
            in_scope=criterion is not None,
            criterion=criterion.describe() if criterion else None,
            revision=revision,
        )

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict[str, Any]]:
        return db.latest_events(limit)

    @app.get("/reloads")
    def reloads(limit: int = Query(20, ge=1, le=500)) -> list[dict[str, Any]]:
        return [asdict(r) for r in db.latest_reloads(limit)]

    return app
