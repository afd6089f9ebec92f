from __future__ import annotations

from pydantic import BaseModel, Field


class OwnerReference(BaseModel):
    kind: str = Field(..., description="Owner kind, e.g. ReplicaSet, Deployment")
    name: str


class WorkloadRequest(BaseModel):
    name: str = Field(..., description="Pod name")
    namespace: str = Field(..., description="Pod namespace")
    labels: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(
        default_factory=list, description="Ownership chain, innermost first"
    )


class ScopeResponse(BaseModel):
    in_scope: bool
    criterion: str | None = Field(None, description="First matching criterion")
    revision: int


class ValidateRequest(BaseModel):
    document: str = Field(..., description="Policy document (YAML)")


class ValidateResponse(BaseModel):
    valid: bool
    criteria: int = 0
    error: str | None = None
