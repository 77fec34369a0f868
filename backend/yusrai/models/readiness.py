"""
Readiness and dispatch result models.

Readiness is never persisted; every model here is built fresh per request.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


PlatformCredentialStatus = Literal["missing", "saved", "tested"]
AgentDecisionStatus = Literal["pending", "added", "dismissed"]
CredentialAggregateStatus = Literal["missing", "partial", "complete"]
AgentAggregateStatus = Literal["pending", "partial", "complete"]


class ReadinessDiagnostic(BaseModel):
    level: Literal["error", "warning", "info"]
    message: str
    source: Literal["credentials", "agents", "coordinator"]


class CredentialTestStatus(BaseModel):
    exists: bool = False
    is_tested: bool = False
    last_test_status: str | None = None


class PlatformReadiness(BaseModel):
    name: str
    status: PlatformCredentialStatus


class AgentReadinessEntry(BaseModel):
    name: str
    status: AgentDecisionStatus


class CredentialReadiness(BaseModel):
    is_ready: bool
    status: CredentialAggregateStatus
    platforms: list[PlatformReadiness] = Field(default_factory=list)
    diagnostics: list[ReadinessDiagnostic] = Field(default_factory=list)


class AgentReadiness(BaseModel):
    is_ready: bool
    status: AgentAggregateStatus
    agents: list[AgentReadinessEntry] = Field(default_factory=list)
    diagnostics: list[ReadinessDiagnostic] = Field(default_factory=list)


class ExecutionReadiness(BaseModel):
    is_ready: bool
    credential_status: CredentialAggregateStatus
    agent_status: AgentAggregateStatus
    missing_credentials: list[str] = Field(default_factory=list)
    pending_agents: list[str] = Field(default_factory=list)
    diagnostics: list[ReadinessDiagnostic] = Field(default_factory=list)


class DispatchResult(BaseModel):
    success: bool
    error: str | None = None
    run_id: str | None = None
    readiness: ExecutionReadiness | None = None
    details: dict[str, Any] | None = None
