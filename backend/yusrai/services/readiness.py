"""
Execution readiness: credential and agent checks combined into one verdict.

Both evaluators are total: a failing lookup degrades to the most
conservative verdict plus a diagnostic, never an exception. The coordinator
fans out to both concurrently and joins the results.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from yusrai.db.automation_store import AutomationStore
from yusrai.models.readiness import (
    AgentReadiness,
    AgentReadinessEntry,
    CredentialReadiness,
    ExecutionReadiness,
    PlatformReadiness,
    ReadinessDiagnostic,
)

logger = logging.getLogger(__name__)


class CredentialReadinessEvaluator:
    """Per-platform credential status for one automation."""

    def __init__(self, store: AutomationStore):
        self._store = store

    async def evaluate(self, automation_id: str, user_id: str) -> CredentialReadiness:
        try:
            config = await self._store.get_automation_platforms_config(automation_id, user_id)
            platform_names = _distinct_names(config)
            if not platform_names:
                return CredentialReadiness(is_ready=True, status="complete", platforms=[])

            platforms: list[PlatformReadiness] = []
            for name in platform_names:
                test_status = await self._store.get_credential_test_status(
                    automation_id, name, user_id
                )
                if not test_status.exists:
                    status = "missing"
                elif test_status.is_tested and test_status.last_test_status == "success":
                    status = "tested"
                else:
                    status = "saved"
                platforms.append(PlatformReadiness(name=name, status=status))
        except Exception as exc:
            logger.exception("Credential readiness check failed for automation %s", automation_id)
            return CredentialReadiness(
                is_ready=False,
                status="missing",
                platforms=[],
                diagnostics=[ReadinessDiagnostic(
                    level="error",
                    message=f"Credential lookup failed: {exc}",
                    source="credentials",
                )],
            )

        all_tested = all(p.status == "tested" for p in platforms)
        any_saved = any(p.status != "missing" for p in platforms)
        return CredentialReadiness(
            is_ready=all_tested,
            status="complete" if all_tested else "partial" if any_saved else "missing",
            platforms=platforms,
        )


class AgentReadinessEvaluator:
    """Per-agent decision status for the automation's latest recommendations."""

    def __init__(self, store: AutomationStore):
        self._store = store

    async def evaluate(self, automation_id: str) -> AgentReadiness:
        try:
            structured = await self._store.get_latest_structured_automation(automation_id)
            agent_names = _distinct_names((structured or {}).get("agents"))
            if not agent_names:
                return AgentReadiness(is_ready=True, status="complete", agents=[])

            agents = [
                AgentReadinessEntry(
                    name=name,
                    status=await self._store.get_agent_decision(automation_id, name),
                )
                for name in agent_names
            ]
        except Exception as exc:
            logger.exception("Agent readiness check failed for automation %s", automation_id)
            return AgentReadiness(
                is_ready=False,
                status="pending",
                agents=[],
                diagnostics=[ReadinessDiagnostic(
                    level="error",
                    message=f"Agent decision lookup failed: {exc}",
                    source="agents",
                )],
            )

        all_decided = all(a.status != "pending" for a in agents)
        any_decided = any(a.status != "pending" for a in agents)
        return AgentReadiness(
            is_ready=all_decided,
            status="complete" if all_decided else "partial" if any_decided else "pending",
            agents=agents,
        )


class ExecutionReadinessCoordinator:
    """
    Single go/no-go entry point for execution gating.

    Never raises. If an evaluator itself blows up, its side is reported with
    the conservative verdict and the other side still completes.
    """

    def __init__(
        self,
        store: AutomationStore,
        *,
        credential_evaluator: CredentialReadinessEvaluator | None = None,
        agent_evaluator: AgentReadinessEvaluator | None = None,
    ):
        self._credentials = credential_evaluator or CredentialReadinessEvaluator(store)
        self._agents = agent_evaluator or AgentReadinessEvaluator(store)

    async def get_execution_readiness(self, automation_id: str, user_id: str) -> ExecutionReadiness:
        credential_result, agent_result = await asyncio.gather(
            self._credentials.evaluate(automation_id, user_id),
            self._agents.evaluate(automation_id),
            return_exceptions=True,
        )

        diagnostics: list[ReadinessDiagnostic] = []
        if isinstance(credential_result, BaseException):
            logger.error(
                "Credential evaluator raised for automation %s: %s", automation_id, credential_result
            )
            diagnostics.append(ReadinessDiagnostic(
                level="error",
                message=f"Credential evaluation failed: {credential_result}",
                source="coordinator",
            ))
            credential_result = CredentialReadiness(is_ready=False, status="missing")
        if isinstance(agent_result, BaseException):
            logger.error("Agent evaluator raised for automation %s: %s", automation_id, agent_result)
            diagnostics.append(ReadinessDiagnostic(
                level="error",
                message=f"Agent evaluation failed: {agent_result}",
                source="coordinator",
            ))
            agent_result = AgentReadiness(is_ready=False, status="pending")

        readiness = ExecutionReadiness(
            is_ready=credential_result.is_ready and agent_result.is_ready,
            credential_status=credential_result.status,
            agent_status=agent_result.status,
            missing_credentials=_distinct_names(
                [p for p in credential_result.platforms if p.status != "tested"]
            ),
            pending_agents=_distinct_names(
                [a for a in agent_result.agents if a.status == "pending"]
            ),
            diagnostics=[*credential_result.diagnostics, *agent_result.diagnostics, *diagnostics],
        )
        logger.info(
            "Readiness for automation %s: ready=%s credentials=%s agents=%s",
            automation_id,
            readiness.is_ready,
            readiness.credential_status,
            readiness.agent_status,
        )
        return readiness


def _distinct_names(entries: Any) -> list[str]:
    """Names in source order, first occurrence kept."""
    if not isinstance(entries, list):
        return []
    names: dict[str, None] = {}
    for entry in entries:
        if isinstance(entry, str):
            name = entry
        elif isinstance(entry, dict):
            name = entry.get("name")
        else:
            name = getattr(entry, "name", None)
        if isinstance(name, str) and name:
            names.setdefault(name, None)
    return list(names)
