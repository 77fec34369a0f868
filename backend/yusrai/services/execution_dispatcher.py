"""
Execution dispatch gated on readiness.

The dispatcher never starts a run the coordinator has not cleared, and never
raises: every refusal and every backend failure comes back as a
DispatchResult with success=False.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Protocol

from yusrai.db.supabase import SupabaseClient, get_supabase
from yusrai.models.blueprint import ExecutionBlueprint
from yusrai.models.readiness import DispatchResult
from yusrai.services.blueprint_extractor import validate_blueprint_for_diagram
from yusrai.services.readiness import ExecutionReadinessCoordinator
from yusrai.services.step_runner import BlueprintStepRunner

logger = logging.getLogger(__name__)

DEFAULT_EXECUTION_FUNCTION = "execute-automation"


class ExecutionBackend(Protocol):
    async def dispatch_execution(
        self,
        automation_id: str,
        user_id: str,
        blueprint: ExecutionBlueprint,
        executable_code: str | None,
        trigger_metadata: dict[str, Any],
    ) -> DispatchResult: ...


class SupabaseExecutionBackend:
    """Hands the run to the execute-automation edge function."""

    def __init__(self, supabase: SupabaseClient | None = None, function_name: str | None = None):
        self._supabase = supabase
        self._function_name = function_name or os.getenv(
            "YUSRAI_EXECUTION_FUNCTION", DEFAULT_EXECUTION_FUNCTION
        )

    async def dispatch_execution(
        self,
        automation_id: str,
        user_id: str,
        blueprint: ExecutionBlueprint,
        executable_code: str | None,
        trigger_metadata: dict[str, Any],
    ) -> DispatchResult:
        body = {
            "automation_id": automation_id,
            "user_id": user_id,
            "automation_data": blueprint.model_dump(mode="json", by_alias=True),
            "executable_code": executable_code,
            "trigger_data": trigger_metadata,
        }
        try:
            supabase = self._supabase or get_supabase()
            raw = await asyncio.to_thread(supabase.invoke_function, self._function_name, body)
            payload = _decode_payload(raw)
        except Exception as exc:
            logger.exception("Edge function %s failed for automation %s", self._function_name, automation_id)
            return DispatchResult(success=False, error=str(exc))

        return DispatchResult(
            success=bool(payload.get("success", True)),
            error=payload.get("error"),
            run_id=_optional_str(payload.get("run_id") or payload.get("execution_id")),
            details=payload,
        )


class LocalExecutionBackend:
    """Runs the blueprint in-process with BlueprintStepRunner."""

    def __init__(self, runner: BlueprintStepRunner | None = None):
        self._runner = runner or BlueprintStepRunner()

    async def dispatch_execution(
        self,
        automation_id: str,
        user_id: str,
        blueprint: ExecutionBlueprint,
        executable_code: str | None,
        trigger_metadata: dict[str, Any],
    ) -> DispatchResult:
        try:
            run = await self._runner.run(blueprint, trigger_metadata=trigger_metadata)
        except Exception as exc:
            logger.exception("Local run failed for automation %s", automation_id)
            return DispatchResult(success=False, error=str(exc))
        return DispatchResult(
            success=run.success,
            error=run.error or _first_error(run.errors),
            details=run.model_dump(mode="json"),
        )


class ExecutionDispatcher:
    def __init__(self, coordinator: ExecutionReadinessCoordinator, backend: ExecutionBackend):
        self._coordinator = coordinator
        self._backend = backend

    async def dispatch_when_ready(
        self,
        automation_id: str,
        user_id: str,
        blueprint: ExecutionBlueprint | None,
        executable_code: str | None = None,
        trigger_metadata: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Dispatch only a diagrammable blueprint whose automation is ready."""
        if blueprint is None or not validate_blueprint_for_diagram(blueprint):
            logger.info("Refusing dispatch for automation %s: invalid blueprint", automation_id)
            return DispatchResult(success=False, error="Automation blueprint is missing or has no steps")

        readiness = await self._coordinator.get_execution_readiness(automation_id, user_id)
        if not readiness.is_ready:
            logger.info(
                "Refusing dispatch for automation %s: missing=%s pending=%s",
                automation_id,
                readiness.missing_credentials,
                readiness.pending_agents,
            )
            return DispatchResult(
                success=False,
                error="Automation is not ready for execution",
                readiness=readiness,
            )

        try:
            result = await self._backend.dispatch_execution(
                automation_id,
                user_id,
                blueprint,
                executable_code,
                trigger_metadata or {},
            )
        except Exception as exc:
            logger.exception("Execution backend raised for automation %s", automation_id)
            return DispatchResult(success=False, error=str(exc), readiness=readiness)

        return result.model_copy(update={"readiness": readiness})


def _decode_payload(raw: Any) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        raw = json.loads(raw) if raw.strip() else {}
    return raw if isinstance(raw, dict) else {"result": raw}


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _first_error(errors: dict[str, str]) -> str | None:
    return next(iter(errors.values()), None)
