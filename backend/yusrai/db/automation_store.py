"""
Automation persistence: the lookups and writes the core performs against Supabase.

Tables:
- automations                       platforms_config per automation
- automation_platform_credentials   credential rows with test outcome
- automation_responses              one stored StructuredAutomation per LLM turn
- automation_agent_decisions        the user's add/dismiss choice per agent

The Supabase client is synchronous; every call is offloaded with
asyncio.to_thread so readiness lookups can run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol, TypeVar

from yusrai.db.supabase import get_supabase
from yusrai.models.automation import ParseMetadata
from yusrai.models.readiness import AgentDecisionStatus, CredentialTestStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

AGENT_DECISIONS: tuple[str, ...] = ("pending", "added", "dismissed")


class StoreError(Exception):
    """A Supabase query failed."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class AutomationStore(Protocol):
    async def get_automation_platforms_config(
        self, automation_id: str, user_id: str
    ) -> list[dict[str, Any]]: ...

    async def get_credential_test_status(
        self, automation_id: str, platform_name: str, user_id: str
    ) -> CredentialTestStatus: ...

    async def get_latest_structured_automation(self, automation_id: str) -> dict[str, Any] | None: ...

    async def get_agent_decision(self, automation_id: str, agent_name: str) -> AgentDecisionStatus: ...

    async def upsert_structured_automation(
        self,
        user_id: str,
        automation_id: str,
        raw_text: str,
        structured_data: dict[str, Any],
        chat_message_id: int | str | None,
        metadata: ParseMetadata,
    ) -> str | None: ...

    async def get_latest_response_row(self, automation_id: str, user_id: str) -> dict[str, Any] | None: ...

    async def record_agent_decision(
        self,
        automation_id: str,
        agent_name: str,
        decision: AgentDecisionStatus,
        user_id: str,
    ) -> None: ...


class SupabaseAutomationStore:
    """AutomationStore backed by the Supabase PostgREST API."""

    def __init__(self, client: Any):
        self._client = client

    async def _run(self, operation: str, query: Callable[[], T]) -> T:
        try:
            return await asyncio.to_thread(query)
        except Exception as exc:
            raise StoreError(operation, exc) from exc

    # -- reads --------------------------------------------------------------

    async def get_automation_platforms_config(
        self, automation_id: str, user_id: str
    ) -> list[dict[str, Any]]:
        result = await self._run(
            "get_automation_platforms_config",
            lambda: self._client.table("automations")
            .select("platforms_config")
            .eq("id", automation_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute(),
        )
        if not result.data:
            return []
        config = result.data[0].get("platforms_config")
        if isinstance(config, dict):
            config = config.get("platforms")
        if not isinstance(config, list):
            return []
        return [
            {"name": entry} if isinstance(entry, str) else entry
            for entry in config
            if isinstance(entry, (str, dict))
        ]

    async def get_credential_test_status(
        self, automation_id: str, platform_name: str, user_id: str
    ) -> CredentialTestStatus:
        # Credentials saved by the credential form use lower-cased platform names.
        candidates = list(dict.fromkeys([platform_name, platform_name.lower()]))
        result = await self._run(
            "get_credential_test_status",
            lambda: self._client.table("automation_platform_credentials")
            .select("platform_name, is_tested, test_status")
            .eq("automation_id", automation_id)
            .in_("platform_name", candidates)
            .eq("user_id", user_id)
            .execute(),
        )
        if not result.data:
            return CredentialTestStatus(exists=False)
        # Both spellings may be stored; the exact name wins.
        row = next(
            (r for r in result.data if r.get("platform_name") == platform_name),
            result.data[0],
        )
        return CredentialTestStatus(
            exists=True,
            is_tested=bool(row.get("is_tested")),
            last_test_status=row.get("test_status"),
        )

    async def get_latest_structured_automation(self, automation_id: str) -> dict[str, Any] | None:
        result = await self._run(
            "get_latest_structured_automation",
            lambda: self._client.table("automation_responses")
            .select("structured_data")
            .eq("automation_id", automation_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute(),
        )
        if not result.data:
            return None
        structured = result.data[0].get("structured_data")
        return structured if isinstance(structured, dict) else None

    async def get_agent_decision(self, automation_id: str, agent_name: str) -> AgentDecisionStatus:
        result = await self._run(
            "get_agent_decision",
            lambda: self._client.table("automation_agent_decisions")
            .select("decision")
            .eq("automation_id", automation_id)
            .eq("agent_name", agent_name)
            .limit(1)
            .execute(),
        )
        if not result.data:
            return "pending"
        decision = result.data[0].get("decision")
        return decision if decision in AGENT_DECISIONS else "pending"

    async def get_latest_response_row(self, automation_id: str, user_id: str) -> dict[str, Any] | None:
        result = await self._run(
            "get_latest_response_row",
            lambda: self._client.table("automation_responses")
            .select("*")
            .eq("automation_id", automation_id)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute(),
        )
        return result.data[0] if result.data else None

    # -- writes -------------------------------------------------------------

    async def upsert_structured_automation(
        self,
        user_id: str,
        automation_id: str,
        raw_text: str,
        structured_data: dict[str, Any],
        chat_message_id: int | str | None,
        metadata: ParseMetadata,
    ) -> str | None:
        row = {
            "user_id": user_id,
            "automation_id": automation_id,
            "response_text": raw_text,
            "structured_data": structured_data,
            "chat_message_id": chat_message_id,
            "yusrai_powered": metadata.yusrai_powered,
            "seven_sections_validated": metadata.seven_sections_validated,
            "error_help_available": metadata.error_help_available,
            # Readiness is always recomputed; a stored flag is never trusted.
            "is_ready_for_execution": False,
        }
        result = await self._run(
            "upsert_structured_automation",
            lambda: self._client.table("automation_responses")
            .upsert(row, on_conflict="automation_id,chat_message_id")
            .execute(),
        )
        if not result.data:
            logger.warning("Upsert for automation %s returned no rows", automation_id)
            return None
        return str(result.data[0].get("id"))

    async def record_agent_decision(
        self,
        automation_id: str,
        agent_name: str,
        decision: AgentDecisionStatus,
        user_id: str,
    ) -> None:
        row = {
            "automation_id": automation_id,
            "agent_name": agent_name,
            "decision": decision,
            "user_id": user_id,
        }
        await self._run(
            "record_agent_decision",
            lambda: self._client.table("automation_agent_decisions")
            .upsert(row, on_conflict="automation_id,agent_name")
            .execute(),
        )


def get_automation_store() -> SupabaseAutomationStore:
    """Store bound to the service-role Supabase client."""
    return SupabaseAutomationStore(get_supabase().client)
