"""
In-memory AutomationStore used by the readiness, pipeline and API tests.
"""

from typing import Any

from yusrai.db.automation_store import StoreError
from yusrai.models.automation import ParseMetadata
from yusrai.models.readiness import CredentialTestStatus


class FakeAutomationStore:
    """Dict-backed store; operations listed in `failing` raise StoreError."""

    def __init__(
        self,
        *,
        platforms: list[Any] | None = None,
        credentials: dict[str, CredentialTestStatus] | None = None,
        agents: list[Any] | None = None,
        decisions: dict[str, str] | None = None,
        failing: set[str] | None = None,
    ):
        self.platforms = platforms if platforms is not None else []
        self.credentials = credentials if credentials is not None else {}
        self.agents = agents
        self.decisions = decisions if decisions is not None else {}
        self.failing = failing or set()
        self.rows: list[dict[str, Any]] = []
        self.calls: list[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise StoreError(operation, RuntimeError("connection refused"))

    async def get_automation_platforms_config(self, automation_id: str, user_id: str) -> list[Any]:
        self._call("get_automation_platforms_config")
        return [{"name": p} if isinstance(p, str) else p for p in self.platforms]

    async def get_credential_test_status(
        self, automation_id: str, platform_name: str, user_id: str
    ) -> CredentialTestStatus:
        self._call("get_credential_test_status")
        return self.credentials.get(platform_name, CredentialTestStatus(exists=False))

    async def get_latest_structured_automation(self, automation_id: str) -> dict[str, Any] | None:
        self._call("get_latest_structured_automation")
        if self.rows:
            return self.rows[-1]["structured_data"]
        if self.agents is None:
            return None
        return {"agents": self.agents}

    async def get_agent_decision(self, automation_id: str, agent_name: str) -> str:
        self._call("get_agent_decision")
        return self.decisions.get(agent_name, "pending")

    async def upsert_structured_automation(
        self,
        user_id: str,
        automation_id: str,
        raw_text: str,
        structured_data: dict[str, Any],
        chat_message_id: Any,
        metadata: ParseMetadata,
    ) -> str:
        self._call("upsert_structured_automation")
        row = {
            "id": f"resp-{len(self.rows) + 1}",
            "user_id": user_id,
            "automation_id": automation_id,
            "response_text": raw_text,
            "structured_data": structured_data,
            "chat_message_id": chat_message_id,
            "is_ready_for_execution": False,
            **metadata.model_dump(),
        }
        self.rows = [
            r for r in self.rows
            if not (r["automation_id"] == automation_id and r["chat_message_id"] == chat_message_id)
        ]
        self.rows.append(row)
        return row["id"]

    async def get_latest_response_row(self, automation_id: str, user_id: str) -> dict[str, Any] | None:
        self._call("get_latest_response_row")
        for row in reversed(self.rows):
            if row["automation_id"] == automation_id and row["user_id"] == user_id:
                return row
        return None

    async def record_agent_decision(
        self, automation_id: str, agent_name: str, decision: str, user_id: str
    ) -> None:
        self._call("record_agent_decision")
        self.decisions[agent_name] = decision
