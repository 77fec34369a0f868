"""
Tests for the automation pipeline: process, store, recover and LLM requests.
"""

import json
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from fake_store import FakeAutomationStore
from yusrai.services import automation_pipeline
from yusrai.services.blueprint_extractor import extract_blueprint
from yusrai.services.automation_pipeline import (
    AUTOMATION_SYSTEM_INSTRUCTION,
    AutomationPipeline,
    AutomationRequestError,
)

AUTOMATION_ID = "auto-1"
USER_ID = "11111111-1111-1111-1111-111111111111"

LEAD_NOTIFIER = json.dumps({
    "summary": "Notify Slack when a new HubSpot lead arrives",
    "steps": ["Receive lead from HubSpot", "Post lead to Slack"],
    "platforms": [
        {"name": "HubSpot", "credentials": [{"field": "private_app_token", "why_needed": "read leads"}]},
        {"name": "Slack", "credentials": [{"field": "bot_token", "why_needed": "post messages"}]},
    ],
    "agents": [{"name": "Router", "role": "Decision Maker", "goal": "triage leads"}],
    "test_payloads": {"slack": {"method": "POST", "endpoint": "https://slack.com/api/auth.test"}},
})


class FakeLLM:
    def __init__(self, reply: str = "", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[tuple[str, str | None]] = []

    def __call__(self, prompt: str, system_instruction: str | None = None) -> str:
        self.prompts.append((prompt, system_instruction))
        if self.error:
            raise self.error
        return self.reply


# ---------------------------------------------------------------------------
# process_response
# ---------------------------------------------------------------------------


class TestProcessResponse:
    @pytest.mark.asyncio
    async def test_plain_text_is_not_stored(self):
        store = FakeAutomationStore()

        result = await AutomationPipeline(store).process_response(
            "Which CRM are you using today?", USER_ID, AUTOMATION_ID
        )

        assert result.success is True
        assert result.is_plain_text is True
        assert result.display_text == "Which CRM are you using today?"
        assert store.rows == []

    @pytest.mark.asyncio
    async def test_structured_reply_is_derived_and_stored(self):
        store = FakeAutomationStore()

        result = await AutomationPipeline(store).process_response(
            LEAD_NOTIFIER, USER_ID, AUTOMATION_ID, chat_message_id=7
        )

        assert result.success is True
        assert result.is_plain_text is False
        assert result.display_text == "Notify Slack when a new HubSpot lead arrives"
        assert [b["name"] for b in result.platforms_for_buttons] == ["HubSpot", "Slack"]
        assert result.platforms_for_buttons[0]["test_payload"] is None
        assert result.platforms_for_buttons[1]["test_payload"]["endpoint"] == "https://slack.com/api/auth.test"
        assert [a["name"] for a in result.agents_for_decision] == ["Router"]
        assert result.blueprint is not None
        assert result.diagram.metadata.total_steps == len(result.blueprint.steps)
        assert result.response_id == "resp-1"

        row = store.rows[0]
        assert row["response_text"] == LEAD_NOTIFIER
        assert row["chat_message_id"] == 7
        assert row["is_ready_for_execution"] is False
        assert row["seven_sections_validated"] is True
        assert row["structured_data"]["execution_blueprint"] is None
        assert row["structured_data"]["steps"] == result.structured_data.steps

    @pytest.mark.asyncio
    async def test_same_message_is_upserted_not_duplicated(self):
        store = FakeAutomationStore()
        pipeline = AutomationPipeline(store)

        await pipeline.process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID, chat_message_id=7)
        await pipeline.process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID, chat_message_id=7)

        assert len(store.rows) == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_reported(self):
        store = FakeAutomationStore(failing={"upsert_structured_automation"})

        result = await AutomationPipeline(store).process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID)

        assert result.success is False
        assert "connection refused" in result.error
        assert result.structured_data is not None

    @pytest.mark.asyncio
    async def test_stored_agents_feed_readiness_lookups(self):
        store = FakeAutomationStore()

        await AutomationPipeline(store).process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID)
        structured = await store.get_latest_structured_automation(AUTOMATION_ID)

        assert [a["name"] for a in structured["agents"]] == ["Router"]


# ---------------------------------------------------------------------------
# recover
# ---------------------------------------------------------------------------


class TestRecover:
    @pytest.mark.asyncio
    async def test_nothing_stored(self):
        assert await AutomationPipeline(FakeAutomationStore()).recover(AUTOMATION_ID, USER_ID) is None

    @pytest.mark.asyncio
    async def test_recovery_matches_processing(self):
        store = FakeAutomationStore()
        pipeline = AutomationPipeline(store)
        processed = await pipeline.process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID)

        recovered = await pipeline.recover(AUTOMATION_ID, USER_ID)

        assert recovered.response_id == "resp-1"
        assert recovered.blueprint.model_dump() == processed.blueprint.model_dump()
        assert recovered.platforms_for_buttons == processed.platforms_for_buttons
        assert recovered.metadata.seven_sections_validated is True

    @pytest.mark.asyncio
    async def test_blueprint_is_rederived_on_every_read(self, monkeypatch):
        store = FakeAutomationStore()
        pipeline = AutomationPipeline(store)
        await pipeline.process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID)

        def extract_with_new_rules(structured):
            blueprint = extract_blueprint(structured)
            return blueprint.model_copy(update={"description": "re-derived"})

        monkeypatch.setattr(automation_pipeline, "extract_blueprint", extract_with_new_rules)
        recovered = await pipeline.recover(AUTOMATION_ID, USER_ID)

        assert recovered.blueprint.description == "re-derived"
        assert recovered.structured_data.execution_blueprint is None

    @pytest.mark.asyncio
    async def test_other_users_rows_are_invisible(self):
        store = FakeAutomationStore()
        pipeline = AutomationPipeline(store)
        await pipeline.process_response(LEAD_NOTIFIER, USER_ID, AUTOMATION_ID)

        assert await pipeline.recover(AUTOMATION_ID, "someone-else") is None

    @pytest.mark.asyncio
    async def test_falls_back_to_response_text(self):
        store = FakeAutomationStore()
        store.rows.append({
            "id": "legacy-1",
            "user_id": USER_ID,
            "automation_id": AUTOMATION_ID,
            "response_text": LEAD_NOTIFIER,
            "structured_data": None,
            "chat_message_id": None,
        })

        recovered = await AutomationPipeline(store).recover(AUTOMATION_ID, USER_ID)

        assert recovered.is_plain_text is False
        assert recovered.structured_data.summary == "Notify Slack when a new HubSpot lead arrives"
        assert recovered.response_id == "legacy-1"


# ---------------------------------------------------------------------------
# request_automation
# ---------------------------------------------------------------------------


class TestRequestAutomation:
    @pytest.mark.asyncio
    async def test_reply_is_processed(self):
        llm = FakeLLM(reply=f"```json\n{LEAD_NOTIFIER}\n```")
        store = FakeAutomationStore()

        result = await AutomationPipeline(store, llm=llm).request_automation(
            "Ping Slack for every new HubSpot lead",
            USER_ID,
            AUTOMATION_ID,
            history=[{"role": "assistant", "content": "Hi! What should we automate?"}],
        )

        assert result.is_plain_text is False
        assert len(store.rows) == 1
        prompt, system_instruction = llm.prompts[0]
        assert system_instruction == AUTOMATION_SYSTEM_INSTRUCTION
        assert prompt.splitlines() == [
            "assistant: Hi! What should we automate?",
            "user: Ping Slack for every new HubSpot lead",
        ]

    @pytest.mark.asyncio
    async def test_llm_failure_raises_request_error(self):
        llm = FakeLLM(error=RuntimeError("quota exceeded"))

        with pytest.raises(AutomationRequestError, match="quota exceeded"):
            await AutomationPipeline(FakeAutomationStore(), llm=llm).request_automation(
                "anything", USER_ID, AUTOMATION_ID
            )

    @pytest.mark.asyncio
    async def test_empty_reply_raises_request_error(self):
        llm = FakeLLM(reply="   ")

        with pytest.raises(AutomationRequestError):
            await AutomationPipeline(FakeAutomationStore(), llm=llm).request_automation(
                "anything", USER_ID, AUTOMATION_ID
            )
