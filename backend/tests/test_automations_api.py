"""
Tests for the automation API endpoints.

Authentication, the store, the LLM and the execution backend are replaced
through app.dependency_overrides; no Supabase or Gemini access happens here.
"""

import json
import pytest
from fastapi.testclient import TestClient

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from fake_store import FakeAutomationStore
from yusrai.main import app
from yusrai.auth.dependencies import User, get_current_user
from yusrai.api.v1.automations import get_execution_backend, get_pipeline
from yusrai.db.automation_store import get_automation_store
from yusrai.models.readiness import CredentialTestStatus, DispatchResult
from yusrai.services.automation_pipeline import AutomationPipeline

TEST_USER_ID = "11111111-1111-1111-1111-111111111111"
AUTOMATION_ID = "auto-1"
TESTED = CredentialTestStatus(exists=True, is_tested=True, last_test_status="success")

LEAD_NOTIFIER = json.dumps({
    "summary": "Notify Slack when a new HubSpot lead arrives",
    "steps": ["Receive lead from HubSpot", "Post lead to Slack"],
    "platforms": [{"name": "Slack", "credentials": [{"field": "bot_token"}]}],
    "agents": [{"name": "Router", "role": "Decision Maker"}],
})


def get_test_user():
    return User(sub=TEST_USER_ID, email="test@example.com", role="authenticated")


class StubBackend:
    def __init__(self):
        self.calls = []

    async def dispatch_execution(self, automation_id, user_id, blueprint, executable_code, trigger_metadata):
        self.calls.append((automation_id, user_id, trigger_metadata))
        return DispatchResult(success=True, run_id="run-9")


class TestAutomationsAPI:
    @pytest.fixture(autouse=True)
    def setup_teardown(self):
        """Wire fakes into the app for each test and clear them afterwards."""
        self.store = FakeAutomationStore(platforms=["Slack"])
        self.backend = StubBackend()
        self.llm_reply = LEAD_NOTIFIER

        def fake_llm(prompt, system_instruction=None):
            return self.llm_reply

        app.dependency_overrides[get_current_user] = get_test_user
        app.dependency_overrides[get_automation_store] = lambda: self.store
        app.dependency_overrides[get_execution_backend] = lambda: self.backend
        app.dependency_overrides[get_pipeline] = lambda: AutomationPipeline(self.store, llm=fake_llm)
        self.client = TestClient(app)
        yield
        app.dependency_overrides.clear()

    def url(self, path: str) -> str:
        return f"/api/v1/automations/{AUTOMATION_ID}{path}"

    def test_process_plain_text_response(self):
        response = self.client.post(self.url("/responses"), json={"response_text": "Which CRM do you use for leads?"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["is_plain_text"] is True
        assert self.store.rows == []

    def test_process_structured_response(self):
        response = self.client.post(
            self.url("/responses"),
            json={"response_text": LEAD_NOTIFIER, "chat_message_id": 3},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["is_plain_text"] is False
        assert body["platforms_for_buttons"][0]["name"] == "Slack"
        assert body["diagram"]["metadata"]["total_steps"] == 3
        assert self.store.rows[0]["user_id"] == TEST_USER_ID
        assert self.store.rows[0]["chat_message_id"] == 3

    def test_chat_asks_llm_and_stores_reply(self):
        response = self.client.post(self.url("/chat"), json={"message": "Ping Slack for new leads"})

        assert response.status_code == 200
        assert response.json()["structured_data"]["summary"] == "Notify Slack when a new HubSpot lead arrives"
        assert len(self.store.rows) == 1

    def test_chat_llm_failure_is_bad_gateway(self):
        def broken_llm(prompt, system_instruction=None):
            raise RuntimeError("model overloaded")

        app.dependency_overrides[get_pipeline] = lambda: AutomationPipeline(self.store, llm=broken_llm)

        response = self.client.post(self.url("/chat"), json={"message": "Ping Slack"})

        assert response.status_code == 502
        assert "model overloaded" in response.json()["detail"]

    def test_chat_requires_message(self):
        response = self.client.post(self.url("/chat"), json={"message": ""})

        assert response.status_code == 422

    def test_blueprint_not_found(self):
        response = self.client.get(self.url("/blueprint"))

        assert response.status_code == 404

    def test_blueprint_after_processing(self):
        self.client.post(self.url("/responses"), json={"response_text": LEAD_NOTIFIER})

        response = self.client.get(self.url("/blueprint"))

        assert response.status_code == 200
        body = response.json()
        assert [s["id"] for s in body["blueprint"]["steps"]] == ["step-1", "step-2", "platform-step-3"]
        assert body["agents_for_decision"][0]["name"] == "Router"

    def test_readiness_lists_missing_pieces(self):
        self.client.post(self.url("/responses"), json={"response_text": LEAD_NOTIFIER})

        response = self.client.get(self.url("/readiness"))

        assert response.status_code == 200
        body = response.json()
        assert body["is_ready"] is False
        assert body["missing_credentials"] == ["Slack"]
        assert body["pending_agents"] == ["Router"]

    def test_agent_decision_updates_readiness(self):
        self.client.post(self.url("/responses"), json={"response_text": LEAD_NOTIFIER})
        self.store.credentials["Slack"] = TESTED

        response = self.client.put(self.url("/agents/Router/decision"), json={"decision": "added"})

        assert response.status_code == 200
        assert response.json()["is_ready"] is True
        assert self.store.decisions["Router"] == "added"

    def test_agent_decision_rejects_unknown_value(self):
        response = self.client.put(self.url("/agents/Router/decision"), json={"decision": "maybe"})

        assert response.status_code == 422

    def test_execute_not_found(self):
        response = self.client.post(self.url("/execute"), json={})

        assert response.status_code == 404

    def test_execute_refused_when_not_ready(self):
        self.client.post(self.url("/responses"), json={"response_text": LEAD_NOTIFIER})

        response = self.client.post(self.url("/execute"), json={})

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["missing_credentials"] == ["Slack"]
        assert detail["pending_agents"] == ["Router"]
        assert self.backend.calls == []

    def test_execute_refused_when_blueprint_has_no_steps(self):
        empty_plan = json.dumps({"summary": "Nothing to run yet", "execution_blueprint": {"steps": []}})
        self.client.post(self.url("/responses"), json={"response_text": empty_plan})
        self.store.credentials["Slack"] = TESTED

        response = self.client.post(self.url("/execute"), json={})

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["missing_credentials"] == []
        assert detail["pending_agents"] == []
        assert self.backend.calls == []

    def test_execute_dispatches_when_ready(self):
        self.client.post(self.url("/responses"), json={"response_text": LEAD_NOTIFIER})
        self.store.credentials["Slack"] = TESTED
        self.store.decisions["Router"] = "dismissed"

        response = self.client.post(self.url("/execute"), json={"trigger_metadata": {"source": "manual"}})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["run_id"] == "run-9"
        assert body["readiness"]["is_ready"] is True
        assert self.backend.calls == [(AUTOMATION_ID, TEST_USER_ID, {"source": "manual"})]

    def test_requires_bearer_token(self):
        app.dependency_overrides.pop(get_current_user, None)

        response = self.client.get(self.url("/readiness"), headers={"Authorization": "Token abc"})

        assert response.status_code == 401
