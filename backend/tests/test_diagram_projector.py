"""
Tests for diagram projection.
"""

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from yusrai.models.automation import StructuredAutomation
from yusrai.models.blueprint import BlueprintStep, ExecutionBlueprint, StepAction, Trigger
from yusrai.services.blueprint_extractor import extract_blueprint
from yusrai.services.diagram_projector import project_diagram


def relay_automation() -> StructuredAutomation:
    return StructuredAutomation.model_validate({
        "summary": "Relay",
        "workflow": [
            {"step": 1, "action": "A", "platform": "p1"},
            {"step": 2, "action": "B", "platform": "p2"},
        ],
        "agents": [{"name": "Watcher", "role": "Monitor"}],
    })


class TestProjectDiagram:
    def test_workflow_automation_projects_linear_chain(self):
        structured = relay_automation()
        blueprint = extract_blueprint(structured)

        diagram = project_diagram(structured, blueprint)

        assert diagram.metadata.total_steps == 2
        assert set(diagram.metadata.platforms) == {"p1", "p2"}
        assert diagram.metadata.agent_recommendations == 1
        assert diagram.metadata.source == "yusrai_core"
        assert [n.id for n in diagram.nodes] == ["trigger", "workflow-step-1", "workflow-step-2"]
        assert [(e.source, e.target) for e in diagram.edges] == [
            ("trigger", "workflow-step-1"),
            ("workflow-step-1", "workflow-step-2"),
        ]
        assert diagram.nodes[0].label == "Manual Trigger"

    def test_declared_platforms_come_first_and_dedupe_case_insensitively(self):
        structured = StructuredAutomation.model_validate({
            "summary": "Alerts",
            "steps": ["Check inbox", "Post to channel"],
            "platforms": [{"name": "Slack"}, {"name": "Gmail"}],
        })
        blueprint = ExecutionBlueprint(
            trigger=Trigger(type="schedule"),
            steps=[
                BlueprintStep(id="s1", name="Check inbox", action=StepAction(integration="gmail")),
                BlueprintStep(id="s2", name="Post", action=StepAction(integration="slack")),
                BlueprintStep(id="s3", name="Log", action=StepAction(integration="notion")),
            ],
        )

        diagram = project_diagram(structured, blueprint)

        assert diagram.metadata.platforms == ["Slack", "Gmail", "notion"]
        assert diagram.nodes[0].label == "Schedule Trigger"

    def test_no_blueprint_means_no_diagram(self):
        assert project_diagram(relay_automation(), None) is None

    def test_empty_blueprint_means_no_diagram(self):
        assert project_diagram(relay_automation(), ExecutionBlueprint(steps=[])) is None

    def test_automation_without_described_steps_has_no_diagram(self):
        structured = StructuredAutomation(summary="Only platforms", platforms=[{"name": "Slack"}])
        blueprint = extract_blueprint(structured)

        assert blueprint is not None
        assert project_diagram(structured, blueprint) is None

    def test_custom_source_and_dict_input(self):
        structured = {"steps": ["One"]}
        blueprint = extract_blueprint(structured)

        diagram = project_diagram(structured, blueprint, source="recovery")

        assert diagram.metadata.source == "recovery"
        assert diagram.metadata.total_steps == 1
