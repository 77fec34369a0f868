"""
Blueprint models: the canonical, execution-ready representation of an automation.

Blueprints are derived on demand by the extractor and are NOT authoritative
storage. They can always be rebuilt from the stored StructuredAutomation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from yusrai.models.automation import Platform, TestPayload


TriggerType = Literal["webhook", "schedule", "manual", "event"]

TRIGGER_TYPES: tuple[str, ...] = ("webhook", "schedule", "manual", "event")


class Trigger(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: TriggerType = "manual"
    platform: str | None = None
    configuration: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.lower() in TRIGGER_TYPES:
            return value.lower()
        return "manual"


class StepAction(BaseModel):
    model_config = ConfigDict(extra="allow")

    integration: str = "system"
    method: str = "execute"
    parameters: dict[str, Any] = Field(default_factory=dict)


class BlueprintStep(BaseModel):
    # Extra keys (error_handling, success_condition, ...) ride along for the runner.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: str
    type: str = "action"
    action: StepAction = Field(default_factory=StepAction)
    original_workflow_data: dict[str, Any] | None = Field(
        default=None, alias="originalWorkflowData"
    )
    platform: str | None = None


class ExecutionBlueprint(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: str = "1.0"
    description: str = "AI-generated automation"
    trigger: Trigger | None = Field(default_factory=Trigger)
    steps: list[BlueprintStep] = Field(default_factory=list)
    variables: dict[str, Any] | None = None
    test_payloads: dict[str, TestPayload] | None = None
    platforms: list[Platform] | None = None


class DiagramNode(BaseModel):
    id: str
    type: Literal["trigger", "step"]
    label: str
    platform: str | None = None


class DiagramEdge(BaseModel):
    source: str
    target: str


class DiagramMetadata(BaseModel):
    total_steps: int
    platforms: list[str] = Field(default_factory=list)
    agent_recommendations: int = 0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "yusrai_core"


class DiagramData(BaseModel):
    nodes: list[DiagramNode] = Field(default_factory=list)
    edges: list[DiagramEdge] = Field(default_factory=list)
    metadata: DiagramMetadata
