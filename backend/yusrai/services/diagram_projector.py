"""
Diagram projector: a lightweight, purely derived view of a blueprint.

The projection carries a linear node/edge list (trigger → steps) and the
counts a renderer needs. Layout is left to the renderer.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from yusrai.models.blueprint import (
    DiagramData,
    DiagramEdge,
    DiagramMetadata,
    DiagramNode,
    ExecutionBlueprint,
)
from yusrai.services.blueprint_extractor import (
    extract_required_platforms,
    validate_blueprint_for_diagram,
)

TRIGGER_NODE_ID = "trigger"


def project_diagram(
    structured_data: Any,
    blueprint: ExecutionBlueprint | None,
    *,
    source: str = "yusrai_core",
) -> DiagramData | None:
    """
    Project a diagram from a structured automation and its canonical blueprint.

    Returns None when there is no diagrammable blueprint or the automation
    describes no steps.
    """
    if isinstance(structured_data, BaseModel):
        structured_data = structured_data.model_dump()
    if not isinstance(structured_data, dict):
        return None
    if not validate_blueprint_for_diagram(blueprint):
        return None
    if not structured_data.get("steps") and not structured_data.get("workflow"):
        return None

    nodes = [
        DiagramNode(
            id=TRIGGER_NODE_ID,
            type="trigger",
            label=f"{blueprint.trigger.type.title()} Trigger",
            platform=blueprint.trigger.platform,
        )
    ]
    edges: list[DiagramEdge] = []
    previous = TRIGGER_NODE_ID
    for step in blueprint.steps:
        nodes.append(DiagramNode(
            id=step.id,
            type="step",
            label=step.name,
            platform=step.action.integration,
        ))
        edges.append(DiagramEdge(source=previous, target=step.id))
        previous = step.id

    return DiagramData(
        nodes=nodes,
        edges=edges,
        metadata=DiagramMetadata(
            total_steps=len(blueprint.steps),
            platforms=_platform_names(structured_data, blueprint),
            agent_recommendations=len(structured_data.get("agents") or []),
            source=source,
        ),
    )


def _platform_names(structured_data: dict[str, Any], blueprint: ExecutionBlueprint) -> list[str]:
    """Declared platforms first, then step integrations; case-insensitive distinct."""
    names: dict[str, str] = {}
    declared = [
        platform.get("name")
        for platform in structured_data.get("platforms") or []
        if isinstance(platform, dict)
    ]
    for name in [*declared, *extract_required_platforms(blueprint)]:
        if isinstance(name, str) and name.strip():
            names.setdefault(name.strip().lower(), name.strip())
    return list(names.values())
