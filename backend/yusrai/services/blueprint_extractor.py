"""
Blueprint extractor: derives a canonical ExecutionBlueprint from a StructuredAutomation.

Resolution is a priority cascade (first matching row of EXTRACTION_TABLE wins):

    1. execution_blueprint   → validate-and-clean
    2. automation_blueprint  → validate-and-clean
    3. workflow (non-empty)  → synthesize one step per workflow item
    4. steps / platforms     → construct from components
    5. yusrai_response / ai_response → recurse into the nested object
    6. nothing matched       → None ("not yet ready")

Extraction never raises to the caller; malformed input comes back as None.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from yusrai.models.blueprint import BlueprintStep, ExecutionBlueprint, StepAction, Trigger

logger = logging.getLogger(__name__)


DEFAULT_DESCRIPTION = "AI-generated automation"
SYSTEM_INTEGRATION = "system"
NESTED_RESPONSE_KEYS: tuple[str, ...] = ("yusrai_response", "ai_response")
MAX_NESTING_DEPTH = 5


class ExtractionError(Exception):
    """Raised internally when a candidate blueprint cannot be cleaned."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    matches: Callable[[dict[str, Any]], bool]
    build: Callable[[dict[str, Any], int], ExecutionBlueprint | None]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_blueprint(structured_data: Any) -> ExecutionBlueprint | None:
    """
    Resolve an ExecutionBlueprint from a StructuredAutomation, a plain dict,
    or a bare workflow list. Returns None when nothing can be derived.
    """
    if isinstance(structured_data, BaseModel):
        structured_data = structured_data.model_dump(by_alias=True)
    if isinstance(structured_data, list):
        structured_data = {"workflow": structured_data}
    return _extract(structured_data, depth=0)


def validate_blueprint_for_diagram(blueprint: ExecutionBlueprint | dict[str, Any] | None) -> bool:
    """
    True iff the blueprint has at least one step and one step has a non-blank name.

    A missing trigger is filled with the manual default; nothing else is touched.
    """
    if blueprint is None:
        logger.debug("No blueprint provided for diagram validation")
        return False

    if isinstance(blueprint, dict):
        steps = blueprint.get("steps")
    else:
        steps = blueprint.steps

    if not isinstance(steps, list) or not steps:
        logger.debug("Blueprint has no steps")
        return False

    if not any(_step_name(step).strip() for step in steps):
        logger.debug("Blueprint steps all have blank names")
        return False

    if isinstance(blueprint, dict):
        if not blueprint.get("trigger"):
            blueprint["trigger"] = {"type": "manual"}
    elif blueprint.trigger is None:
        blueprint.trigger = Trigger(type="manual")

    return True


def extract_required_platforms(blueprint: ExecutionBlueprint | None) -> list[str]:
    """Distinct non-system integrations in step order."""
    if blueprint is None:
        return []
    seen: dict[str, None] = {}
    for step in blueprint.steps:
        integration = step.action.integration
        if integration and integration != SYSTEM_INTEGRATION:
            seen.setdefault(integration, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

def _extract(structured_data: Any, depth: int) -> ExecutionBlueprint | None:
    if not isinstance(structured_data, dict):
        logger.debug("Structured data is not an object; no blueprint")
        return None
    if depth > MAX_NESTING_DEPTH:
        logger.warning("Nested response depth exceeded %d; no blueprint", MAX_NESTING_DEPTH)
        return None

    for rule in EXTRACTION_TABLE:
        if not rule.matches(structured_data):
            continue
        try:
            blueprint = rule.build(structured_data, depth)
        except (ExtractionError, ValidationError, TypeError, ValueError) as exc:
            logger.warning("Blueprint extraction via '%s' failed: %s", rule.name, exc)
            return None
        if blueprint is not None:
            logger.info(
                "Extracted blueprint via '%s' with %d steps", rule.name, len(blueprint.steps)
            )
        return blueprint

    logger.debug("No blueprint data found in structured response")
    return None


def _from_execution_blueprint(data: dict[str, Any], depth: int) -> ExecutionBlueprint:
    return _validate_and_clean(data["execution_blueprint"], source="execution_blueprint")


def _from_automation_blueprint(data: dict[str, Any], depth: int) -> ExecutionBlueprint:
    return _validate_and_clean(data["automation_blueprint"], source="automation_blueprint")


def _from_workflow(data: dict[str, Any], depth: int) -> ExecutionBlueprint:
    return ExecutionBlueprint(
        version="1.0",
        description=_description_of(data),
        trigger=Trigger(
            type=data.get("trigger_type") or "manual",
            platform=data.get("trigger_platform"),
        ),
        steps=[_workflow_item_to_step(item, index) for index, item in enumerate(data["workflow"])],
        **_carried_over(data),
    )


def _from_components(data: dict[str, Any], depth: int) -> ExecutionBlueprint:
    steps: list[BlueprintStep] = []
    counter = 1

    for index, step in enumerate(data.get("steps") or []):
        if isinstance(step, str):
            steps.append(BlueprintStep(
                id=f"step-{counter}",
                name=step,
                type="action",
                action=StepAction(
                    integration=SYSTEM_INTEGRATION,
                    method="execute",
                    parameters={"description": step},
                ),
            ))
        elif isinstance(step, dict):
            steps.append(_clean_step(step, index, default_id=f"step-{counter}"))
        else:
            continue
        counter += 1

    for platform in _platform_entries(data.get("platforms")):
        name = str(platform["name"])
        steps.append(BlueprintStep(
            id=f"platform-step-{counter}",
            name=f"{name} Integration",
            type="action",
            action=StepAction(
                integration=name.lower(),
                method=platform.get("method") or "api_call",
                parameters=platform.get("config") or platform.get("parameters") or {},
            ),
            platform=name,
        ))
        counter += 1

    return ExecutionBlueprint(
        version="1.0",
        description=_description_of(data),
        trigger=Trigger(
            type=data.get("trigger_type") or "manual",
            platform=data.get("trigger_platform"),
        ),
        steps=steps,
        **_carried_over(data),
    )


def _from_nested_response(data: dict[str, Any], depth: int) -> ExecutionBlueprint | None:
    nested = next(
        data[key] for key in NESTED_RESPONSE_KEYS if isinstance(data.get(key), dict)
    )
    return _extract(nested, depth + 1)


def _has_workflow(data: dict[str, Any]) -> bool:
    workflow = data.get("workflow")
    return isinstance(workflow, list) and len(workflow) > 0


def _has_components(data: dict[str, Any]) -> bool:
    return bool(data.get("steps")) or bool(data.get("platforms"))


EXTRACTION_TABLE: list[ExtractionRule] = [
    ExtractionRule(
        name="execution_blueprint",
        matches=lambda data: bool(data.get("execution_blueprint")),
        build=_from_execution_blueprint,
    ),
    ExtractionRule(
        name="automation_blueprint",
        matches=lambda data: bool(data.get("automation_blueprint")),
        build=_from_automation_blueprint,
    ),
    ExtractionRule(name="workflow", matches=_has_workflow, build=_from_workflow),
    ExtractionRule(name="components", matches=_has_components, build=_from_components),
    ExtractionRule(
        name="nested_response",
        matches=lambda data: any(isinstance(data.get(key), dict) for key in NESTED_RESPONSE_KEYS),
        build=_from_nested_response,
    ),
]


# ---------------------------------------------------------------------------
# Validate-and-clean
# ---------------------------------------------------------------------------

def _validate_and_clean(candidate: Any, *, source: str) -> ExecutionBlueprint:
    if not isinstance(candidate, dict):
        raise ExtractionError(source, f"expected an object, got {type(candidate).__name__}")

    if isinstance(candidate.get("steps"), list):
        steps = [
            _clean_step(step, index, default_id=f"step-{index + 1}")
            for index, step in enumerate(candidate["steps"])
            if isinstance(step, dict)
        ]
    elif isinstance(candidate.get("workflow"), list):
        steps = [
            _workflow_item_to_step(item, index)
            for index, item in enumerate(candidate["workflow"])
        ]
    else:
        steps = []

    trigger = candidate.get("trigger")
    carried = _carried_over(candidate)
    if candidate.get("variables"):
        carried["variables"] = candidate["variables"]
    return ExecutionBlueprint(
        version=str(candidate.get("version") or "1.0"),
        description=candidate.get("description") or DEFAULT_DESCRIPTION,
        trigger=Trigger.model_validate(trigger) if isinstance(trigger, dict) else Trigger(),
        steps=steps,
        **carried,
    )


def _clean_step(step: dict[str, Any], index: int, *, default_id: str) -> BlueprintStep:
    raw_action = step.get("action")
    if isinstance(raw_action, dict):
        action = StepAction.model_validate(raw_action)
    else:
        action = StepAction(
            integration=step.get("platform") or SYSTEM_INTEGRATION,
            method=step.get("method") or "execute",
            parameters=(
                step["parameters"]
                if isinstance(step.get("parameters"), dict)
                else {"description": raw_action or step.get("description") or ""}
            ),
        )

    name = step.get("name") or (raw_action if isinstance(raw_action, str) else None)
    extras = {
        key: value
        for key, value in step.items()
        if key not in {"id", "name", "type", "action", "platform", "originalWorkflowData", "original_workflow_data"}
    }
    return BlueprintStep(
        id=str(step.get("id") or default_id),
        name=str(name or f"Step {index + 1}"),
        type=step.get("type") or "action",
        action=action,
        originalWorkflowData=step.get("originalWorkflowData"),
        platform=step.get("platform"),
        **extras,
    )


def _workflow_item_to_step(item: Any, index: int) -> BlueprintStep:
    if not isinstance(item, dict):
        item = {"action": str(item)}

    action_text = item.get("action") if isinstance(item.get("action"), str) else None
    step_text = item.get("step") if isinstance(item.get("step"), str) else None
    name = action_text or step_text or item.get("name") or f"Workflow Step {index + 1}"
    platform = item.get("platform")

    parameters = dict(item["parameters"]) if isinstance(item.get("parameters"), dict) else {}
    parameters.update({
        "description": item.get("description") or action_text or step_text,
        "platform": platform,
        "details": item.get("details"),
        "original_action": item.get("action"),
        "original_step": item.get("step"),
        "original_platform": platform,
        "original_method": item.get("method"),
        "original_workflow_item": item,
    })

    extras = {
        key: item[key]
        for key in ("error_handling", "success_condition", "endpoint", "headers", "data_mapping", "next_step")
        if key in item
    }
    return BlueprintStep(
        id=f"workflow-step-{index + 1}",
        name=str(name),
        type=item.get("type") or "action",
        action=StepAction(
            integration=platform or SYSTEM_INTEGRATION,
            method=item.get("method") or "execute",
            parameters=parameters,
        ),
        originalWorkflowData=item,
        platform=platform,
        **extras,
    )


def _carried_over(source: dict[str, Any]) -> dict[str, Any]:
    carried: dict[str, Any] = {}
    platforms = _platform_entries(source.get("platforms"))
    if platforms:
        carried["platforms"] = platforms
    payloads = source.get("test_payloads")
    if isinstance(payloads, dict):
        payloads = {str(name): payload for name, payload in payloads.items() if isinstance(payload, dict)}
        if payloads:
            carried["test_payloads"] = payloads
    return carried


def _platform_entries(platforms: Any) -> list[dict[str, Any]]:
    """Named platform objects; bare strings become {"name": ...}."""
    if not isinstance(platforms, list):
        return []
    entries = []
    for platform in platforms:
        if isinstance(platform, str) and platform.strip():
            entries.append({"name": platform.strip()})
        elif isinstance(platform, dict) and platform.get("name"):
            entries.append(platform)
    return entries


def _description_of(data: dict[str, Any]) -> str:
    return data.get("summary") or data.get("description") or DEFAULT_DESCRIPTION


def _step_name(step: Any) -> str:
    if isinstance(step, dict):
        name = step.get("name")
    else:
        name = getattr(step, "name", None)
    return name if isinstance(name, str) else ""
