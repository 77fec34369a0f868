"""
Response parser: turns raw LLM text into a StructuredAutomation.

Pipeline: Unfence → Decode → Unwrap envelope → Sniff → Normalize → Default-fill

The parser is total: conversational replies, malformed JSON and unexpected
shapes all come back as plain-text results instead of exceptions.
Legacy key layouts are handled by NORMALIZATION_RULES, an ordered table of
pure functions. Add a rule there to support a new layout.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from yusrai.models.automation import ParseMetadata, ParseResult, StructuredAutomation

logger = logging.getLogger(__name__)


FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")
EMBEDDED_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

STRUCTURED_SECTION_KEYS: tuple[str, ...] = (
    "error_handling",
    "performance_optimization",
    "summary",
    "step_by_step",
    "platforms_and_credentials",
    "ai_agents",
    "clarification_questions",
)

MIN_DISPLAY_TEXT_LENGTH = 20


@dataclass(frozen=True)
class NormalizationRule:
    """A legacy-layout rule: when `applies(raw)` holds, `apply(raw)` yields canonical fields."""

    name: str
    applies: Callable[[dict[str, Any]], bool]
    apply: Callable[[dict[str, Any]], dict[str, Any]]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_structured_response(raw_text: str) -> ParseResult:
    """
    Parse one LLM reply.

    Returns a ParseResult whose `structured_data` is None and `is_plain_text`
    is True whenever the reply does not describe an automation.
    """
    try:
        return _parse(raw_text)
    except Exception:
        logger.exception("Unexpected failure while parsing LLM response; treating as plain text")
        return _plain_text(ParseMetadata(yusrai_powered=True))


def clean_display_text(text: Any) -> str:
    """Reduce an LLM reply to something presentable in a chat bubble."""
    if not text or not isinstance(text, str):
        return "Processing YusrAI automation details..."

    clean = re.sub(r"\s+", " ", text).strip()

    match = EMBEDDED_OBJECT_RE.search(text)
    if match:
        try:
            embedded = json.loads(match.group(0))
        except ValueError:
            clean = re.sub(r"\s+", " ", EMBEDDED_OBJECT_RE.sub("", text)).strip()
        else:
            if isinstance(embedded, dict) and embedded.get("summary"):
                return str(embedded["summary"])

    if len(clean) < MIN_DISPLAY_TEXT_LENGTH:
        return "YusrAI has analyzed your request and provided a response."
    return clean


# ---------------------------------------------------------------------------
# Parsing stages
# ---------------------------------------------------------------------------

def _parse(raw_text: str) -> ParseResult:
    if not isinstance(raw_text, str):
        return _plain_text(ParseMetadata(yusrai_powered=True))

    candidate = _unfence(raw_text)
    decoded = _decode_object(candidate)
    if decoded is None:
        logger.debug("No JSON object found in response; plain text")
        return _plain_text(ParseMetadata(yusrai_powered=True))

    metadata = ParseMetadata(yusrai_powered=True)

    if isinstance(decoded.get("response"), str):
        # Envelope from the chat layer: provenance lives on the wrapper.
        metadata = ParseMetadata(
            yusrai_powered=bool(decoded.get("yusrai_powered", True)),
            seven_sections_validated=bool(decoded.get("seven_sections_validated", False)),
            error_help_available=bool(decoded.get("error_help_available", False)),
        )
        decoded = _decode_object(decoded["response"])
        if decoded is None:
            logger.debug("Wrapped response carries plain text")
            return _plain_text(metadata)

    if not _has_structured_sections(decoded):
        logger.debug("JSON response has no automation sections; plain text")
        return _plain_text(metadata)

    normalized = normalize_structured_fields(decoded)
    structured = StructuredAutomation.model_validate(normalized)

    return ParseResult(
        structured_data=structured,
        metadata=metadata.model_copy(update={"seven_sections_validated": True}),
        is_plain_text=False,
    )


def _unfence(raw_text: str) -> str:
    match = FENCED_BLOCK_RE.search(raw_text)
    if match:
        return match.group(1).strip()
    return raw_text


def _decode_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _has_structured_sections(raw: dict[str, Any]) -> bool:
    return any(raw.get(key) for key in STRUCTURED_SECTION_KEYS)


def _plain_text(metadata: ParseMetadata) -> ParseResult:
    return ParseResult(structured_data=None, metadata=metadata, is_plain_text=True)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_structured_fields(raw: dict[str, Any]) -> dict[str, Any]:
    """
    Apply every matching rule in NORMALIZATION_RULES, in order, then default-fill.

    Later rules see the output of earlier ones. Legacy keys are left in place.
    """
    normalized = dict(raw)
    for rule in NORMALIZATION_RULES:
        if rule.applies(normalized):
            normalized.update(rule.apply(normalized))

    normalized["platforms"] = _collapse_by_name(normalized.get("platforms"))
    normalized["agents"] = _collapse_by_name(normalized.get("agents"))

    for key, default in (
        ("steps", list),
        ("platforms", list),
        ("clarification_questions", list),
        ("agents", list),
        ("test_payloads", dict),
    ):
        if not normalized.get(key):
            normalized[key] = default()
    if not normalized.get("execution_blueprint"):
        normalized["execution_blueprint"] = None
    if not isinstance(normalized.get("summary"), str):
        normalized["summary"] = str(normalized["summary"]) if normalized.get("summary") else ""

    return normalized


def _steps_from_step_by_step(raw: dict[str, Any]) -> dict[str, Any]:
    source = raw["step_by_step"]
    if not isinstance(source, list):
        return {"steps": [str(source)]}
    return {"steps": [_describe_step(step) for step in source]}


def _describe_step(step: Any) -> str:
    if isinstance(step, str):
        return step
    if isinstance(step, dict):
        if step.get("description"):
            return str(step["description"])
        if step.get("action"):
            return str(step["action"])
    return json.dumps(step)


def _platforms_from_credentials_map(raw: dict[str, Any]) -> dict[str, Any]:
    source = raw["platforms_and_credentials"]
    platforms = []
    for name, data in source.items():
        if isinstance(data, dict) and isinstance(data.get("credentials"), list):
            credentials = data["credentials"]
        elif isinstance(data, dict) and isinstance(data.get("required_credentials"), list):
            credentials = data["required_credentials"]
        elif isinstance(data, list):
            credentials = data
        else:
            credentials = []
        platforms.append({"name": name, "credentials": credentials})
    return {"platforms": platforms}


def _agents_from_agent_map(raw: dict[str, Any]) -> dict[str, Any]:
    source = raw["ai_agents"]
    agents = []
    for name, data in source.items():
        data = data if isinstance(data, dict) else {}
        agents.append({
            "name": name,
            "role": data.get("role") or "Custom",
            "rule": data.get("rule") or data.get("instructions") or "",
            "goal": data.get("goal") or data.get("objective") or "",
            "memory": data.get("memory") or "",
            "why_needed": data.get("why_needed") or data.get("purpose") or "",
            "custom_config": data.get("custom_config") or {},
            "test_scenarios": (
                data["test_scenarios"] if isinstance(data.get("test_scenarios"), list) else []
            ),
        })
    return {"agents": agents}


def _stringify_steps(raw: dict[str, Any]) -> dict[str, Any]:
    return {"steps": [_describe_step(step) for step in raw["steps"]]}


def _reduce_clarification_questions(raw: dict[str, Any]) -> dict[str, Any]:
    source = raw["clarification_questions"]
    if not isinstance(source, list):
        source = [source]
    questions = []
    for question in source:
        if isinstance(question, str):
            questions.append(question)
        elif isinstance(question, dict) and question.get("question"):
            questions.append(str(question["question"]))
        else:
            questions.append(json.dumps(question))
    return {"clarification_questions": questions}


NORMALIZATION_RULES: list[NormalizationRule] = [
    NormalizationRule(
        name="step_by_step",
        applies=lambda raw: bool(raw.get("step_by_step")),
        apply=_steps_from_step_by_step,
    ),
    NormalizationRule(
        name="object_steps",
        applies=lambda raw: isinstance(raw.get("steps"), list)
        and not all(isinstance(step, str) for step in raw["steps"]),
        apply=_stringify_steps,
    ),
    NormalizationRule(
        name="platforms_and_credentials",
        applies=lambda raw: isinstance(raw.get("platforms_and_credentials"), dict),
        apply=_platforms_from_credentials_map,
    ),
    NormalizationRule(
        name="ai_agents",
        applies=lambda raw: isinstance(raw.get("ai_agents"), dict),
        apply=_agents_from_agent_map,
    ),
    NormalizationRule(
        name="clarification_questions",
        applies=lambda raw: bool(raw.get("clarification_questions")),
        apply=_reduce_clarification_questions,
    ),
    NormalizationRule(
        name="platform_test_payloads",
        applies=lambda raw: bool(raw.get("platform_test_payloads")) and not raw.get("test_payloads"),
        apply=lambda raw: {"test_payloads": raw["platform_test_payloads"]},
    ),
    NormalizationRule(
        name="blueprint",
        applies=lambda raw: bool(raw.get("blueprint")) and not raw.get("execution_blueprint"),
        apply=lambda raw: {"execution_blueprint": raw["blueprint"]},
    ),
]


def _collapse_by_name(entries: Any) -> list[Any]:
    """Duplicate names collapse to the last-seen entry at the first position."""
    if not isinstance(entries, list):
        return []
    by_name: dict[str, Any] = {}
    for entry in entries:
        if isinstance(entry, str):
            entry = {"name": entry}
        name = entry.get("name") if isinstance(entry, dict) else None
        if not isinstance(name, str) or not name:
            logger.warning("Dropping unnamed entry from structured response: %r", entry)
            continue
        if name in by_name:
            logger.warning("Duplicate entry '%s' in structured response; keeping the last one", name)
        by_name[name] = entry
    return list(by_name.values())
