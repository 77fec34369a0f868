"""
Structured automation models: the normalized shape of one LLM turn.

A StructuredAutomation is what the response parser produces after it has
unwrapped, sniffed and normalized the raw LLM text. Unknown keys are kept as
model extras so the blueprint extractor can still see `workflow`,
`trigger_type` and friends.

LLM output drifts in small ways (null instead of "", objects where strings
belong, a bare string where an object belongs). Nested values are coerced in
`mode="before"` validators, and a platform, agent or test payload that still
cannot be read is dropped on its own instead of failing the whole record.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


AgentRole = Literal[
    "Decision Maker",
    "Data Processor",
    "Monitor",
    "Validator",
    "Responder",
    "Custom",
]

AGENT_ROLES: tuple[str, ...] = (
    "Decision Maker",
    "Data Processor",
    "Monitor",
    "Validator",
    "Responder",
    "Custom",
)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _as_optional_text(value: Any) -> str | None:
    return None if value is None else _as_text(value)


def _as_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [_as_text(item) for item in value if item is not None]


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    return {"value": value}


class CredentialField(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str
    why_needed: str = ""
    where_to_get: str | None = None
    link: str | None = None
    options: list[str] | None = None
    example: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_bare_field_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"field": value}
        if isinstance(value, dict) and "field" not in value and value.get("name"):
            return {**value, "field": value["name"]}
        return value

    @field_validator("field", "why_needed", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("where_to_get", "link", "example", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> str | None:
        return _as_optional_text(value)

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, value: Any) -> list[str] | None:
        return None if value is None else _as_text_list(value)


class Platform(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    credentials: list[CredentialField] = Field(default_factory=list)

    @field_validator("credentials", mode="before")
    @classmethod
    def _readable_credentials(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [
            item for item in value
            if isinstance(item, str) or (isinstance(item, dict) and (item.get("field") or item.get("name")))
        ]


class Agent(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    role: AgentRole = "Custom"
    rule: str = ""
    goal: str = ""
    memory: str = ""
    why_needed: str = ""
    test_scenarios: list[str] = Field(default_factory=list)
    custom_config: dict[str, Any] | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> str:
        if value in AGENT_ROLES:
            return value
        return "Custom"

    @field_validator("rule", "goal", "memory", "why_needed", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("test_scenarios", mode="before")
    @classmethod
    def _scenarios(cls, value: Any) -> list[str]:
        return _as_text_list(value)

    @field_validator("custom_config", mode="before")
    @classmethod
    def _config(cls, value: Any) -> dict[str, Any] | None:
        return value if isinstance(value, dict) else None


class TestPayload(BaseModel):
    model_config = ConfigDict(extra="allow")
    __test__ = False

    method: str = "GET"
    endpoint: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    expected_response: dict[str, Any] = Field(default_factory=dict)
    error_patterns: dict[str, Any] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def _method(cls, value: Any) -> str:
        return _as_text(value).upper() or "GET"

    @field_validator("endpoint", mode="before")
    @classmethod
    def _endpoint(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(k): v if isinstance(v, str) else str(v) for k, v in value.items()}

    @field_validator("expected_response", "error_patterns", mode="before")
    @classmethod
    def _mapping(cls, value: Any) -> dict[str, Any]:
        return _as_mapping(value)


def _keep_readable(entries: Any, model: type[BaseModel], label: str) -> list[Any]:
    if not isinstance(entries, list):
        return []
    kept = []
    for entry in entries:
        try:
            kept.append(model.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Dropping unreadable %s entry %r: %s", label, entry, exc)
    return kept


class StructuredAutomation(BaseModel):
    """Canonical record for one automation-describing LLM turn."""

    model_config = ConfigDict(extra="allow")

    summary: str = ""
    steps: list[str] = Field(default_factory=list)
    platforms: list[Platform] = Field(default_factory=list)
    clarification_questions: list[str] = Field(default_factory=list)
    agents: list[Agent] = Field(default_factory=list)
    test_payloads: dict[str, TestPayload] = Field(default_factory=dict)
    execution_blueprint: dict[str, Any] | None = None

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("steps", "clarification_questions", mode="before")
    @classmethod
    def _text_lists(cls, value: Any) -> list[str]:
        return _as_text_list(value)

    @field_validator("platforms", mode="before")
    @classmethod
    def _platforms(cls, value: Any) -> list[Any]:
        return _keep_readable(value, Platform, "platform")

    @field_validator("agents", mode="before")
    @classmethod
    def _agents(cls, value: Any) -> list[Any]:
        return _keep_readable(value, Agent, "agent")

    @field_validator("test_payloads", mode="before")
    @classmethod
    def _test_payloads(cls, value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            return {}
        payloads = {}
        for name, payload in value.items():
            try:
                payloads[str(name)] = TestPayload.model_validate(payload)
            except ValidationError as exc:
                logger.warning("Dropping unreadable test payload for %s: %s", name, exc)
        return payloads

    @field_validator("execution_blueprint", mode="before")
    @classmethod
    def _blueprint(cls, value: Any) -> dict[str, Any] | None:
        return value if isinstance(value, dict) and value else None


class ParseMetadata(BaseModel):
    yusrai_powered: bool = True
    seven_sections_validated: bool = False
    error_help_available: bool = False


class ParseResult(BaseModel):
    structured_data: StructuredAutomation | None = None
    metadata: ParseMetadata = Field(default_factory=ParseMetadata)
    is_plain_text: bool = True
