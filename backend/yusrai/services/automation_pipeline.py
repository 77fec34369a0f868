"""
Automation pipeline: one LLM turn from raw text to stored, diagrammable state.

process_response: parse → extract blueprint → project diagram → upsert
recover:          latest stored row → re-derive blueprint, diagram, buttons
request_automation: ask Gemini, then process_response on the reply
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from yusrai.db.automation_store import AutomationStore, StoreError
from yusrai.llm.gemini import query_gemini
from yusrai.models.automation import ParseMetadata, ParseResult, StructuredAutomation
from yusrai.models.blueprint import DiagramData, ExecutionBlueprint
from yusrai.services.blueprint_extractor import extract_blueprint
from yusrai.services.diagram_projector import project_diagram
from yusrai.services.response_parser import clean_display_text, parse_structured_response

logger = logging.getLogger(__name__)

AUTOMATION_SYSTEM_INSTRUCTION = """You design business automations for YusrAI.
Reply with a single JSON object (no prose outside it) with these keys:
- summary: 3-4 lines describing the automation and the platforms it uses
- steps: ordered list of plain-language steps
- platforms: list of {name, credentials: [{field, why_needed, where_to_get, link}]}
- clarification_questions: questions about ambiguous platforms or behaviour;
  never ask for API keys, tokens or passwords here
- agents: list of {name, role, goal, rules, memory, why_needed}
- test_payloads: map of platform name to {method, endpoint, headers, body,
  expected_response, error_patterns}
- execution_blueprint: {version, description, trigger: {type, platform},
  steps: [{id, name, type, action: {integration, method, parameters}}]}
When the request is only a greeting or a question, reply in plain text."""


class AutomationRequestError(Exception):
    """The LLM could not produce a reply."""


class PipelineResult(BaseModel):
    success: bool
    is_plain_text: bool = False
    display_text: str = ""
    structured_data: StructuredAutomation | None = None
    metadata: ParseMetadata = Field(default_factory=ParseMetadata)
    platforms_for_buttons: list[dict[str, Any]] = Field(default_factory=list)
    agents_for_decision: list[dict[str, Any]] = Field(default_factory=list)
    blueprint: ExecutionBlueprint | None = None
    diagram: DiagramData | None = None
    response_id: str | None = None
    error: str | None = None


class AutomationPipeline:
    def __init__(self, store: AutomationStore, *, llm: Callable[..., str] = query_gemini):
        self._store = store
        self._llm = llm

    async def process_response(
        self,
        raw_text: str,
        user_id: str,
        automation_id: str,
        chat_message_id: int | str | None = None,
    ) -> PipelineResult:
        parsed = parse_structured_response(raw_text)
        if parsed.is_plain_text or parsed.structured_data is None:
            logger.debug("Automation %s: reply is plain text", automation_id)
            return PipelineResult(
                success=True,
                is_plain_text=True,
                display_text=clean_display_text(raw_text),
                metadata=parsed.metadata,
            )

        result = _derive(parsed.structured_data, parsed.metadata)
        stored = parsed.structured_data.model_dump(mode="json")

        try:
            result.response_id = await self._store.upsert_structured_automation(
                user_id,
                automation_id,
                raw_text,
                stored,
                chat_message_id,
                parsed.metadata,
            )
        except StoreError as exc:
            logger.exception("Failed to store structured response for automation %s", automation_id)
            result.success = False
            result.error = str(exc)
            return result

        logger.info(
            "Automation %s: stored structured response (steps=%d, platforms=%d, agents=%d)",
            automation_id,
            len(parsed.structured_data.steps),
            len(parsed.structured_data.platforms),
            len(parsed.structured_data.agents),
        )
        return result

    async def recover(self, automation_id: str, user_id: str) -> PipelineResult | None:
        """Rebuild the latest turn's state; None when nothing was stored yet."""
        row = await self._store.get_latest_response_row(automation_id, user_id)
        if not row:
            return None

        metadata = ParseMetadata(
            yusrai_powered=bool(row.get("yusrai_powered", True)),
            seven_sections_validated=bool(row.get("seven_sections_validated")),
            error_help_available=bool(row.get("error_help_available")),
        )
        structured_data = row.get("structured_data")
        if isinstance(structured_data, dict):
            try:
                structured = StructuredAutomation.model_validate(structured_data)
            except ValidationError as exc:
                logger.warning("Stored structured data for automation %s is invalid: %s", automation_id, exc)
                structured = None
        else:
            structured = None

        if structured is None:
            parsed: ParseResult = parse_structured_response(row.get("response_text") or "")
            if parsed.structured_data is None:
                return PipelineResult(
                    success=True,
                    is_plain_text=True,
                    display_text=clean_display_text(row.get("response_text")),
                    metadata=metadata,
                    response_id=_row_id(row),
                )
            structured = parsed.structured_data

        result = _derive(structured, metadata)
        result.response_id = _row_id(row)
        return result

    async def request_automation(
        self,
        message: str,
        user_id: str,
        automation_id: str,
        *,
        chat_message_id: int | str | None = None,
        history: list[dict[str, str]] | None = None,
    ) -> PipelineResult:
        prompt = _build_prompt(message, history or [])
        try:
            reply = await asyncio.to_thread(
                self._llm, prompt, system_instruction=AUTOMATION_SYSTEM_INSTRUCTION
            )
        except Exception as exc:
            logger.exception("LLM request failed for automation %s", automation_id)
            raise AutomationRequestError(str(exc)) from exc
        if not reply or not reply.strip():
            raise AutomationRequestError("LLM returned an empty reply")
        return await self.process_response(reply, user_id, automation_id, chat_message_id)


def _derive(structured: StructuredAutomation, metadata: ParseMetadata) -> PipelineResult:
    blueprint = extract_blueprint(structured)
    return PipelineResult(
        success=True,
        display_text=clean_display_text(structured.summary),
        structured_data=structured,
        metadata=metadata,
        platforms_for_buttons=platforms_for_buttons(structured),
        agents_for_decision=[agent.model_dump() for agent in structured.agents],
        blueprint=blueprint,
        diagram=project_diagram(structured, blueprint),
    )


def platforms_for_buttons(structured: StructuredAutomation) -> list[dict[str, Any]]:
    """Credential-form entries: one per platform, with its test payload when one exists."""
    payloads = {name.lower(): payload for name, payload in structured.test_payloads.items()}
    buttons = []
    for platform in structured.platforms:
        payload = payloads.get(platform.name.lower())
        buttons.append({
            "name": platform.name,
            "credentials": [credential.model_dump() for credential in platform.credentials],
            "test_payload": payload.model_dump() if payload else None,
        })
    return buttons


def _build_prompt(message: str, history: list[dict[str, str]]) -> str:
    lines = [
        f"{turn.get('role', 'user')}: {turn.get('content', '')}"
        for turn in history
        if turn.get("content")
    ]
    lines.append(f"user: {message}")
    return "\n".join(lines)


def _row_id(row: dict[str, Any]) -> str | None:
    return str(row["id"]) if row.get("id") is not None else None
