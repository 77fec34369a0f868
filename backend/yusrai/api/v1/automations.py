"""
Automation API endpoints.

Every route works on one automation owned by the authenticated user:
- POST /automations/{id}/responses                 process raw LLM text
- POST /automations/{id}/chat                      ask Gemini, then process the reply
- GET  /automations/{id}/blueprint                 latest blueprint, diagram and buttons
- GET  /automations/{id}/readiness                 credential + agent go/no-go
- PUT  /automations/{id}/agents/{name}/decision    record add/dismiss for an agent
- POST /automations/{id}/execute                   dispatch when ready

Readiness is recomputed on every call; nothing here trusts a stored flag.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from yusrai.auth.dependencies import User, get_current_user
from yusrai.db.automation_store import AutomationStore, StoreError, get_automation_store
from yusrai.models.readiness import AgentDecisionStatus, DispatchResult, ExecutionReadiness
from yusrai.services.automation_pipeline import (
    AutomationPipeline,
    AutomationRequestError,
    PipelineResult,
)
from yusrai.services.blueprint_extractor import validate_blueprint_for_diagram
from yusrai.services.execution_dispatcher import (
    ExecutionBackend,
    ExecutionDispatcher,
    SupabaseExecutionBackend,
)
from yusrai.services.readiness import ExecutionReadinessCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automations", tags=["automations"])


# Request Models
class ProcessResponseRequest(BaseModel):
    response_text: str
    chat_message_id: Optional[Union[int, str]] = None


class ChatTurn(BaseModel):
    role: str = "user"
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    chat_message_id: Optional[Union[int, str]] = None
    history: List[ChatTurn] = []


class AgentDecisionRequest(BaseModel):
    decision: AgentDecisionStatus


class ExecuteRequest(BaseModel):
    trigger_metadata: Dict[str, Any] = {}
    executable_code: Optional[str] = None


# Dependencies
def get_execution_backend() -> ExecutionBackend:
    return SupabaseExecutionBackend()


def get_pipeline(store: AutomationStore = Depends(get_automation_store)) -> AutomationPipeline:
    return AutomationPipeline(store)


def get_coordinator(
    store: AutomationStore = Depends(get_automation_store),
) -> ExecutionReadinessCoordinator:
    return ExecutionReadinessCoordinator(store)


def get_dispatcher(
    coordinator: ExecutionReadinessCoordinator = Depends(get_coordinator),
    backend: ExecutionBackend = Depends(get_execution_backend),
) -> ExecutionDispatcher:
    return ExecutionDispatcher(coordinator, backend)


@router.post("/{automation_id}/responses", response_model=PipelineResult)
async def process_response(
    automation_id: str,
    request: ProcessResponseRequest,
    user: User = Depends(get_current_user),
    pipeline: AutomationPipeline = Depends(get_pipeline),
):
    """Parse, extract, project and store one LLM reply."""
    return await pipeline.process_response(
        request.response_text,
        user.sub,
        automation_id,
        request.chat_message_id,
    )


@router.post("/{automation_id}/chat", response_model=PipelineResult)
async def chat(
    automation_id: str,
    request: ChatRequest,
    user: User = Depends(get_current_user),
    pipeline: AutomationPipeline = Depends(get_pipeline),
):
    try:
        return await pipeline.request_automation(
            request.message,
            user.sub,
            automation_id,
            chat_message_id=request.chat_message_id,
            history=[turn.model_dump() for turn in request.history],
        )
    except AutomationRequestError as e:
        raise HTTPException(status_code=502, detail=f"Automation assistant unavailable: {str(e)}")


@router.get("/{automation_id}/blueprint", response_model=PipelineResult)
async def get_blueprint(
    automation_id: str,
    user: User = Depends(get_current_user),
    pipeline: AutomationPipeline = Depends(get_pipeline),
):
    try:
        result = await pipeline.recover(automation_id, user.sub)
    except StoreError as e:
        logger.exception("Failed to recover automation %s", automation_id)
        raise HTTPException(status_code=500, detail=f"Failed to load automation: {str(e)}")
    if result is None:
        raise HTTPException(status_code=404, detail="No stored response for this automation")
    return result


@router.get("/{automation_id}/readiness", response_model=ExecutionReadiness)
async def get_readiness(
    automation_id: str,
    user: User = Depends(get_current_user),
    coordinator: ExecutionReadinessCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_execution_readiness(automation_id, user.sub)


@router.put("/{automation_id}/agents/{agent_name}/decision", response_model=ExecutionReadiness)
async def record_agent_decision(
    automation_id: str,
    agent_name: str,
    request: AgentDecisionRequest,
    user: User = Depends(get_current_user),
    store: AutomationStore = Depends(get_automation_store),
    coordinator: ExecutionReadinessCoordinator = Depends(get_coordinator),
):
    """Record the user's choice and return the refreshed readiness."""
    try:
        await store.record_agent_decision(automation_id, agent_name, request.decision, user.sub)
    except StoreError as e:
        logger.exception("Failed to record decision for agent %s", agent_name)
        raise HTTPException(status_code=500, detail=f"Failed to record decision: {str(e)}")
    return await coordinator.get_execution_readiness(automation_id, user.sub)


@router.post("/{automation_id}/execute", response_model=DispatchResult)
async def execute_automation(
    automation_id: str,
    request: ExecuteRequest,
    user: User = Depends(get_current_user),
    pipeline: AutomationPipeline = Depends(get_pipeline),
    dispatcher: ExecutionDispatcher = Depends(get_dispatcher),
):
    try:
        recovered = await pipeline.recover(automation_id, user.sub)
    except StoreError as e:
        logger.exception("Failed to recover automation %s", automation_id)
        raise HTTPException(status_code=500, detail=f"Failed to load automation: {str(e)}")
    if recovered is None:
        raise HTTPException(status_code=404, detail="No stored response for this automation")

    result = await dispatcher.dispatch_when_ready(
        automation_id,
        user.sub,
        recovered.blueprint,
        request.executable_code,
        request.trigger_metadata,
    )
    refused = not validate_blueprint_for_diagram(recovered.blueprint) or (
        result.readiness is not None and not result.readiness.is_ready
    )
    if refused:
        raise HTTPException(
            status_code=409,
            detail={
                "error": result.error,
                "missing_credentials": result.readiness.missing_credentials if result.readiness else [],
                "pending_agents": result.readiness.pending_agents if result.readiness else [],
            },
        )
    return result
