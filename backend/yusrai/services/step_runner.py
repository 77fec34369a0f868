"""
Blueprint step runner.

Walks a validated ExecutionBlueprint in array order, turns each step into an
HTTP request against the step's platform, and records per-step results.

Key concepts:
- A step's request comes from action.parameters (endpoint/url, headers, body),
  falling back to the originating workflow item.
- Steps without an endpoint are internal ("system") steps and are skipped.
- success_condition: "status == 200" style comparisons or a dotted path into
  the JSON response that must be truthy. Default: any 2xx status.
- error_handling.retry_attempts retries (tenacity, exponential backoff), then
  error_handling.on_failure decides: "stop" aborts the run, anything else
  records the error and moves on. Steps without error_handling stop the run.
- Each completed step's output is stored as variables["{step_id}_result"] and
  "{{name}}" placeholders in later steps resolve against those variables.
"""

from __future__ import annotations

import logging
import operator
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)
from tenacity.wait import wait_base

from yusrai.models.blueprint import BlueprintStep, ExecutionBlueprint
from yusrai.services.blueprint_extractor import validate_blueprint_for_diagram

logger = logging.getLogger(__name__)

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
BODYLESS_METHODS = {"GET", "DELETE"}
PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")
STATUS_CONDITION_RE = re.compile(r"^\s*(status|status_code)\s*(==|!=|<=|>=|<|>)\s*(\d{3})\s*$")

_COMPARATORS: dict[str, Callable[[int, int], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class StepExecutionResult(BaseModel):
    step_id: str
    step_name: str
    integration: str
    status: Literal["completed", "error", "skipped"]
    attempts: int = 0
    status_code: int | None = None
    output: Any = None
    error: str | None = None
    execution_time_ms: int = 0


class StepRunResult(BaseModel):
    success: bool
    aborted: bool = False
    step_results: list[StepExecutionResult]
    errors: dict[str, str]
    variables: dict[str, Any]
    total_execution_time_ms: int
    error: str | None = None


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@dataclass
class StepRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    timeout: float = 30.0


@dataclass
class StepResponse:
    status_code: int
    body: Any = None


Transport = Callable[[StepRequest], Awaitable[StepResponse]]


async def httpx_transport(request: StepRequest) -> StepResponse:
    """Send a StepRequest with httpx; JSON bodies are decoded when possible."""
    async with httpx.AsyncClient(timeout=request.timeout) as client:
        response = await client.request(
            request.method,
            request.url,
            headers=request.headers,
            json=request.json_body,
        )
    try:
        body = response.json()
    except ValueError:
        body = response.text
    return StepResponse(status_code=response.status_code, body=body)


def _step_timeout_seconds() -> float:
    return float(os.getenv("YUSRAI_STEP_TIMEOUT_SECONDS", "30"))


def _retry_backoff_seconds() -> float:
    return float(os.getenv("YUSRAI_RETRY_BACKOFF_SECONDS", "1.0"))


class StepFailure(Exception):
    """A step's request failed or its success condition did not hold."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class BlueprintStepRunner:
    def __init__(
        self,
        *,
        transport: Transport | None = None,
        credential_headers: Mapping[str, Mapping[str, str]] | None = None,
        backoff_seconds: float | None = None,
        timeout_seconds: float | None = None,
        retry_wait: wait_base | None = None,
    ):
        self._transport = transport or httpx_transport
        self._credential_headers = {
            name.lower(): dict(headers) for name, headers in (credential_headers or {}).items()
        }
        self._backoff = _retry_backoff_seconds() if backoff_seconds is None else backoff_seconds
        self._timeout = _step_timeout_seconds() if timeout_seconds is None else timeout_seconds
        if retry_wait is not None:
            self._retry_wait = retry_wait
        elif self._backoff > 0:
            self._retry_wait = wait_exponential(multiplier=self._backoff)
        else:
            self._retry_wait = wait_none()

    async def run(
        self,
        blueprint: ExecutionBlueprint,
        *,
        trigger_metadata: dict[str, Any] | None = None,
    ) -> StepRunResult:
        """Execute every step in order and return the execution context."""
        start_time = time.perf_counter()
        variables: dict[str, Any] = {"trigger": trigger_metadata or {}}
        step_results: list[StepExecutionResult] = []
        errors: dict[str, str] = {}

        if not validate_blueprint_for_diagram(blueprint):
            return StepRunResult(
                success=False,
                aborted=True,
                step_results=[],
                errors={},
                variables=variables,
                total_execution_time_ms=0,
                error="Blueprint has no executable steps",
            )

        for step in blueprint.steps:
            result = await self._run_step(step, variables)
            step_results.append(result)

            if result.status == "completed":
                variables[f"{step.id}_result"] = result.output
                continue
            if result.status == "skipped":
                continue

            errors[step.id] = result.error or "Unknown error"
            on_failure = _error_handling(step).get("on_failure", "stop")
            if on_failure == "stop":
                logger.error("Step %s failed; stopping run: %s", step.id, result.error)
                return StepRunResult(
                    success=False,
                    aborted=True,
                    step_results=step_results,
                    errors=errors,
                    variables=variables,
                    total_execution_time_ms=_elapsed_ms(start_time),
                    error=f"Step '{step.name}' failed: {result.error}",
                )
            logger.warning(
                "Step %s failed (on_failure=%s); continuing: %s", step.id, on_failure, result.error
            )

        return StepRunResult(
            success=not errors,
            step_results=step_results,
            errors=errors,
            variables=variables,
            total_execution_time_ms=_elapsed_ms(start_time),
        )

    async def _run_step(self, step: BlueprintStep, variables: dict[str, Any]) -> StepExecutionResult:
        step_start = time.perf_counter()
        request = self._build_request(step, variables)
        if request is None:
            logger.debug("Step %s has no endpoint; skipping", step.id)
            return StepExecutionResult(
                step_id=step.id,
                step_name=step.name,
                integration=step.action.integration,
                status="skipped",
            )

        max_attempts = 1 + max(0, int(_error_handling(step).get("retry_attempts") or 0))
        condition = _success_condition(step)

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "Step %s attempt %d/%d failed: %s",
                step.id,
                retry_state.attempt_number,
                max_attempts,
                retry_state.outcome.exception() if retry_state.outcome else None,
            )

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception_type(StepFailure),
                before_sleep=log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await self._send(request)
                    _check_success(condition, response)
        except StepFailure as exc:
            return StepExecutionResult(
                step_id=step.id,
                step_name=step.name,
                integration=step.action.integration,
                status="error",
                attempts=attempts,
                status_code=exc.status_code,
                output=exc.body,
                error=str(exc),
                execution_time_ms=_elapsed_ms(step_start),
            )

        return StepExecutionResult(
            step_id=step.id,
            step_name=step.name,
            integration=step.action.integration,
            status="completed",
            attempts=attempts,
            status_code=response.status_code,
            output=response.body,
            execution_time_ms=_elapsed_ms(step_start),
        )

    async def _send(self, request: StepRequest) -> StepResponse:
        try:
            return await self._transport(request)
        except httpx.HTTPError as exc:
            raise StepFailure(f"Request error: {exc}") from exc

    def _build_request(self, step: BlueprintStep, variables: dict[str, Any]) -> StepRequest | None:
        params = step.action.parameters
        original = step.original_workflow_data or {}
        extras = step.model_extra or {}

        url = (
            params.get("endpoint")
            or params.get("url")
            or extras.get("endpoint")
            or original.get("endpoint")
        )
        if not url:
            return None

        method = step.action.method.upper()
        if method not in HTTP_METHODS:
            method = str(params.get("http_method") or "POST").upper()

        headers: dict[str, str] = {}
        for source in (original.get("headers"), extras.get("headers"), params.get("headers")):
            if isinstance(source, dict):
                headers.update({str(k): str(v) for k, v in source.items()})
        headers.update(self._credential_headers.get(step.action.integration.lower(), {}))

        body = None
        if method not in BODYLESS_METHODS:
            body = (
                params.get("body")
                or params.get("data_mapping")
                or extras.get("data_mapping")
                or original.get("data_mapping")
            )

        return StepRequest(
            method=method,
            url=_resolve_placeholders(url, variables),
            headers=_resolve_placeholders(headers, variables),
            json_body=_resolve_placeholders(body, variables),
            timeout=self._timeout,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_handling(step: BlueprintStep) -> dict[str, Any]:
    extras = step.model_extra or {}
    original = step.original_workflow_data or {}
    handling = extras.get("error_handling") or original.get("error_handling")
    return handling if isinstance(handling, dict) else {}


def _success_condition(step: BlueprintStep) -> str | None:
    extras = step.model_extra or {}
    original = step.original_workflow_data or {}
    condition = extras.get("success_condition") or original.get("success_condition")
    return condition if isinstance(condition, str) and condition.strip() else None


def _check_success(condition: str | None, response: StepResponse) -> None:
    if condition is None:
        if not 200 <= response.status_code < 300:
            raise StepFailure(f"HTTP {response.status_code}", response.status_code, response.body)
        return

    match = STATUS_CONDITION_RE.match(condition)
    if match:
        _, op, expected = match.groups()
        if not _COMPARATORS[op](response.status_code, int(expected)):
            raise StepFailure(
                f"Success condition '{condition}' not met (HTTP {response.status_code})",
                response.status_code,
                response.body,
            )
        return

    path = condition.strip()
    if path.startswith("response."):
        path = path[len("response."):]
    if not _lookup(response.body, path):
        raise StepFailure(
            f"Success condition '{condition}' not met", response.status_code, response.body
        )


def _lookup(value: Any, dotted_path: str) -> Any:
    for part in dotted_path.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _resolve_placeholders(value: Any, variables: dict[str, Any]) -> Any:
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            resolved = _lookup(variables, match.group(1))
            return match.group(0) if resolved is None else str(resolved)
        return PLACEHOLDER_RE.sub(replace, value)
    if isinstance(value, dict):
        return {k: _resolve_placeholders(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_placeholders(v, variables) for v in value]
    return value


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
