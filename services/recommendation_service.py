"""
AI-Powered Predictive Maintenance Recommendations

Sends a machine's history, its PM schedule and the hourly cost of
downtime to an LLM and returns three free-text report sections:
predicted failures, recommended actions and potential cost savings.

Supports two providers, selected by LLM_PROVIDER:
- OpenAI (hosted)
- Local Ollama (air-gapped/maximum privacy)

The model is opaque. Any provider failure, including a malformed
answer, surfaces as ExternalServiceError; nothing is retried.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

import httpx
import openai
from pydantic import ValidationError as PydanticValidationError

from config import LLMSettings
from core.exceptions import ExternalServiceError, ValidationError
from logger import get_logger, log_external_call
from schemas.breakdown import BreakdownEvent, BreakdownFilter
from schemas.machine import Machine
from schemas.pm import PMTask
from schemas.recommendation import RecommendationRequest, RecommendationResult
from services.breakdown_service import BreakdownService
from services.machine_service import MachineService
from services.pm_service import PMService
from services.time_metrics import format_duration

logger = get_logger(__name__)

MIN_TEXT_LENGTH = 50


# =============================================================================
# SYSTEM PROMPT - Maintenance Expert Context
# =============================================================================
RECOMMENDATION_SYSTEM_PROMPT = """You are an AI assistant that analyzes machine history and preventive maintenance schedules to predict potential machine failures and recommend proactive maintenance.

Analyze the provided machine history, current preventive maintenance schedule, and cost of downtime to identify potential cost-saving opportunities by preventing failures.

RESPONSE FORMAT - Always respond with valid JSON:
{
    "predictedFailures": "Describe potential machine failures",
    "recommendedActions": "Proactive maintenance recommendations to prevent these failures",
    "potentialCostSavings": "Estimate of potential cost savings from implementing the recommended actions"
}

Each value is a well-structured report section in plain text."""


def build_prompt(machine_history: str, pm_schedule: str, cost_per_hour_downtime: float) -> str:
    return (
        f"Machine History: {machine_history}\n"
        f"Preventive Maintenance Schedule: {pm_schedule}\n"
        f"Cost of Downtime per Hour: {cost_per_hour_downtime:g}\n"
    )


# =============================================================================
# ABSTRACT PROVIDER INTERFACE
# =============================================================================
class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "llm"

    @abstractmethod
    def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        """Return the model's answer parsed as a JSON object.

        Raises:
            ExternalServiceError: On any transport, API or parsing failure.
        """

    def close(self) -> None:
        """Release network resources held by the provider."""


def _parse_json(service: str, content: Optional[str]) -> Dict[str, Any]:
    if not content:
        raise ExternalServiceError(service, "empty response")
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise ExternalServiceError(service, f"response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ExternalServiceError(service, "response is not a JSON object")
    return parsed


# =============================================================================
# OPENAI PROVIDER
# =============================================================================
class OpenAIProvider(LLMProvider):
    """OpenAI chat completions with JSON output."""

    name = "openai"

    def __init__(self, settings: LLMSettings, client: Optional[openai.OpenAI] = None):
        self.settings = settings
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        self.available = client is not None or bool(api_key)
        self.client = client
        if self.client is None and api_key:
            self.client = openai.OpenAI(api_key=api_key, timeout=settings.timeout_seconds, max_retries=0)

    def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        if not self.available:
            raise ExternalServiceError(self.name, "OpenAI API key not configured")

        start = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
            )
        except openai.OpenAIError as e:
            log_external_call(self.name, "POST", "https://api.openai.com/v1/chat/completions",
                              duration_ms=round((time.perf_counter() - start) * 1000, 2),
                              error=str(e) or type(e).__name__)
            raise ExternalServiceError(self.name, str(e)) from e

        log_external_call(self.name, "POST", "https://api.openai.com/v1/chat/completions",
                          status_code=200, duration_ms=round((time.perf_counter() - start) * 1000, 2))
        if not response.choices:
            raise ExternalServiceError(self.name, "no choices returned")
        return _parse_json(self.name, response.choices[0].message.content)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


# =============================================================================
# OLLAMA PROVIDER (Local/Private)
# =============================================================================
class OllamaProvider(LLMProvider):
    """Local Ollama provider for maximum privacy."""

    name = "ollama"

    def __init__(self, settings: LLMSettings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.client = client or httpx.Client(base_url=settings.ollama_host, timeout=settings.timeout_seconds)

    def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        url = f"{self.settings.ollama_host}/api/generate"
        start = time.perf_counter()
        try:
            response = self.client.post(
                "/api/generate",
                json={
                    "model": self.settings.ollama_model,
                    "prompt": f"{system_prompt}\n\n{user_prompt}\n\nRespond with JSON only:",
                    "stream": False,
                    "format": "json",
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            log_external_call(self.name, "POST", url, e.response.status_code,
                              round((time.perf_counter() - start) * 1000, 2), error=str(e))
            raise ExternalServiceError(self.name, f"Ollama returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            log_external_call(self.name, "POST", url, duration_ms=round((time.perf_counter() - start) * 1000, 2),
                              error=str(e) or type(e).__name__)
            raise ExternalServiceError(self.name, str(e)) from e

        log_external_call(self.name, "POST", url, response.status_code, round((time.perf_counter() - start) * 1000, 2))
        return _parse_json(self.name, body.get("response") if isinstance(body, dict) else None)

    def close(self) -> None:
        self.client.close()


# =============================================================================
# FACTORY FUNCTION - Get Configured Provider
# =============================================================================
def get_llm_provider(settings: LLMSettings) -> LLMProvider:
    """Get the configured LLM provider."""
    if settings.provider == "ollama":
        return OllamaProvider(settings)
    return OpenAIProvider(settings)


# =============================================================================
# CONTEXT RENDERING
# =============================================================================
def render_machine_history(machine: Machine, events: Iterable[BreakdownEvent]) -> str:
    """Plain-text machine history for the prompt."""
    lines = [
        f"Machine {machine.id} ({machine.name}, model {machine.model})",
        f"Status: {machine.status.value}",
        f"Strokes: {machine.stroke_count} of {machine.utilization_limit} limit",
        f"Health score: {machine.health_score}/100, oil level: {machine.oil_level}%",
        f"Last serviced: {machine.last_serviced.date().isoformat() if machine.last_serviced else 'never'}",
        "Breakdown history:",
    ]
    rows = 0
    for e in events:
        duration = format_duration(e.downtime_end - e.downtime_start) if e.downtime_end else "ongoing"
        lines.append(
            f"- {e.downtime_start.date().isoformat()}: {e.root_cause} "
            f"({e.status.value}, downtime {duration}, recurrence {e.recurrence})"
        )
        rows += 1
    if rows == 0:
        lines.append("- none recorded")
    return "\n".join(lines)


def render_pm_schedule(tasks: Iterable[PMTask]) -> str:
    """Plain-text PM schedule for the prompt."""
    lines = []
    for t in tasks:
        lines.append(
            f"- {t.activity} ({t.frequency.value}), due {t.due_date.date().isoformat()}, "
            f"status {t.status.value}, assigned to {t.assignee}"
        )
    if not lines:
        return "No preventive maintenance tasks are currently scheduled for this machine."
    return "Preventive maintenance tasks:\n" + "\n".join(lines)


# =============================================================================
# SERVICE
# =============================================================================
class RecommendationService:
    """Boundary to the recommendation model."""

    def __init__(
        self,
        provider: LLMProvider,
        machines: MachineService,
        breakdowns: BreakdownService,
        pm: PMService,
    ):
        self.provider = provider
        self.machines = machines
        self.breakdowns = breakdowns
        self.pm = pm
        self.logger = logger.bind(service="RecommendationService")

    def generate_recommendations(
        self,
        machine_history: str,
        pm_schedule: str,
        cost_per_hour_downtime: float,
    ) -> RecommendationResult:
        """Ask the model for a recommendation report.

        Raises:
            ExternalServiceError: Provider failure or a malformed answer.
        """
        prompt = build_prompt(machine_history, pm_schedule, cost_per_hour_downtime)
        try:
            raw = self.provider.complete_json(RECOMMENDATION_SYSTEM_PROMPT, prompt)
        except ExternalServiceError as e:
            self.logger.warning("Recommendation failed", provider=self.provider.name, error=e.original_error)
            raise
        except Exception as e:
            self.logger.warning("Recommendation failed", provider=self.provider.name, error=str(e))
            raise ExternalServiceError(self.provider.name, str(e)) from e

        try:
            result = RecommendationResult.model_validate(raw)
        except PydanticValidationError as e:
            missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
            raise ExternalServiceError(self.provider.name, f"malformed response (fields: {missing})") from e

        self.logger.info("Recommendation generated", provider=self.provider.name)
        return result

    def recommend(self, request: RecommendationRequest) -> RecommendationResult:
        """Fill empty text fields from the store, validate, and generate.

        Raises:
            NotFoundError: Unknown machine_id.
            ValidationError: History or schedule shorter than MIN_TEXT_LENGTH.
            ExternalServiceError: Provider failure.
        """
        history = request.machine_history
        schedule = request.pm_schedule
        if request.machine_id:
            machine = self.machines.get_machine(request.machine_id)
            if not history:
                events = self.breakdowns.list_breakdowns(BreakdownFilter(machine_id=machine.id))
                history = render_machine_history(machine, events)
            if not schedule:
                tasks = [t for t in self.pm.store.list_tasks() if t.machine_id == machine.id]
                schedule = render_pm_schedule(sorted(tasks, key=lambda t: t.due_date))

        if len(history) < MIN_TEXT_LENGTH:
            raise ValidationError("machine_history", f"must be at least {MIN_TEXT_LENGTH} characters")
        if len(schedule) < MIN_TEXT_LENGTH:
            raise ValidationError("pm_schedule", f"must be at least {MIN_TEXT_LENGTH} characters")

        return self.generate_recommendations(history, schedule, request.cost_per_hour_downtime)
