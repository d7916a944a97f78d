"""Tests for the AI recommendation boundary and its providers (no network)."""

import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest

from config import LLMSettings
from core.exceptions import ExternalServiceError, NotFoundError, ValidationError
from dependencies import build_services
from schemas.pm import PMFrequency
from schemas.recommendation import RecommendationRequest
from services.recommendation_service import (
    OllamaProvider,
    OpenAIProvider,
    RecommendationService,
    get_llm_provider,
    render_machine_history,
    render_pm_schedule,
)
from tests.conftest import ScriptedProvider

HISTORY = "Machine MC-003 suffered three hydraulic pump failures in the last quarter."
SCHEDULE = "Quarterly hydraulic check, monthly lubrication and weekly electrical checks."


def _service(services, provider):
    return RecommendationService(provider, services.machines, services.breakdowns, services.pm)


class TestGenerateRecommendations:
    def test_success(self, services, provider):
        result = services.recommendations.generate_recommendations(HISTORY, SCHEDULE, 500)

        assert result.predicted_failures.startswith("Hydraulic pump")
        assert result.model_dump(by_alias=True)["recommendedActions"]
        prompt = provider.calls[0]["user"]
        assert HISTORY in prompt
        assert SCHEDULE in prompt
        assert "500" in prompt

    def test_provider_error_propagates_with_message(self, services):
        svc = _service(services, ScriptedProvider(error=ExternalServiceError("openai", "rate limited")))
        with pytest.raises(ExternalServiceError) as exc_info:
            svc.generate_recommendations(HISTORY, SCHEDULE, 500)
        assert exc_info.value.original_error == "rate limited"
        assert exc_info.value.status_code == 502

    def test_unexpected_error_without_message_is_unknown(self, services):
        svc = _service(services, ScriptedProvider(error=RuntimeError()))
        with pytest.raises(ExternalServiceError) as exc_info:
            svc.generate_recommendations(HISTORY, SCHEDULE, 500)
        assert exc_info.value.original_error == "unknown"

    def test_malformed_answer(self, services):
        svc = _service(services, ScriptedProvider(answer={"predictedFailures": "x"}))
        with pytest.raises(ExternalServiceError):
            svc.generate_recommendations(HISTORY, SCHEDULE, 500)

    def test_no_retry(self, services):
        provider = ScriptedProvider(error=ExternalServiceError("ollama", "connection refused"))
        with pytest.raises(ExternalServiceError):
            _service(services, provider).generate_recommendations(HISTORY, SCHEDULE, 500)
        assert len(provider.calls) == 1


class TestRecommendFromStore:
    def test_renders_history_and_schedule_for_machine(self, services, register, provider):
        register("MC-100", name="Moulding Machine 1")
        services.breakdowns.report_breakdown("MC-100", "Hydraulic pump failure")
        services.pm.schedule("MC-100", "Quarterly Hydraulic Check", PMFrequency.QUARTERLY, "Jane Smith", date(2024, 8, 1))

        services.recommendations.recommend(RecommendationRequest(machine_id="MC-100", cost_per_hour_downtime=250))

        prompt = provider.calls[0]["user"]
        assert "Hydraulic pump failure" in prompt
        assert "Quarterly Hydraulic Check" in prompt

    def test_short_text_rejected_before_calling_provider(self, services, provider):
        with pytest.raises(ValidationError):
            services.recommendations.recommend(
                RecommendationRequest(machine_history="too short", pm_schedule=SCHEDULE, cost_per_hour_downtime=10)
            )
        assert provider.calls == []

    def test_unknown_machine(self, services):
        with pytest.raises(NotFoundError):
            services.recommendations.recommend(RecommendationRequest(machine_id="NOPE", cost_per_hour_downtime=10))


class TestRendering:
    def test_history_without_breakdowns(self, services, register):
        machine = register("MC-100")
        text = render_machine_history(machine, [])
        assert "MC-100" in text
        assert "none recorded" in text

    def test_empty_schedule(self):
        assert "No preventive maintenance tasks" in render_pm_schedule([])


class TestOllamaProvider:
    def _provider(self, handler):
        settings = LLMSettings(provider="ollama", ollama_host="http://ollama.local")
        client = httpx.Client(base_url=settings.ollama_host, transport=httpx.MockTransport(handler))
        return OllamaProvider(settings, client=client)

    def test_parses_json_response(self):
        answer = {"predictedFailures": "a", "recommendedActions": "b", "potentialCostSavings": "c"}

        def handler(request):
            body = json.loads(request.content)
            assert request.url.path == "/api/generate"
            assert body["format"] == "json"
            assert body["stream"] is False
            return httpx.Response(200, json={"response": json.dumps(answer)})

        assert self._provider(handler).complete_json("sys", "user") == answer

    def test_http_error(self):
        provider = self._provider(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(ExternalServiceError) as exc_info:
            provider.complete_json("sys", "user")
        assert "503" in exc_info.value.original_error

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalServiceError) as exc_info:
            self._provider(handler).complete_json("sys", "user")
        assert "connection refused" in exc_info.value.original_error

    def test_non_json_answer(self):
        provider = self._provider(lambda request: httpx.Response(200, json={"response": "I think the pump"}))
        with pytest.raises(ExternalServiceError):
            provider.complete_json("sys", "user")

    def test_container_close_releases_client(self, settings):
        provider = self._provider(lambda request: httpx.Response(200, json={"response": "{}"}))
        container = build_services(settings, provider=provider)
        container.close()
        assert provider.client.is_closed


class TestOpenAIProvider:
    def test_missing_key(self):
        provider = OpenAIProvider(LLMSettings(provider="openai", openai_api_key=None))
        with pytest.raises(ExternalServiceError) as exc_info:
            provider.complete_json("sys", "user")
        assert "not configured" in exc_info.value.original_error

    def test_uses_json_response_format(self):
        client = Mock()
        content = json.dumps({"predictedFailures": "a", "recommendedActions": "b", "potentialCostSavings": "c"})
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )
        provider = OpenAIProvider(LLMSettings(openai_model="gpt-4o-mini"), client=client)

        assert provider.complete_json("sys", "user")["recommendedActions"] == "b"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o-mini"

    def test_api_error_wrapped(self):
        client = Mock()
        client.chat.completions.create.side_effect = openai.OpenAIError("quota exceeded")
        provider = OpenAIProvider(LLMSettings(), client=client)
        with pytest.raises(ExternalServiceError) as exc_info:
            provider.complete_json("sys", "user")
        assert exc_info.value.original_error == "quota exceeded"

    def test_close_releases_client(self):
        client = Mock()
        OpenAIProvider(LLMSettings(), client=client).close()
        client.close.assert_called_once_with()

    def test_close_without_client(self):
        OpenAIProvider(LLMSettings(provider="openai", openai_api_key=None)).close()


def test_factory_selects_provider():
    assert isinstance(get_llm_provider(LLMSettings(provider="ollama")), OllamaProvider)
    assert isinstance(get_llm_provider(LLMSettings(provider="openai")), OpenAIProvider)
