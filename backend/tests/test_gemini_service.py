"""
Portable Backend — Gemini Service Unit Tests (Mocked)
=======================================================

What:  GeminiService prompts/parsing with a mocked SDK, plus the circuit breaker.
Why:   Tests must not make real API calls (cost, network, flakiness).

What we test:
    ✅ Content type parsing, unknown types, missing confidence
    ✅ Summary and topic extraction (list and {"topics": [...]} shapes)
    ✅ Circuit breaker state machine and fail-fast behavior
    ✅ API failures surface as LLMServiceError
    ❌ Real API calls
"""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from portable.exceptions import CircuitBreakerOpenError, LLMServiceError
from portable.services.gemini_service import (
    CircuitBreaker,
    GeminiService,
    normalize_topics,
    parse_json_response,
)


def _service_returning(*texts):
    """GeminiService whose model answers with `texts` in order."""
    service = GeminiService()
    responses = [MagicMock(text=text) for text in texts]
    service.model = MagicMock()
    service.model.generate_content_async = AsyncMock(side_effect=responses)
    return service


class TestCircuitBreaker:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold_and_rejects(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)
        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_half_open_failure_reopens(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()
        cb.record_failure()
        assert cb.state == "open"

    def test_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        cb.record_success()
        assert cb.state == "closed"
        assert cb.failure_count == 0


class TestResponseParsing:

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_json_response('```json\n["x", "y"]\n```') == ["x", "y"]

    def test_invalid_json_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_json_response("not json")

    def test_normalize_topics_shapes(self):
        assert normalize_topics(["Design", "design", " Travel  Tips ", 3, ""]) == ["design", "travel tips"]
        assert normalize_topics({"topics": ["cooking"]}) == ["cooking"]
        assert normalize_topics({"other": 1}) == []
        assert normalize_topics("cooking") == []

    def test_normalize_topics_caps_at_five(self):
        assert len(normalize_topics([f"t{i}" for i in range(8)])) == 5


class TestGeminiServiceMocked:

    @pytest.mark.asyncio
    async def test_detect_content_type(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning(
                '{"contentType": "tutorial", "confidence": 0.92, "reasoning": "Step-by-step"}'
            )
            result = await service.detect_content_type(
                "https://example.com/how-to", "How to bake bread", None, "x" * 5000
            )

        assert result.content_type == "tutorial"
        assert result.confidence == pytest.approx(0.92)
        assert result.reasoning == "Step-by-step"

        prompt = service.model.generate_content_async.call_args.args[0]
        assert "x" * 2000 in prompt
        assert "x" * 2001 not in prompt
        config = service.model.generate_content_async.call_args.kwargs["generation_config"]
        assert config["response_mime_type"] == "application/json"

    @pytest.mark.asyncio
    async def test_unknown_type_and_missing_confidence(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning('{"contentType": "podcast"}')
            result = await service.detect_content_type("https://e.com", "T", None, None)

        assert result.content_type == "other"
        assert result.confidence == 0.5

    @pytest.mark.asyncio
    async def test_unparseable_detection_degrades(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning("I think it is a blog post")
            result = await service.detect_content_type("https://e.com", "T", None, None)

        assert result.content_type == "other"
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_generate_summary(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning("  A short summary.  ")
            summary = await service.generate_summary("Title", "y" * 10000)

        assert summary == "A short summary."
        prompt = service.model.generate_content_async.call_args.args[0]
        assert "y" * 4000 in prompt
        assert "y" * 4001 not in prompt

    @pytest.mark.asyncio
    async def test_extract_topics(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning('{"topics": ["Productivity", "focus"]}')
            topics = await service.extract_topics("Title", "content")

        assert topics == ["productivity", "focus"]

    @pytest.mark.asyncio
    async def test_extract_topics_bad_json(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning("productivity, focus")
            assert await service.extract_topics("Title", "content") == []

    @pytest.mark.asyncio
    async def test_api_failure_raises_llm_error_and_counts(self):
        with patch("portable.services.gemini_service.genai"):
            service = GeminiService()
            service.model = MagicMock()
            service.model.generate_content_async = AsyncMock(side_effect=RuntimeError("quota"))

            with pytest.raises(LLMServiceError):
                await service.generate_summary("Title", "content")

        assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self):
        with patch("portable.services.gemini_service.genai"):
            service = _service_returning("never used")
            for _ in range(service.circuit_breaker.failure_threshold):
                service.circuit_breaker.record_failure()

            with pytest.raises(CircuitBreakerOpenError):
                await service.extract_topics("Title", "content")

        service.model.generate_content_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health_check_lists_models(self):
        with patch("portable.services.gemini_service.genai") as mock_genai:
            model = MagicMock()
            model.name = "models/gemini-1.5-flash"
            mock_genai.list_models.return_value = [model]
            service = GeminiService()
            assert await service.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_lists_models_off_the_event_loop(self):
        with patch("portable.services.gemini_service.genai") as mock_genai, \
             patch(
                 "portable.services.gemini_service.asyncio.to_thread",
                 new=AsyncMock(wraps=asyncio.to_thread),
             ) as to_thread:
            model = MagicMock()
            model.name = "models/gemini-1.5-flash"
            mock_genai.list_models.return_value = [model]
            service = GeminiService()
            assert await service.health_check() is True

        to_thread.assert_awaited_once()
        mock_genai.list_models.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_health_check_failure_returns_false(self):
        with patch("portable.services.gemini_service.genai") as mock_genai:
            mock_genai.list_models.side_effect = RuntimeError("unreachable")
            service = GeminiService()
            assert await service.health_check() is False
