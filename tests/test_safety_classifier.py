"""
Tests for the safety classifier.
The semantic screen must fail closed on every kind of failure.
"""
import asyncio

import pytest

from careplan.schemas.plan_content import RiskLevel
from careplan.services.exceptions import (
    BackendTimeoutError,
    BackendUnavailableError,
    ModelError,
    ValidationError,
)
from careplan.services.safety_classifier import (
    FAILED_CHECK_FLAG,
    SafetyClassifier,
    scan_for_keywords,
)


class TestKeywordScreen:

    def test_detects_patterns_case_insensitive(self):
        flags = scan_for_keywords("I have thought about SUICIDE and want to end my life")

        assert "Detected keyword pattern: suicide" in flags
        assert "Detected keyword pattern: end my life" in flags

    def test_clean_transcript_has_no_flags(self):
        assert scan_for_keywords("We talked about sleep and work stress.") == []

    @pytest.mark.asyncio
    async def test_keyword_hit_blocks_without_model_call(self, fake_model, settings):
        model = fake_model(responses=[{"riskLevel": "LOW", "reasoning": "fine"}])
        classifier = SafetyClassifier(model, settings)

        result = await classifier.classify("He said he wants to hurt others.")

        assert result.safe_to_generate is False
        assert result.risk_level == RiskLevel.HIGH
        assert result.risk_flags == ["Detected keyword pattern: hurt others"]
        assert model.calls == []


class TestSemanticScreen:

    @pytest.mark.asyncio
    async def test_low_risk_is_safe_without_flags(self, fake_model, settings):
        classifier = SafetyClassifier(fake_model(responses=[{"riskLevel": "LOW", "reasoning": "Daily stressors"}]), settings)

        result = await classifier.classify("Work has been busy.")

        assert result.safe_to_generate is True
        assert result.risk_level == RiskLevel.LOW
        assert result.risk_flags == []
        assert result.reasoning == "Daily stressors"

    @pytest.mark.asyncio
    async def test_medium_risk_is_safe_but_flagged(self, fake_model, settings):
        classifier = SafetyClassifier(fake_model(responses=[{"riskLevel": "MEDIUM", "reasoning": "Distress"}]), settings)

        result = await classifier.classify("Feeling very low lately.")

        assert result.safe_to_generate is True
        assert result.risk_flags == ["LLM Classification: MEDIUM"]

    @pytest.mark.asyncio
    async def test_high_risk_blocks(self, fake_model, settings):
        classifier = SafetyClassifier(fake_model(responses=[{"riskLevel": "HIGH", "reasoning": "Plan described"}]), settings)

        result = await classifier.classify("Client described a detailed plan.")

        assert result.safe_to_generate is False
        assert result.risk_level == RiskLevel.HIGH
        assert result.risk_flags == ["LLM Classification: HIGH"]

    @pytest.mark.asyncio
    async def test_missing_reasoning_gets_placeholder(self, fake_model, settings):
        classifier = SafetyClassifier(fake_model(responses=[{"riskLevel": "LOW"}]), settings)

        result = await classifier.classify("Work has been busy.")

        assert result.reasoning == "No reasoning provided"

    @pytest.mark.asyncio
    async def test_transcript_is_sent_as_user_prompt(self, fake_model, settings):
        model = fake_model(responses=[{"riskLevel": "LOW", "reasoning": "ok"}])

        await SafetyClassifier(model, settings).classify("Work has been busy.")

        system_prompt, user_prompt = model.calls[0]
        assert "safety content moderator" in system_prompt
        assert user_prompt == "Work has been busy."


class TestFailClosed:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        BackendTimeoutError(300000),
        BackendUnavailableError("openai_compat"),
        ModelError("Model output is not valid JSON"),
        RuntimeError("unexpected"),
    ])
    async def test_upstream_failure_fails_closed(self, fake_model, settings, error):
        classifier = SafetyClassifier(fake_model(error=error), settings)

        result = await classifier.classify("Work has been busy.")

        assert result.safe_to_generate is False
        assert result.risk_level == RiskLevel.HIGH
        assert result.risk_flags == [FAILED_CHECK_FLAG]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        {"riskLevel": "SEVERE", "reasoning": "?"},
        {"reasoning": "no level"},
        {"riskLevel": None},
    ])
    async def test_unknown_risk_level_fails_closed(self, fake_model, settings, response):
        classifier = SafetyClassifier(fake_model(responses=[response]), settings)

        result = await classifier.classify("Work has been busy.")

        assert result.safe_to_generate is False
        assert result.risk_level == RiskLevel.HIGH

    @pytest.mark.asyncio
    async def test_cancellation_is_not_swallowed(self, fake_model, settings):
        classifier = SafetyClassifier(fake_model(error=asyncio.CancelledError()), settings)

        with pytest.raises(asyncio.CancelledError):
            await classifier.classify("Work has been busy.")


class TestInputValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transcript", ["", "   \n"])
    async def test_blank_transcript_rejected(self, settings, transcript):
        with pytest.raises(ValidationError):
            await SafetyClassifier(None, settings).classify(transcript)

    @pytest.mark.asyncio
    async def test_mock_backend_passes_clean_transcript(self, settings):
        result = await SafetyClassifier(None, settings).classify("Work has been busy.")

        assert result.safe_to_generate is True
        assert result.risk_level == RiskLevel.LOW
