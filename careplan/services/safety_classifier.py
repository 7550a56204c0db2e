"""
Safety gate run before any plan content is generated.

Two screens: a fast keyword scan, then a semantic classification by the
configured model. Any failure of the semantic screen FAILS CLOSED (HIGH risk,
generation refused).
PHI-safe: NEVER log the transcript or the model's reasoning.
"""
import asyncio
import re
from typing import Optional

from careplan.core.config import Settings, get_settings
from careplan.core.logging import get_safe_logger
from careplan.schemas.plan_content import RiskLevel
from careplan.schemas.safety import SafetyCheckResult
from careplan.services.exceptions import UpstreamGenerationError, ValidationError
from careplan.services.llm_client import ChatModel, build_chat_model

logger = get_safe_logger(__name__)


HIGH_RISK_PATTERNS = [
    re.compile(r"suicide", re.IGNORECASE),
    re.compile(r"kill myself", re.IGNORECASE),
    re.compile(r"end my life", re.IGNORECASE),
    re.compile(r"hurt others", re.IGNORECASE),
    re.compile(r"bomb", re.IGNORECASE),
    re.compile(r"terrorist", re.IGNORECASE),
]

FAILED_CHECK_FLAG = "Automated safety check failed"
FAILED_CHECK_REASONING = "Automated safety check failed. Marking as high risk for manual review."

SAFETY_SYSTEM_PROMPT = """You are a safety content moderator for a mental health app.
Analyze the following transcript for risk of self-harm, violence, or abuse.
Classify risk as:
- HIGH: Immediate threat to life or safety (e.g., active suicide plan, intent to harm others).
- MEDIUM: Concerning themes but no immediate threat (e.g., vague suicidal ideation without plan, severe distress).
- LOW: No safety concerns found (e.g., general anxiety, sadness, daily stressors).

Return ONLY a JSON object with the keys "riskLevel" (LOW/MEDIUM/HIGH) and "reasoning"."""


def scan_for_keywords(transcript: str) -> list[str]:
    """Flags for every high-risk pattern found in the transcript."""
    return [
        f"Detected keyword pattern: {pattern.pattern}"
        for pattern in HIGH_RISK_PATTERNS
        if pattern.search(transcript)
    ]


class SafetyClassifier:
    """
    Scores a transcript for risk.

    model=None means the mock backend: only the keyword screen runs and a
    clean transcript is LOW risk. Settings refuse the mock backend in prod.
    """

    def __init__(self, model: Optional[ChatModel] = None, settings: Optional[Settings] = None):
        self._model = model
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SafetyClassifier":
        settings = settings or get_settings()
        return cls(build_chat_model(settings.effective_safety_model, settings), settings)

    async def classify(self, transcript: str) -> SafetyCheckResult:
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is empty")

        keyword_flags = scan_for_keywords(transcript)
        if keyword_flags:
            logger.info("Keyword screen blocked generation", risk_level=RiskLevel.HIGH.value,
                        flag_count=len(keyword_flags))
            return SafetyCheckResult.blocked(
                keyword_flags, "Immediate keyword match for high-risk content."
            )

        if self._model is None:
            return SafetyCheckResult(
                safe_to_generate=True,
                risk_level=RiskLevel.LOW,
                risk_flags=[],
                reasoning="Keyword screen passed (mock backend)",
            )

        risk_level, reasoning = await self._classify_with_model(transcript)
        if risk_level is None:
            return SafetyCheckResult.blocked([FAILED_CHECK_FLAG], FAILED_CHECK_REASONING)

        flags = [] if risk_level == RiskLevel.LOW else [f"LLM Classification: {risk_level.value}"]
        return SafetyCheckResult(
            safe_to_generate=risk_level != RiskLevel.HIGH,
            risk_level=risk_level,
            risk_flags=flags,
            reasoning=reasoning,
        )

    async def _classify_with_model(self, transcript: str) -> tuple[Optional[RiskLevel], Optional[str]]:
        """(risk level, reasoning), or (None, None) when the check could not be completed."""
        try:
            result = await self._model.complete_json(
                SAFETY_SYSTEM_PROMPT, transcript, max_tokens=256, temperature=0.0
            )
        except asyncio.CancelledError:
            raise
        except UpstreamGenerationError as exc:
            logger.warning("Safety classification failed; failing closed",
                           error_code=exc.error_code.value)
            return None, None
        except Exception as exc:
            logger.error("Safety classification raised; failing closed",
                         error_code="MODEL_ERROR", exception_class=type(exc).__name__)
            return None, None

        try:
            risk_level = RiskLevel(result.get("riskLevel"))
        except (ValueError, AttributeError):
            logger.warning("Safety classifier returned unknown risk level; failing closed",
                           error_code="MODEL_ERROR")
            return None, None

        reasoning = result.get("reasoning")
        if not isinstance(reasoning, str) or not reasoning.strip():
            reasoning = "No reasoning provided"

        logger.info("Safety classification complete", risk_level=risk_level.value)
        return risk_level, reasoning
