"""Intent analysis with validation and a conservative fallback."""

import logging
from collections.abc import Mapping
from typing import Any

from task_orchestrator.core.models import TaskAnalysis
from task_orchestrator.interfaces.langchain.classifier import IntentClassifier

logger = logging.getLogger(__name__)

FALLBACK_ANALYSIS = TaskAnalysis(
    classification="simple",
    confidence=0.3,
    requires_approval=False,
    risk_level="low",
    estimated_steps=1,
    reasoning="Fallback analysis: the request could not be classified",
)

_CLASSIFICATIONS = ("simple", "compound", "complex")
_RISK_LEVELS = ("low", "medium", "high")


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def validate_task_analysis(raw: Mapping[str, Any] | Any) -> TaskAnalysis:
    """Coerce a classifier response into a TaskAnalysis.

    Out-of-range numbers are clamped and unknown enum values fall back to
    ``simple`` / ``low`` instead of failing validation.
    """
    if isinstance(raw, TaskAnalysis):
        return raw
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, Mapping):
        logger.warning(f"Classifier returned {type(raw).__name__}, using defaults")
        raw = {}

    classification = raw.get("classification")
    if classification not in _CLASSIFICATIONS:
        classification = "simple"

    risk_level = raw.get("risk_level", raw.get("riskLevel"))
    if risk_level not in _RISK_LEVELS:
        risk_level = "low"

    requires_approval = raw.get("requires_approval", raw.get("requiresApproval"))
    estimated_steps = raw.get("estimated_steps", raw.get("estimatedSteps"))
    reasoning = raw.get("reasoning")

    return TaskAnalysis(
        classification=classification,
        confidence=_clamp(raw.get("confidence"), 0.0, 1.0, 0.5),
        requires_approval=requires_approval is True,
        risk_level=risk_level,
        estimated_steps=int(_clamp(estimated_steps, 1, 20, 1)),
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


async def analyze_intent(
    user_intent: str,
    classifier: IntentClassifier,
    capabilities: list[dict[str, str]],
) -> TaskAnalysis:
    """Classify a request, never raising.

    Args:
        user_intent: The user's natural-language request
        classifier: Classification capability
        capabilities: Capability descriptions offered to the classifier

    Returns:
        Validated analysis, or FALLBACK_ANALYSIS if the classifier failed
    """
    try:
        raw = await classifier.analyze(user_intent, capabilities)
    except Exception as e:
        logger.warning(f"Intent classification failed, using fallback: {e}")
        return FALLBACK_ANALYSIS

    analysis = validate_task_analysis(raw)
    logger.info(
        f"Classified request as {analysis.classification} "
        f"(risk={analysis.risk_level}, steps={analysis.estimated_steps})"
    )
    return analysis
