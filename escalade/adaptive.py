"""Adaptive planning: size up a prompt before reasoning and pick layers to match.

Scoring is a fixed keyword and length heuristic. Each signal that fires adds
a weight; the score is the mean weight of the signals that fired, so a short
plain question stays Simple while a long multi-step design question climbs
towards VeryComplex.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Tuple
import re

from escalade.types import LayerType

# (upper bound, weight); prompts at or past the last bound get LONG_WEIGHT
LENGTH_BANDS = ((50, 0.1), (150, 0.3), (500, 0.6))
LONG_WEIGHT = 0.8

QUESTION_WORDS = ("why", "how", "explain", "analyze", "compare", "evaluate")
CODE_WORDS = ("code", "function", "refactor")
MATH_WORDS = ("calculate", "solve")
MULTI_STEP_WORDS = ("first", "then", "finally", "next", "step")
HARD_DOMAIN_WORDS = ("quantum", "neural", "algorithm", "architecture", "distributed", "concurrent")

_ARITHMETIC_RE = re.compile(r"\d+\s*[+\-*/]\s*\d+")


class ComplexityLevel:
    SIMPLE = "Simple"
    MODERATE = "Moderate"
    COMPLEX = "Complex"
    VERY_COMPLEX = "VeryComplex"


# Upper score bound per level, checked in order.
LEVEL_BOUNDS = (
    (0.3, ComplexityLevel.SIMPLE),
    (0.6, ComplexityLevel.MODERATE),
    (0.8, ComplexityLevel.COMPLEX),
)

LEVEL_LAYERS = {
    ComplexityLevel.SIMPLE: (LayerType.FAST,),
    ComplexityLevel.MODERATE: (LayerType.FAST, LayerType.DEEP),
    ComplexityLevel.COMPLEX: (LayerType.FAST, LayerType.DEEP, LayerType.VERIFICATION),
    ComplexityLevel.VERY_COMPLEX: (LayerType.DEEP, LayerType.VERIFICATION),
}

LEVEL_MIN_CONFIDENCE = {
    ComplexityLevel.SIMPLE: 0.7,
    ComplexityLevel.MODERATE: 0.8,
    ComplexityLevel.COMPLEX: 0.9,
    ComplexityLevel.VERY_COMPLEX: 0.95,
}


@dataclass
class ComplexityAnalysis:
    prompt: str
    score: float
    level: str
    factors: List[str] = field(default_factory=list)
    signals: List[str] = field(default_factory=list)


@dataclass
class AdaptivePlan:
    """Layer selection and confidence bar recommended for one prompt."""

    complexity: ComplexityAnalysis
    layer_types: Tuple[str, ...]
    min_confidence: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["layer_types"] = list(self.layer_types)
        data["complexity"].pop("prompt", None)
        return data


def _contains_any(lowered: str, words: Tuple[str, ...]) -> bool:
    return any(word in lowered for word in words)


def _signals(prompt: str) -> List[Tuple[str, float]]:
    lowered = prompt.lower()
    length_weight = next((weight for bound, weight in LENGTH_BANDS if len(prompt) < bound), LONG_WEIGHT)
    fired = [("length", length_weight)]
    if _contains_any(lowered, QUESTION_WORDS):
        fired.append(("question", 0.4))
    if _contains_any(lowered, CODE_WORDS):
        fired.append(("code", 0.5))
    if _ARITHMETIC_RE.search(prompt) or _contains_any(lowered, MATH_WORDS):
        fired.append(("math", 0.3))
    if sum(1 for word in MULTI_STEP_WORDS if word in lowered) >= 2:
        fired.append(("multi_step", 0.6))
    if _contains_any(lowered, HARD_DOMAIN_WORDS):
        fired.append(("domain", 0.5))
    return fired


def _factors(prompt: str) -> List[str]:
    lowered = prompt.lower()
    factors = []
    if len(prompt) > 200:
        factors.append("Long prompt")
    if "why" in lowered:
        factors.append("Explanatory question")
    if "code" in lowered:
        factors.append("Code-related")
    if "compare" in lowered:
        factors.append("Comparative analysis")
    if _ARITHMETIC_RE.search(prompt):
        factors.append("Mathematical")
    return factors


def level_for(score: float) -> str:
    for bound, level in LEVEL_BOUNDS:
        if score < bound:
            return level
    return ComplexityLevel.VERY_COMPLEX


def analyze_complexity(prompt: str) -> ComplexityAnalysis:
    prompt = prompt or ""
    fired = _signals(prompt)
    score = round(min(1.0, sum(weight for _, weight in fired) / len(fired)), 4)
    return ComplexityAnalysis(
        prompt=prompt,
        score=score,
        level=level_for(score),
        factors=_factors(prompt),
        signals=[name for name, _ in fired],
    )


def plan_for(prompt: str) -> AdaptivePlan:
    complexity = analyze_complexity(prompt)
    return AdaptivePlan(
        complexity=complexity,
        layer_types=LEVEL_LAYERS[complexity.level],
        min_confidence=LEVEL_MIN_CONFIDENCE[complexity.level],
    )
