"""Fast layer: cheap model, brief reasoning, heuristic confidence fallback."""
from __future__ import annotations

import threading

from escalade.heuristics import estimate_confidence
from escalade.layers.base import ReasoningLayer, empty_response_issue, low_confidence_issue
from escalade.protocol import StructuredOutput
from escalade.types import CostLevel, LayerType, ReasoningContext, ReasoningResult, ResponseSpeed, ValidationResult

FAST_SYSTEM_PROMPT = (
    "You are a fast, efficient reasoning system. "
    "Provide quick but accurate answers with brief step-by-step reasoning."
)

FAST_FORMAT = """Provide your answer with brief reasoning steps. Format:
Step 1: [reasoning]
Step 2: [reasoning]
...
ANSWER: [final answer]
CONFIDENCE: [0-100]"""


class FastLayer(ReasoningLayer):
    layer_type = LayerType.FAST
    speed = ResponseSpeed.FAST
    cost_level = CostLevel.LOW
    system_prompt = FAST_SYSTEM_PROMPT

    def user_prompt(self, prompt: str) -> str:
        return f"{prompt}\n\n{FAST_FORMAT}"

    def confidence_for(self, text: str, parsed: StructuredOutput) -> float:
        if parsed.confidence is not None:
            return parsed.confidence
        return estimate_confidence(text, len(parsed.reasoning))

    def validate(
        self,
        result: ReasoningResult,
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> ValidationResult:
        t = self.thresholds
        issues = []
        if result.confidence < context.min_confidence:
            issues.append(low_confidence_issue(result, context, t.fast_low_confidence))
        if not (result.response or "").strip():
            issues.append(empty_response_issue(t.fast_empty_response))
        issues.extend(self._ground_truth_issues(result, context, t.fast_ground_truth))
        return self._finish(issues, t.fast_clean_confidence, t.fast_issue_confidence)
