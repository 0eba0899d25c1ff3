"""Deep layer: thorough structured analysis with stricter validation."""
from __future__ import annotations

import threading

from escalade.heuristics import check_consistency
from escalade.layers.base import ReasoningLayer, empty_response_issue, low_confidence_issue
from escalade.protocol import STRUCTURED_FORMAT, StructuredOutput
from escalade.types import (
    CostLevel,
    IssueType,
    LayerType,
    ReasoningContext,
    ReasoningResult,
    ResponseSpeed,
    ValidationIssue,
    ValidationResult,
)

DEEP_SYSTEM_PROMPT = f"""You are an expert reasoning system that provides thorough, structured analysis.

For each problem:
1. Break it down into clear reasoning steps
2. Identify and state your assumptions
3. Provide supporting evidence
4. Acknowledge potential weaknesses or limitations
5. Give a final answer with confidence level

{STRUCTURED_FORMAT}"""


class DeepLayer(ReasoningLayer):
    layer_type = LayerType.DEEP
    speed = ResponseSpeed.SLOW
    cost_level = CostLevel.HIGH
    system_prompt = DEEP_SYSTEM_PROMPT
    default_confidence = 0.8

    def confidence_for(self, text: str, parsed: StructuredOutput) -> float:
        if parsed.confidence is not None:
            return parsed.confidence
        return self.default_confidence

    def validate(
        self,
        result: ReasoningResult,
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> ValidationResult:
        t = self.thresholds
        issues = []
        if result.confidence < context.min_confidence:
            issues.append(low_confidence_issue(result, context, t.deep_low_confidence))
        if not (result.response or "").strip():
            issues.append(empty_response_issue(t.deep_empty_response))
        if len(result.reasoning_chain) < t.deep_min_steps:
            issues.append(ValidationIssue(
                type=IssueType.SHALLOW_REASONING,
                description=f"Only {len(result.reasoning_chain)} reasoning steps provided",
                severity=t.deep_shallow_reasoning,
            ))
        if not result.assumptions:
            issues.append(ValidationIssue(
                type=IssueType.NO_ASSUMPTIONS,
                description="No assumptions were stated",
                severity=t.deep_no_assumptions,
            ))
        if not result.evidence:
            issues.append(ValidationIssue(
                type=IssueType.NO_EVIDENCE,
                description="No supporting evidence provided",
                severity=t.deep_no_evidence,
            ))
        issues.extend(self._ground_truth_issues(result, context, t.deep_ground_truth))
        issues.extend(check_consistency(result.reasoning_chain, severity=t.contradiction))
        return self._finish(issues, t.deep_clean_confidence, t.deep_issue_confidence, blocking_only=True)
