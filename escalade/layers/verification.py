"""Verification layer: critiques other layers' results and cross-validates them."""
from __future__ import annotations

from typing import Sequence
import logging
import threading

from escalade.consensus import ConsensusResolver, critique_issues
from escalade.layers.base import ReasoningLayer
from escalade.models.base import RunCancelled
from escalade.protocol import CRITIQUE_FORMAT, STRUCTURED_FORMAT, StructuredOutput, parse_critique
from escalade.types import (
    ROLE_SYSTEM,
    ROLE_USER,
    CostLevel,
    CrossValidationResult,
    IssueType,
    LayerType,
    Message,
    ReasoningContext,
    ReasoningResult,
    ResponseSpeed,
    ValidationIssue,
    ValidationResult,
    has_blocking,
)

logger = logging.getLogger(__name__)

VERIFICATION_SYSTEM_PROMPT = (
    "You are a verification and validation system. "
    "Provide independent reasoning and check for logical flaws.\n\n"
    f"{STRUCTURED_FORMAT}"
)

CRITIC_SYSTEM_PROMPT = f"""You are a critical validation system. Review the provided reasoning and identify any issues.

Check for:
1. Logical consistency
2. Valid assumptions
3. Sufficient evidence
4. Potential flaws or weaknesses
5. Contradictions

{CRITIQUE_FORMAT}"""


def build_critique_prompt(result: ReasoningResult) -> str:
    lines = ["Please validate this reasoning:", ""]
    lines.append(f"Answer: {result.response}")
    lines.append(f"Confidence: {result.confidence:.0%}")
    if result.reasoning_chain:
        lines.append("")
        lines.append("Reasoning Steps:")
        for i, step in enumerate(result.reasoning_chain, start=1):
            lines.append(f"{i}. {step}")
    if result.assumptions:
        lines.append("")
        lines.append("Assumptions:")
        for assumption in result.assumptions:
            lines.append(f"- {assumption}")
    return "\n".join(lines)


class VerificationLayer(ReasoningLayer):
    layer_type = LayerType.VERIFICATION
    speed = ResponseSpeed.MEDIUM
    cost_level = CostLevel.MEDIUM
    system_prompt = VERIFICATION_SYSTEM_PROMPT
    default_confidence = 0.7

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
        """Ask the backend to critique ``result``.

        A failed critique call is reported as a single advisory
        CrossValidation issue with ``is_valid=False``; it is never raised.
        """
        messages = [
            Message(ROLE_SYSTEM, CRITIC_SYSTEM_PROMPT),
            Message(ROLE_USER, build_critique_prompt(result)),
        ]
        try:
            text = self.backend.complete(messages, cancel=cancel)
        except RunCancelled:
            raise
        except Exception as exc:
            logger.warning("%s critique failed: %s", self.name, exc)
            return ValidationResult(
                is_valid=False,
                confidence=0.0,
                issues=[ValidationIssue(
                    type=IssueType.CROSS_VALIDATION,
                    description=str(exc),
                    severity=self.thresholds.critique_error,
                )],
            )
        critique = parse_critique(text)
        issues = critique_issues(critique, self.thresholds)
        return ValidationResult(
            is_valid=critique.valid and not has_blocking(issues, self.thresholds.blocking),
            confidence=critique.confidence,
            issues=issues,
            suggestions=list(critique.suggestions),
        )

    def cross_validate(
        self,
        results: Sequence[ReasoningResult],
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> CrossValidationResult:
        resolver = ConsensusResolver(self.backend, self.thresholds)
        return resolver.resolve(list(results), context, cancel=cancel)
