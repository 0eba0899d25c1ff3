"""Common plumbing for reasoning layers."""
from __future__ import annotations

from typing import Any, Dict, List
import logging
import threading
import time

from escalade.config import Thresholds
from escalade.heuristics import suggestions_for
from escalade.models.base import Backend, RunCancelled
from escalade.protocol import StructuredOutput, parse_structured
from escalade.types import (
    ROLE_SYSTEM,
    ROLE_USER,
    IssueType,
    Message,
    ReasoningContext,
    ReasoningResult,
    ValidationIssue,
    ValidationResult,
    has_blocking,
)

logger = logging.getLogger(__name__)


class ReasoningLayer:
    """One escalation tier wrapping a single backend call.

    ``reason`` never raises for call failures: they come back as a result with
    ``is_valid=False`` and ``confidence=0``. Cancellation is not a call failure
    and propagates as ``RunCancelled``.
    """

    layer_type = ""
    speed = ""
    cost_level = ""
    system_prompt = ""

    def __init__(self, backend: Backend, name: str | None = None, thresholds: Thresholds | None = None) -> None:
        self.backend = backend
        self.name = name or f"{self.layer_type}:{backend.model_id}"
        self.thresholds = thresholds or Thresholds()

    @property
    def provider(self) -> str:
        return self.backend.model_id

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.layer_type,
            "speed": self.speed,
            "cost": self.cost_level,
            "provider": self.provider,
        }

    def build_messages(self, prompt: str, context: ReasoningContext) -> List[Message]:
        messages = [Message(ROLE_SYSTEM, self.system_prompt)]
        messages.extend(context.history)
        if context.domain:
            messages.append(Message(ROLE_SYSTEM, f"Domain context: {context.domain}"))
        messages.append(Message(ROLE_USER, self.user_prompt(prompt)))
        return messages

    def user_prompt(self, prompt: str) -> str:
        return prompt

    def reason(
        self,
        prompt: str,
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> ReasoningResult:
        messages = self.build_messages(prompt, context)
        start = time.perf_counter()
        cost_before = self.backend.total_cost
        try:
            text = self.backend.complete(messages, cancel=cancel)
        except RunCancelled:
            raise
        except Exception as exc:
            duration = (time.perf_counter() - start) * 1000
            logger.warning("%s call failed: %s", self.name, exc)
            result = ReasoningResult.failure(self.layer_type, self.provider, str(exc), duration)
            result.cost = max(0.0, self.backend.total_cost - cost_before)
            return result
        duration = (time.perf_counter() - start) * 1000
        cost = max(0.0, self.backend.total_cost - cost_before)
        parsed = parse_structured(text)
        return ReasoningResult(
            response=parsed.answer,
            confidence=self.confidence_for(text, parsed),
            reasoning_chain=parsed.reasoning,
            evidence=parsed.evidence,
            assumptions=parsed.assumptions,
            weaknesses=parsed.weaknesses,
            duration_ms=duration,
            provider=self.provider,
            cost=cost,
            is_valid=True,
            layer=self.layer_type,
        )

    def confidence_for(self, text: str, parsed: StructuredOutput) -> float:
        raise NotImplementedError

    def validate(
        self,
        result: ReasoningResult,
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> ValidationResult:
        raise NotImplementedError

    def _ground_truth_issues(
        self,
        result: ReasoningResult,
        context: ReasoningContext,
        severity: float,
    ) -> List[ValidationIssue]:
        issues = []
        response = (result.response or "").lower()
        for key, expected in context.ground_truth.items():
            if str(expected).lower() not in response:
                issues.append(ValidationIssue(
                    type=IssueType.GROUND_TRUTH_MISMATCH,
                    description=f"Response does not match ground truth for {key}",
                    severity=severity,
                ))
        return issues

    def _finish(
        self,
        issues: List[ValidationIssue],
        clean: float,
        degraded: float,
        blocking_only: bool = False,
    ) -> ValidationResult:
        """Build the validation result.

        With ``blocking_only`` advisory issues keep the clean confidence;
        otherwise any issue drops it to ``degraded``.
        """
        blocked = has_blocking(issues, self.thresholds.blocking)
        penalised = blocked if blocking_only else bool(issues)
        return ValidationResult(
            is_valid=not blocked,
            confidence=degraded if penalised else clean,
            issues=issues,
            suggestions=suggestions_for(issues),
        )


def low_confidence_issue(result: ReasoningResult, context: ReasoningContext, severity: float) -> ValidationIssue:
    return ValidationIssue(
        type=IssueType.LOW_CONFIDENCE,
        description=f"Confidence {result.confidence:.0%} below threshold {context.min_confidence:.0%}",
        severity=severity,
    )


def empty_response_issue(severity: float) -> ValidationIssue:
    return ValidationIssue(
        type=IssueType.EMPTY_RESPONSE,
        description="Reasoning produced empty response",
        severity=severity,
    )
