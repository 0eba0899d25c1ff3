"""Consensus across layer results: agreement, aggregate confidence, one answer."""
from __future__ import annotations

from typing import Dict, List, Sequence
import logging
import threading
import time

from escalade.config import Thresholds
from escalade.models.base import Backend, RunCancelled
from escalade.protocol import CRITIQUE_FORMAT, Critique, parse_critique
from escalade.types import (
    ROLE_SYSTEM,
    ROLE_USER,
    CrossValidationResult,
    IssueType,
    Message,
    ReasoningContext,
    ReasoningResult,
    ValidationIssue,
    has_blocking,
)

logger = logging.getLogger(__name__)

META_VALIDATOR_PROMPT = (
    "You are a meta-validator comparing multiple reasoning chains. "
    "Identify inconsistencies and determine the most reliable answer.\n\n"
    f"{CRITIQUE_FORMAT}"
)


def normalize_answer(text: str) -> str:
    return (text or "").strip().lower()


def group_answers(results: Sequence[ReasoningResult]) -> Dict[str, List[ReasoningResult]]:
    """Group results by normalized response, keeping first-seen order."""
    groups: Dict[str, List[ReasoningResult]] = {}
    for result in results:
        groups.setdefault(normalize_answer(result.response), []).append(result)
    return groups


def _mean_confidence(group: Sequence[ReasoningResult]) -> float:
    return sum(r.confidence for r in group) / len(group)


def consensus_answer(results: Sequence[ReasoningResult]) -> str:
    """Majority answer by normalized text.

    Ties between equally large groups go to the group with the higher mean
    confidence, and the literal response returned is the most confident member
    of the winning group. When no two results agree, the first result wins.
    """
    if not results:
        return ""
    groups = group_answers(results)
    if all(len(group) == 1 for group in groups.values()):
        return results[0].response
    # max() keeps the earliest group on exact ties
    best = max(groups.values(), key=lambda g: (len(g), _mean_confidence(g)))
    return max(best, key=lambda r: r.confidence).response


def critique_issues(critique: Critique, thresholds: Thresholds) -> List[ValidationIssue]:
    severity = thresholds.critique_valid if critique.valid else thresholds.critique_invalid
    return [
        ValidationIssue(type=IssueType.CROSS_VALIDATION, description=text, severity=severity)
        for text in critique.issues
    ]


def build_comparison_prompt(results: Sequence[ReasoningResult]) -> str:
    lines = ["Compare and validate these reasoning results from multiple AI systems:", ""]
    for i, result in enumerate(results, start=1):
        lines.append(f"Layer {i} ({result.provider}):")
        lines.append(f"Answer: {result.response}")
        lines.append(f"Confidence: {result.confidence:.0%}")
        if result.reasoning_chain:
            lines.append(f"Steps: {' → '.join(result.reasoning_chain[:3])}...")
        lines.append("")
    lines.append("Identify any logical inconsistencies, contradictions, or concerns.")
    return "\n".join(lines)


class ConsensusResolver:
    def __init__(self, backend: Backend | None = None, thresholds: Thresholds | None = None) -> None:
        self.backend = backend
        self.thresholds = thresholds or Thresholds()

    def resolve(
        self,
        results: Sequence[ReasoningResult],
        context: ReasoningContext,
        cancel: threading.Event | None = None,
    ) -> CrossValidationResult:
        results = list(results)
        if not results:
            raise ValueError("consensus needs at least one result")
        t = self.thresholds
        start = time.perf_counter()
        issues: List[ValidationIssue] = []
        agreements: List[str] = []
        disagreements: List[str] = []

        groups = group_answers(results)
        total = len(results)
        if len(groups) == 1:
            agreements.append("All layers agree on the answer")
        elif len(groups) == total:
            disagreements.append("All layers provided different answers")
            issues.append(ValidationIssue(
                type=IssueType.NO_CONSENSUS,
                description="No agreement between layers",
                severity=t.no_consensus,
            ))
        else:
            majority = max(groups.values(), key=len)
            minority = total - len(majority)
            agreements.append(f"{len(majority)} layers agree on the primary answer")
            disagreements.append(f"{minority} layer(s) provided alternative answers")
            issues.append(ValidationIssue(
                type=IssueType.PARTIAL_CONSENSUS,
                description=f"Only {len(majority)}/{total} layers agree",
                severity=t.partial_consensus,
            ))

        confidences = [r.confidence for r in results]
        mean_confidence = sum(confidences) / total
        lowest = min(confidences)
        if lowest < context.min_confidence:
            issues.append(ValidationIssue(
                type=IssueType.LOW_CONFIDENCE,
                description=(
                    f"At least one layer has confidence below threshold "
                    f"({lowest:.0%} < {context.min_confidence:.0%})"
                ),
                severity=t.consensus_low_confidence,
            ))

        depths = [len(r.reasoning_chain) for r in results]
        if min(depths) < (sum(depths) / total) / 2:
            issues.append(ValidationIssue(
                type=IssueType.REASONING_DEPTH_VARIANCE,
                description="Significant variance in reasoning depth between layers",
                severity=t.depth_variance,
            ))

        suggestions: List[str] = []
        cost = 0.0
        if self.backend is not None:
            critique, cost = self._critique(self.backend, results, cancel)
            if critique is None:
                issues.append(ValidationIssue(
                    type=IssueType.CROSS_VALIDATION,
                    description="Cross-validation call failed",
                    severity=t.critique_error,
                ))
            else:
                issues.extend(critique_issues(critique, t))
                suggestions = list(critique.suggestions)

        for issue in issues:
            logger.debug("consensus issue %s (%.2f): %s", issue.type, issue.severity, issue.description)

        return CrossValidationResult(
            is_valid=not has_blocking(issues, t.blocking),
            confidence=mean_confidence,
            issues=issues,
            agreements=agreements,
            disagreements=disagreements,
            consensus_answer=consensus_answer(results),
            layer_results=results,
            suggestions=suggestions,
            duration_ms=(time.perf_counter() - start) * 1000,
            cost=cost,
        )

    def _critique(
        self,
        backend: Backend,
        results: List[ReasoningResult],
        cancel: threading.Event | None,
    ) -> tuple[Critique | None, float]:
        messages = [
            Message(ROLE_SYSTEM, META_VALIDATOR_PROMPT),
            Message(ROLE_USER, build_comparison_prompt(results)),
        ]
        cost_before = backend.total_cost
        try:
            text = backend.complete(messages, cancel=cancel)
        except RunCancelled:
            raise
        except Exception as exc:
            logger.warning("Cross-validation call to %s failed: %s", backend.model_id, exc)
            return None, max(0.0, backend.total_cost - cost_before)
        return parse_critique(text), max(0.0, backend.total_cost - cost_before)
