"""Cheap text heuristics: confidence estimation, contradiction detection, remediation hints."""
from __future__ import annotations

from typing import Iterable, List, Sequence
import re

from escalade.types import IssueType, ValidationIssue, clamp

BASE_CONFIDENCE = 0.7
HEDGE_WORDS = ("might", "possibly", "not sure")
CONFIDENT_WORDS = ("certainly", "definitely")
NEGATION_WORDS = frozenset({"not", "never", "no", "cannot", "impossible", "false"})

SUGGESTIONS = {
    IssueType.LOW_CONFIDENCE: "Gather more information or escalate to a deeper reasoning layer",
    IssueType.EMPTY_RESPONSE: "Re-ask the question with an explicit ANSWER line",
    IssueType.GROUND_TRUTH_MISMATCH: "Verify answer against known facts",
    IssueType.SHALLOW_REASONING: "Break down the problem into more detailed steps",
    IssueType.NO_ASSUMPTIONS: "Explicitly state any assumptions made in the reasoning",
    IssueType.NO_EVIDENCE: "Provide supporting evidence or citations",
    IssueType.CONTRADICTION: "Review step {step} for logical consistency",
    IssueType.NO_CONSENSUS: "Escalate to a human reviewer; no two layers agree",
    IssueType.PARTIAL_CONSENSUS: "Inspect the minority answers before trusting the majority",
    IssueType.REASONING_DEPTH_VARIANCE: "Re-run the shallow layer with a request for more steps",
}

_WORD_RE = re.compile(r"[a-z0-9']+")


def estimate_confidence(text: str, step_count: int) -> float:
    """Heuristic confidence for replies that carry no CONFIDENCE line."""
    lowered = (text or "").lower()
    confidence = BASE_CONFIDENCE
    if step_count >= 3:
        confidence += 0.1
    if any(word in lowered for word in HEDGE_WORDS):
        confidence -= 0.2
    if any(word in lowered for word in CONFIDENT_WORDS):
        confidence += 0.1
    return clamp(confidence)


def _tokens(step: str) -> List[str]:
    return _WORD_RE.findall((step or "").lower())


def steps_contradict(first: str, second: str) -> bool:
    words_a = _tokens(first)
    words_b = _tokens(second)
    negated_a = any(word in NEGATION_WORDS for word in words_a)
    negated_b = any(word in NEGATION_WORDS for word in words_b)
    if negated_a == negated_b:
        return False
    shared = {word for word in words_a if len(word) > 4} & {word for word in words_b if len(word) > 4}
    return len(shared) >= 2


def check_consistency(chain: Sequence[str], severity: float = 0.8) -> List[ValidationIssue]:
    """Flag step pairs where one negates a claim the other makes.

    High recall, low precision: two steps that share two or more long words
    and differ in negation are reported against the earlier step.
    """
    issues: List[ValidationIssue] = []
    for i in range(len(chain)):
        for j in range(i + 1, len(chain)):
            if steps_contradict(chain[i], chain[j]):
                issues.append(ValidationIssue(
                    type=IssueType.CONTRADICTION,
                    description=f"Step {i + 1} may contradict Step {j + 1}",
                    severity=severity,
                    step_index=i,
                ))
    return issues


def suggestions_for(issues: Iterable[ValidationIssue]) -> List[str]:
    suggestions: List[str] = []
    for issue in issues:
        template = SUGGESTIONS.get(issue.type)
        if not template:
            continue
        step = (issue.step_index or 0) + 1
        text = template.format(step=step)
        if text not in suggestions:
            suggestions.append(text)
    return suggestions
