"""Failure learning: record failed runs, find recurring patterns, recommend fixes.

Failures are appended to ``<data_dir>/failures.jsonl`` and discovered
patterns are kept in ``<data_dir>/patterns.json``. Categorisation is a fixed
mapping from validation issue types; nothing here calls a model.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import json
import logging
import threading
import uuid

from escalade.types import BLOCKING_SEVERITY, IssueType, ReasoningContext, RunResult, ValidationIssue

logger = logging.getLogger(__name__)

CALL_FAILURE = "CallFailure"


class FailureCategory:
    HALLUCINATION = "Hallucination"
    LOGICAL_ERROR = "LogicalError"
    CONTRADICTION = "Contradiction"
    LOW_CONFIDENCE = "LowConfidence"
    FORMAT_ERROR = "FormatError"
    PERFORMANCE = "Performance"
    PROVIDER_FAILURE = "ProviderFailure"
    OTHER = "Other"


class ResolutionMethod:
    RETRY = "Retry"
    PROVIDER_SWITCH = "ProviderSwitch"
    PROMPT_REFINEMENT = "PromptRefinement"
    LAYER_SWITCH = "LayerSwitch"
    CONFIDENCE_ADJUSTMENT = "ConfidenceAdjustment"
    MANUAL = "Manual"
    CROSS_VALIDATION = "CrossValidation"
    UNRESOLVED = "Unresolved"


# First match wins.
_CATEGORY_RULES = (
    (CALL_FAILURE, FailureCategory.PROVIDER_FAILURE),
    (IssueType.CONTRADICTION, FailureCategory.CONTRADICTION),
    (IssueType.GROUND_TRUTH_MISMATCH, FailureCategory.HALLUCINATION),
    (IssueType.NO_CONSENSUS, FailureCategory.LOGICAL_ERROR),
    (IssueType.CROSS_VALIDATION, FailureCategory.LOGICAL_ERROR),
    (IssueType.SHALLOW_REASONING, FailureCategory.LOGICAL_ERROR),
    (IssueType.EMPTY_RESPONSE, FailureCategory.FORMAT_ERROR),
    (IssueType.LOW_CONFIDENCE, FailureCategory.LOW_CONFIDENCE),
    (IssueType.PARTIAL_CONSENSUS, FailureCategory.LOW_CONFIDENCE),
)

_STRATEGIES = {
    ResolutionMethod.PROVIDER_SWITCH: ("Switch Provider", "Use a different model provider", 0.2, 0.1),
    ResolutionMethod.PROMPT_REFINEMENT: ("Refine Prompt", "Add clarification to the prompt", 0.1, 0.2),
    ResolutionMethod.CROSS_VALIDATION: ("Enable Cross-Validation", "Use multiple layers for validation", 0.7, 0.6),
}
_GENERIC_STRATEGY = ("Generic Strategy", "Apply standard error handling", 0.3, 0.3)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _parse_time(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def categorize(issue_types: Iterable[str]) -> str:
    present = set(issue_types)
    for issue_type, category in _CATEGORY_RULES:
        if issue_type in present:
            return category
    return FailureCategory.OTHER


def priority_for(occurrences: int) -> int:
    if occurrences >= 20:
        return 5
    if occurrences >= 10:
        return 4
    if occurrences >= 5:
        return 3
    if occurrences >= 3:
        return 2
    return 1


@dataclass
class FailureRecord:
    prompt: str
    response: str
    category: str
    severity: float
    issues: List[Dict[str, Any]] = field(default_factory=list)
    failed_layer: Optional[str] = None
    failed_provider: Optional[str] = None
    expected_response: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_now)
    resolved: bool = False
    resolution: Optional[str] = None
    resolution_method: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def issue_types(self) -> List[str]:
        return [str(issue.get("type")) for issue in self.issues]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureRecord":
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FailurePattern:
    name: str
    description: str
    category: str
    symptoms: List[str]
    occurrences: int
    confidence: float
    first_observed: str
    last_observed: str
    example_failure_ids: List[str] = field(default_factory=list)
    strategies: List[Dict[str, Any]] = field(default_factory=list)
    prevention_success_rate: float = 0.0
    is_active: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailurePattern":
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    title: str
    description: str
    priority: int
    expected_impact: float
    confidence: float
    actions: List[Dict[str, Any]] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)
    pattern_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def strategy_from_resolution(method: str, successes: int, total: int) -> Dict[str, Any]:
    name, description, cost_impact, latency_impact = _STRATEGIES.get(method, _GENERIC_STRATEGY)
    return {
        "name": name,
        "description": description,
        "method": method,
        "success_rate": successes / total if total else 0.0,
        "times_applied": total,
        "times_succeeded": successes,
        "cost_impact": cost_impact,
        "latency_impact": latency_impact,
    }


def default_recommendation(failure: FailureRecord) -> Recommendation:
    return Recommendation(
        title=f"Address {failure.category} failure",
        description="Review and address this failure",
        priority=2,
        expected_impact=0.5,
        confidence=0.6,
        actions=[{
            "name": "Increase Validation",
            "description": "Add more validation checks",
            "method": None,
            "success_rate": 0.7,
            "cost_impact": 0.3,
            "latency_impact": 0.2,
        }],
    )


class FailureLearner:
    def __init__(
        self,
        path: Path,
        patterns_path: Path | None = None,
        min_occurrences_for_pattern: int = 3,
        min_occurrences_for_recommendation: int = 5,
        min_pattern_confidence: float = 0.6,
        max_history: int = 1000,
        blocking: float = BLOCKING_SEVERITY,
    ) -> None:
        self.path = Path(path)
        self.patterns_path = Path(patterns_path) if patterns_path else self.path.with_name("patterns.json")
        self.min_occurrences_for_pattern = min_occurrences_for_pattern
        self.min_occurrences_for_recommendation = min_occurrences_for_recommendation
        self.min_pattern_confidence = min_pattern_confidence
        self.max_history = max_history
        self.blocking = blocking
        self._lock = threading.RLock()
        self.failures: List[FailureRecord] = self._load_failures()
        self.patterns: List[FailurePattern] = self._load_patterns()

    @classmethod
    def from_config(cls, config: Any) -> "FailureLearner":
        cfg = config.learning
        data_dir = config.data_dir
        return cls(
            path=Path(cfg.get("path") or data_dir / "failures.jsonl").expanduser(),
            patterns_path=Path(cfg.get("patterns_path") or data_dir / "patterns.json").expanduser(),
            min_occurrences_for_pattern=int(cfg.get("min_occurrences_for_pattern", 3)),
            min_occurrences_for_recommendation=int(cfg.get("min_occurrences_for_recommendation", 5)),
            min_pattern_confidence=float(cfg.get("min_pattern_confidence", 0.6)),
            max_history=int(cfg.get("max_history", 1000)),
            blocking=config.thresholds.blocking,
        )

    def _load_failures(self) -> List[FailureRecord]:
        if not self.path.exists():
            return []
        records = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(FailureRecord.from_dict(json.loads(line)))
                except (ValueError, TypeError):
                    logger.warning("Skipping malformed failure record in %s", self.path)
        return records[-self.max_history:]

    def _load_patterns(self) -> List[FailurePattern]:
        if not self.patterns_path.exists():
            return []
        try:
            data = json.loads(self.patterns_path.read_text())
            return [FailurePattern.from_dict(item) for item in data.get("patterns", [])]
        except (ValueError, TypeError):
            logger.warning("Failed to load failure patterns", exc_info=True)
            return []

    def _rewrite_failures(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            for record in self.failures:
                handle.write(json.dumps(record.to_dict()) + "\n")

    def _save_patterns(self) -> None:
        self.patterns_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"updated_at": _now(), "patterns": [p.to_dict() for p in self.patterns]}
        self.patterns_path.write_text(json.dumps(payload, indent=2))

    def record(self, failure: FailureRecord) -> FailureRecord:
        with self._lock:
            self.failures.append(failure)
            if len(self.failures) > self.max_history:
                del self.failures[: len(self.failures) - self.max_history]
                self._rewrite_failures()
            else:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(failure.to_dict()) + "\n")
        return failure

    def record_run(self, run: RunResult, context: ReasoningContext | None = None) -> List[FailureRecord]:
        """Turn the failures visible in ``run`` into records.

        One record per failed layer call, one per layer validation with a
        blocking issue, one for a blocking consensus. A successful run whose
        final confidence misses the bar is recorded as LowConfidence when
        nothing more specific was found. Cancelled runs are not failures.
        """
        if run.cancelled:
            return []
        context = context or ReasoningContext()
        expected = "; ".join(context.ground_truth.values()) or None
        recorded: List[FailureRecord] = []

        for index, result in enumerate(run.layer_results):
            validation = run.validations[index] if index < len(run.validations) else None
            if not result.is_valid:
                issues = [{"type": CALL_FAILURE, "description": text, "severity": 1.0}
                          for text in (result.validation_issues or [result.response])]
                recorded.append(self.record(FailureRecord(
                    prompt=run.prompt,
                    response=result.response,
                    category=FailureCategory.PROVIDER_FAILURE,
                    severity=1.0,
                    issues=issues,
                    failed_layer=result.layer,
                    failed_provider=result.provider,
                    expected_response=expected,
                )))
            elif validation is not None and any(i.severity >= self.blocking for i in validation.issues):
                recorded.append(self.record(self._from_issues(
                    run.prompt, result.response, validation.issues, result.layer, result.provider, expected,
                )))

        cross = run.cross_validation
        if cross is not None and not cross.is_valid:
            recorded.append(self.record(self._from_issues(
                run.prompt, cross.consensus_answer, cross.issues, "consensus", None, expected,
            )))

        if not recorded and run.is_successful and run.final_confidence < context.min_confidence:
            recorded.append(self.record(FailureRecord(
                prompt=run.prompt,
                response=run.final_answer,
                category=FailureCategory.LOW_CONFIDENCE,
                severity=context.min_confidence - run.final_confidence,
                issues=[{
                    "type": IssueType.LOW_CONFIDENCE,
                    "description": f"Final confidence {run.final_confidence:.0%} below {context.min_confidence:.0%}",
                    "severity": context.min_confidence - run.final_confidence,
                }],
                expected_response=expected,
            )))
        if recorded:
            logger.info("Recorded %d failure(s) for prompt", len(recorded))
        return recorded

    @staticmethod
    def _from_issues(
        prompt: str,
        response: str,
        issues: List[ValidationIssue],
        layer: Optional[str],
        provider: Optional[str],
        expected: Optional[str],
    ) -> FailureRecord:
        return FailureRecord(
            prompt=prompt,
            response=response,
            category=categorize(issue.type for issue in issues),
            severity=max((issue.severity for issue in issues), default=0.0),
            issues=[issue.to_dict() for issue in issues],
            failed_layer=layer,
            failed_provider=provider,
            expected_response=expected,
        )

    def resolve(self, failure_id: str, method: str, resolution: str | None = None) -> bool:
        with self._lock:
            for record in self.failures:
                if record.id == failure_id:
                    record.resolved = True
                    record.resolution_method = method
                    record.resolution = resolution
                    self._rewrite_failures()
                    return True
        return False

    def learn_patterns(self) -> List[FailurePattern]:
        """Group unresolved failures by category and promote recurring ones to patterns."""
        new_patterns: List[FailurePattern] = []
        with self._lock:
            groups: Dict[str, List[FailureRecord]] = {}
            for record in self.failures:
                if not record.resolved:
                    groups.setdefault(record.category, []).append(record)
            for category, records in groups.items():
                if len(records) < self.min_occurrences_for_pattern:
                    continue
                pattern = self._discover(category, records)
                if pattern is None or pattern.confidence < self.min_pattern_confidence:
                    continue
                existing = next((p for p in self.patterns
                                 if p.category == category and p.symptoms == pattern.symptoms), None)
                if existing is not None:
                    existing.occurrences = max(existing.occurrences, pattern.occurrences)
                    existing.last_observed = pattern.last_observed
                    existing.confidence = max(existing.confidence, pattern.confidence)
                    existing.example_failure_ids = pattern.example_failure_ids
                else:
                    self.patterns.append(pattern)
                    new_patterns.append(pattern)
            self._save_patterns()
        return new_patterns

    def _discover(self, category: str, records: List[FailureRecord]) -> FailurePattern | None:
        if len(records) < 2:
            return None
        counts: Dict[str, int] = {}
        for record in records:
            for issue_type in set(record.issue_types):
                counts[issue_type] = counts.get(issue_type, 0) + 1
        symptoms = sorted(t for t, n in counts.items() if n >= len(records) * 0.5)
        if not symptoms:
            return None
        # Resolutions live on resolved records, which are excluded from the group,
        # so look them up across the whole history for this category.
        resolved = [r for r in self.failures
                    if r.category == category and r.resolved and r.resolution_method]
        strategies: List[Dict[str, Any]] = []
        success_rate = 0.0
        if resolved:
            total = len(records) + len(resolved)
            by_method: Dict[str, int] = {}
            for record in resolved:
                by_method[record.resolution_method] = by_method.get(record.resolution_method, 0) + 1
            for method, count in sorted(by_method.items(), key=lambda item: -item[1]):
                strategies.append(strategy_from_resolution(method, count, total))
            success_rate = len(resolved) / total
        timestamps = sorted(r.timestamp for r in records)
        return FailurePattern(
            name=f"{category} Pattern #{len(self.patterns) + 1}",
            description=f"Recurring {category} pattern with {len(symptoms)} common symptoms",
            category=category,
            symptoms=symptoms,
            occurrences=len(records),
            confidence=min(0.9, 0.5 + 0.05 * len(records)),
            first_observed=timestamps[0],
            last_observed=timestamps[-1],
            example_failure_ids=[r.id for r in records[:5]],
            strategies=strategies,
            prevention_success_rate=success_rate,
        )

    def matching_patterns(self, failure: FailureRecord) -> List[FailurePattern]:
        types = set(failure.issue_types)
        return [p for p in self.patterns
                if p.is_active and p.category == failure.category and types & set(p.symptoms)]

    def recommend_for(self, failure: FailureRecord) -> List[Recommendation]:
        recommendations = []
        for pattern in self.matching_patterns(failure):
            recommendations.append(Recommendation(
                title=f"Apply {pattern.name} prevention",
                description=f"This failure matches the '{pattern.name}' pattern. Apply proven prevention strategies.",
                priority=priority_for(pattern.occurrences),
                expected_impact=pattern.prevention_success_rate,
                confidence=pattern.confidence,
                actions=sorted((s for s in pattern.strategies if s.get("success_rate", 0) > 0.5),
                               key=lambda s: -s.get("success_rate", 0)),
                pattern_id=pattern.id,
            ))
        return recommendations or [default_recommendation(failure)]

    def recommendations(self, limit: int = 10) -> List[Recommendation]:
        active = [p for p in self.patterns
                  if p.is_active and p.occurrences >= self.min_occurrences_for_recommendation]
        active.sort(key=lambda p: (-p.occurrences, -p.confidence))
        result = []
        for pattern in active[:limit]:
            result.append(Recommendation(
                title=f"Prevent {pattern.name} failures",
                description=pattern.description,
                priority=priority_for(pattern.occurrences),
                expected_impact=pattern.prevention_success_rate,
                confidence=pattern.confidence,
                actions=sorted(pattern.strategies, key=lambda s: -s.get("success_rate", 0)),
                evidence=[
                    f"Observed {pattern.occurrences} times",
                    f"Success rate: {pattern.prevention_success_rate:.0%}",
                    f"Pattern confidence: {pattern.confidence:.0%}",
                ],
                pattern_id=pattern.id,
            ))
        result.sort(key=lambda r: (-r.priority, -r.expected_impact))
        return result

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            failures = list(self.failures)
            patterns = list(self.patterns)
        by_category: Dict[str, int] = {}
        by_method: Dict[str, int] = {}
        for record in failures:
            by_category[record.category] = by_category.get(record.category, 0) + 1
            if record.resolved and record.resolution_method:
                by_method[record.resolution_method] = by_method.get(record.resolution_method, 0) + 1
        cutoff = datetime.now(timezone.utc) - timedelta(days=7)
        recent = [r for r in failures if (_parse_time(r.timestamp) or cutoff) > cutoff]
        top = sorted(patterns, key=lambda p: -p.occurrences)[:5]
        return {
            "total_failures": len(failures),
            "resolved_failures": sum(1 for r in failures if r.resolved),
            "unresolved_failures": sum(1 for r in failures if not r.resolved),
            "patterns_discovered": len(patterns),
            "active_patterns": sum(1 for p in patterns if p.is_active),
            "failures_by_category": by_category,
            "resolution_methods": by_method,
            "failures_last_7_days": len(recent),
            "resolution_rate_last_7_days": (
                sum(1 for r in recent if r.resolved) / len(recent) if recent else 0.0
            ),
            "top_patterns": [
                {
                    "name": p.name,
                    "category": p.category,
                    "occurrences": p.occurrences,
                    "prevention_success_rate": p.prevention_success_rate,
                }
                for p in top
            ],
        }
