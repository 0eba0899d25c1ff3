"""Data model shared by layers, the consensus resolver and the orchestrator."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

BLOCKING_SEVERITY = 0.7


class LayerType:
    FAST = "fast"
    DEEP = "deep"
    VERIFICATION = "verification"


class ResponseSpeed:
    FAST = "fast"  # < 2s
    MEDIUM = "medium"  # 2-10s
    SLOW = "slow"  # > 10s


class CostLevel:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueType:
    LOW_CONFIDENCE = "LowConfidence"
    EMPTY_RESPONSE = "EmptyResponse"
    GROUND_TRUTH_MISMATCH = "GroundTruthMismatch"
    SHALLOW_REASONING = "ShallowReasoning"
    NO_ASSUMPTIONS = "NoAssumptions"
    NO_EVIDENCE = "NoEvidence"
    CONTRADICTION = "Contradiction"
    CROSS_VALIDATION = "CrossValidation"
    NO_CONSENSUS = "NoConsensus"
    PARTIAL_CONSENSUS = "PartialConsensus"
    REASONING_DEPTH_VARIANCE = "ReasoningDepthVariance"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return low
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


@dataclass(frozen=True)
class Message:
    role: str
    text: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(role=str(data.get("role") or ROLE_USER), text=str(data.get("text") or data.get("content") or ""))


@dataclass(frozen=True)
class ReasoningContext:
    """Immutable per-request input supplied by the caller."""

    history: tuple = ()
    min_confidence: float = 0.8
    domain: Optional[str] = None
    max_steps: Optional[int] = None
    ground_truth: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "history", tuple(self.history or ()))
        object.__setattr__(self, "min_confidence", clamp(self.min_confidence))
        object.__setattr__(self, "ground_truth", dict(self.ground_truth or {}))


@dataclass
class ReasoningResult:
    response: str = ""
    confidence: float = 0.0
    reasoning_chain: List[str] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    provider: str = ""
    cost: float = 0.0
    is_valid: bool = True
    validation_issues: List[str] = field(default_factory=list)
    layer: str = ""

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)

    @classmethod
    def failure(cls, layer: str, provider: str, error: str, duration_ms: float = 0.0) -> "ReasoningResult":
        return cls(
            response=f"{layer} failed: {error}",
            confidence=0.0,
            duration_ms=duration_ms,
            provider=provider,
            is_valid=False,
            validation_issues=[error],
            layer=layer,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationIssue:
    type: str
    description: str
    severity: float
    step_index: Optional[int] = None

    def __post_init__(self) -> None:
        self.severity = clamp(self.severity)

    def is_blocking(self, threshold: float = BLOCKING_SEVERITY) -> bool:
        return self.severity >= threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def has_blocking(issues: List[ValidationIssue], threshold: float = BLOCKING_SEVERITY) -> bool:
    return any(issue.is_blocking(threshold) for issue in issues)


@dataclass
class ValidationResult:
    is_valid: bool
    confidence: float
    issues: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CrossValidationResult:
    is_valid: bool
    confidence: float
    issues: List[ValidationIssue] = field(default_factory=list)
    agreements: List[str] = field(default_factory=list)
    disagreements: List[str] = field(default_factory=list)
    consensus_answer: str = ""
    layer_results: List[ReasoningResult] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    duration_ms: float = 0.0
    cost: float = 0.0

    def __post_init__(self) -> None:
        self.confidence = clamp(self.confidence)

    def issue_types(self) -> List[str]:
        return [issue.type for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RunResult:
    """Outcome of one orchestrated reasoning request."""

    prompt: str = ""
    final_answer: str = ""
    final_confidence: float = 0.0
    layer_results: List[ReasoningResult] = field(default_factory=list)
    validations: List[Optional[ValidationResult]] = field(default_factory=list)
    cross_validation: Optional[CrossValidationResult] = None
    total_duration_ms: float = 0.0
    total_cost: float = 0.0
    early_stopped: bool = False
    early_stop_reason: Optional[str] = None
    is_successful: bool = False
    cancelled: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
