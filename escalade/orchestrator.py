"""Escalation orchestrator: run layers cheapest first, stop early when confident."""
from __future__ import annotations

from typing import Any, List, Optional, Sequence
import logging
import threading
import time
import uuid

from escalade.adaptive import AdaptivePlan
from escalade.audit import AuditLog
from escalade.config import Config, Thresholds
from escalade.consensus import ConsensusResolver
from escalade.layers import LAYER_TYPES, ReasoningLayer, VerificationLayer
from escalade.learning import FailureLearner
from escalade.models.base import RunCancelled
from escalade.models.registry import ModelRegistry
from escalade.types import (
    CrossValidationResult,
    Message,
    ReasoningContext,
    ReasoningResult,
    RunResult,
)

logger = logging.getLogger(__name__)


class NoLayersError(RuntimeError):
    pass


class Orchestrator:
    """Sequential escalation across registered layers.

    Layers run in registration order. After each successful layer the result
    is validated; a valid result that clears ``context.min_confidence`` stops
    escalation. When two or more layers produced answers they are reconciled
    by the consensus resolver. Callers always get a ``RunResult`` back, even
    when every layer failed or the run was cancelled.
    """

    def __init__(
        self,
        thresholds: Thresholds | None = None,
        audit: AuditLog | None = None,
        learner: Any = None,
    ) -> None:
        self.thresholds = thresholds or Thresholds()
        self.audit = audit
        self.learner = learner
        self._layers: List[ReasoningLayer] = []

    @property
    def layers(self) -> List[ReasoningLayer]:
        return list(self._layers)

    def add_layer(self, layer: ReasoningLayer) -> "Orchestrator":
        if layer is None:
            raise ValueError("layer is required")
        self._layers.append(layer)
        return self

    def clear_layers(self) -> None:
        self._layers.clear()

    def restricted_to(self, layer_types: Sequence[str]) -> "Orchestrator":
        """Copy of this orchestrator keeping only layers of the given types.

        Registration order is kept. When no layer matches, every layer is kept.
        """
        wanted = set(layer_types)
        kept = [layer for layer in self._layers if layer.layer_type in wanted]
        if not kept:
            logger.info("No layers of type %s registered; keeping all", sorted(wanted))
            kept = list(self._layers)
        narrowed = Orchestrator(thresholds=self.thresholds, audit=self.audit, learner=self.learner)
        narrowed._layers = kept
        return narrowed

    def reason(
        self,
        prompt: str,
        context: ReasoningContext | None = None,
        cancel: threading.Event | None = None,
    ) -> RunResult:
        if not self._layers:
            raise NoLayersError("No reasoning layers configured. Add at least one layer.")
        context = context or ReasoningContext()
        run_id = time.strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:6]
        start = time.perf_counter()
        run = RunResult(prompt=prompt)
        planned = self._planned_layers(context)
        self._log("run.start", run_id, {
            "prompt": prompt,
            "layers": [layer.name for layer in planned],
            "min_confidence": context.min_confidence,
        })

        successes: List[ReasoningResult] = []
        errors: List[str] = []
        backends = {id(layer.backend): layer.backend for layer in self._layers}
        baseline = {key: backend.total_cost for key, backend in backends.items()}
        try:
            for index, layer in enumerate(planned):
                if cancel is not None and cancel.is_set():
                    raise RunCancelled(f"cancelled before layer {layer.name}")
                cost_before = layer.backend.total_cost
                result = layer.reason(prompt, context, cancel=cancel)
                run.layer_results.append(result)
                self._log("layer.result", run_id, {"layer": layer.name, "result": result.to_dict()})

                if not result.is_valid:
                    errors.append(f"{layer.name}: {'; '.join(result.validation_issues) or result.response}")
                    run.validations.append(None)
                    run.total_cost += max(0.0, layer.backend.total_cost - cost_before)
                    logger.info("Layer %s failed; escalating", layer.name)
                    continue

                validation = layer.validate(result, context, cancel=cancel)
                run.validations.append(validation)
                run.total_cost += max(0.0, layer.backend.total_cost - cost_before)
                successes.append(result)
                self._log("layer.validation", run_id, {"layer": layer.name, "validation": validation.to_dict()})

                if validation.is_valid and result.confidence >= context.min_confidence:
                    run.early_stopped = True
                    run.early_stop_reason = f"Layer '{layer.name}' achieved {result.confidence:.0%} confidence"
                    logger.info("Early stop after %s (%d/%d layers)", layer.name, index + 1, len(planned))
                    self._log("run.early_stop", run_id, {"layer": layer.name, "reason": run.early_stop_reason})
                    break
                logger.info(
                    "Layer %s not confident enough (%.2f, valid=%s); escalating",
                    layer.name, result.confidence, validation.is_valid,
                )

            if len(successes) >= 2:
                cross = self._cross_validate(successes, context, cancel)
                run.cross_validation = cross
                run.total_cost += cross.cost
                run.final_answer = cross.consensus_answer
                run.final_confidence = cross.confidence
                self._log("consensus.result", run_id, {
                    "consensus_answer": cross.consensus_answer,
                    "confidence": cross.confidence,
                    "is_valid": cross.is_valid,
                    "issues": [issue.to_dict() for issue in cross.issues],
                })
            elif successes:
                run.final_answer = successes[0].response
                run.final_confidence = successes[0].confidence

            if successes:
                run.is_successful = True
            else:
                run.error = "All reasoning layers failed: " + " | ".join(errors)
        except RunCancelled as exc:
            run.cancelled = True
            run.is_successful = False
            run.error = (
                f"Reasoning cancelled after {len(run.layer_results)} of {len(planned)} layers ({exc})"
            )
            # charges made before the cancel was observed still count
            run.total_cost = sum(
                max(0.0, backend.total_cost - baseline[key]) for key, backend in backends.items()
            )
            if successes:
                run.final_answer = successes[-1].response
                run.final_confidence = successes[-1].confidence
            logger.info("Run %s cancelled", run_id)
            self._log("run.cancelled", run_id, {"completed_layers": len(run.layer_results)})

        run.total_duration_ms = (time.perf_counter() - start) * 1000
        self._log("run.complete", run_id, {
            "final_answer": run.final_answer,
            "final_confidence": run.final_confidence,
            "is_successful": run.is_successful,
            "early_stopped": run.early_stopped,
            "total_cost": run.total_cost,
            "total_duration_ms": run.total_duration_ms,
            "error": run.error,
        })
        if self.learner is not None:
            try:
                self.learner.record_run(run, context)
            except Exception:
                logger.warning("Failed to record failures for run %s", run_id, exc_info=True)
        return run

    def _planned_layers(self, context: ReasoningContext) -> List[ReasoningLayer]:
        if context.max_steps is None:
            return list(self._layers)
        return list(self._layers[:max(1, context.max_steps)])

    def _cross_validate(
        self,
        results: List[ReasoningResult],
        context: ReasoningContext,
        cancel: threading.Event | None,
    ) -> CrossValidationResult:
        verifier = next((layer for layer in self._layers if isinstance(layer, VerificationLayer)), None)
        if verifier is not None:
            return verifier.cross_validate(results, context, cancel=cancel)
        return ConsensusResolver(thresholds=self.thresholds).resolve(results, context, cancel=cancel)

    def _log(self, event: str, run_id: str, data: dict) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(event, run_id, data)
        except Exception:
            logger.warning("Failed to write audit event %s for run %s", event, run_id, exc_info=True)


def build_orchestrator(config: Config, registry: ModelRegistry | None = None) -> Orchestrator:
    """Wire configured layers to registry-built backends."""
    registry = registry or ModelRegistry.from_config(config.models, config.data_dir)
    thresholds = config.thresholds
    audit = AuditLog(config.audit_path) if config.audit_enabled else None
    learner = None
    if config.learning.get("enabled", True):
        learner = FailureLearner.from_config(config)
    orchestrator = Orchestrator(thresholds=thresholds, audit=audit, learner=learner)
    for entry in config.layers:
        layer_type = str(entry.get("type", "")).lower()
        layer_cls = LAYER_TYPES.get(layer_type)
        if layer_cls is None:
            raise ValueError(f"Unknown layer type: {layer_type!r}")
        model_id = entry.get("model")
        if not model_id:
            raise ValueError(f"Layer {layer_type!r} has no model configured")
        backend = registry.build_backend(model_id)
        orchestrator.add_layer(layer_cls(backend, name=entry.get("name"), thresholds=thresholds))
    return orchestrator


def default_context(
    config: Config,
    history: Optional[List[Message]] = None,
    plan: AdaptivePlan | None = None,
    **overrides: Any,
) -> ReasoningContext:
    """Context from config defaults, then an adaptive plan, then explicit overrides."""
    values = {
        "min_confidence": config.min_confidence,
        "max_steps": config.max_steps,
    }
    if plan is not None:
        values["min_confidence"] = plan.min_confidence
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ReasoningContext(history=tuple(history or ()), **values)
