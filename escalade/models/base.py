"""Backend contract: role-tagged messages in, generated text out, running cost."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging
import threading

from escalade.types import Message

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when a backend call fails (transport error, timeout, bad reply)."""
    pass


class RunCancelled(Exception):
    """Raised when the caller's cancellation signal is observed."""
    pass


@dataclass
class GenerationResult:
    text: str
    duration_ms: float
    ok: bool
    error: Optional[str] = None
    usage: Dict[str, Any] | None = None


def check_cancel(cancel: threading.Event | None, where: str = "") -> None:
    if cancel is not None and cancel.is_set():
        raise RunCancelled(f"cancelled {where}".strip())


def estimate_tokens(text: str) -> float:
    return float(len(text or "")) / 4.0


class Backend:
    """Base class for text-generation backends.

    Subclasses implement ``_generate``; ``complete`` adds cancellation checks,
    cost accounting and telemetry. The running cost only ever grows and is
    safe to read from other threads.
    """

    def __init__(
        self,
        model_id: str,
        cost_per_1k_tokens: float = 0.0,
        registry: Any = None,
    ) -> None:
        self.model_id = model_id
        self.cost_per_1k_tokens = float(cost_per_1k_tokens or 0.0)
        self.registry = registry
        self._lock = threading.Lock()
        self._total_cost = 0.0

    @property
    def total_cost(self) -> float:
        with self._lock:
            return self._total_cost

    def _charge(self, tokens: float) -> None:
        if tokens <= 0 or self.cost_per_1k_tokens <= 0:
            return
        with self._lock:
            self._total_cost += tokens * self.cost_per_1k_tokens / 1000.0

    def _generate(self, messages: List[Message]) -> GenerationResult:
        raise NotImplementedError

    def complete(self, messages: Sequence[Message], cancel: threading.Event | None = None) -> str:
        check_cancel(cancel, f"before {self.model_id} call")
        messages = list(messages)
        result = self._generate(messages)
        self._charge(self._tokens_used(messages, result))
        self._record(result)
        check_cancel(cancel, f"during {self.model_id} call")
        if not result.ok:
            raise BackendError(result.error or f"{self.model_id} returned no text")
        return result.text

    def _tokens_used(self, messages: List[Message], result: GenerationResult) -> float:
        usage = result.usage or {}
        total = usage.get("total_tokens")
        if total:
            return float(total)
        prompt_tokens = sum(estimate_tokens(m.text) for m in messages)
        return prompt_tokens + estimate_tokens(result.text)

    def _record(self, result: GenerationResult) -> None:
        if self.registry is None:
            return
        try:
            self.registry.record_call(self.model_id, result)
        except Exception:
            logger.warning("Failed to record telemetry for %s", self.model_id, exc_info=True)
