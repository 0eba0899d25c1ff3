"""Scripted backends for exercising layers and the orchestrator offline."""
from __future__ import annotations

import threading
from typing import Callable, List, Optional, Sequence, Union

from escalade.models.base import Backend, GenerationResult
from escalade.types import Message

Reply = Union[str, Exception]


class ScriptedBackend(Backend):
    """Returns queued replies in order; the last reply repeats once the queue drains.

    Every call is charged ``tokens_per_call`` tokens so cost deltas are
    predictable: with the defaults each call costs exactly 0.001.
    """

    def __init__(
        self,
        replies: Sequence[Reply],
        model_id: str = "fake:model",
        cost_per_1k_tokens: float = 0.001,
        tokens_per_call: int = 1000,
        on_call: Optional[Callable[[List[Message]], None]] = None,
    ) -> None:
        super().__init__(model_id, cost_per_1k_tokens=cost_per_1k_tokens)
        self.replies = list(replies)
        self.tokens_per_call = tokens_per_call
        self.on_call = on_call
        self.calls: List[List[Message]] = []

    def _generate(self, messages: List[Message]) -> GenerationResult:
        self.calls.append(list(messages))
        if self.on_call is not None:
            self.on_call(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        usage = {"total_tokens": self.tokens_per_call}
        if isinstance(reply, Exception):
            return GenerationResult(text="", duration_ms=1.0, ok=False, error=str(reply), usage=usage)
        return GenerationResult(text=reply, duration_ms=1.0, ok=True, usage=usage)


class RaisingBackend(Backend):
    """Raises from inside the transport, the way a broken client would."""

    def __init__(self, error: Exception, model_id: str = "fake:broken") -> None:
        super().__init__(model_id)
        self.error = error

    def _generate(self, messages: List[Message]) -> GenerationResult:
        raise self.error


def structured_reply(
    answer: str,
    confidence: int | None = None,
    steps: Sequence[str] = ("Read the question", "Recall the relevant fact", "State the result"),
    assumptions: Sequence[str] = ("The question is well-formed",),
    evidence: Sequence[str] = ("Standard reference material",),
    weaknesses: Sequence[str] = (),
) -> str:
    lines = ["REASONING:"]
    lines.extend(f"Step {i}: {step}" for i, step in enumerate(steps, start=1))
    lines.append("ASSUMPTIONS:")
    lines.extend(f"- {item}" for item in assumptions)
    lines.append("EVIDENCE:")
    lines.extend(f"- {item}" for item in evidence)
    lines.append("WEAKNESSES:")
    lines.extend(f"- {item}" for item in weaknesses)
    lines.append(f"ANSWER: {answer}")
    if confidence is not None:
        lines.append(f"CONFIDENCE: {confidence}")
    return "\n".join(lines)


def cancel_after_call(event: threading.Event) -> Callable[[List[Message]], None]:
    def _hook(messages: List[Message]) -> None:
        event.set()
    return _hook
