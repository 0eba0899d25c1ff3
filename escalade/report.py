"""Human-readable breakdown of a reasoning run."""
from __future__ import annotations

from typing import List

from escalade.types import RunResult


def format_breakdown(run: RunResult) -> str:
    lines: List[str] = [
        f"Prompt: {run.prompt}",
        f"Final Answer: {run.final_answer}",
        f"Confidence: {run.final_confidence:.0%}",
        f"Duration: {run.total_duration_ms:.0f}ms",
        f"Cost: ${run.total_cost:.6f}",
    ]
    if run.early_stopped and run.early_stop_reason:
        lines.append(f"Early Stop: {run.early_stop_reason}")
    if run.error:
        lines.append(f"Error: {run.error}")
    lines.append("")

    for i, layer in enumerate(run.layer_results, start=1):
        lines.append(f"Layer {i}: {layer.provider}")
        lines.append(f"  Answer: {layer.response}")
        lines.append(f"  Confidence: {layer.confidence:.0%}")
        lines.append(f"  Steps: {len(layer.reasoning_chain)}")
        lines.append(f"  Duration: {layer.duration_ms:.0f}ms")
        lines.append(f"  Cost: ${layer.cost:.6f}")
        if layer.assumptions:
            lines.append(f"  Assumptions: {', '.join(layer.assumptions[:3])}")
        if layer.weaknesses:
            lines.append(f"  Weaknesses: {', '.join(layer.weaknesses[:3])}")
        lines.append("")

    cross = run.cross_validation
    if cross is not None:
        lines.append("Cross-Validation:")
        lines.append(f"  Valid: {cross.is_valid}")
        lines.append(f"  Confidence: {cross.confidence:.0%}")
        lines.append(f"  Issues: {len(cross.issues)}")
        if cross.agreements:
            lines.append(f"  Agreements: {'; '.join(cross.agreements)}")
        if cross.disagreements:
            lines.append(f"  Disagreements: {'; '.join(cross.disagreements)}")
    return "\n".join(lines).rstrip() + "\n"
