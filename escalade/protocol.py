"""Structured output protocol: prompt instructions, tolerant parsers, renderer.

Backends are asked to answer in a line-oriented format::

    REASONING:
    Step 1: ...
    ASSUMPTIONS:
    - ...
    EVIDENCE:
    - ...
    WEAKNESSES:
    - ...
    ANSWER: ...
    CONFIDENCE: 85

Generated text rarely follows the format exactly, so every field the parser
produces is best-effort. The parsers in this module never raise; missing
sections come back as empty lists and a missing confidence as ``None``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional
import re

from escalade.types import clamp

SECTION_REASONING = "reasoning"
SECTION_ASSUMPTIONS = "assumptions"
SECTION_EVIDENCE = "evidence"
SECTION_WEAKNESSES = "weaknesses"
SECTION_ANSWER = "answer"
SECTION_ISSUES = "issues"
SECTION_SUGGESTIONS = "suggestions"

_MARKER_RE = re.compile(
    r"^(REASONING|ASSUMPTIONS|EVIDENCE|WEAKNESSES|ANSWER|CONFIDENCE|VALID|ISSUES|SUGGESTIONS)\s*\**\s*:\s*\**\s*(.*)$",
    re.IGNORECASE,
)
_STEP_RE = re.compile(r"^step\s*(\d+)\s*[:.)\-]\s*(.*)$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

STRUCTURED_FORMAT = """Format your response as:

REASONING:
Step 1: [reasoning]
Step 2: [reasoning]
...

ASSUMPTIONS:
- [assumption]

EVIDENCE:
- [evidence]

WEAKNESSES:
- [potential weakness]

ANSWER: [final answer]
CONFIDENCE: [0-100]"""

CRITIQUE_FORMAT = """Respond in this format:
VALID: [yes/no]
CONFIDENCE: [0-100]
ISSUES:
- [issue]
SUGGESTIONS:
- [suggestion]"""


@dataclass
class StructuredOutput:
    reasoning: List[str] = field(default_factory=list)
    assumptions: List[str] = field(default_factory=list)
    evidence: List[str] = field(default_factory=list)
    weaknesses: List[str] = field(default_factory=list)
    answer: str = ""
    confidence: Optional[float] = None
    answer_found: bool = False


@dataclass
class Critique:
    valid: bool = True
    confidence: float = 0.8
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    valid_found: bool = False


def _split_marker(line: str) -> tuple[str, str] | None:
    """Return (marker, inline value) when the line opens a section."""
    cleaned = line.strip().lstrip("#*> ").strip()
    match = _MARKER_RE.match(cleaned)
    if not match:
        return None
    value = match.group(2).strip().rstrip("*").strip()
    return match.group(1).lower(), value


def _bullet(line: str) -> str | None:
    if not line.startswith("-"):
        return None
    item = line.lstrip("-").strip()
    return item or None


def _step(line: str) -> str | None:
    match = _STEP_RE.match(line)
    if not match:
        return None
    return match.group(2).strip() or None


def parse_confidence(value: str) -> Optional[float]:
    """Normalise a confidence scalar (``85``, ``85%``, ``0.85``) to [0, 1]."""
    if not value:
        return None
    match = _NUMBER_RE.search(value.strip().rstrip("%"))
    if not match:
        return None
    try:
        number = float(match.group(0))
    except ValueError:
        return None
    if number > 1.0:
        number = number / 100.0
    return clamp(number)


def extract_steps(text: str) -> List[str]:
    """Pattern fallback: every line shaped like ``Step <n>: ...``."""
    steps: List[str] = []
    for line in (text or "").splitlines():
        step = _step(line.strip().lstrip("-*# ").strip())
        if step:
            steps.append(step)
    return steps


def last_content_line(text: str) -> str:
    for line in reversed((text or "").splitlines()):
        line = line.strip()
        if line and _split_marker(line) is None:
            return line
    return ""


def parse_structured(text: str) -> StructuredOutput:
    out = StructuredOutput()
    section: str | None = None
    answer_lines: List[str] = []
    lists = {
        SECTION_ASSUMPTIONS: out.assumptions,
        SECTION_EVIDENCE: out.evidence,
        SECTION_WEAKNESSES: out.weaknesses,
    }

    for raw in (text or "").splitlines():
        line = raw.strip()
        marker = _split_marker(line)
        if marker:
            name, value = marker
            if name == "answer":
                out.answer_found = True
                if value:
                    answer_lines = [value]
                    section = None
                else:
                    answer_lines = []
                    section = SECTION_ANSWER
            elif name == "confidence":
                parsed = parse_confidence(value)
                if parsed is not None:
                    out.confidence = parsed
                section = None
            elif name in (SECTION_REASONING, SECTION_ASSUMPTIONS, SECTION_EVIDENCE, SECTION_WEAKNESSES):
                section = name
            else:
                # critique markers inside a reasoning reply end the current section
                section = None
            continue

        if not line:
            continue
        if section == SECTION_REASONING:
            item = _step(line) or _bullet(line)
            if item:
                out.reasoning.append(item)
        elif section == SECTION_ANSWER:
            answer_lines.append(line)
        elif section in lists:
            item = _bullet(line)
            if item:
                lists[section].append(item)

    out.answer = "\n".join(answer_lines).strip()
    if not out.reasoning:
        out.reasoning = extract_steps(text)
    if not out.answer_found:
        out.answer = last_content_line(text)
    return out


def render_structured(output: StructuredOutput) -> str:
    """Render the canonical wire text for ``output``."""
    lines = ["REASONING:"]
    lines.extend(f"Step {idx}: {step}" for idx, step in enumerate(output.reasoning, start=1))
    lines.append("ASSUMPTIONS:")
    lines.extend(f"- {item}" for item in output.assumptions)
    lines.append("EVIDENCE:")
    lines.extend(f"- {item}" for item in output.evidence)
    lines.append("WEAKNESSES:")
    lines.extend(f"- {item}" for item in output.weaknesses)
    if "\n" in output.answer:
        lines.append("ANSWER:")
        lines.extend(output.answer.splitlines())
    else:
        lines.append(f"ANSWER: {output.answer}")
    if output.confidence is not None:
        lines.append(f"CONFIDENCE: {output.confidence!r}")
    return "\n".join(lines)


def parse_critique(text: str) -> Critique:
    critique = Critique()
    section: str | None = None
    for raw in (text or "").splitlines():
        line = raw.strip()
        marker = _split_marker(line)
        if marker:
            name, value = marker
            if name == "valid":
                lowered = value.lower()
                critique.valid = "yes" in lowered or "true" in lowered
                critique.valid_found = True
                section = None
            elif name == "confidence":
                parsed = parse_confidence(value)
                if parsed is not None:
                    critique.confidence = parsed
                section = None
            elif name == "issues":
                section = SECTION_ISSUES
                if value and value.lower() not in {"none", "n/a", "-"}:
                    critique.issues.append(value)
            elif name == "suggestions":
                section = SECTION_SUGGESTIONS
                if value and value.lower() not in {"none", "n/a", "-"}:
                    critique.suggestions.append(value)
            else:
                section = None
            continue
        if not line:
            continue
        item = _bullet(line)
        if not item:
            continue
        if section == SECTION_ISSUES:
            critique.issues.append(item)
        elif section == SECTION_SUGGESTIONS:
            critique.suggestions.append(item)
    return critique
