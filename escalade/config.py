"""Configuration loader for Escalade."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "escalade" / "config.yaml"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: Path | None = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()) or {}
    override_path = path or USER_CONFIG_PATH
    if override_path.exists():
        override = yaml.safe_load(override_path.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Server
    host = os.getenv("ESCALADE_HOST")
    port = os.getenv("ESCALADE_PORT")
    if host:
        data.setdefault("server", {})["host"] = host
    if port:
        try:
            data.setdefault("server", {})["port"] = int(port)
        except ValueError:
            pass

    # Environment overrides - Data directory
    data_dir = os.getenv("ESCALADE_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir

    # Environment overrides - Reasoning defaults
    min_confidence = os.getenv("ESCALADE_MIN_CONFIDENCE")
    if min_confidence:
        try:
            data.setdefault("reasoning", {})["min_confidence"] = float(min_confidence)
        except ValueError:
            pass

    max_steps = os.getenv("ESCALADE_MAX_STEPS")
    if max_steps:
        try:
            data.setdefault("reasoning", {})["max_steps"] = int(max_steps)
        except ValueError:
            pass

    # Environment overrides - Local backend
    ollama_url = os.getenv("ESCALADE_OLLAMA_URL")
    if ollama_url:
        data.setdefault("models", {})["ollama_url"] = ollama_url

    return data


@dataclass
class Thresholds:
    """Severity and confidence knobs used by validation and consensus.

    Everything here is a tunable heuristic; tests override individual
    values to exercise boundaries.
    """
    blocking: float = 0.7

    fast_low_confidence: float = 0.5
    fast_empty_response: float = 1.0
    fast_ground_truth: float = 0.8
    fast_clean_confidence: float = 0.9
    fast_issue_confidence: float = 0.5

    deep_low_confidence: float = 0.7
    deep_empty_response: float = 1.0
    deep_shallow_reasoning: float = 0.6
    deep_no_assumptions: float = 0.3
    deep_no_evidence: float = 0.5
    deep_ground_truth: float = 0.9
    deep_min_steps: int = 3
    deep_clean_confidence: float = 0.85
    deep_issue_confidence: float = 0.4

    contradiction: float = 0.8

    critique_invalid: float = 0.8
    critique_valid: float = 0.3
    critique_error: float = 0.5

    no_consensus: float = 0.9
    partial_consensus: float = 0.5
    consensus_low_confidence: float = 0.6
    depth_variance: float = 0.4

    @classmethod
    def from_config(cls, config: Dict[str, Any] | None) -> "Thresholds":
        config = config or {}
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in config.items():
            if key not in known or raw is None:
                continue
            try:
                values[key] = int(raw) if key == "deep_min_steps" else float(raw)
            except (TypeError, ValueError):
                continue
        return cls(**values)


@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {}) or {}

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".escalade")
        return Path(self.raw.get("data_dir", default)).expanduser()

    @property
    def models(self) -> Dict[str, Any]:
        return self.raw.get("models", {}) or {}

    @property
    def layers(self) -> List[Dict[str, Any]]:
        return list(self.raw.get("layers", []) or [])

    @property
    def reasoning(self) -> Dict[str, Any]:
        return self.raw.get("reasoning", {}) or {}

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds.from_config(self.raw.get("thresholds"))

    @property
    def learning(self) -> Dict[str, Any]:
        return self.raw.get("learning", {}) or {}

    @property
    def audit_enabled(self) -> bool:
        return bool((self.raw.get("audit", {}) or {}).get("enabled", True))

    @property
    def audit_path(self) -> Path:
        path = (self.raw.get("audit", {}) or {}).get("path")
        return Path(path).expanduser() if path else self.data_dir / "audit.jsonl"

    @property
    def min_confidence(self) -> float:
        """Default confidence bar for requests that do not set one."""
        return float(self.reasoning.get("min_confidence", 0.8))

    @property
    def max_steps(self) -> int | None:
        value = self.reasoning.get("max_steps")
        return int(value) if value else None

    @property
    def adaptive(self) -> bool:
        return bool(self.reasoning.get("adaptive", False))


def get_config() -> Config:
    return Config(load_config())
