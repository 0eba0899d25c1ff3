"""Model registry: capability cards, backend construction, call telemetry."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import json
import threading
import time
import logging

from escalade.models.base import Backend, GenerationResult
from escalade.models.gemini import GeminiBackend, GeminiClient
from escalade.models.ollama import OllamaBackend, OllamaClient

logger = logging.getLogger(__name__)

ERROR_DECAY = 0.8
ERROR_STEP = 0.2


class UnknownModelError(ValueError):
    pass


@dataclass
class ModelRegistry:
    registry_path: Path
    benchmarks_path: Path
    health_path: Path
    cards: Dict[str, Dict[str, Any]]
    ollama_url: str = "http://localhost:11434"

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any], data_dir: Path | None = None) -> "ModelRegistry":
        base = Path(data_dir or Path.home() / ".escalade").expanduser() / "models"
        registry_path = Path(config.get("registry_path") or base / "registry.json").expanduser()
        benchmarks_path = Path(config.get("benchmarks_path") or base / "benchmarks.jsonl").expanduser()
        health_path = Path(config.get("health_path") or base / "health.json").expanduser()
        cards = {card["id"]: dict(card) for card in config.get("cards", []) or []}
        ollama_url = config.get("ollama_url") or "http://localhost:11434"
        instance = cls(registry_path, benchmarks_path, health_path, cards, ollama_url)
        instance._load_registry()
        return instance

    def _load_registry(self) -> None:
        try:
            stored_models = json.loads(self.registry_path.read_text()).get("models", {})
        except FileNotFoundError:
            return
        except (OSError, ValueError, AttributeError):
            logger.warning("Ignoring unreadable registry file %s", self.registry_path, exc_info=True)
            return
        for model_id, stored in stored_models.items():
            # config wins for static fields; only telemetry is restored
            card = self.cards.setdefault(model_id, dict(stored))
            card["metrics"] = dict(stored.get("metrics", {}))

    def save(self) -> None:
        _write_json(self.registry_path, {"updated_at": _stamp(), "models": self.cards})

    def list_models(self) -> List[Dict[str, Any]]:
        return list(self.cards.values())

    def get_model(self, model_id: str) -> Dict[str, Any] | None:
        return self.cards.get(model_id)

    def build_backend(self, model_id: str) -> Backend:
        """Construct a backend for ``model_id`` from its card.

        Unknown ids are accepted when the prefix names a supported provider;
        they simply get zero cost and default temperature.
        """
        card = self.cards.get(model_id, {})
        cost = float(card.get("cost_per_1k_tokens", 0.0) or 0.0)
        temperature = float(card.get("temperature", 0.2))
        if model_id.startswith("ollama:"):
            client = OllamaClient(card.get("base_url") or self.ollama_url, timeout=float(card.get("timeout", 120)))
            return OllamaBackend(model_id, client=client, temperature=temperature,
                                 cost_per_1k_tokens=cost, registry=self)
        if model_id.startswith("gemini-api:"):
            client = GeminiClient(base_url=card.get("base_url") or "https://generativelanguage.googleapis.com/v1beta")
            return GeminiBackend(model_id, client=client, temperature=temperature,
                                 timeout=int(card.get("timeout", 120)), cost_per_1k_tokens=cost, registry=self)
        raise UnknownModelError(f"No backend for model id: {model_id}")

    def record_call(self, model_id: str, result: GenerationResult) -> None:
        """Fold one call into the card's decayed error and timeout rates.

        Calls for models without a card are dropped. Each recorded call
        appends a benchmark line and rewrites registry and health files.
        """
        with self._lock:
            card = self.cards.get(model_id)
            if card is None:
                return
            metrics = card.setdefault("metrics", {})
            timed_out = not result.ok and "timeout" in (result.error or "").lower()
            observation = {
                "p50_latency_ms": round(result.duration_ms, 2),
                "ok": result.ok,
                "error_rate": _decayed(metrics.get("error_rate"), not result.ok),
                "timeout_rate": _decayed(metrics.get("timeout_rate"), timed_out),
            }
            metrics.update(observation)
            stamp = _stamp()
            self.benchmarks_path.parent.mkdir(parents=True, exist_ok=True)
            with self.benchmarks_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps({"timestamp": stamp, "model_id": model_id, **observation}) + "\n")
            try:
                health = json.loads(self.health_path.read_text())
            except (OSError, ValueError):
                health = {}
            health.setdefault("models", {})[model_id] = {"updated_at": stamp, "last_error": result.error, **observation}
            _write_json(self.health_path, health)
            self.save()


def _decayed(previous: Any, hit: bool) -> float:
    rate = float(previous or 0.0) * ERROR_DECAY
    if hit:
        rate = min(1.0, rate + ERROR_STEP)
    return round(rate, 4)


def _stamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))
