"""Ollama chat backend for the local reasoning tiers."""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import httpx
import time

from escalade.models.base import Backend, GenerationResult
from escalade.types import Message


class OllamaClient:
    def __init__(self, base_url: str = "http://localhost:11434", timeout: float = 120.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def list_models(self) -> list[dict]:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                data = resp.json()
                return data.get("models", [])
        except Exception:
            return []

    def chat(
        self,
        model: str,
        messages: List[Message],
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.text} for m in messages],
            "stream": False,
            "options": {
                "temperature": temperature,
            },
        }
        if max_tokens is not None:
            payload["options"]["num_predict"] = max_tokens

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()
            duration = (time.perf_counter() - start) * 1000
            text = (data.get("message") or {}).get("content", "")
            prompt_tokens = int(data.get("prompt_eval_count") or 0)
            completion_tokens = int(data.get("eval_count") or 0)
            usage = {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            }
            if not text.strip():
                return GenerationResult(text="", duration_ms=duration, ok=False, error="empty response", usage=usage)
            return GenerationResult(text=text, duration_ms=duration, ok=True, usage=usage)
        except Exception as exc:
            duration = (time.perf_counter() - start) * 1000
            return GenerationResult(text="", duration_ms=duration, ok=False, error=str(exc))


class OllamaBackend(Backend):
    def __init__(
        self,
        model_id: str,
        client: OllamaClient | None = None,
        temperature: float = 0.2,
        cost_per_1k_tokens: float = 0.0,
        registry: Any = None,
    ) -> None:
        super().__init__(model_id, cost_per_1k_tokens=cost_per_1k_tokens, registry=registry)
        self.client = client or OllamaClient()
        self.model = model_id.split(":", 1)[1] if model_id.startswith("ollama:") else model_id
        self.temperature = temperature

    def _generate(self, messages: List[Message]) -> GenerationResult:
        return self.client.chat(self.model, messages, temperature=self.temperature)
