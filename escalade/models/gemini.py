"""Native Gemini API client for Escalade."""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List

import httpx

from escalade.models.base import Backend, GenerationResult
from escalade.types import ROLE_ASSISTANT, ROLE_SYSTEM, Message

logger = logging.getLogger(__name__)


class GeminiClient:
    """Native Gemini API client using httpx."""

    MODEL_MAP = {
        "2.5-flash": "gemini-2.5-flash",
        "2.5-pro": "gemini-2.5-pro",
        "2.0-flash": "gemini-2.0-flash",
        "1.5-flash": "gemini-1.5-flash",
        "1.5-pro": "gemini-1.5-pro",
    }

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ) -> None:
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self.base_url = base_url.rstrip("/")

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def build_body(messages: List[Message], temperature: float) -> Dict[str, Any]:
        """Map role-tagged messages onto Gemini contents + systemInstruction."""
        system_parts = [{"text": m.text} for m in messages if m.role == ROLE_SYSTEM and m.text]
        contents = []
        for m in messages:
            if m.role == ROLE_SYSTEM:
                continue
            role = "model" if m.role == ROLE_ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": m.text}]})
        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
            },
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        return body

    def generate(
        self,
        messages: List[Message],
        model: str = "2.5-flash",
        temperature: float = 0.2,
        timeout: int = 120,
    ) -> GenerationResult:
        if not self.api_key:
            return GenerationResult(text="", duration_ms=0.0, ok=False, error="GEMINI_API_KEY not set")

        url = f"{self.base_url}/models/{self.MODEL_MAP.get(model, model)}:generateContent"
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        start = time.perf_counter()

        def failed(error: str) -> GenerationResult:
            return GenerationResult(text="", duration_ms=(time.perf_counter() - start) * 1000, ok=False, error=error)

        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(url, json=self.build_body(messages, temperature), headers=headers)
            if response.status_code != 200:
                return failed(f"HTTP {response.status_code}: {response.text[:500]}")
            data = response.json()
        except httpx.TimeoutException:
            return failed(f"Gemini API timeout after {timeout}s")
        except Exception as exc:
            logger.debug("Gemini call to %s failed", model, exc_info=True)
            return failed(str(exc))

        candidates = data.get("candidates") or []
        if not candidates:
            return failed("No candidates in response")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        meta = data.get("usageMetadata") or {}
        usage = {
            "prompt_tokens": meta.get("promptTokenCount", 0),
            "completion_tokens": meta.get("candidatesTokenCount", 0),
            "total_tokens": meta.get("totalTokenCount", 0),
        }
        duration_ms = (time.perf_counter() - start) * 1000
        if not text.strip():
            # blocked or truncated candidates come back with no parts
            return GenerationResult(text="", duration_ms=duration_ms, ok=False, error="empty response", usage=usage)
        return GenerationResult(text=text, duration_ms=duration_ms, ok=True, usage=usage)


class GeminiBackend(Backend):
    def __init__(
        self,
        model_id: str,
        client: GeminiClient | None = None,
        temperature: float = 0.2,
        timeout: int = 120,
        cost_per_1k_tokens: float = 0.0,
        registry: Any = None,
    ) -> None:
        super().__init__(model_id, cost_per_1k_tokens=cost_per_1k_tokens, registry=registry)
        self.client = client or GeminiClient()
        self.model = model_id.split(":", 1)[1] if ":" in model_id else "2.5-flash"
        self.temperature = temperature
        self.timeout = timeout

    def _generate(self, messages: List[Message]) -> GenerationResult:
        return self.client.generate(messages, model=self.model, temperature=self.temperature, timeout=self.timeout)
