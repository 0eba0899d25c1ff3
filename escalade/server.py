"""FastAPI server for Escalade."""
from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List
import logging

from escalade.adaptive import plan_for
from escalade.config import get_config
from escalade.models.registry import ModelRegistry
from escalade.orchestrator import build_orchestrator, default_context
from escalade.report import format_breakdown
from escalade.types import Message

logger = logging.getLogger(__name__)

app = FastAPI(title="Escalade")


@app.on_event("startup")
def _startup() -> None:
    config = get_config()
    registry = ModelRegistry.from_config(config.models, config.data_dir)
    orchestrator = build_orchestrator(config, registry=registry)
    app.state.config = config
    app.state.registry = registry
    app.state.orchestrator = orchestrator
    app.state.learner = orchestrator.learner


def _history(value: Any) -> List[Message]:
    if not isinstance(value, list):
        return []
    return [Message.from_dict(item) for item in value if isinstance(item, dict)]


def _context_overrides(payload: Dict[str, Any]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if payload.get("min_confidence") is not None:
        overrides["min_confidence"] = float(payload["min_confidence"])
    if payload.get("max_steps") is not None:
        overrides["max_steps"] = int(payload["max_steps"])
    domain = (payload.get("domain") or "").strip()
    if domain:
        overrides["domain"] = domain
    ground_truth = payload.get("ground_truth")
    if isinstance(ground_truth, dict):
        overrides["ground_truth"] = {str(k): str(v) for k, v in ground_truth.items()}
    return overrides


@app.get("/health")
async def health():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "service": "escalade"}


@app.get("/api/models")
async def models_api(request: Request):
    return {"models": request.app.state.registry.list_models()}


@app.post("/api/reason")
def reason_api(payload: dict, request: Request):
    prompt = (payload.get("prompt") or "").strip()
    if not prompt:
        return JSONResponse({"error": "prompt required"}, status_code=400)
    try:
        overrides = _context_overrides(payload)
    except (TypeError, ValueError) as exc:
        return JSONResponse({"error": f"invalid context: {exc}"}, status_code=400)
    config = request.app.state.config
    orchestrator = request.app.state.orchestrator
    use_adaptive = payload.get("adaptive")
    if use_adaptive is None:
        use_adaptive = config.adaptive
    plan = plan_for(prompt) if use_adaptive else None
    if plan is not None:
        orchestrator = orchestrator.restricted_to(plan.layer_types)
    context = default_context(config, history=_history(payload.get("history")), plan=plan, **overrides)
    run = orchestrator.reason(prompt, context)
    body = run.to_dict()
    if plan is not None:
        body["adaptive"] = plan.to_dict()
    if payload.get("breakdown"):
        body["breakdown"] = format_breakdown(run)
    return body


@app.post("/api/analyze")
async def analyze_api(payload: dict):
    prompt = (payload.get("prompt") or "").strip()
    if not prompt:
        return JSONResponse({"error": "prompt required"}, status_code=400)
    return plan_for(prompt).to_dict()


@app.get("/api/failures/stats")
async def failures_stats_api(request: Request):
    learner = request.app.state.learner
    if learner is None:
        return JSONResponse({"error": "failure learning disabled"}, status_code=404)
    return learner.statistics()


@app.get("/api/failures/recommendations")
def failures_recommendations_api(request: Request, limit: int = 10):
    learner = request.app.state.learner
    if learner is None:
        return JSONResponse({"error": "failure learning disabled"}, status_code=404)
    learner.learn_patterns()
    return {"recommendations": [r.to_dict() for r in learner.recommendations(limit=limit)]}


def main():
    import uvicorn
    config = get_config()
    host = config.server.get("host", "127.0.0.1")
    port = int(config.server.get("port", 8097))
    uvicorn.run("escalade.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
