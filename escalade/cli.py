"""Command line interface for Escalade."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from escalade.adaptive import plan_for
from escalade.config import get_config
from escalade.learning import FailureLearner
from escalade.models.registry import ModelRegistry
from escalade.orchestrator import build_orchestrator, default_context
from escalade.report import format_breakdown
from escalade.types import Message


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _parse_ground_truth(items: List[str] | None) -> Dict[str, str]:
    facts: Dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"--ground-truth expects KEY=VALUE, got: {item!r}")
        facts[key.strip()] = value.strip()
    return facts


def _load_history(path: str | None) -> List[Message]:
    if not path:
        return []
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        data = data.get("history") or data.get("messages") or []
    return [Message.from_dict(item) for item in data if isinstance(item, dict)]


def cmd_reason(args: argparse.Namespace) -> None:
    config = get_config()
    orchestrator = build_orchestrator(config)
    plan = None
    if args.adaptive or config.adaptive:
        plan = plan_for(args.prompt)
        orchestrator = orchestrator.restricted_to(plan.layer_types)
    context = default_context(
        config,
        history=_load_history(args.history_file),
        plan=plan,
        min_confidence=args.min_confidence,
        max_steps=args.max_steps,
        domain=args.domain,
        ground_truth=_parse_ground_truth(args.ground_truth) or None,
    )
    run = orchestrator.reason(args.prompt, context)
    if args.breakdown:
        if plan is not None:
            print(f"Complexity: {plan.complexity.level} ({plan.complexity.score:.2f})")
        print(format_breakdown(run))
    else:
        body = run.to_dict()
        if plan is not None:
            body["adaptive"] = plan.to_dict()
        _print(body)
    if not run.is_successful:
        raise SystemExit(1)


def cmd_analyze(args: argparse.Namespace) -> None:
    _print(plan_for(args.prompt).to_dict())


def cmd_models(args: argparse.Namespace) -> None:
    config = get_config()
    registry = ModelRegistry.from_config(config.models, config.data_dir)
    if args.models_cmd == "list":
        _print({"models": registry.list_models()})
    else:
        _print({"layers": config.layers})


def cmd_failures(args: argparse.Namespace) -> None:
    config = get_config()
    learner = FailureLearner.from_config(config)
    if args.failures_cmd == "stats":
        _print(learner.statistics())
    elif args.failures_cmd == "patterns":
        new_patterns = learner.learn_patterns()
        _print({
            "new": [p.id for p in new_patterns],
            "patterns": [p.to_dict() for p in learner.patterns],
        })
    elif args.failures_cmd == "recommend":
        learner.learn_patterns()
        _print({"recommendations": [r.to_dict() for r in learner.recommendations(limit=args.limit)]})
    elif args.failures_cmd == "resolve":
        ok = learner.resolve(args.failure_id, args.method, args.note)
        _print({"ok": ok})
        if not ok:
            raise SystemExit(1)


def cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn
    config = get_config()
    host = args.host or config.server.get("host", "127.0.0.1")
    port = int(args.port or config.server.get("port", 8097))
    uvicorn.run("escalade.server:app", host=host, port=port, reload=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="escalade")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command")

    reason = sub.add_parser("reason", help="Run escalating reasoning over a prompt")
    reason.add_argument("--prompt", required=True)
    reason.add_argument("--min-confidence", type=float)
    reason.add_argument("--max-steps", type=int)
    reason.add_argument("--domain")
    reason.add_argument("--ground-truth", action="append", metavar="KEY=VALUE")
    reason.add_argument("--history-file", help="JSON list of {role, text} messages")
    reason.add_argument("--breakdown", action="store_true", help="Print a readable breakdown instead of JSON")
    reason.add_argument("--adaptive", action="store_true", help="Pick layers and confidence bar from prompt complexity")

    analyze = sub.add_parser("analyze", help="Show the adaptive plan for a prompt without running it")
    analyze.add_argument("--prompt", required=True)

    models = sub.add_parser("models")
    models_sub = models.add_subparsers(dest="models_cmd")
    models_sub.add_parser("list")
    models_sub.add_parser("layers")

    failures = sub.add_parser("failures")
    failures_sub = failures.add_subparsers(dest="failures_cmd")
    failures_sub.add_parser("stats")
    failures_sub.add_parser("patterns")
    recommend = failures_sub.add_parser("recommend")
    recommend.add_argument("--limit", type=int, default=10)
    resolve = failures_sub.add_parser("resolve")
    resolve.add_argument("failure_id")
    resolve.add_argument("--method", default="Manual")
    resolve.add_argument("--note")

    serve = sub.add_parser("serve")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.command == "reason":
        cmd_reason(args)
    elif args.command == "analyze":
        cmd_analyze(args)
    elif args.command == "models":
        cmd_models(args)
    elif args.command == "failures":
        cmd_failures(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
