import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from escalade.cli import _load_history, _parse_ground_truth, build_parser, main
from escalade.config import Config
from escalade.layers import FastLayer
from escalade.learning import FailureCategory, FailureLearner, FailureRecord
from escalade.orchestrator import Orchestrator
from escalade.types import ROLE_ASSISTANT
from tests.fakes import ScriptedBackend, structured_reply


class TestHelpers(unittest.TestCase):
    def test_parse_ground_truth(self):
        self.assertEqual(_parse_ground_truth(["capital = Paris", "sum=4"]), {"capital": "Paris", "sum": "4"})
        self.assertEqual(_parse_ground_truth(None), {})
        with self.assertRaises(SystemExit):
            _parse_ground_truth(["no-separator"])

    def test_load_history(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "history.json"
            path.write_text(json.dumps({"history": [{"role": "assistant", "content": "earlier"}, "junk"]}))
            history = _load_history(str(path))
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].role, ROLE_ASSISTANT)
        self.assertEqual(history[0].text, "earlier")
        self.assertEqual(_load_history(None), [])

    def test_parser(self):
        args = build_parser().parse_args(["reason", "--prompt", "q", "--max-steps", "2", "--ground-truth", "a=b"])
        self.assertEqual(args.command, "reason")
        self.assertEqual(args.max_steps, 2)
        self.assertEqual(args.ground_truth, ["a=b"])


class TestCommands(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = Config({"data_dir": self.tmp.name, "reasoning": {"min_confidence": 0.8}})

    def tearDown(self):
        self.tmp.cleanup()

    def _orchestrator(self, reply):
        orchestrator = Orchestrator()
        orchestrator.add_layer(FastLayer(ScriptedBackend([reply])))
        return orchestrator

    def _run(self, argv):
        out = io.StringIO()
        with redirect_stdout(out):
            main(argv)
        return out.getvalue()

    def test_reason_json(self):
        with patch("escalade.cli.get_config", return_value=self.config), \
                patch("escalade.cli.build_orchestrator", return_value=self._orchestrator(structured_reply("4", 95))):
            output = self._run(["reason", "--prompt", "What is 2+2?"])
        body = json.loads(output)
        self.assertEqual(body["final_answer"], "4")
        self.assertTrue(body["is_successful"])

    def test_reason_breakdown(self):
        with patch("escalade.cli.get_config", return_value=self.config), \
                patch("escalade.cli.build_orchestrator", return_value=self._orchestrator(structured_reply("4", 95))):
            output = self._run(["reason", "--prompt", "q", "--breakdown"])
        self.assertIn("Final Answer: 4", output)

    def test_reason_adaptive(self):
        with patch("escalade.cli.get_config", return_value=self.config), \
                patch("escalade.cli.build_orchestrator", return_value=self._orchestrator(structured_reply("4", 95))):
            output = self._run(["reason", "--prompt", "What is 2+2?", "--adaptive"])
        body = json.loads(output)
        self.assertEqual(body["adaptive"]["complexity"]["level"], "Simple")
        self.assertTrue(body["early_stopped"])

    def test_analyze(self):
        body = json.loads(self._run(["analyze", "--prompt", "Explain how a distributed algorithm works"]))
        self.assertEqual(body["complexity"]["level"], "Moderate")
        self.assertEqual(body["layer_types"], ["fast", "deep"])

    def test_reason_failure_exits_nonzero(self):
        with patch("escalade.cli.get_config", return_value=self.config), \
                patch("escalade.cli.build_orchestrator", return_value=self._orchestrator(RuntimeError("down"))):
            with self.assertRaises(SystemExit) as ctx:
                self._run(["reason", "--prompt", "q"])
        self.assertEqual(ctx.exception.code, 1)

    def test_models_layers(self):
        config = Config({"data_dir": self.tmp.name, "layers": [{"type": "fast", "model": "ollama:x"}]})
        with patch("escalade.cli.get_config", return_value=config):
            output = self._run(["models", "layers"])
        self.assertEqual(json.loads(output), {"layers": [{"type": "fast", "model": "ollama:x"}]})

    def test_models_list(self):
        config = Config({"data_dir": self.tmp.name, "models": {"cards": [{"id": "ollama:x"}]}})
        with patch("escalade.cli.get_config", return_value=config):
            output = self._run(["models", "list"])
        self.assertEqual(json.loads(output)["models"][0]["id"], "ollama:x")

    def test_failures_stats_and_resolve(self):
        learner = FailureLearner.from_config(self.config)
        record = learner.record(FailureRecord(prompt="q", response="r", category=FailureCategory.OTHER, severity=0.8))
        with patch("escalade.cli.get_config", return_value=self.config):
            stats = json.loads(self._run(["failures", "stats"]))
            resolved = json.loads(self._run(["failures", "resolve", record.id, "--method", "Retry"]))
            with self.assertRaises(SystemExit):
                self._run(["failures", "resolve", "missing"])
            patterns = json.loads(self._run(["failures", "patterns"]))
            recs = json.loads(self._run(["failures", "recommend", "--limit", "2"]))
        self.assertEqual(stats["total_failures"], 1)
        self.assertEqual(resolved, {"ok": True})
        self.assertEqual(patterns["new"], [])
        self.assertEqual(recs, {"recommendations": []})

    def test_no_command_prints_help(self):
        output = self._run([])
        self.assertIn("usage: escalade", output)


if __name__ == "__main__":
    unittest.main()
