import json
import tempfile
import unittest
from pathlib import Path

from escalade.learning import (
    CALL_FAILURE,
    FailureCategory,
    FailureLearner,
    FailureRecord,
    ResolutionMethod,
    categorize,
    priority_for,
)
from escalade.types import (
    CrossValidationResult,
    IssueType,
    ReasoningContext,
    ReasoningResult,
    RunResult,
    ValidationIssue,
    ValidationResult,
)


def _issue(issue_type, severity=0.9):
    return ValidationIssue(type=issue_type, description=issue_type, severity=severity)


def _record(category, *issue_types):
    return FailureRecord(
        prompt="q",
        response="r",
        category=category,
        severity=0.9,
        issues=[{"type": t, "description": t, "severity": 0.9} for t in issue_types],
    )


class TestCategorize(unittest.TestCase):
    def test_first_rule_wins(self):
        self.assertEqual(categorize([IssueType.LOW_CONFIDENCE, IssueType.CONTRADICTION]), FailureCategory.CONTRADICTION)
        self.assertEqual(categorize([IssueType.GROUND_TRUTH_MISMATCH]), FailureCategory.HALLUCINATION)
        self.assertEqual(categorize([IssueType.NO_CONSENSUS]), FailureCategory.LOGICAL_ERROR)
        self.assertEqual(categorize([IssueType.EMPTY_RESPONSE]), FailureCategory.FORMAT_ERROR)
        self.assertEqual(categorize([CALL_FAILURE, IssueType.CONTRADICTION]), FailureCategory.PROVIDER_FAILURE)
        self.assertEqual(categorize(["Mystery"]), FailureCategory.OTHER)

    def test_priority(self):
        self.assertEqual([priority_for(n) for n in (1, 3, 5, 10, 20)], [1, 2, 3, 4, 5])


class TestRecordRun(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "failures.jsonl"
        self.learner = FailureLearner(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_failed_call_and_blocking_validation(self):
        run = RunResult(
            prompt="Capital of France?",
            layer_results=[
                ReasoningResult.failure("fast", "ollama:qwen", "connection refused"),
                ReasoningResult(response="Lyon", confidence=0.9, layer="deep", provider="gemini-api:2.5-pro"),
            ],
            validations=[
                None,
                ValidationResult(is_valid=False, confidence=0.4, issues=[_issue(IssueType.GROUND_TRUTH_MISMATCH)]),
            ],
            is_successful=True,
            final_answer="Lyon",
            final_confidence=0.9,
        )
        records = self.learner.record_run(run, ReasoningContext(ground_truth={"capital": "Paris"}))
        self.assertEqual([r.category for r in records], [FailureCategory.PROVIDER_FAILURE, FailureCategory.HALLUCINATION])
        self.assertEqual(records[0].issue_types, [CALL_FAILURE])
        self.assertEqual(records[1].failed_provider, "gemini-api:2.5-pro")
        self.assertEqual(records[1].expected_response, "Paris")
        self.assertEqual(len(self.path.read_text().strip().splitlines()), 2)

    def test_advisory_issues_are_not_failures(self):
        run = RunResult(
            prompt="q",
            layer_results=[ReasoningResult(response="4", confidence=0.9)],
            validations=[ValidationResult(is_valid=True, confidence=0.5, issues=[_issue(IssueType.NO_ASSUMPTIONS, 0.3)])],
            is_successful=True,
            final_answer="4",
            final_confidence=0.9,
        )
        self.assertEqual(self.learner.record_run(run, ReasoningContext()), [])

    def test_invalid_consensus(self):
        cross = CrossValidationResult(is_valid=False, confidence=0.6, issues=[_issue(IssueType.NO_CONSENSUS)], consensus_answer="4")
        run = RunResult(prompt="q", cross_validation=cross, is_successful=True, final_answer="4", final_confidence=0.6)
        records = self.learner.record_run(run, ReasoningContext(min_confidence=0.5))
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].failed_layer, "consensus")
        self.assertEqual(records[0].category, FailureCategory.LOGICAL_ERROR)

    def test_low_final_confidence(self):
        run = RunResult(prompt="q", is_successful=True, final_answer="4", final_confidence=0.5)
        records = self.learner.record_run(run, ReasoningContext(min_confidence=0.8))
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].category, FailureCategory.LOW_CONFIDENCE)
        self.assertAlmostEqual(records[0].severity, 0.3)

    def test_cancelled_runs_are_skipped(self):
        run = RunResult(prompt="q", cancelled=True, layer_results=[ReasoningResult.failure("fast", "p", "x")], validations=[None])
        self.assertEqual(self.learner.record_run(run), [])
        self.assertFalse(self.path.exists())

    def test_history_is_trimmed_and_reloaded(self):
        learner = FailureLearner(self.path, max_history=3)
        for _ in range(5):
            learner.record(_record(FailureCategory.OTHER))
        self.assertEqual(len(learner.failures), 3)
        self.assertEqual(len(FailureLearner(self.path).failures), 3)

    def test_malformed_lines_are_skipped(self):
        self.path.write_text("not json\n" + json.dumps(_record(FailureCategory.OTHER).to_dict()) + "\n")
        self.assertEqual(len(FailureLearner(self.path).failures), 1)


class TestPatterns(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.learner = FailureLearner(Path(self.tmp.name) / "failures.jsonl", min_occurrences_for_recommendation=3)

    def tearDown(self):
        self.tmp.cleanup()

    def _seed(self, count=4):
        for i in range(count):
            types = [IssueType.GROUND_TRUTH_MISMATCH] + ([IssueType.LOW_CONFIDENCE] if i % 2 else [])
            self.learner.record(_record(FailureCategory.HALLUCINATION, *types))

    def test_learn_patterns(self):
        self._seed(4)
        self.learner.record(_record(FailureCategory.FORMAT_ERROR, IssueType.EMPTY_RESPONSE))
        patterns = self.learner.learn_patterns()
        self.assertEqual(len(patterns), 1)
        pattern = patterns[0]
        self.assertEqual(pattern.category, FailureCategory.HALLUCINATION)
        self.assertEqual(pattern.symptoms, sorted([IssueType.GROUND_TRUTH_MISMATCH, IssueType.LOW_CONFIDENCE]))
        self.assertAlmostEqual(pattern.confidence, 0.7)
        self.assertTrue(self.learner.patterns_path.exists())

    def test_relearning_updates_instead_of_duplicating(self):
        self._seed(4)
        self.learner.learn_patterns()
        self._seed(2)
        self.assertEqual(self.learner.learn_patterns(), [])
        self.assertEqual(len(self.learner.patterns), 1)
        self.assertEqual(self.learner.patterns[0].occurrences, 6)

    def test_resolution_feeds_strategies(self):
        self._seed(4)
        resolved = _record(FailureCategory.HALLUCINATION, IssueType.GROUND_TRUTH_MISMATCH)
        self.learner.record(resolved)
        self.assertTrue(self.learner.resolve(resolved.id, ResolutionMethod.CROSS_VALIDATION, "ran verifier"))
        self.assertFalse(self.learner.resolve("missing", ResolutionMethod.MANUAL))
        pattern = self.learner.learn_patterns()[0]
        self.assertEqual(pattern.strategies[0]["name"], "Enable Cross-Validation")
        self.assertAlmostEqual(pattern.prevention_success_rate, 0.2)

    def test_recommendations(self):
        self._seed(4)
        self.learner.learn_patterns()
        recs = self.learner.recommendations()
        self.assertEqual(len(recs), 1)
        self.assertEqual(recs[0].priority, 2)
        self.assertIn("Observed 4 times", recs[0].evidence)

    def test_recommend_for_falls_back_to_default(self):
        failure = _record(FailureCategory.CONTRADICTION, IssueType.CONTRADICTION)
        recs = self.learner.recommend_for(failure)
        self.assertEqual(recs[0].actions[0]["name"], "Increase Validation")

    def test_recommend_for_matching_pattern(self):
        self._seed(4)
        pattern = self.learner.learn_patterns()[0]
        recs = self.learner.recommend_for(_record(FailureCategory.HALLUCINATION, IssueType.GROUND_TRUTH_MISMATCH))
        self.assertEqual(recs[0].pattern_id, pattern.id)

    def test_statistics(self):
        self._seed(3)
        self.learner.resolve(self.learner.failures[0].id, ResolutionMethod.RETRY)
        stats = self.learner.statistics()
        self.assertEqual(stats["total_failures"], 3)
        self.assertEqual(stats["resolved_failures"], 1)
        self.assertEqual(stats["failures_by_category"], {FailureCategory.HALLUCINATION: 3})
        self.assertEqual(stats["resolution_methods"], {ResolutionMethod.RETRY: 1})
        self.assertEqual(stats["failures_last_7_days"], 3)
        self.assertAlmostEqual(stats["resolution_rate_last_7_days"], 1 / 3)


if __name__ == "__main__":
    unittest.main()
