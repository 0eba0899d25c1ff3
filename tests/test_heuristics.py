import unittest

from escalade.heuristics import check_consistency, estimate_confidence, steps_contradict, suggestions_for
from escalade.types import IssueType, ValidationIssue


class TestEstimateConfidence(unittest.TestCase):
    def test_base(self):
        self.assertAlmostEqual(estimate_confidence("The answer is 4.", 0), 0.7)

    def test_step_bonus(self):
        self.assertAlmostEqual(estimate_confidence("plain", 2), 0.7)
        self.assertAlmostEqual(estimate_confidence("plain", 3), 0.8)

    def test_hedging_is_penalised_once(self):
        self.assertAlmostEqual(estimate_confidence("It might be, possibly, I am not sure", 0), 0.5)

    def test_confident_words(self):
        self.assertAlmostEqual(estimate_confidence("Certainly and DEFINITELY true", 3), 0.9)

    def test_mixed_signals(self):
        self.assertAlmostEqual(estimate_confidence("It might be, but certainly close", 3), 0.7)

    def test_always_in_unit_interval(self):
        texts = ["", "might " * 50, "certainly definitely " * 50, "possibly not sure certainly"]
        for text in texts:
            for steps in (0, 3, 100):
                value = estimate_confidence(text, steps)
                self.assertGreaterEqual(value, 0.0)
                self.assertLessEqual(value, 1.0)


class TestConsistency(unittest.TestCase):
    def test_negation_with_shared_words_is_flagged(self):
        chain = [
            "The number seven is prime because nothing divides it",
            "Some filler step about arithmetic",
            "The number seven is not prime after all",
        ]
        issues = check_consistency(chain)
        self.assertEqual(len(issues), 1)
        issue = issues[0]
        self.assertEqual(issue.type, IssueType.CONTRADICTION)
        self.assertEqual(issue.step_index, 0)
        self.assertAlmostEqual(issue.severity, 0.8)
        self.assertEqual(issue.description, "Step 1 may contradict Step 3")

    def test_both_negated_is_not_flagged(self):
        self.assertFalse(steps_contradict("seven is never even number", "seven cannot be even number"))

    def test_needs_two_long_shared_words(self):
        self.assertFalse(steps_contradict("water boils at sea level", "water does not freeze here"))

    def test_short_words_do_not_count(self):
        self.assertFalse(steps_contradict("a cat is on the mat", "a cat is not on the mat"))

    def test_custom_severity(self):
        chain = ["Paris remains capital", "Paris remains not capital"]
        issues = check_consistency(chain, severity=0.95)
        self.assertAlmostEqual(issues[0].severity, 0.95)

    def test_empty_chain(self):
        self.assertEqual(check_consistency([]), [])


class TestSuggestions(unittest.TestCase):
    def test_mapped_and_deduplicated(self):
        issues = [
            ValidationIssue(IssueType.SHALLOW_REASONING, "few steps", 0.6),
            ValidationIssue(IssueType.SHALLOW_REASONING, "few steps again", 0.6),
            ValidationIssue(IssueType.CONTRADICTION, "x", 0.8, step_index=2),
            ValidationIssue("SomethingUnknown", "y", 0.1),
        ]
        self.assertEqual(suggestions_for(issues), [
            "Break down the problem into more detailed steps",
            "Review step 3 for logical consistency",
        ])


if __name__ == "__main__":
    unittest.main()
