import unittest

from escalade.adaptive import ComplexityLevel, analyze_complexity, level_for, plan_for
from escalade.types import LayerType


class TestComplexity(unittest.TestCase):
    def test_short_plain_prompt_is_simple(self):
        analysis = analyze_complexity("Hello")
        self.assertAlmostEqual(analysis.score, 0.1)
        self.assertEqual(analysis.level, ComplexityLevel.SIMPLE)
        self.assertEqual(analysis.signals, ["length"])
        self.assertEqual(analysis.factors, [])

    def test_arithmetic(self):
        analysis = analyze_complexity("What is 2+2?")
        self.assertAlmostEqual(analysis.score, 0.2)
        self.assertEqual(analysis.signals, ["length", "math"])
        self.assertEqual(analysis.factors, ["Mathematical"])

    def test_explanatory_domain_question_is_moderate(self):
        analysis = analyze_complexity("Explain how a distributed consensus algorithm tolerates node failures")
        self.assertEqual(analysis.signals, ["length", "question", "domain"])
        self.assertAlmostEqual(analysis.score, 0.4)
        self.assertEqual(analysis.level, ComplexityLevel.MODERATE)

    def test_keywords_ignore_case(self):
        analysis = analyze_complexity("WHY?")
        self.assertAlmostEqual(analysis.score, 0.25)
        self.assertEqual(analysis.factors, ["Explanatory question"])

    def test_multi_step_needs_two_words(self):
        self.assertEqual(analyze_complexity("First, add milk").signals, ["length"])
        analysis = analyze_complexity("first then")
        self.assertEqual(analysis.signals, ["length", "multi_step"])
        self.assertAlmostEqual(analysis.score, 0.35)

    def test_length_bands(self):
        medium = analyze_complexity("word " * 50)
        self.assertAlmostEqual(medium.score, 0.6)
        self.assertEqual(medium.level, ComplexityLevel.COMPLEX)
        self.assertEqual(medium.factors, ["Long prompt"])
        long = analyze_complexity("x " * 300)
        self.assertAlmostEqual(long.score, 0.8)
        self.assertEqual(long.level, ComplexityLevel.VERY_COMPLEX)

    def test_empty_prompt(self):
        self.assertEqual(analyze_complexity("").level, ComplexityLevel.SIMPLE)

    def test_level_bounds(self):
        self.assertEqual(level_for(0.29), ComplexityLevel.SIMPLE)
        self.assertEqual(level_for(0.3), ComplexityLevel.MODERATE)
        self.assertEqual(level_for(0.6), ComplexityLevel.COMPLEX)
        self.assertEqual(level_for(0.8), ComplexityLevel.VERY_COMPLEX)
        self.assertEqual(level_for(1.0), ComplexityLevel.VERY_COMPLEX)


class TestPlan(unittest.TestCase):
    def test_simple_plan(self):
        plan = plan_for("Hello")
        self.assertEqual(plan.layer_types, (LayerType.FAST,))
        self.assertAlmostEqual(plan.min_confidence, 0.7)

    def test_complex_plan_uses_every_layer(self):
        plan = plan_for("word " * 50)
        self.assertEqual(plan.layer_types, (LayerType.FAST, LayerType.DEEP, LayerType.VERIFICATION))
        self.assertAlmostEqual(plan.min_confidence, 0.9)

    def test_very_complex_plan_skips_fast(self):
        plan = plan_for("x " * 300)
        self.assertEqual(plan.layer_types, (LayerType.DEEP, LayerType.VERIFICATION))
        self.assertAlmostEqual(plan.min_confidence, 0.95)

    def test_to_dict(self):
        data = plan_for("What is 2+2?").to_dict()
        self.assertEqual(data["layer_types"], ["fast"])
        self.assertEqual(data["complexity"]["level"], "Simple")
        self.assertNotIn("prompt", data["complexity"])
        self.assertAlmostEqual(data["min_confidence"], 0.7)


if __name__ == "__main__":
    unittest.main()
