"""
Narrative Validator - Rule-Based Quality Gate

This module scores generated narrative text with fast, deterministic
checks. The score decides whether the orchestrator accepts an attempt,
retries the same model, or falls back to the next candidate.

Why Rule-Based:
    1. Deterministic: the same text always gets the same score
    2. Free: no extra model calls per attempt
    3. Targeted: catches the failure modes small local models actually
       show (too short, score dumps, test-name leakage, fragments)

Scoring:
    score = 100 - sum(weight of every violated check), floored at 0
    passed = no blocking issues and score >= threshold

Pipeline Position:
    Orchestrator → BackendAdapter → [Validator] → Cache / Retry / Fallback
                                    ^^^^^^^^^^^
                                    You are here
"""

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from loguru import logger

from narrative_generation.core.constants import (
    CLINICAL_TERMS,
    PERCENTILE_PATTERN,
    SCORE_VALUE_PATTERN,
    TEST_NAMES,
)
from narrative_generation.core.enums import CheckSeverity
from narrative_generation.core.models import GenerationTask, ValidationResult
from narrative_generation.core.text_utils import strip_think_blocks


# =============================================================================
# STAGE 1: VALIDATION RULES
# =============================================================================


@dataclass(frozen=True)
class ValidationRules:
    """
    Bounds, severities and weights of every check.

    The defaults reproduce the lenient profile used for routine report
    generation; ``strict()`` tightens length bounds and turns test-name and
    raw-score leakage into blocking issues.
    """

    # Empty output
    near_empty_chars: int = 20

    # Length
    min_chars: int = 100
    max_chars: int = 1000
    short_severity: CheckSeverity = CheckSeverity.BLOCKING
    long_severity: CheckSeverity = CheckSeverity.ADVISORY

    # Percentile density: advisory above the soft ceiling, blocking above the hard one
    percentile_soft_ceiling: int = 3
    percentile_hard_ceiling: int = 5

    # Numeric score mentions (T-score of 45, scaled score 12, ...)
    max_score_mentions: int = 2
    score_severity: CheckSeverity = CheckSeverity.ADVISORY

    # Named instruments
    max_test_names: int = 0
    test_name_severity: CheckSeverity = CheckSeverity.ADVISORY

    # Clinical register
    min_clinical_terms: int = 2

    # Sentence structure
    min_sentences: int = 2
    min_words_per_sentence: float = 5.0
    max_words_per_sentence: float = 45.0

    # Deductions
    blocking_weight: float = 25.0
    advisory_weight: float = 10.0

    @classmethod
    def strict(cls) -> "ValidationRules":
        """Tighter profile for final report sections."""
        return replace(
            cls(),
            min_chars=150,
            max_chars=800,
            score_severity=CheckSeverity.BLOCKING,
            test_name_severity=CheckSeverity.BLOCKING,
        )

    def weight_for(self, severity: CheckSeverity) -> float:
        if severity == CheckSeverity.BLOCKING:
            return self.blocking_weight
        return self.advisory_weight


# =============================================================================
# STAGE 2: RULE-BASED CHECKS (STATIC CLASS)
# =============================================================================
# Each check returns (measured value, violation message or None).

CheckResult = Tuple[float, Optional[str]]


class RuleBasedChecks:
    """
    Static methods for rule-based narrative checks.

    What it does:
        Measures one property of the text per check and reports a
        violation message when the property is out of bounds.

    Checks Performed:
        1. Length within [min_chars, max_chars]
        2. Percentile mention density
        3. Numeric score mentions
        4. Raw test-name mentions
        5. Clinical terminology markers
        6. Sentence count and mean sentence length
    """

    _percentile_regex = re.compile(PERCENTILE_PATTERN, re.IGNORECASE)
    _score_regex = re.compile(SCORE_VALUE_PATTERN, re.IGNORECASE)
    _sentence_split_regex = re.compile(r"[.!?]+\s+")
    _test_name_regexes = {
        name: re.compile(rf"\b{re.escape(name)}\b", re.IGNORECASE) for name in TEST_NAMES
    }

    @staticmethod
    def check_min_length(text: str, min_chars: int) -> CheckResult:
        length = len(text)
        if length < min_chars:
            return length, f"TOO_SHORT: {length} chars, minimum is {min_chars}"
        return length, None

    @staticmethod
    def check_max_length(text: str, max_chars: int) -> CheckResult:
        length = len(text)
        if length > max_chars:
            return length, f"TOO_LONG: {length} chars, target is under {max_chars}"
        return length, None

    @classmethod
    def count_percentiles(cls, text: str) -> int:
        return len(cls._percentile_regex.findall(text))

    @classmethod
    def check_score_mentions(cls, text: str, ceiling: int) -> CheckResult:
        """
        Count explicit score values ("T-score of 62", "scaled score: 7").

        Narratives should describe performance in words; a few anchoring
        values are tolerated.
        """
        mentions = len(cls._score_regex.findall(text))
        if mentions > ceiling:
            return mentions, f"SCORE_DUMP: {mentions} explicit score values (max {ceiling})"
        return mentions, None

    @classmethod
    def check_test_names(cls, text: str, ceiling: int) -> CheckResult:
        """Count distinct instrument names that appear in the text."""
        found = [name for name, regex in cls._test_name_regexes.items() if regex.search(text)]
        if len(found) > ceiling:
            return len(found), f"TEST_NAMES: mentions {', '.join(found)}"
        return len(found), None

    @staticmethod
    def check_clinical_terms(text: str, minimum: int) -> CheckResult:
        lowered = text.lower()
        present = sum(1 for term in CLINICAL_TERMS if term in lowered)
        if present < minimum:
            return present, f"LACKS_CLINICAL_TERMS: {present} distinct markers (min {minimum})"
        return present, None

    @classmethod
    def split_sentences(cls, text: str) -> List[str]:
        return [s for s in cls._sentence_split_regex.split(text.strip()) if s.strip()]

    @classmethod
    def check_sentence_count(cls, text: str, minimum: int) -> CheckResult:
        count = len(cls.split_sentences(text))
        if count < minimum:
            return count, f"TOO_FEW_SENTENCES: {count} (min {minimum})"
        return count, None

    @classmethod
    def check_sentence_length(cls, text: str, low: float, high: float) -> CheckResult:
        sentences = cls.split_sentences(text)
        if not sentences:
            return 0.0, None
        mean_words = sum(len(s.split()) for s in sentences) / len(sentences)
        if mean_words < low or mean_words > high:
            return mean_words, (
                f"SENTENCE_LENGTH: mean {mean_words:.1f} words per sentence "
                f"(expected {low:g}-{high:g})"
            )
        return mean_words, None

    @classmethod
    def run_all_checks(
        cls, text: str, rules: ValidationRules
    ) -> Tuple[List[str], List[str], Dict[str, float], float]:
        """
        Run every check.

        Returns:
            Tuple of (issues, warnings, metrics, total deduction)
        """
        issues: List[str] = []
        warnings: List[str] = []
        metrics: Dict[str, float] = {}
        deduction = 0.0

        def apply(name: str, result: CheckResult, severity: CheckSeverity) -> None:
            nonlocal deduction
            value, message = result
            metrics[name] = value
            if message is None:
                return
            deduction += rules.weight_for(severity)
            if severity == CheckSeverity.BLOCKING:
                issues.append(message)
            else:
                warnings.append(message)

        apply("length", cls.check_min_length(text, rules.min_chars), rules.short_severity)
        apply("length", cls.check_max_length(text, rules.max_chars), rules.long_severity)

        percentiles = cls.count_percentiles(text)
        metrics["percentile_mentions"] = percentiles
        if percentiles > rules.percentile_hard_ceiling:
            issues.append(
                f"PERCENTILE_DENSITY: {percentiles} percentile mentions "
                f"(max {rules.percentile_hard_ceiling})"
            )
            deduction += rules.blocking_weight
        elif percentiles > rules.percentile_soft_ceiling:
            warnings.append(
                f"PERCENTILE_DENSITY: {percentiles} percentile mentions, consider reducing"
            )
            deduction += rules.advisory_weight

        apply(
            "score_mentions",
            cls.check_score_mentions(text, rules.max_score_mentions),
            rules.score_severity,
        )
        apply(
            "test_name_mentions",
            cls.check_test_names(text, rules.max_test_names),
            rules.test_name_severity,
        )
        apply(
            "clinical_terms",
            cls.check_clinical_terms(text, rules.min_clinical_terms),
            CheckSeverity.ADVISORY,
        )
        apply(
            "num_sentences",
            cls.check_sentence_count(text, rules.min_sentences),
            CheckSeverity.BLOCKING,
        )
        apply(
            "mean_words_per_sentence",
            cls.check_sentence_length(
                text, rules.min_words_per_sentence, rules.max_words_per_sentence
            ),
            CheckSeverity.ADVISORY,
        )

        return issues, warnings, metrics, deduction


# =============================================================================
# STAGE 3: NARRATIVE VALIDATOR CLASS
# =============================================================================


class NarrativeValidator:
    """
    Scores narrative text and decides acceptance.

    What it does:
        Strips reasoning blocks, rejects empty output outright, runs every
        rule-based check and combines them into a ValidationResult.

    Why it exists:
        1. Single quality gate shared by every tier and backend
        2. Scores are comparable across attempts, so the best attempt can
           be chosen when no attempt passes

    Example:
        >>> validator = NarrativeValidator(threshold=70)
        >>> result = validator.validate(text)
        >>> result.passed, result.quality_score
        (True, 90.0)
    """

    def __init__(self, threshold: float = 70.0, rules: Optional[ValidationRules] = None):
        """
        Initialize the validator.

        Args:
            threshold: Minimum score for acceptance (0-100)
            rules: Check configuration (defaults to the lenient profile)
        """
        self._threshold = threshold
        self._rules = rules or ValidationRules()

        logger.debug(f"NarrativeValidator initialized | Threshold: {threshold}")

    def validate(
        self,
        text: str,
        task: Optional[GenerationTask] = None,
        attempt_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate narrative text.

        Algorithm:
            1. Strip <think> blocks
            2. Empty or near-empty text fails immediately with score 0
            3. Run rule-based checks and apply deductions
            4. Passed = no blocking issues and score >= threshold

        Args:
            text: Generated narrative
            task: Task the text was generated for (used for logging)
            attempt_id: Attempt the text came from

        Returns:
            ValidationResult
        """
        # =====================================================================
        # STAGE 3.1: CLEAN AND SHORT-CIRCUIT EMPTY OUTPUT
        # =====================================================================
        cleaned = strip_think_blocks(text)
        label = task.task_id if task else (attempt_id or "text")

        if len(cleaned) < self._rules.near_empty_chars:
            logger.warning(f"Validation failed | Task: {label} | Reason: empty output")
            return ValidationResult(
                passed=False,
                quality_score=0.0,
                issues=[f"EMPTY_OUTPUT: {len(cleaned)} chars after cleaning"],
                attempt_id=attempt_id,
                metrics={"length": float(len(cleaned))},
            )

        # =====================================================================
        # STAGE 3.2: RULE-BASED CHECKS
        # =====================================================================
        issues, warnings, metrics, deduction = RuleBasedChecks.run_all_checks(
            cleaned, self._rules
        )

        # =====================================================================
        # STAGE 3.3: SCORE AND DECIDE
        # =====================================================================
        score = max(0.0, min(100.0, 100.0 - deduction))
        passed = not issues and score >= self._threshold

        logger.debug(
            f"Validation complete | Task: {label} | Passed: {passed} | "
            f"Score: {score:.0f} | Issues: {len(issues)} | Warnings: {len(warnings)}"
        )

        return ValidationResult(
            passed=passed,
            quality_score=score,
            issues=issues,
            warnings=warnings,
            attempt_id=attempt_id,
            metrics=metrics,
        )

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def rules(self) -> ValidationRules:
        return self._rules
