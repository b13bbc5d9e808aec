"""
Metrics Calculator - Confusion matrix and derived rates for real/fake judgments

Responsibilities:
- Count answered and correct judgments
- Build the confusion matrix over answered entries ("real" is positive)
- Derive accuracy, precision, recall, specificity and F1
- Pool confusion matrices across categories

Design principles:
- Pure functions, no side effects
- Percent scale (0-100) for every rate, F1 included
- Empty denominators yield 0.0, never NaN or ZeroDivisionError

F1 scale:
    f1 = 2 * precision * recall / (precision + recall) with precision and
    recall already in percent.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Sequence


@dataclass(frozen=True)
class ConfusionMatrix:
    """TP/TN/FP/FN counts with 'real' as the positive class."""
    true_positives: int = 0
    true_negatives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def total(self) -> int:
        return self.true_positives + self.true_negatives + self.false_positives + self.false_negatives

    def __add__(self, other: "ConfusionMatrix") -> "ConfusionMatrix":
        return ConfusionMatrix(
            true_positives=self.true_positives + other.true_positives,
            true_negatives=self.true_negatives + other.true_negatives,
            false_positives=self.false_positives + other.false_positives,
            false_negatives=self.false_negatives + other.false_negatives,
        )

    def to_json(self) -> Dict[str, int]:
        return {
            'truePositives': self.true_positives,
            'trueNegatives': self.true_negatives,
            'falsePositives': self.false_positives,
            'falseNegatives': self.false_negatives,
        }

    @staticmethod
    def from_json(data: Optional[Dict[str, Any]]) -> "ConfusionMatrix":
        """Missing, non-object or non-numeric input counts as zero."""
        if not isinstance(data, dict):
            data = {}

        def count(key):
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return 0
            return int(value)

        return ConfusionMatrix(
            true_positives=count('truePositives'),
            true_negatives=count('trueNegatives'),
            false_positives=count('falsePositives'),
            false_negatives=count('falseNegatives'),
        )


@dataclass(frozen=True)
class MetricsResult:
    """
    Output of compute_metrics().

    Attributes:
        total_questions: N
        answered_count: Entries that are not None
        correct_count: Answered entries equal to ground truth
        accuracy, precision, recall, specificity, f1: Percent scale
        progress_percentage: answered_count / N * 100
        confusion_matrix: Counts over answered entries
    """
    total_questions: int = 0
    answered_count: int = 0
    correct_count: int = 0
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    specificity: float = 0.0
    f1: float = 0.0
    progress_percentage: float = 0.0
    confusion_matrix: ConfusionMatrix = field(default_factory=ConfusionMatrix)

    def to_json(self) -> Dict[str, Any]:
        return {
            'totalQuestions': self.total_questions,
            'answeredQuestions': self.answered_count,
            'correctAnswers': self.correct_count,
            'accuracy': self.accuracy,
            'precision': self.precision,
            'recall': self.recall,
            'f1Score': self.f1,
            'specificity': self.specificity,
            'progressPercentage': self.progress_percentage,
            'confusionMatrix': self.confusion_matrix.to_json(),
        }


def _percent(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return numerator / denominator * 100


def f1_score(precision: float, recall: float) -> float:
    """Harmonic mean on the percent scale (0 when both are 0)."""
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def build_confusion_matrix(answers: Sequence[Optional[bool]], ground_truth: Sequence[bool]) -> ConfusionMatrix:
    """
    Count TP/TN/FP/FN over answered, index-aligned entries.

    Entries past the end of the shorter sequence are ignored.
    """
    tp = tn = fp = fn = 0
    for answer, truth in zip(answers, ground_truth):
        if answer is None:
            continue
        if answer and truth:
            tp += 1
        elif not answer and not truth:
            tn += 1
        elif answer and not truth:
            fp += 1
        else:
            fn += 1
    return ConfusionMatrix(tp, tn, fp, fn)


def metrics_from_confusion(
    matrix: ConfusionMatrix,
    total_questions: int,
    answered_count: Optional[int] = None,
    correct_count: Optional[int] = None,
) -> MetricsResult:
    """
    Apply the metric formulas to a confusion matrix.

    Args:
        matrix: Confusion matrix (possibly pooled over categories)
        total_questions: N used for progress
        answered_count: Defaults to matrix.total
        correct_count: Defaults to TP + TN

    Returns:
        MetricsResult
    """
    if answered_count is None:
        answered_count = matrix.total
    if correct_count is None:
        correct_count = matrix.true_positives + matrix.true_negatives

    precision = _percent(matrix.true_positives, matrix.true_positives + matrix.false_positives)
    recall = _percent(matrix.true_positives, matrix.true_positives + matrix.false_negatives)

    return MetricsResult(
        total_questions=total_questions,
        answered_count=answered_count,
        correct_count=correct_count,
        accuracy=_percent(correct_count, answered_count),
        precision=precision,
        recall=recall,
        specificity=_percent(matrix.true_negatives, matrix.true_negatives + matrix.false_positives),
        f1=f1_score(precision, recall),
        progress_percentage=_percent(answered_count, total_questions),
        confusion_matrix=matrix,
    )


def compute_metrics(answers: Sequence[Optional[bool]], ground_truth: Sequence[bool]) -> MetricsResult:
    """
    Compute judgment metrics for one category.

    Args:
        answers: Judgments, None for unanswered (length N)
        ground_truth: True for real images (length N once assigned)

    Returns:
        MetricsResult (all zeros for N = 0 or nothing answered)

    Example:
        >>> m = compute_metrics([True, False, True, False], [True, True, False, False])
        >>> m.accuracy, m.precision, m.recall, m.specificity, m.f1
        (50.0, 50.0, 50.0, 50.0, 50.0)
    """
    matrix = build_confusion_matrix(answers, ground_truth)
    return metrics_from_confusion(matrix, total_questions=len(answers))


def pool_confusion_matrices(matrices: Iterable[ConfusionMatrix]) -> ConfusionMatrix:
    """Element-wise sum of confusion matrices."""
    pooled = ConfusionMatrix()
    for matrix in matrices:
        pooled = pooled + matrix
    return pooled
