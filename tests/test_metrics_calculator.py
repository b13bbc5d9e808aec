"""
Test Metrics Calculator - confusion matrix and derived rates

Run with: pytest tests/test_metrics_calculator.py -v
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from vtt.core.metrics_calculator import (
    ConfusionMatrix,
    compute_metrics,
    f1_score,
    metrics_from_confusion,
    pool_confusion_matrices,
)


def test_balanced_example():
    """One of each outcome gives 50% everywhere"""
    m = compute_metrics([True, False, True, False], [True, True, False, False])

    assert m.confusion_matrix == ConfusionMatrix(1, 1, 1, 1)
    assert m.answered_count == 4
    assert m.correct_count == 2
    assert m.accuracy == 50.0
    assert m.precision == 50.0
    assert m.recall == 50.0
    assert m.specificity == 50.0
    assert m.f1 == 50.0
    assert m.progress_percentage == 100.0


def test_unanswered_entries_are_excluded():
    """None entries count toward N but not toward any tally"""
    m = compute_metrics([True, None, False, None], [True, True, True, False])

    assert m.answered_count == 2
    assert m.correct_count == 1
    assert m.confusion_matrix == ConfusionMatrix(true_positives=1, false_negatives=1)
    assert m.accuracy == 50.0
    assert m.progress_percentage == 50.0
    assert m.total_questions == 4


def test_all_unanswered_yields_zeros():
    m = compute_metrics([None] * 20, [True] * 10 + [False] * 10)

    assert m.answered_count == 0
    assert m.accuracy == 0.0
    assert m.precision == 0.0
    assert m.recall == 0.0
    assert m.specificity == 0.0
    assert m.f1 == 0.0
    assert m.progress_percentage == 0.0


def test_empty_input():
    m = compute_metrics([], [])
    assert m.total_questions == 0
    assert m.accuracy == 0.0
    assert m.progress_percentage == 0.0


def test_default_state_without_ground_truth():
    """Unassigned category: N answers slots, no ground truth yet"""
    m = compute_metrics([None] * 50, [])
    assert m.total_questions == 50
    assert m.answered_count == 0
    assert m.progress_percentage == 0.0


def test_perfect_rater():
    truth = [True, False, True, False, False]
    m = compute_metrics(list(truth), truth)

    assert m.accuracy == 100.0
    assert m.precision == 100.0
    assert m.recall == 100.0
    assert m.specificity == 100.0
    assert m.f1 == 100.0


def test_says_fake_to_everything():
    """No positive judgments: precision has an empty denominator"""
    m = compute_metrics([False] * 4, [True, True, False, False])

    assert m.confusion_matrix == ConfusionMatrix(0, 2, 0, 2)
    assert m.precision == 0.0
    assert m.recall == 0.0
    assert m.specificity == 100.0
    assert m.f1 == 0.0
    assert m.accuracy == 50.0


def test_f1_is_on_percent_scale():
    # precision 75, recall 60 -> 2*75*60/135
    assert f1_score(75.0, 60.0) == pytest.approx(66.6666, rel=1e-4)
    assert f1_score(0.0, 0.0) == 0.0


def test_metrics_from_pooled_matrix():
    pooled = pool_confusion_matrices([
        ConfusionMatrix(10, 5, 3, 2),
        ConfusionMatrix(1, 9, 0, 10),
    ])
    assert pooled == ConfusionMatrix(11, 14, 3, 12)

    m = metrics_from_confusion(pooled, total_questions=40)
    assert m.answered_count == 40
    assert m.correct_count == 25
    assert m.accuracy == pytest.approx(62.5)
    assert m.precision == pytest.approx(11 / 14 * 100)
    assert m.recall == pytest.approx(11 / 23 * 100)
    assert m.specificity == pytest.approx(14 / 17 * 100)


def test_to_json_wire_names():
    data = compute_metrics([True, False], [True, True]).to_json()

    assert data['answeredQuestions'] == 2
    assert data['correctAnswers'] == 1
    assert data['totalQuestions'] == 2
    assert data['precision'] == 100.0
    assert data['recall'] == 50.0
    assert data['f1Score'] == pytest.approx(200 / 3)
    assert data['confusionMatrix'] == {
        'truePositives': 1,
        'trueNegatives': 0,
        'falsePositives': 0,
        'falseNegatives': 1,
    }


def test_confusion_matrix_from_json_tolerates_missing_keys():
    assert ConfusionMatrix.from_json({'truePositives': 3}) == ConfusionMatrix(true_positives=3)
    assert ConfusionMatrix.from_json(None) == ConfusionMatrix()
