"""
Results Aggregator - Summary statistics across exported tester results

Input is a list of export documents (SessionStore.export_all() output,
usually read back through ExportArchive.list_exports()).

Averaging rules:
- avgMetrics averages each tester's pooled 'overall' metrics
- categoryStats averages each tester's per-category metrics
- Both divide by the number of testers; a tester missing a category
  contributes 0 to that category's sums
- combinedConfusion sums raw confusion counts, so it can be turned back into
  pooled metrics without the averaging bias
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from vtt.core.metrics_calculator import ConfusionMatrix, metrics_from_confusion
from vtt.utils.display_helpers import duration_minutes

logger = logging.getLogger(__name__)

# export key -> summary key
OVERALL_METRICS = ('accuracy', 'precision', 'recall', 'f1Score', 'specificity')
CATEGORY_METRICS = {
    'accuracy': 'avgAccuracy',
    'precision': 'avgPrecision',
    'recall': 'avgRecall',
    'f1Score': 'avgF1',
    'specificity': 'avgSpecificity',
}


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def tester_name(export_doc: Dict[str, Any]) -> str:
    info = export_doc.get('testerInfo') or {}
    return str(info.get('tester', '')).strip()


def is_well_formed(export_doc: Any) -> bool:
    """
    Check the sections the summary reads.

    testerInfo, overall and results must be objects when present, and every
    entry under results must be an object.
    """
    if not isinstance(export_doc, dict):
        return False
    for section in ('testerInfo', 'overall', 'results'):
        value = export_doc.get(section)
        if value is not None and not isinstance(value, dict):
            return False
    results = export_doc.get('results') or {}
    return all(isinstance(entry, dict) for entry in results.values())


def filter_testers(exports: Iterable[Dict[str, Any]], exclude_testers: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """
    Drop malformed exports and exports whose (trimmed) tester name is in
    exclude_testers. Malformed documents are logged and skipped.
    """
    excluded = {name.strip() for name in exclude_testers}
    kept = []
    for position, doc in enumerate(exports):
        if not is_well_formed(doc):
            logger.error(f"Skipping malformed export #{position}: unexpected section types")
            continue
        if tester_name(doc) not in excluded:
            kept.append(doc)
    return kept


def summarize_testers(
    exports: Sequence[Dict[str, Any]],
    categories: Sequence[str],
    exclude_testers: Sequence[str] = (),
) -> Optional[Dict[str, Any]]:
    """
    Build dashboard statistics over many testers.

    Args:
        exports: Export documents
        categories: Category labels to report
        exclude_testers: Tester names to leave out

    Returns:
        dict: {
            'totalTesters': int,
            'avgMetrics': {accuracy, precision, recall, f1Score, specificity},
            'categoryStats': {category: {avgAccuracy, avgPrecision, avgRecall, avgF1, avgSpecificity}},
            'combinedConfusion': {'overall': {...}, 'categories': {category: {...}}},
            'pooledMetrics': metrics of the combined overall confusion matrix,
            'testers': [per-tester overview rows]
        }
        or None when no exports remain after filtering.
    """
    data = filter_testers(exports, exclude_testers)
    if not data:
        logger.info("No tester exports to summarize")
        return None

    total_testers = len(data)

    avg_metrics = {key: 0.0 for key in OVERALL_METRICS}
    category_stats = {
        category: {summary_key: 0.0 for summary_key in CATEGORY_METRICS.values()}
        for category in categories
    }
    combined_categories = {category: ConfusionMatrix() for category in categories}
    testers = []

    for doc in data:
        overall = doc.get('overall') or {}
        for key in OVERALL_METRICS:
            avg_metrics[key] += _number(overall.get(key))

        results = doc.get('results') or {}
        for category in categories:
            category_result = results.get(category)
            if not category_result:
                continue
            for export_key, summary_key in CATEGORY_METRICS.items():
                category_stats[category][summary_key] += _number(category_result.get(export_key))
            combined_categories[category] = combined_categories[category] + ConfusionMatrix.from_json(
                category_result.get('confusionMatrix')
            )

        testers.append({
            'tester': tester_name(doc),
            'institution': (doc.get('testerInfo') or {}).get('institution', ''),
            'accuracy': _number(overall.get('accuracy')),
            'f1Score': _number(overall.get('f1Score')),
            'totalAnswered': int(_number(overall.get('totalAnswered'))),
            'durationMinutes': round(sum(
                duration_minutes(r.get('startTime'), r.get('endTime'))
                for r in results.values() if isinstance(r, dict)
            ), 1),
            'completedCategories': sum(
                1 for category in categories if (results.get(category) or {}).get('completed')
            ),
        })

    for key in avg_metrics:
        avg_metrics[key] /= total_testers
    for stats in category_stats.values():
        for key in stats:
            stats[key] /= total_testers

    combined_overall = ConfusionMatrix()
    for matrix in combined_categories.values():
        combined_overall = combined_overall + matrix

    pooled = metrics_from_confusion(combined_overall, total_questions=combined_overall.total)

    logger.info(f"Summarized {total_testers} tester(s) over {len(categories)} categories")

    return {
        'totalTesters': total_testers,
        'avgMetrics': avg_metrics,
        'categoryStats': category_stats,
        'combinedConfusion': {
            'overall': combined_overall.to_json(),
            'categories': {category: matrix.to_json() for category, matrix in combined_categories.items()},
        },
        'pooledMetrics': {
            'accuracy': pooled.accuracy,
            'precision': pooled.precision,
            'recall': pooled.recall,
            'f1Score': pooled.f1,
            'specificity': pooled.specificity,
        },
        'testers': testers,
    }
