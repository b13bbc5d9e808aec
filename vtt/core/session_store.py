"""
Session Store - Per-category test state for one tester

Responsibilities:
- Own one CategoryTestState per category (no other module mutates them)
- Mutators: assign images, record answer, save comment, complete, reset
- Read accessors: current question, per-category results, export bundle
- Load-and-merge from local storage, debounced writes back

Design principles:
- Explicit, injectable object (no ambient global state)
- Readers get deep copies, never live references
- Every mutation notifies subscribers and schedules a write
- Overall metrics come from the pooled confusion matrix, not from
  averaging per-category percentages

Durable blob (storage key 'userData'):
    {
        'schemaVersion': 1,
        'supervisor': ..., 'tester': ..., 'institution': ...,
        'faculty': ..., 'department': ..., 'speciality': ...,
        'testData': {<category>: CategoryTestState JSON}
    }

CRITICAL: Question index vs question number
- Indices are 0-based: answers[0] is the first image
- current_question is the index of the NEXT image, so after answering
  index i it equals i + 1 (and N once the last image is answered)
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from vtt.config import DEFAULT_CATEGORIES, DEFAULT_DEBOUNCE_SECONDS, DEFAULT_QUESTION_COUNT
from vtt.contracts import CategoryTestState, TesterInfo
from vtt.core.metrics_calculator import compute_metrics, metrics_from_confusion, pool_confusion_matrices
from vtt.persistence import DebouncedWriter, LocalStorage
from vtt.utils.helpers import utc_now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
STORAGE_KEY = "userData"


class IndexOutOfRange(IndexError):
    """Answer index outside [0, N) for the category."""


class SessionStore:
    """Holds tester identity and per-category test state"""

    def __init__(
        self,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        question_count: int = DEFAULT_QUESTION_COUNT,
        storage: Optional[LocalStorage] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Optional[Callable[[], str]] = None,
    ):
        """
        Initialize an empty store.

        Args:
            categories: Fixed category labels
            question_count: Default N for unassigned categories
            storage: Where to persist (None keeps the store in memory only)
            debounce_seconds: Quiet period before a write
            clock: Returns the current ISO 8601 timestamp (defaults to UTC now)
        """
        if not categories:
            raise ValueError("SessionStore needs at least one category")

        self.categories = tuple(categories)
        self.question_count = question_count
        self.storage = storage
        self._clock = clock or utc_now_iso

        self.tester_info = TesterInfo()
        self.test_data: Dict[str, CategoryTestState] = {
            category: CategoryTestState.empty(question_count) for category in self.categories
        }

        self._subscribers: List[Callable[[str, Optional[str]], None]] = []
        self._writer = DebouncedWriter(self._write_snapshot, debounce_seconds) if storage else None

        logger.info(f"SessionStore initialized (categories={list(self.categories)}, N={question_count})")

    # ========================
    # Construction
    # ========================

    @classmethod
    def load(
        cls,
        storage: LocalStorage,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        question_count: int = DEFAULT_QUESTION_COUNT,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Optional[Callable[[], str]] = None,
    ) -> "SessionStore":
        """
        Load from storage, or start from defaults.

        Corrupt or incompatible blobs are logged and ignored; missing
        categories and fields are backfilled with defaults.
        """
        store = cls(categories, question_count, storage, debounce_seconds, clock)
        blob = storage.load_json(STORAGE_KEY)
        if blob is None:
            logger.info("No saved session found, starting from defaults")
        else:
            store._apply_snapshot(blob)
        return store

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Dict[str, Any],
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        question_count: int = DEFAULT_QUESTION_COUNT,
    ) -> "SessionStore":
        """Rebuild an in-memory store from to_snapshot() output."""
        store = cls(categories, question_count)
        store._apply_snapshot(snapshot)
        return store

    def _apply_snapshot(self, blob: Any) -> None:
        if not isinstance(blob, dict):
            logger.warning(f"Ignoring saved session: expected object, got {type(blob).__name__}")
            return

        version = blob.get('schemaVersion')
        if version is not None and version != SCHEMA_VERSION:
            logger.warning(
                f"Ignoring saved session with schemaVersion={version!r} "
                f"(expected {SCHEMA_VERSION}), using defaults"
            )
            return

        self.tester_info = TesterInfo.from_json(blob)

        test_data = blob.get('testData')
        if not isinstance(test_data, dict):
            test_data = {}

        for category in self.categories:
            state = CategoryTestState.from_json(test_data.get(category), self.question_count)
            self.test_data[category] = self._repair(category, state)

        logger.info(f"Restored session for tester '{self.tester_info.tester}'")

    def _repair(self, category: str, state: CategoryTestState) -> CategoryTestState:
        """Bring loaded state back within its invariants."""
        if len(state.ground_truth) != len(state.image_paths):
            logger.warning(
                f"{category}: {len(state.image_paths)} images but "
                f"{len(state.ground_truth)} ground truth values, resetting category"
            )
            return CategoryTestState.empty(self.question_count)

        if state.is_assigned and len(state.answers) != state.total_questions:
            logger.warning(f"{category}: answers length {len(state.answers)} != {state.total_questions}, realigning")
            n = state.total_questions
            state.answers = (state.answers + [None] * n)[:n]

        state.current_question = max(0, min(state.current_question, len(state.answers)))

        if state.completed and state.end_time is None:
            logger.warning(f"{category}: completed without endTime, marking incomplete")
            state.completed = False

        return state

    # ========================
    # Private Helpers
    # ========================

    def _get_state(self, category: str) -> CategoryTestState:
        """
        Raises:
            ValueError: If category is not configured
        """
        if category not in self.test_data:
            raise ValueError(f"Unknown category: {category}")
        return self.test_data[category]

    def _changed(self, event: str, category: Optional[str] = None, persist: bool = True) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, category)
            except Exception as e:
                logger.error(f"Subscriber failed on {event}: {e}")

        if persist and self._writer is not None:
            self._writer.schedule(self.to_snapshot())

    def _write_snapshot(self, snapshot: Dict[str, Any]) -> None:
        self.storage.save_json(STORAGE_KEY, snapshot)

    # ========================
    # Observers and durability
    # ========================

    def subscribe(self, callback: Callable[[str, Optional[str]], None]) -> Callable[[], None]:
        """
        Register callback(event, category) invoked after each mutation.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def flush(self) -> None:
        """Write any pending state to storage now."""
        if self._writer is not None:
            self._writer.flush()

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()

    # ========================
    # Tester identity
    # ========================

    def update_tester_info(self, **fields: str) -> None:
        """
        Set one or more identity fields.

        Raises:
            ValueError: If a field name is unknown
            TypeError: If a value is not a string

        Example:
            store.update_tester_info(supervisor='Dr Lim', tester='Ada')
        """
        allowed = TesterInfo.field_names()
        for name, value in fields.items():
            if name not in allowed:
                raise ValueError(f"Unknown tester field: {name}")
            if not isinstance(value, str):
                raise TypeError(f"{name} must be a string")

        for name, value in fields.items():
            setattr(self.tester_info, name, value)

        logger.debug(f"Tester info updated: {sorted(fields)}")
        self._changed('tester_info')

    def get_tester_info(self) -> Dict[str, str]:
        return self.tester_info.to_json()

    def has_tester_identity(self) -> bool:
        """Supervisor and tester are both set (required by protected pages)."""
        return bool(self.tester_info.supervisor.strip() and self.tester_info.tester.strip())

    # ========================
    # Category mutators
    # ========================

    def assign_images(
        self,
        category: str,
        image_paths: Sequence[str],
        ground_truth: Sequence[bool],
        degraded: bool = False,
    ) -> Dict[str, Any]:
        """
        Assign the image set for a category (write-once).

        If the category already has images, the existing assignment is
        returned unchanged.

        Args:
            category: Category label
            image_paths: Ordered image paths
            ground_truth: True for real images, index-aligned with image_paths
            degraded: True when the images are placeholder fallback data

        Returns:
            dict: {'imagePaths', 'correctAnswers', 'degraded'} now in effect

        Raises:
            ValueError: Unknown category, misaligned lists or empty image set
        """
        state = self._get_state(category)

        if state.is_assigned:
            logger.debug(f"{category}: images already assigned, keeping existing set")
            return self._assignment_view(state)

        if len(image_paths) != len(ground_truth):
            raise ValueError(
                f"image_paths ({len(image_paths)}) and ground_truth ({len(ground_truth)}) must be the same length"
            )
        if not image_paths:
            raise ValueError("Cannot assign an empty image set")

        n = len(image_paths)
        state.image_paths = list(image_paths)
        state.ground_truth = [bool(v) for v in ground_truth]
        state.answers = [None] * n
        state.current_question = 0
        state.comment = ""
        state.completed = False
        state.end_time = None
        state.degraded = degraded

        logger.info(f"{category}: assigned {n} images ({sum(state.ground_truth)} real, degraded={degraded})")
        self._changed('assign_images', category)
        return self._assignment_view(state)

    def _assignment_view(self, state: CategoryTestState) -> Dict[str, Any]:
        return {
            'imagePaths': list(state.image_paths),
            'correctAnswers': list(state.ground_truth),
            'degraded': state.degraded,
        }

    def record_answer(self, category: str, index: int, judgment: bool) -> None:
        """
        Record the tester's judgment for one image.

        current_question becomes index + 1 even when index is behind the
        pointer (corrections are allowed).

        Args:
            category: Category label
            index: 0-based image index
            judgment: True for "real", False for "fake"

        Raises:
            ValueError: Unknown category
            TypeError: judgment is not a bool
            IndexOutOfRange: index outside [0, N)
        """
        state = self._get_state(category)

        if not isinstance(judgment, bool):
            raise TypeError(f"judgment must be bool, got {type(judgment).__name__}")

        n = state.total_questions
        if not isinstance(index, int) or isinstance(index, bool) or index < 0 or index >= n:
            raise IndexOutOfRange(f"{category}: index {index} outside [0, {n})")

        state.answers[index] = judgment
        state.current_question = index + 1
        if state.start_time is None:
            state.start_time = self._clock()

        logger.debug(f"{category}: answer[{index}] = {'real' if judgment else 'fake'}")
        self._changed('record_answer', category)

    def save_comment(self, category: str, text: str) -> None:
        """Store the free-text comment for a category. Empty text is allowed."""
        state = self._get_state(category)
        state.comment = text if text is not None else ""
        logger.debug(f"{category}: comment saved ({len(state.comment)} chars)")
        self._changed('save_comment', category)

    def complete_test(self, category: str) -> None:
        """
        Mark a category as completed.

        Only the first call counts: later calls keep the first end time.
        """
        state = self._get_state(category)

        if state.completed:
            logger.info(f"{category}: already completed at {state.end_time}, ignoring")
            return

        state.completed = True
        state.end_time = self._clock()

        logger.info(f"{category}: completed ({sum(a is not None for a in state.answers)}/{len(state.answers)} answered)")
        self._changed('complete_test', category)

    def reset_all(self) -> None:
        """
        Clear tester identity and every category.

        The saved blob is removed from storage and any pending write is
        dropped, so the next load starts from defaults.

        Warning: This erases all data. Use with caution.
        """
        self.tester_info = TesterInfo()
        for category in self.categories:
            self.test_data[category] = CategoryTestState.empty(self.question_count)

        if self._writer is not None:
            self._writer.cancel()
            self.storage.remove_item(STORAGE_KEY)

        logger.info("SessionStore reset - all data cleared")
        self._changed('reset_all', persist=False)

    # ========================
    # Read accessors
    # ========================

    def get_category_state(self, category: str) -> Optional[CategoryTestState]:
        """Deep copy of a category's state (None if unknown)."""
        state = self.test_data.get(category)
        return copy.deepcopy(state) if state is not None else None

    def get_current_question(self, category: str) -> Optional[Dict[str, Any]]:
        """
        Next image to show for a category.

        Returns:
            dict with 'index', 'number' (1-based), 'path', 'total', or None if
            images are unassigned or every question has been reached
        """
        state = self._get_state(category)
        if not state.is_assigned or state.current_question >= state.total_questions:
            return None

        index = state.current_question
        return {
            'index': index,
            'number': index + 1,
            'path': state.image_paths[index],
            'total': state.total_questions,
        }

    def get_results(self, category: str) -> Optional[Dict[str, Any]]:
        """
        Results snapshot for one category.

        Returns:
            dict: Metrics (wire names) plus completed, startTime, endTime,
                  comment, totalQuestions and degraded. None if the category
                  is unknown.
        """
        state = self.test_data.get(category)
        if state is None:
            return None

        results = compute_metrics(state.answers, state.ground_truth).to_json()
        results.update({
            'totalQuestions': len(state.answers),
            'completed': state.completed,
            'startTime': state.start_time,
            'endTime': state.end_time,
            'comment': state.comment,
            'degraded': state.degraded,
        })
        return results

    def all_completed(self) -> bool:
        return all(state.completed for state in self.test_data.values())

    def export_all(self) -> Dict[str, Any]:
        """
        Export everything for download or archiving.

        Returns:
            dict: {
                'schemaVersion', 'exportDate',
                'testerInfo': {...},
                'results': {category: get_results()},
                'overall': pooled metrics,
                'rawData': {category: CategoryTestState JSON}
            }
        """
        results = {}
        matrices = []
        total_questions = 0
        total_answered = 0
        total_correct = 0

        for category in self.categories:
            state = self.test_data[category]
            metrics = compute_metrics(state.answers, state.ground_truth)
            matrices.append(metrics.confusion_matrix)
            total_questions += metrics.total_questions
            total_answered += metrics.answered_count
            total_correct += metrics.correct_count
            results[category] = self.get_results(category)

        pooled = metrics_from_confusion(
            pool_confusion_matrices(matrices),
            total_questions=total_questions,
            answered_count=total_answered,
            correct_count=total_correct,
        )

        overall = {
            'totalQuestions': pooled.total_questions,
            'totalAnswered': pooled.answered_count,
            'totalCorrect': pooled.correct_count,
            'accuracy': pooled.accuracy,
            'precision': pooled.precision,
            'recall': pooled.recall,
            'f1Score': pooled.f1,
            'specificity': pooled.specificity,
            'progressPercentage': pooled.progress_percentage,
            'confusionMatrix': pooled.confusion_matrix.to_json(),
        }

        return {
            'schemaVersion': SCHEMA_VERSION,
            'exportDate': self._clock(),
            'testerInfo': self.get_tester_info(),
            'results': results,
            'overall': overall,
            'rawData': {category: self.test_data[category].to_json() for category in self.categories},
        }

    def to_snapshot(self) -> Dict[str, Any]:
        """Durable blob for storage (JSON-safe deep copy)."""
        snapshot = {'schemaVersion': SCHEMA_VERSION}
        snapshot.update(self.tester_info.to_json())
        snapshot['testData'] = {
            category: self.test_data[category].to_json() for category in self.categories
        }
        return snapshot
