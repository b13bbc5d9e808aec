"""
Question Flow Controller - Walks one category's images, one judgment at a time

Responsibilities:
- Obtain (or resume) the category's image set
- Dispatch each judgment to the Session Store
- Detect the end of the walk and collect a comment
- Hand off to the Session Store's completion mutator

State machine:
    LOADING --start()--> ANSWERING(0..N-1) --answer() on last--> REVIEWING
    REVIEWING --submit() with non-blank comment--> SUBMITTED (terminal)

Design principles:
- One controller instance per category visit; SUBMITTED is terminal
- Commands in the wrong state return IllegalCommand, they do not raise
- All state changes go through SessionStore mutators
- Image source failures degrade to placeholder data, never crash the flow
"""

import logging
from enum import Enum
from typing import Optional, Union

from vtt.core.image_selector import placeholder_selection
from vtt.core.session_store import SessionStore
from vtt.results import FlowStep, IllegalCommand

logger = logging.getLogger(__name__)


class FlowState(Enum):
    LOADING = "loading"
    ANSWERING = "answering"
    REVIEWING = "reviewing"
    SUBMITTED = "submitted"


FlowResult = Union[FlowStep, IllegalCommand]


class QuestionFlowController:
    """
    Drives a single category through its question set.

    The controller keeps only the walk position (state, index, comment
    draft). Answers, timestamps and completion live in the Session Store,
    so a new controller resumes exactly where the last one stopped.
    """

    DASHBOARD_URL = "/dashboard"

    def __init__(self, store: SessionStore, category: str, image_selector=None):
        """
        Args:
            store: Session Store owning the category state
            category: Category label
            image_selector: Object with select(category) -> ImageSelection,
                            used when the category has no images yet

        Raises:
            ValueError: If category is not configured in the store
        """
        if category not in store.categories:
            raise ValueError(f"Unknown category: {category}")

        self.store = store
        self.category = category
        self.image_selector = image_selector

        self.state = FlowState.LOADING
        self.index = 0
        self.comment = ""

    # ========================
    # Commands
    # ========================

    def start(self) -> FlowResult:
        """
        Assign images if needed and position the walk.

        Resumes at the store's current_question. A category whose every
        question has been reached opens in REVIEWING; a completed category
        opens as SUBMITTED with a redirect to the dashboard.
        """
        if self.state != FlowState.LOADING:
            return IllegalCommand(
                reason=f"Flow already started (state={self.state.value})",
                command_type="start",
            )

        existing = self.store.get_category_state(self.category)
        if not existing.is_assigned:
            selection = self._select_images()
            self.store.assign_images(
                self.category,
                selection.image_paths,
                selection.ground_truth,
                degraded=selection.degraded,
            )
            existing = self.store.get_category_state(self.category)

        if existing.completed:
            self.state = FlowState.SUBMITTED
            logger.info(f"{self.category}: already completed, redirecting")
            return self.current_step()

        self.comment = existing.comment
        if existing.current_question >= existing.total_questions:
            self.state = FlowState.REVIEWING
            self.index = existing.total_questions - 1
        else:
            self.state = FlowState.ANSWERING
            self.index = existing.current_question

        logger.info(f"{self.category}: flow started at {self.state.value} (index={self.index})")
        return self.current_step()

    def _select_images(self):
        if self.image_selector is None:
            logger.warning(f"{self.category}: no image selector configured")
            return placeholder_selection(self.category, self.store.question_count)
        try:
            selection = self.image_selector.select(self.category)
            paths, truth = list(selection.image_paths), list(selection.ground_truth)
        except Exception as e:
            logger.error(f"{self.category}: image selection failed: {e}")
            return placeholder_selection(self.category, self.store.question_count)

        if not paths or len(paths) != len(truth):
            logger.error(
                f"{self.category}: selector returned {len(paths)} images and "
                f"{len(truth)} ground truth values, using placeholders"
            )
            return placeholder_selection(self.category, self.store.question_count)
        return selection

    def answer(self, judgment: bool) -> FlowResult:
        """
        Record a real (True) / fake (False) judgment for the current image.

        Returns:
            FlowStep for the next image, or for REVIEWING after the last one
        """
        if self.state != FlowState.ANSWERING:
            return IllegalCommand(
                reason=f"Cannot answer in state {self.state.value}",
                command_type="answer",
            )
        if not isinstance(judgment, bool):
            return IllegalCommand(
                reason="Judgment must be true (real) or false (fake)",
                command_type="answer",
                details={'judgment': repr(judgment)},
            )

        total = self._total()
        self.store.record_answer(self.category, self.index, judgment)

        if self.index < total - 1:
            self.index += 1
        else:
            self.state = FlowState.REVIEWING
            logger.info(f"{self.category}: all {total} questions answered, collecting comment")

        return self.current_step()

    def set_comment(self, text: str) -> FlowResult:
        """Update the comment draft (REVIEWING only)."""
        if self.state != FlowState.REVIEWING:
            return IllegalCommand(
                reason=f"Cannot comment in state {self.state.value}",
                command_type="set_comment",
            )
        self.comment = text or ""
        return self.current_step()

    def can_submit(self) -> bool:
        return self.state == FlowState.REVIEWING and bool(self.comment.strip())

    def submit(self, comment: Optional[str] = None) -> FlowResult:
        """
        Save the comment and complete the category.

        Args:
            comment: Optional final comment text (replaces the draft)

        Returns:
            FlowStep in SUBMITTED state with redirect set
        """
        if self.state != FlowState.REVIEWING:
            return IllegalCommand(
                reason=f"Cannot submit in state {self.state.value}",
                command_type="submit",
            )
        if comment is not None:
            self.comment = comment
        if not self.can_submit():
            return IllegalCommand(
                reason="Comment must not be blank",
                command_type="submit",
            )

        self.store.save_comment(self.category, self.comment)
        self.store.complete_test(self.category)
        self.state = FlowState.SUBMITTED

        logger.info(f"{self.category}: submitted")
        return self.current_step()

    # ========================
    # View
    # ========================

    def _total(self) -> int:
        return self.store.get_category_state(self.category).total_questions

    def current_step(self) -> FlowStep:
        """Describe what the UI should show right now."""
        state = self.store.get_category_state(self.category)
        total = state.total_questions

        if self.state == FlowState.ANSWERING:
            return FlowStep(
                category=self.category,
                state=self.state.value,
                question={
                    'index': self.index,
                    'number': self.index + 1,
                    'path': state.image_paths[self.index],
                    'total': total,
                },
                progress=(self.index + 1) / total * 100,
                degraded=state.degraded,
            )

        finished = self.state in (FlowState.REVIEWING, FlowState.SUBMITTED)
        return FlowStep(
            category=self.category,
            state=self.state.value,
            progress=100.0 if finished and total else 0.0,
            comment=self.comment,
            can_submit=self.can_submit(),
            redirect=self.DASHBOARD_URL if self.state == FlowState.SUBMITTED else None,
            degraded=state.degraded,
        )
