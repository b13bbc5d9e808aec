"""
Data contracts for the Visual Turing Test system.

This module defines the data structures passed between modules. Shapes and
wire names live here; rules (write-once assignment, monotonic completion)
are enforced by the Session Store, not by these classes.

Contents:
- ImageItem: One candidate stimulus with its ground truth
- TesterInfo: Free-text tester identity fields
- CategoryTestState: Per-category answers, ground truth and timestamps

Wire format:
    JSON keys follow the browser blob written by earlier versions of the
    tool (camelCase, ground truth stored as 'correctAnswers'). Every
    from_json() backfills missing keys with defaults so partially written
    blobs still load.

Usage:
    from vtt.contracts import ImageItem, CategoryTestState, TesterInfo
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ImageItem:
    """
    One image shown to the tester.

    Attributes:
        path: Path or URL of the image (e.g. '/L1/real/L1_dt_173.jpg')
        is_real: Ground truth. True for an authentic image, False for a
                 synthetic one.
    """
    path: str
    is_real: bool

    def to_json(self) -> Dict[str, Any]:
        return {'path': self.path, 'isReal': self.is_real}

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "ImageItem":
        return ImageItem(path=str(data['path']), is_real=bool(data['isReal']))


@dataclass
class TesterInfo:
    """Identity of the person taking the test. No invariants."""
    supervisor: str = ""
    tester: str = ""
    institution: str = ""
    faculty: str = ""
    department: str = ""
    speciality: str = ""

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_json(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in self.field_names()}

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]]) -> "TesterInfo":
        data = data or {}
        values = {}
        for name in cls.field_names():
            value = data.get(name, "")
            values[name] = value if isinstance(value, str) else ""
        return cls(**values)


@dataclass
class CategoryTestState:
    """
    Test state for one image category.

    Index alignment:
        image_paths[i], ground_truth[i] and answers[i] all describe the
        same image. An index is answered iff answers[i] is not None.

    Attributes:
        image_paths: Ordered image paths (empty until assigned)
        ground_truth: True where image_paths[i] is a real image
        answers: Tester judgments, None for unanswered
        current_question: Index of the next question (0..N)
        comment: Free-text comment collected at completion
        completed: Set once the tester submits the category
        start_time: ISO 8601 timestamp of the first recorded answer
        end_time: ISO 8601 timestamp of completion
        degraded: True when the images came from the placeholder fallback
    """
    image_paths: List[str] = field(default_factory=list)
    ground_truth: List[bool] = field(default_factory=list)
    answers: List[Optional[bool]] = field(default_factory=list)
    current_question: int = 0
    comment: str = ""
    completed: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    degraded: bool = False

    @classmethod
    def empty(cls, question_count: int) -> "CategoryTestState":
        """Default state for a category that has no images yet."""
        return cls(answers=[None] * question_count)

    @property
    def total_questions(self) -> int:
        return len(self.image_paths)

    @property
    def is_assigned(self) -> bool:
        return len(self.image_paths) > 0

    def to_json(self) -> Dict[str, Any]:
        return {
            'imagePaths': list(self.image_paths),
            'correctAnswers': list(self.ground_truth),
            'answers': list(self.answers),
            'currentQuestion': self.current_question,
            'comment': self.comment,
            'completed': self.completed,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'degraded': self.degraded,
        }

    @classmethod
    def from_json(cls, data: Optional[Dict[str, Any]], question_count: int) -> "CategoryTestState":
        """
        Build state from a (possibly partial) JSON dict.

        Missing or wrongly typed fields fall back to the empty defaults.

        Args:
            data: Raw dict from the durable blob, or None
            question_count: N used for the default answers array

        Returns:
            CategoryTestState
        """
        default = cls.empty(question_count)
        if not isinstance(data, dict):
            return default

        image_paths = data.get('imagePaths')
        ground_truth = data.get('correctAnswers')
        answers = data.get('answers')
        current_question = data.get('currentQuestion')
        comment = data.get('comment')

        return cls(
            image_paths=[str(p) for p in image_paths] if isinstance(image_paths, list) else default.image_paths,
            ground_truth=[bool(v) for v in ground_truth] if isinstance(ground_truth, list) else default.ground_truth,
            answers=[None if a is None else bool(a) for a in answers] if isinstance(answers, list) else default.answers,
            current_question=current_question if isinstance(current_question, int) else 0,
            comment=comment if isinstance(comment, str) else "",
            completed=bool(data.get('completed', False)),
            start_time=data.get('startTime'),
            end_time=data.get('endTime'),
            degraded=bool(data.get('degraded', False)),
        )
