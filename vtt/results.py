"""
Result types returned by QuestionFlowController.

These are the ONLY return types from the flow controller's commands.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class FlowStep:
    """
    What the UI should show after a command.

    Attributes:
        category: Category label
        state: Flow state name ('answering', 'reviewing', 'submitted')
        question: Current question {'index', 'number', 'path', 'total'}
                  while answering, otherwise None
        progress: Percent of the walk reached ((index + 1) / N * 100 while
                  answering, 100 afterwards)
        comment: Comment typed so far (reviewing)
        can_submit: Whether the submit button is enabled (reviewing)
        redirect: URL to navigate to (set once submitted)
        degraded: True when the images are placeholder fallback data
    """
    category: str
    state: str
    question: Optional[Dict[str, Any]] = None
    progress: float = 0.0
    comment: str = ""
    can_submit: bool = False
    redirect: Optional[str] = None
    degraded: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'state': self.state,
            'question': dict(self.question) if self.question else None,
            'progress': self.progress,
            'comment': self.comment,
            'canSubmit': self.can_submit,
            'redirect': self.redirect,
            'degraded': self.degraded,
        }


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by the controller (invalid lifecycle transition).

    Examples:
    - answer() while reviewing
    - submit() with a blank comment
    - start() on a controller that already started

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command
        details: Extra context for logs and API responses
    """
    reason: str
    command_type: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        return {
            'reason': self.reason,
            'command': self.command_type,
            'details': dict(self.details),
        }
