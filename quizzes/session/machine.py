"""
Take-quiz state machine.

States move Loading -> Active -> Submitting -> Done. Every transition is a
pure function returning a new TakeQuizState; the session runner owns the
side effects.
"""
import enum
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from quizzes.exceptions import StateConflict


class Phase(enum.Enum):
    LOADING = 'loading'
    ACTIVE = 'active'
    SUBMITTING = 'submitting'
    DONE = 'done'


@dataclass(frozen=True)
class TakeQuizState:
    phase: Phase = Phase.LOADING
    question_ids: tuple = ()
    index: int = 0
    deadline: Optional[datetime] = None
    pending_uploads: frozenset = frozenset()
    forced: bool = False
    score: Optional[int] = None
    error: Optional[str] = None

    @property
    def current_question_id(self):
        if not self.question_ids:
            return None
        return self.question_ids[self.index]

    @property
    def is_first(self):
        return self.index == 0

    @property
    def is_last(self):
        return self.index >= len(self.question_ids) - 1

    @property
    def is_blocked(self):
        """Navigation waits while the current question's upload is in flight."""
        return self.current_question_id in self.pending_uploads


def compute_deadline(started_at, time_limit_minutes):
    """No limit is None; a limit of 0 is already expired at start."""
    if time_limit_minutes is None:
        return None
    return started_at + timedelta(minutes=time_limit_minutes)


def enter_active(state, question_ids, started_at, time_limit_minutes):
    if state.phase != Phase.LOADING:
        raise StateConflict(f"Cannot start from {state.phase.value}.")
    return replace(
        state,
        phase=Phase.ACTIVE,
        question_ids=tuple(question_ids),
        index=0,
        deadline=compute_deadline(started_at, time_limit_minutes),
    )


def enter_done(state, question_ids, score):
    """Load straight into Done for an attempt submitted earlier."""
    return replace(state, phase=Phase.DONE, question_ids=tuple(question_ids), score=score)


def remaining_seconds(state, now) -> Optional[float]:
    if state.deadline is None:
        return None
    return max(0.0, (state.deadline - now).total_seconds())


def is_expired(state, now) -> bool:
    return state.deadline is not None and now >= state.deadline


def go_to(state, index):
    if state.phase != Phase.ACTIVE or state.is_blocked:
        return state
    if not 0 <= index < len(state.question_ids):
        return state
    return replace(state, index=index)


def go_next(state):
    return go_to(state, state.index + 1)


def go_prev(state):
    return go_to(state, state.index - 1)


def upload_started(state, question_id):
    return replace(state, pending_uploads=state.pending_uploads | {question_id})


def upload_settled(state, question_id):
    return replace(state, pending_uploads=state.pending_uploads - {question_id})


def begin_submit(state, forced=False):
    if state.phase == Phase.DONE:
        return state
    if state.phase == Phase.LOADING:
        raise StateConflict("The quiz has not loaded yet.")
    return replace(state, phase=Phase.SUBMITTING, forced=state.forced or forced, error=None)


def submit_succeeded(state, score):
    return replace(state, phase=Phase.DONE, score=score, error=None, pending_uploads=frozenset())


def submit_failed(state, message):
    return replace(state, phase=Phase.SUBMITTING, error=message)
