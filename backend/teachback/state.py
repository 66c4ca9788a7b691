"""
Learn-flow state machine.

``reduce(state, action)`` is a pure function: it validates the action against
the current phase and returns a new ``SessionState``. The input state is never
modified. Illegal moves raise ``InvalidTransition``; bad learner input raises
``ValidationFailed``.

Phases run Setup -> Lesson -> Teach -> Questions -> Feedback. Feedback is
terminal: the machine idles there until ``Retry`` or ``NewTopic``.
"""

from __future__ import annotations
from typing import Callable, Dict, Type

from pydantic import BaseModel, ConfigDict

from .domain import (
    QA_ROUND_SIZE,
    ConversationTurn,
    FeedbackResult,
    LearnPreferences,
    Lesson,
    Phase,
    QAItem,
    SessionState,
    Topic,
    TurnRole,
)
from .errors import InvalidTransition, ValidationFailed


# ============================================================================
# ACTIONS
# ============================================================================

class Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class SelectTopic(Action):
    topic: Topic


class UpdatePreferences(Action):
    preferences: LearnPreferences


class Next(Action):
    pass


class Back(Action):
    pass


class GoTo(Action):
    phase: Phase


class Retry(Action):
    pass


class NewTopic(Action):
    pass


class SetLesson(Action):
    lesson: Lesson


class SetOpeningQuestion(Action):
    question: str


class AppendLearnerTurn(Action):
    text: str


class AppendTutorTurn(Action):
    text: str


class SetCurrentQuestion(Action):
    question: str


class MarkHintUsed(Action):
    index: int


class AppendQAItem(Action):
    item: QAItem


class SetFeedback(Action):
    feedback: FeedbackResult


class MarkSaved(Action):
    record_id: str


# ============================================================================
# HELPERS
# ============================================================================

def _require_phase(state: SessionState, *phases: Phase) -> None:
    if state.phase not in phases:
        allowed = ", ".join(p.name for p in phases)
        raise InvalidTransition(f"not allowed in {state.phase.name} (expected {allowed})")


def _move(state: SessionState, phase: Phase, **changes) -> SessionState:
    # Every phase change invalidates work started in the previous phase
    return state.model_copy(update={"phase": phase, "generation": state.generation + 1, **changes})


# ============================================================================
# HANDLERS
# ============================================================================

def _fresh_attempt() -> dict:
    return {
        "opening_question": None,
        "explanation": "",
        "transcript": [],
        "qa_transcript": [],
        "current_question_index": 0,
        "current_question": None,
        "current_coach_note": None,
        "hinted_indices": [],
        "feedback": None,
        "saved_record_id": None,
    }


def _select_topic(state: SessionState, action: SelectTopic) -> SessionState:
    _require_phase(state, Phase.SETUP)
    if state.topic_id == action.topic.id:
        return state.model_copy(update={"topic": action.topic})
    # A different topic starts a new attempt; work from the old topic is dropped
    return state.model_copy(update={
        "topic_id": action.topic.id,
        "topic": action.topic,
        "lesson": None,
        "generation": state.generation + 1,
        **_fresh_attempt(),
    })


def _update_preferences(state: SessionState, action: UpdatePreferences) -> SessionState:
    return state.model_copy(update={"preferences": action.preferences})


def _next(state: SessionState, action: Next) -> SessionState:
    if state.phase == Phase.FEEDBACK:
        raise InvalidTransition("Feedback is the last phase; use retry or new topic")
    if state.phase == Phase.SETUP and not state.topic_id:
        raise ValidationFailed("Select a topic before continuing")
    return _move(state, Phase(state.phase + 1))


def _back(state: SessionState, action: Back) -> SessionState:
    if state.phase == Phase.SETUP:
        raise InvalidTransition("Already at the first phase")
    return _move(state, Phase(state.phase - 1))


def _go_to(state: SessionState, action: GoTo) -> SessionState:
    # The only jump is the early exit once the student has understood
    if state.phase != Phase.TEACH or action.phase != Phase.FEEDBACK:
        raise InvalidTransition(f"cannot jump from {state.phase.name} to {action.phase.name}")
    if not state.topic_id:
        raise ValidationFailed("Select a topic before continuing")
    return _move(state, action.phase)


def _retry(state: SessionState, action: Retry) -> SessionState:
    _require_phase(state, Phase.TEACH, Phase.QUESTIONS, Phase.FEEDBACK)
    # Same session id, topic, lesson and preferences; a fresh teach-back attempt
    return _move(state, Phase.TEACH, **_fresh_attempt())


def _new_topic(state: SessionState, action: NewTopic) -> SessionState:
    return SessionState(generation=state.generation + 1)


def _set_lesson(state: SessionState, action: SetLesson) -> SessionState:
    _require_phase(state, Phase.SETUP, Phase.LESSON)
    if action.lesson.topic_id != state.topic_id:
        raise InvalidTransition("lesson does not belong to the selected topic")
    return state.model_copy(update={"lesson": action.lesson})


def _set_opening_question(state: SessionState, action: SetOpeningQuestion) -> SessionState:
    _require_phase(state, Phase.TEACH)
    if state.opening_question is not None or state.transcript:
        raise InvalidTransition("dialogue already opened")
    turn = ConversationTurn(role=TurnRole.TUTOR, content=action.question)
    return state.model_copy(update={"opening_question": action.question, "transcript": [turn]})


def _append_learner_turn(state: SessionState, action: AppendLearnerTurn) -> SessionState:
    _require_phase(state, Phase.TEACH)
    text = action.text.strip()
    if not text:
        raise ValidationFailed("Explanation cannot be empty")
    if state.transcript and state.transcript[-1].role == TurnRole.LEARNER:
        raise InvalidTransition("waiting for the student's reply")
    explanation = f"{state.explanation}\n{text}".strip()
    turn = ConversationTurn(role=TurnRole.LEARNER, content=text)
    return state.model_copy(update={"explanation": explanation, "transcript": [*state.transcript, turn]})


def _append_tutor_turn(state: SessionState, action: AppendTutorTurn) -> SessionState:
    _require_phase(state, Phase.TEACH)
    turn = ConversationTurn(role=TurnRole.TUTOR, content=action.text)
    return state.model_copy(update={"transcript": [*state.transcript, turn]})


def _set_current_question(state: SessionState, action: SetCurrentQuestion) -> SessionState:
    _require_phase(state, Phase.QUESTIONS)
    if state.current_question_index >= QA_ROUND_SIZE:
        raise InvalidTransition("question round already complete")
    return state.model_copy(update={"current_question": action.question, "current_coach_note": None})


def _mark_hint_used(state: SessionState, action: MarkHintUsed) -> SessionState:
    _require_phase(state, Phase.QUESTIONS)
    if action.index != state.current_question_index:
        raise InvalidTransition("hint requested for a question that is not current")
    if action.index in state.hinted_indices:
        return state
    return state.model_copy(update={"hinted_indices": [*state.hinted_indices, action.index]})


def _append_qa_item(state: SessionState, action: AppendQAItem) -> SessionState:
    _require_phase(state, Phase.QUESTIONS)
    index = state.current_question_index
    if index >= QA_ROUND_SIZE or len(state.qa_transcript) >= QA_ROUND_SIZE:
        raise InvalidTransition("question round already complete")
    item = action.item
    if index in state.hinted_indices and not item.hint_used:
        item = item.model_copy(update={"hint_used": True})
    changes = {
        "qa_transcript": [*state.qa_transcript, item],
        "current_question_index": index + 1,
        "current_question": None,
        "current_coach_note": item.coach_note,
    }
    if index + 1 >= QA_ROUND_SIZE:
        return _move(state, Phase.FEEDBACK, **changes)
    return state.model_copy(update=changes)


def _set_feedback(state: SessionState, action: SetFeedback) -> SessionState:
    _require_phase(state, Phase.FEEDBACK)
    return state.model_copy(update={"feedback": action.feedback})


def _mark_saved(state: SessionState, action: MarkSaved) -> SessionState:
    return state.model_copy(update={"saved_record_id": action.record_id})


_HANDLERS: Dict[Type[Action], Callable[[SessionState, Action], SessionState]] = {
    SelectTopic: _select_topic,
    UpdatePreferences: _update_preferences,
    Next: _next,
    Back: _back,
    GoTo: _go_to,
    Retry: _retry,
    NewTopic: _new_topic,
    SetLesson: _set_lesson,
    SetOpeningQuestion: _set_opening_question,
    AppendLearnerTurn: _append_learner_turn,
    AppendTutorTurn: _append_tutor_turn,
    SetCurrentQuestion: _set_current_question,
    MarkHintUsed: _mark_hint_used,
    AppendQAItem: _append_qa_item,
    SetFeedback: _set_feedback,
    MarkSaved: _mark_saved,
}


def reduce(state: SessionState, action: Action) -> SessionState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"unknown action: {type(action).__name__}")
    return handler(state, action)
