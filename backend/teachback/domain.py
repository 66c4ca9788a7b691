"""
Teach-Back Data Contracts

Shared types for the learn flow: the topic catalog, lessons, the teach-back
transcript, the Q&A round, feedback and the persisted session record.

All models serialize with camelCase keys (``model_dump(by_alias=True)``) so the
stored JSON keeps the layout the web client reads, while Python code uses
snake_case attributes.
"""

from __future__ import annotations
import uuid
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Fixed number of interrogation questions per round
QA_ROUND_SIZE = 5


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# CATALOG AND LESSONS
# ============================================================================

class TopicCategory(str, Enum):
    GRAMMAR = "Grammar"
    VOCABULARY = "Vocabulary"
    SPEAKING = "Speaking"
    WRITING = "Writing"


class LanguageLevel(str, Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"


class Topic(_CamelModel):
    id: str
    title: str
    category: TopicCategory
    level: LanguageLevel
    estimated_minutes: int
    tags: List[str] = Field(default_factory=list)
    starred: bool = False


class LessonSection(_CamelModel):
    heading: str
    content: str
    examples: List[str] = Field(default_factory=list)


class MiniExercise(_CamelModel):
    question: str
    type: str = "multiple-choice"  # or "short-input"
    options: List[str] = Field(default_factory=list)
    correct_answer: str
    explanation: str


class Lesson(_CamelModel):
    id: str
    topic_id: str
    title: str
    sections: List[LessonSection]
    common_mistake: str
    mini_exercises: List[MiniExercise] = Field(default_factory=list)


# ============================================================================
# TEACH-BACK AND Q&A
# ============================================================================

class TurnRole(str, Enum):
    """Who produced a transcript turn: the simulated student or the learner."""
    TUTOR = "tutor"
    LEARNER = "learner"


class ConversationTurn(_CamelModel):
    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class FollowUp(_CamelModel):
    question: str
    understood: bool
    note: Optional[str] = None


class QAItem(_CamelModel):
    question: str
    answer: str = ""
    coach_note: Optional[str] = None
    skipped: bool = False
    hint_used: bool = False


class CoachReply(_CamelModel):
    coach_note: Optional[str] = None
    accepted: bool = True


# ============================================================================
# FEEDBACK
# ============================================================================

class Scores(_CamelModel):
    correctness: int = Field(ge=0, le=100)
    coverage: int = Field(ge=0, le=100)
    clarity: int = Field(ge=0, le=100)
    english: int = Field(ge=0, le=100)

    def values(self) -> List[int]:
        return [self.correctness, self.coverage, self.clarity, self.english]


class Correction(_CamelModel):
    bad: str
    good: str
    why: str


class FeedbackResult(_CamelModel):
    scores: Scores
    total_score: int
    grade: str
    top_fixes: List[str]
    corrections: List[Correction]
    missing_points: List[str]
    improved_explanation: str
    next_suggestion: Topic


# ============================================================================
# SESSION STATE
# ============================================================================

class Phase(IntEnum):
    SETUP = 1
    LESSON = 2
    TEACH = 3
    QUESTIONS = 4
    FEEDBACK = 5


class LearnPreferences(_CamelModel):
    session_length: int = 10
    show_hints: bool = True
    strict_corrections: bool = False
    harder_questions: bool = False


def _new_session_id() -> str:
    return uuid.uuid4().hex


class SessionState(_CamelModel):
    """
    The learn-flow aggregate for one learner.

    Treated as a value: ``state.reduce`` always returns a new instance and
    never mutates lists in place. ``generation`` grows on every navigation
    that abandons in-flight work, so late results can be recognized.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str = Field(default_factory=_new_session_id)
    phase: Phase = Phase.SETUP
    topic_id: Optional[str] = None
    topic: Optional[Topic] = None
    lesson: Optional[Lesson] = None
    preferences: LearnPreferences = Field(default_factory=LearnPreferences)
    opening_question: Optional[str] = None
    explanation: str = ""
    transcript: List[ConversationTurn] = Field(default_factory=list)
    qa_transcript: List[QAItem] = Field(default_factory=list)
    current_question_index: int = 0
    current_question: Optional[str] = None
    current_coach_note: Optional[str] = None
    hinted_indices: List[int] = Field(default_factory=list)
    feedback: Optional[FeedbackResult] = None
    generation: int = 0
    saved_record_id: Optional[str] = None

    @field_validator("qa_transcript")
    @classmethod
    def _bounded_round(cls, value: List[QAItem]) -> List[QAItem]:
        if len(value) > QA_ROUND_SIZE:
            raise ValueError(f"Q&A transcript cannot exceed {QA_ROUND_SIZE} items")
        return value

    @field_validator("current_question_index")
    @classmethod
    def _index_in_range(cls, value: int) -> int:
        if not 0 <= value <= QA_ROUND_SIZE:
            raise ValueError("question index out of range")
        return value

    def learner_turns(self) -> int:
        return sum(1 for t in self.transcript if t.role == TurnRole.LEARNER)


# ============================================================================
# PERSISTED RECORD
# ============================================================================

class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SessionRecord(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    date: datetime
    topic_id: str
    topic: Topic
    lesson: Optional[Lesson] = None
    user_explanation: str = ""
    qa_transcript: List[QAItem] = Field(default_factory=list)
    scores: Optional[Scores] = None
    total_score: Optional[int] = None
    grade: Optional[str] = None
    missing_points: List[str] = Field(default_factory=list)
    corrections: List[Correction] = Field(default_factory=list)
    improved_explanation: Optional[str] = None
    next_lesson_suggestion: Optional[Topic] = None
    status: SessionStatus = SessionStatus.IN_PROGRESS
