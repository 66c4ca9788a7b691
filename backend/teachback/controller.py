"""
Learn-Flow Session Controller
=============================

Owns one learner's ``SessionState`` and drives it through the five phases,
calling the content provider, conversation partner, Q&A provider and feedback
synthesizer in order.

Concurrency rules:
- at most one collaborator call is outstanding per learner; a submission made
  while one is in flight raises ``SessionBusy``
- navigation (back, retry, new topic) is always accepted; it bumps the state
  generation, and a call that returns for an older generation is dropped
  (``StaleResult``) instead of being applied
- the in-progress state is written to the key-value store after each change,
  last writer wins; a failed write is reported as a notice and the in-memory
  state stays authoritative

Transient notices for the client live on a ``NoticeBoard`` next to the state,
never inside it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .collaborators import (
    ContentProvider,
    ConversationPartner,
    FeedbackSynthesizer,
    KeyValueStore,
    QAProvider,
    RecordStore,
    SpeechChannel,
)
from .content import StarredTopics, check_exercise
from .domain import (
    QA_ROUND_SIZE,
    CoachReply,
    FeedbackResult,
    FollowUp,
    LearnPreferences,
    Phase,
    QAItem,
    SessionRecord,
    SessionState,
    SessionStatus,
)
from .errors import (
    ContentGenerationError,
    InvalidTransition,
    PersistenceFailed,
    RecordNotFound,
    SessionBusy,
    StaleResult,
    TeachBackError,
    ValidationFailed,
)
from .state import (
    Action,
    AppendLearnerTurn,
    AppendQAItem,
    AppendTutorTurn,
    Back,
    GoTo,
    MarkHintUsed,
    MarkSaved,
    NewTopic,
    Next,
    Retry,
    SelectTopic,
    SetCurrentQuestion,
    SetFeedback,
    SetLesson,
    SetOpeningQuestion,
    UpdatePreferences,
    reduce,
)
from .store import learn_state_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# NOTICES
# ============================================================================

class Notice(BaseModel):
    level: str
    message: str


class NoticeBoard:
    """Transient client-facing messages (the toast queue), drained on read."""

    def __init__(self) -> None:
        self._items: List[Notice] = []

    def push(self, level: str, message: str) -> None:
        self._items.append(Notice(level=level, message=message))

    def drain(self) -> List[Notice]:
        items, self._items = self._items, []
        return items

    def __len__(self) -> int:
        return len(self._items)


# ============================================================================
# CONTROLLER
# ============================================================================

class SessionController:
    def __init__(
        self,
        learner: str,
        *,
        content: ContentProvider,
        partner: ConversationPartner,
        qa: QAProvider,
        feedback: FeedbackSynthesizer,
        kv: KeyValueStore,
        records: RecordStore,
        starred: StarredTopics,
        advance_delay: float = 2.0,
    ) -> None:
        self.learner = learner
        self.content = content
        self.partner = partner
        self.qa = qa
        self.feedback = feedback
        self.kv = kv
        self.records = records
        self.starred = starred
        self.advance_delay = advance_delay
        self.state = SessionState()
        self.notices = NoticeBoard()
        # Generation of the call currently in flight, if any
        self._busy_generation: Optional[int] = None
        self._advance_task: Optional[asyncio.Task] = None
        # Generation whose dialogue ended with "understood"; cleared by any phase change
        self._concluded_generation: Optional[int] = None

    @property
    def key(self) -> str:
        return learn_state_key(self.learner)

    @property
    def processing(self) -> bool:
        return self._busy_generation is not None and self._busy_generation == self.state.generation

    @property
    def concluded(self) -> bool:
        """True while the teach-back is over and the move to Feedback is pending."""
        return self._concluded_generation is not None and self._concluded_generation == self.state.generation

    # ---- state plumbing ---------------------------------------------------

    def _dispatch(self, action: Action) -> SessionState:
        self.state = reduce(self.state, action)
        return self.state

    def _persist(self) -> None:
        # Nothing worth resuming before a lesson exists
        if self.state.phase == Phase.SETUP:
            return
        try:
            self.kv.save(self.key, self.state.model_dump_json(by_alias=True))
        except SQLAlchemyError:
            logger.warning("Could not persist learn state for %s", self.learner, exc_info=True)
            self.notices.push("warning", "Your progress could not be saved right now. You can keep going.")

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        """Await one collaborator call under the processing flag.

        Raises:
            SessionBusy: Another call for the current generation is in flight
            ContentGenerationError: The collaborator raised
            StaleResult: The learner navigated away while the call was running
        """
        if self.processing:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise SessionBusy("Please wait for the current step to finish")
        generation = self.state.generation
        self._busy_generation = generation
        try:
            result = await awaitable
        except TeachBackError:
            raise
        except Exception as exc:
            logger.warning("%s failed for %s: %s", what, self.learner, exc)
            self.notices.push("error", f"Could not {what}. Please try again.")
            raise ContentGenerationError(f"{what} failed") from exc
        finally:
            if self._busy_generation == generation:
                self._busy_generation = None
        if self.state.generation != generation:
            logger.debug("Dropping stale %s result for %s (generation %d -> %d)", what, self.learner, generation, self.state.generation)
            raise StaleResult(what)
        return result

    def _require_topic(self) -> str:
        if not self.state.topic_id:
            raise ValidationFailed("Select a topic first")
        return self.state.topic_id

    def _require_phase(self, *phases: Phase) -> None:
        if self.state.phase not in phases:
            raise InvalidTransition(f"not available in {self.state.phase.name}")

    async def _on_enter(self) -> None:
        """Fetch what the newly entered phase needs, if it is missing."""
        phase = self.state.phase
        if phase == Phase.TEACH and self.state.opening_question is None:
            await self.open_dialogue()
        elif phase == Phase.QUESTIONS and self.state.current_question is None and self.state.current_question_index < QA_ROUND_SIZE:
            await self.load_question()
        elif phase == Phase.FEEDBACK and self.state.feedback is None:
            await self.compute_feedback()

    # ---- load / navigation ------------------------------------------------

    def load(self) -> SessionState:
        raw = self.kv.load(self.key)
        if raw is None:
            self.state = SessionState()
            return self.state
        try:
            self.state = SessionState.model_validate_json(raw)
        except ValidationError:
            logger.debug("Discarding malformed learn state for %s", self.learner)
            self.state = SessionState()
        return self.state

    def select_topic(self, topic_id: str) -> SessionState:
        try:
            topic = self.content.get_topic(topic_id, starred_ids=self.starred.get(self.learner))
        except LookupError as exc:
            raise RecordNotFound(str(exc)) from exc
        self._dispatch(SelectTopic(topic=topic))
        return self.state

    def update_preferences(self, preferences: LearnPreferences) -> SessionState:
        self._dispatch(UpdatePreferences(preferences=preferences))
        self._persist()
        return self.state

    async def next(self) -> SessionState:
        if self.state.phase == Phase.SETUP and self.state.lesson is None:
            return await self.generate_lesson()
        self._dispatch(Next())
        self._persist()
        await self._on_enter()
        return self.state

    def back(self) -> SessionState:
        self._dispatch(Back())
        self._persist()
        return self.state

    async def go_to(self, phase: Phase) -> SessionState:
        self._dispatch(GoTo(phase=phase))
        self._persist()
        await self._on_enter()
        return self.state

    async def retry(self) -> SessionState:
        self._dispatch(Retry())
        self._persist()
        await self._on_enter()
        return self.state

    def new_topic(self) -> SessionState:
        self._dispatch(NewTopic())
        try:
            self.kv.remove(self.key)
        except SQLAlchemyError:
            logger.warning("Could not clear learn state for %s", self.learner, exc_info=True)
        return self.state

    # ---- lesson -----------------------------------------------------------

    async def generate_lesson(self) -> SessionState:
        topic_id = self._require_topic()
        self._require_phase(Phase.SETUP, Phase.LESSON)
        lesson = await self._call(self.content.generate_lesson(topic_id), "generate the lesson")
        self._dispatch(SetLesson(lesson=lesson))
        if self.state.phase == Phase.SETUP:
            self._dispatch(Next())
        self._persist()
        return self.state

    async def regenerate_lesson(self) -> SessionState:
        topic_id = self._require_topic()
        self._require_phase(Phase.LESSON)
        lesson = await self._call(self.content.regenerate_lesson(topic_id), "regenerate the lesson")
        self._dispatch(SetLesson(lesson=lesson))
        self._persist()
        return self.state

    def check_exercise(self, index: int, answer: str) -> Tuple[bool, str]:
        if self.state.lesson is None:
            raise ValidationFailed("No lesson loaded")
        return check_exercise(self.state.lesson, index, answer)

    # ---- teach-back -------------------------------------------------------

    async def open_dialogue(self) -> SessionState:
        topic_id = self._require_topic()
        self._require_phase(Phase.TEACH)
        if self.state.opening_question is not None:
            return self.state
        question = await self._call(self.partner.get_opening_question(topic_id), "start the conversation")
        self._dispatch(SetOpeningQuestion(question=question))
        self._persist()
        return self.state

    async def respond(self, utterance: str) -> Tuple[SessionState, FollowUp]:
        """Record one learner turn and the simulated student's reply.

        When the reply says the student understood, the controller moves to
        Feedback after ``advance_delay`` seconds unless the learner navigates
        first.
        """
        self._require_phase(Phase.TEACH)
        text = utterance.strip()
        if not text:
            raise ValidationFailed("Say or type your explanation first")
        if self.processing:
            raise SessionBusy("Please wait for the student's reply")
        if self.concluded:
            raise InvalidTransition("The student already understood; moving on to feedback")
        if self.state.opening_question is None:
            await self.open_dialogue()
        before = self.state
        prior = list(before.transcript)
        self._dispatch(AppendLearnerTurn(text=text))
        self._persist()
        try:
            reply = await self._call(self.partner.get_follow_up(prior, text), "get the student's reply")
        except ContentGenerationError:
            # Leave the attempt as it was so the learner can resend
            if self.state.generation == before.generation:
                self.state = before
                self._persist()
            raise
        self._dispatch(AppendTutorTurn(text=reply.question))
        self._persist()
        if reply.understood:
            await self._schedule_advance()
        return self.state, reply

    async def _schedule_advance(self) -> None:
        generation = self.state.generation
        self._concluded_generation = generation
        if self.advance_delay <= 0:
            await self._advance_if_current(generation)
            return
        self._advance_task = asyncio.create_task(self._advance_later(generation))

    async def _advance_later(self, generation: int) -> None:
        await asyncio.sleep(self.advance_delay)
        try:
            await self._advance_if_current(generation)
        except TeachBackError as exc:
            # Already reported through notices; nobody awaits this task
            logger.debug("Deferred advance for %s ended with %s", self.learner, exc)

    async def _advance_if_current(self, generation: int) -> None:
        if self.state.generation != generation or self.state.phase != Phase.TEACH:
            logger.debug("Skipping advance for %s: state moved on", self.learner)
            return
        await self.go_to(Phase.FEEDBACK)

    # ---- questions --------------------------------------------------------

    async def load_question(self) -> SessionState:
        topic_id = self._require_topic()
        self._require_phase(Phase.QUESTIONS)
        index = self.state.current_question_index
        if index >= QA_ROUND_SIZE:
            raise InvalidTransition("All questions have been asked")
        harder = self.state.preferences.harder_questions
        question = await self._call(self.qa.get_next_question(topic_id, index, harder=harder), "load the next question")
        self._dispatch(SetCurrentQuestion(question=question))
        self._persist()
        return self.state

    async def submit_answer(self, answer: str) -> Tuple[SessionState, CoachReply]:
        self._require_phase(Phase.QUESTIONS)
        text = answer.strip()
        if not text:
            raise ValidationFailed("Type an answer or skip the question")
        if self.state.current_question is None:
            await self.load_question()
        index = self.state.current_question_index
        reply = await self._call(self.qa.submit_answer(index, text), "check your answer")
        item = QAItem(question=self.state.current_question, answer=text, coach_note=reply.coach_note)
        self._dispatch(AppendQAItem(item=item))
        self._persist()
        if self.state.phase == Phase.FEEDBACK:
            await self.compute_feedback()
        return self.state, reply

    async def skip_question(self) -> SessionState:
        self._require_phase(Phase.QUESTIONS)
        if self.processing:
            raise SessionBusy("Please wait for the current step to finish")
        if self.state.current_question is None:
            await self.load_question()
        item = QAItem(question=self.state.current_question, answer="", skipped=True)
        self._dispatch(AppendQAItem(item=item))
        self._persist()
        if self.state.phase == Phase.FEEDBACK:
            await self.compute_feedback()
        return self.state

    async def get_hint(self) -> str:
        topic_id = self._require_topic()
        self._require_phase(Phase.QUESTIONS)
        if not self.state.preferences.show_hints:
            raise ValidationFailed("Hints are turned off for this session")
        index = self.state.current_question_index
        if index >= QA_ROUND_SIZE:
            raise InvalidTransition("All questions have been asked")
        hint = await self._call(self.qa.get_hint(topic_id, index), "load a hint")
        self._dispatch(MarkHintUsed(index=index))
        self._persist()
        return hint

    # ---- feedback and records ----------------------------------------------

    async def compute_feedback(self) -> FeedbackResult:
        self._require_phase(Phase.FEEDBACK)
        if self.state.feedback is not None:
            return self.state.feedback
        if self.state.topic is None:
            raise ValidationFailed("Select a topic first")
        catalog = self.content.list_topics(starred_ids=self.starred.get(self.learner))
        result = await self._call(
            self.feedback.synthesize(
                self.state.topic,
                self.state.explanation,
                self.state.qa_transcript,
                catalog=catalog,
                strict=self.state.preferences.strict_corrections,
            ),
            "build your feedback",
        )
        self._dispatch(SetFeedback(feedback=result))
        self._persist()
        return result

    def build_record(self) -> SessionRecord:
        s = self.state
        if s.topic is None or s.topic_id is None:
            raise ValidationFailed("Select a topic first")
        fb = s.feedback
        return SessionRecord(
            id=uuid.uuid4().hex,
            date=datetime.utcnow(),
            topic_id=s.topic_id,
            topic=s.topic,
            lesson=s.lesson,
            user_explanation=s.explanation,
            qa_transcript=s.qa_transcript,
            scores=fb.scores if fb else None,
            total_score=fb.total_score if fb else None,
            grade=fb.grade if fb else None,
            missing_points=fb.missing_points if fb else [],
            corrections=fb.corrections if fb else [],
            improved_explanation=fb.improved_explanation if fb else None,
            next_lesson_suggestion=fb.next_suggestion if fb else None,
            status=SessionStatus.COMPLETED if fb else SessionStatus.IN_PROGRESS,
        )

    def save_record(self) -> SessionRecord:
        if self.state.saved_record_id:
            existing = self.records.get(self.learner, self.state.saved_record_id)
            if existing is not None:
                return existing
        record = self.build_record()
        try:
            saved = self.records.save(self.learner, record)
        except SQLAlchemyError as exc:
            logger.warning("Could not save session record for %s", self.learner, exc_info=True)
            self.notices.push("error", "Your session could not be saved. Please try again.")
            raise PersistenceFailed("session record not saved") from exc
        self._dispatch(MarkSaved(record_id=saved.id))
        self._persist()
        return saved

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.state.model_dump(mode="json", by_alias=True),
            "processing": self.processing,
            "concluded": self.concluded,
            "notices": [n.model_dump() for n in self.notices.drain()],
        }


# ============================================================================
# VOICE
# ============================================================================

async def run_voice_dialogue(controller: SessionController, channel: SpeechChannel) -> SessionState:
    """Feed recognized speech into the Teach phase and speak the student's replies."""
    state = await controller.open_dialogue()
    await channel.speak(state.transcript[0].content)
    async for utterance in channel.listen():
        if not utterance.strip():
            continue
        _, reply = await controller.respond(utterance)
        await channel.speak(reply.question)
        if reply.understood:
            break
    return controller.state


# ============================================================================
# REGISTRY
# ============================================================================

class ControllerRegistry:
    """One controller per learner, loaded from persistence on first use."""

    def __init__(
        self,
        *,
        content: ContentProvider,
        partner: ConversationPartner,
        qa: QAProvider,
        feedback: FeedbackSynthesizer,
        kv: KeyValueStore,
        records: RecordStore,
        starred: StarredTopics,
        advance_delay: float = 2.0,
    ) -> None:
        self.content = content
        self.partner = partner
        self.qa = qa
        self.feedback = feedback
        self.kv = kv
        self.records = records
        self.starred = starred
        self.advance_delay = advance_delay
        self._controllers: Dict[str, SessionController] = {}
        self._last_used: Dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, learner: str) -> SessionController:
        self._last_used[learner] = datetime.utcnow()
        controller = self._controllers.get(learner)
        if controller is None:
            controller = SessionController(
                learner,
                content=self.content,
                partner=self.partner,
                qa=self.qa,
                feedback=self.feedback,
                kv=self.kv,
                records=self.records,
                starred=self.starred,
                advance_delay=self.advance_delay,
            )
            controller.load()
            self._controllers[learner] = controller
        return controller

    def forget(self, learner: str) -> None:
        self._controllers.pop(learner, None)
        self._last_used.pop(learner, None)

    def evict_idle(self, days: int, now: Optional[datetime] = None) -> int:
        """Drop controllers unused for ``days``; their state reloads from the store on next use."""
        threshold = (now or datetime.utcnow()) - timedelta(days=days)
        idle = [
            learner for learner, controller in self._controllers.items()
            if self._last_used.get(learner, threshold) <= threshold and not controller.processing
        ]
        for learner in idle:
            self.forget(learner)
        if idle:
            logger.info("Evicted %d idle learn controllers", len(idle))
        return len(idle)
