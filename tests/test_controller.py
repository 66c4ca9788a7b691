"""Tests for the session controller: phase flow, persistence, busy and stale handling."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from teachback.content import StaticContentProvider
from teachback.controller import ControllerRegistry, run_voice_dialogue
from teachback.domain import LearnPreferences, Phase, SessionStatus, TurnRole
from teachback.errors import (
    ContentGenerationError,
    InvalidTransition,
    SessionBusy,
    StaleResult,
    ValidationFailed,
)
from teachback.partner import RuleBasedPartner
from teachback.store import SqlKeyValueStore


class SlowPartner(RuleBasedPartner):
    """Holds every follow-up until the test releases it."""

    def __init__(self, catalog):
        super().__init__(catalog)
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def get_follow_up(self, transcript, utterance):
        self.started.set()
        await self.release.wait()
        return await super().get_follow_up(transcript, utterance)


class BrokenPartner(RuleBasedPartner):
    async def get_follow_up(self, transcript, utterance):
        raise RuntimeError("model unavailable")


class FailingKV(SqlKeyValueStore):
    def save(self, key, value):
        raise OperationalError("INSERT", {}, Exception("disk full"))


class FakeChannel:
    def __init__(self, utterances):
        self.utterances = utterances
        self.spoken = []

    async def listen(self):
        for u in self.utterances:
            yield u

    async def speak(self, text):
        self.spoken.append(text)


async def _to_teach(controller, topic_id="topic-1"):
    controller.select_topic(topic_id)
    await controller.next()
    await controller.next()
    return controller.state


async def _to_questions(controller):
    await _to_teach(controller)
    await controller.respond("Present perfect links the past to now, like I have lost my keys.")
    await controller.next()
    return controller.state


# --- Loading ---

def test_corrupted_saved_state_starts_fresh(make_controller, kv):
    kv.save("learn_state:alice", "{definitely not json")
    controller = make_controller(kv=kv)
    state = controller.load()
    assert state.phase == Phase.SETUP
    assert state.topic_id is None


def test_wrong_shape_saved_state_starts_fresh(make_controller, kv):
    kv.save("learn_state:alice", '{"phase": 9, "qaTranscript": "nope"}')
    assert make_controller(kv=kv).load().phase == Phase.SETUP


@pytest.mark.asyncio
async def test_progress_resumes_in_new_controller(make_controller, kv):
    controller = make_controller(kv=kv)
    await _to_teach(controller)
    await controller.respond("A first explanation that is long enough to not be short.")
    resumed = make_controller(kv=kv)
    state = resumed.load()
    assert state.phase == Phase.TEACH
    assert state.explanation == controller.state.explanation
    assert len(state.transcript) == 3


# --- Setup and lesson ---

@pytest.mark.asyncio
async def test_next_without_topic_is_rejected(make_controller):
    controller = make_controller()
    with pytest.raises(ValidationFailed):
        await controller.next()
    assert controller.state.phase == Phase.SETUP


@pytest.mark.asyncio
async def test_next_from_setup_generates_lesson(make_controller):
    controller = make_controller()
    controller.select_topic("topic-1")
    state = await controller.next()
    assert state.phase == Phase.LESSON
    assert state.lesson.topic_id == "topic-1"


@pytest.mark.asyncio
async def test_regenerate_lesson_marks_sections(make_controller):
    controller = make_controller()
    controller.select_topic("topic-2")
    await controller.next()
    state = await controller.regenerate_lesson()
    assert all(s.content.endswith("(Regenerated with fresh examples)") for s in state.lesson.sections)


@pytest.mark.asyncio
async def test_check_exercise(make_controller):
    controller = make_controller()
    controller.select_topic("topic-1")
    await controller.next()
    assert controller.check_exercise(0, " Went ")[0] is True
    correct, explanation = controller.check_exercise(1, "didn't finish")
    assert correct is False
    assert "yet" in explanation


# --- Teach-back ---

@pytest.mark.asyncio
async def test_entering_teach_opens_dialogue(make_controller):
    state = await _to_teach(make_controller())
    assert len(state.transcript) == 1
    assert state.transcript[0].role == TurnRole.TUTOR
    assert state.opening_question == state.transcript[0].content


@pytest.mark.asyncio
async def test_four_turns_then_understood_jumps_to_feedback(make_controller):
    controller = make_controller()
    await _to_teach(controller)
    for i in range(4):
        _, reply = await controller.respond(f"turn {i}")
        assert reply.understood is False
    state, reply = await controller.respond("turn 4")
    assert reply.understood is True
    assert state.phase == Phase.FEEDBACK
    assert state.feedback is not None
    assert state.explanation == "turn 0\nturn 1\nturn 2\nturn 3\nturn 4"
    assert [t.role for t in state.transcript[-2:]] == [TurnRole.LEARNER, TurnRole.TUTOR]


@pytest.mark.asyncio
async def test_empty_utterance_is_rejected(make_controller):
    controller = make_controller()
    await _to_teach(controller)
    with pytest.raises(ValidationFailed):
        await controller.respond("   ")
    assert len(controller.state.transcript) == 1


@pytest.mark.asyncio
async def test_understood_waits_before_moving_on(make_controller):
    controller = make_controller(advance_delay=0.05)
    await _to_teach(controller)
    for i in range(5):
        state, reply = await controller.respond(f"turn {i}")
    assert reply.understood is True
    assert state.phase == Phase.TEACH
    await asyncio.sleep(0.2)
    assert controller.state.phase == Phase.FEEDBACK


@pytest.mark.asyncio
async def test_retry_during_delay_cancels_the_jump(make_controller):
    controller = make_controller(advance_delay=0.05)
    await _to_teach(controller)
    for i in range(5):
        await controller.respond(f"turn {i}")
    await controller.retry()
    await asyncio.sleep(0.2)
    assert controller.state.phase == Phase.TEACH
    assert len(controller.state.transcript) == 1


@pytest.mark.asyncio
async def test_partner_failure_is_reported_and_turn_rolled_back(make_controller):
    catalog = StaticContentProvider()
    controller = make_controller(partner=BrokenPartner(catalog))
    await _to_teach(controller)
    with pytest.raises(ContentGenerationError):
        await controller.respond("An explanation that will not get a reply.")
    assert len(controller.state.transcript) == 1
    assert controller.state.explanation == ""
    assert [n.level for n in controller.notices.drain()] == ["error"]
    assert controller.processing is False


@pytest.mark.asyncio
async def test_second_submission_while_waiting_is_busy(make_controller):
    partner = SlowPartner(StaticContentProvider())
    controller = make_controller(partner=partner)
    await _to_teach(controller)
    pending = asyncio.create_task(controller.respond("first explanation, reasonably long and detailed"))
    await partner.started.wait()
    assert controller.processing is True
    with pytest.raises(SessionBusy):
        await controller.respond("second")
    partner.release.set()
    state, _ = await pending
    assert [t.role for t in state.transcript] == [TurnRole.TUTOR, TurnRole.LEARNER, TurnRole.TUTOR]


@pytest.mark.asyncio
async def test_late_reply_after_retry_is_dropped(make_controller):
    partner = SlowPartner(StaticContentProvider())
    controller = make_controller(partner=partner)
    await _to_teach(controller)
    pending = asyncio.create_task(controller.respond("an explanation that will be abandoned"))
    await partner.started.wait()
    await controller.retry()
    partner.release.set()
    with pytest.raises(StaleResult):
        await pending
    assert len(controller.state.transcript) == 1
    assert controller.state.explanation == ""


@pytest.mark.asyncio
async def test_voice_dialogue_speaks_replies_until_understood(make_controller):
    controller = make_controller()
    await _to_teach(controller)
    channel = FakeChannel(["one", "", "two", "three", "four", "five", "six"])
    state = await run_voice_dialogue(controller, channel)
    assert state.phase == Phase.FEEDBACK
    # opening plus five replies; "six" is never heard
    assert len(channel.spoken) == 6
    assert "six" not in state.explanation


# --- Questions ---

@pytest.mark.asyncio
async def test_entering_questions_loads_first_question(make_controller):
    state = await _to_questions(make_controller())
    assert state.phase == Phase.QUESTIONS
    assert state.current_question_index == 0
    assert state.current_question


@pytest.mark.asyncio
async def test_skipping_all_questions(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    for _ in range(5):
        await controller.skip_question()
    state = controller.state
    assert len(state.qa_transcript) == 5
    assert all(item.skipped and item.answer == "" for item in state.qa_transcript)
    assert state.phase == Phase.FEEDBACK
    assert state.feedback is not None


@pytest.mark.asyncio
async def test_answer_records_coach_note(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    state, reply = await controller.submit_answer("You use it when the time is not said.")
    assert reply.accepted is True
    assert state.qa_transcript[0].coach_note == reply.coach_note
    assert state.current_coach_note == reply.coach_note
    assert state.current_question_index == 1
    state = await controller.load_question()
    assert state.current_coach_note is None


@pytest.mark.asyncio
async def test_empty_answer_is_rejected_without_advancing(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    with pytest.raises(ValidationFailed):
        await controller.submit_answer("  ")
    assert controller.state.qa_transcript == []
    assert controller.state.current_question_index == 0


@pytest.mark.asyncio
async def test_hint_is_recorded_on_answer(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    hint = await controller.get_hint()
    assert hint
    assert await controller.get_hint() == hint
    state, _ = await controller.submit_answer("An answer after the hint.")
    assert state.qa_transcript[0].hint_used is True


@pytest.mark.asyncio
async def test_hints_can_be_turned_off(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    controller.update_preferences(LearnPreferences(show_hints=False))
    with pytest.raises(ValidationFailed):
        await controller.get_hint()


# --- Feedback, retry and new topic ---

@pytest.mark.asyncio
async def test_feedback_is_computed_once(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    for _ in range(5):
        await controller.skip_question()
    first = controller.state.feedback
    assert await controller.compute_feedback() is first


@pytest.mark.asyncio
async def test_retry_starts_new_attempt_with_fresh_opening(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    before = controller.state
    state = await controller.retry()
    assert state.phase == Phase.TEACH
    assert state.session_id == before.session_id
    assert state.topic == before.topic
    assert state.lesson == before.lesson
    assert state.explanation == ""
    assert state.qa_transcript == []
    assert state.current_question_index == 0
    assert [t.role for t in state.transcript] == [TurnRole.TUTOR]


@pytest.mark.asyncio
async def test_new_topic_clears_state_and_saved_progress(make_controller, kv):
    controller = make_controller(kv=kv)
    await _to_teach(controller)
    assert kv.load("learn_state:alice") is not None
    state = controller.new_topic()
    assert state.phase == Phase.SETUP
    assert state.topic is None and state.lesson is None
    assert kv.load("learn_state:alice") is None


@pytest.mark.asyncio
async def test_back_is_always_allowed_and_keeps_data(make_controller):
    controller = make_controller()
    await _to_questions(controller)
    state = controller.back()
    assert state.phase == Phase.TEACH
    assert state.explanation
    with pytest.raises(InvalidTransition):
        await controller.go_to(Phase.LESSON)


# --- Records ---

@pytest.mark.asyncio
async def test_save_record_after_feedback_is_completed_and_idempotent(make_controller, records):
    controller = make_controller()
    await _to_teach(controller)
    for i in range(5):
        await controller.respond(f"turn {i}")
    record = controller.save_record()
    assert record.status == SessionStatus.COMPLETED
    assert record.total_score == controller.state.feedback.total_score
    assert controller.save_record().id == record.id
    assert [r.id for r in records.load_all("alice")] == [record.id]


@pytest.mark.asyncio
async def test_record_without_feedback_is_in_progress(make_controller):
    controller = make_controller()
    await _to_teach(controller)
    record = controller.save_record()
    assert record.status == SessionStatus.IN_PROGRESS
    assert record.scores is None


@pytest.mark.asyncio
async def test_delete_all_records_after_completed_session(make_controller, records):
    controller = make_controller()
    await _to_teach(controller)
    for i in range(5):
        await controller.respond(f"turn {i}")
    controller.save_record()
    records.delete_all("alice")
    assert records.load_all("alice") == []


@pytest.mark.asyncio
async def test_records_survive_new_topic(make_controller, records):
    controller = make_controller()
    await _to_teach(controller)
    controller.save_record()
    controller.new_topic()
    assert len(records.load_all("alice")) == 1


# --- Persistence failures ---

@pytest.mark.asyncio
async def test_failed_state_write_warns_and_continues(make_controller, session_factory):
    controller = make_controller(kv=FailingKV(session_factory))
    controller.select_topic("topic-1")
    state = await controller.next()
    assert state.phase == Phase.LESSON
    notices = controller.notices.drain()
    assert notices and all(n.level == "warning" for n in notices)


def test_registry_keeps_one_controller_per_learner(registry):
    assert isinstance(registry, ControllerRegistry)
    alice = registry.get("alice")
    assert registry.get("alice") is alice
    assert registry.get("bob") is not alice


def test_registry_evicts_idle_controllers(registry):
    alice = registry.get("alice")
    registry.get("bob")
    assert registry.evict_idle(7) == 0
    assert len(registry) == 2
    later = datetime.utcnow() + timedelta(days=8)
    assert registry.evict_idle(7, now=later) == 2
    assert len(registry) == 0
    assert registry.get("alice") is not alice


# --- Ending the teach-back ---

@pytest.mark.asyncio
async def test_no_more_turns_once_student_understood(make_controller):
    controller = make_controller(advance_delay=0.05)
    await _to_teach(controller)
    for i in range(5):
        state, reply = await controller.respond(f"turn {i}")
    assert reply.understood is True
    assert controller.concluded is True
    with pytest.raises(InvalidTransition):
        await controller.respond("one more thing")
    assert controller.state.transcript == state.transcript
    await asyncio.sleep(0.2)
    assert controller.state.phase == Phase.FEEDBACK
    assert "one more thing" not in controller.state.explanation


@pytest.mark.asyncio
async def test_retry_after_understood_accepts_turns_again(make_controller):
    controller = make_controller(advance_delay=0.05)
    await _to_teach(controller)
    for i in range(5):
        await controller.respond(f"turn {i}")
    await controller.retry()
    assert controller.concluded is False
    state, _ = await controller.respond("starting over")
    assert state.explanation == "starting over"
    await asyncio.sleep(0.1)
    assert controller.state.phase == Phase.TEACH


@pytest.mark.asyncio
async def test_jump_to_feedback_needs_teach_phase(make_controller):
    controller = make_controller()
    controller.select_topic("topic-2")
    with pytest.raises(InvalidTransition):
        await controller.go_to(Phase.FEEDBACK)
    assert controller.state.phase == Phase.SETUP
    await controller.next()
    with pytest.raises(InvalidTransition):
        await controller.go_to(Phase.FEEDBACK)
    assert controller.state.phase == Phase.LESSON
    assert controller.state.feedback is None


# --- Changing topic ---

@pytest.mark.asyncio
async def test_new_topic_after_going_back_gets_its_own_attempt_and_record(make_controller, records):
    controller = make_controller()
    await _to_teach(controller)
    old_opening = controller.state.opening_question
    for i in range(5):
        await controller.respond(f"turn {i}")
    old_feedback = controller.state.feedback
    first = controller.save_record()
    for _ in range(4):
        controller.back()
    assert controller.state.phase == Phase.SETUP

    controller.select_topic("topic-6")
    await controller.next()
    state = await controller.next()
    assert state.phase == Phase.TEACH
    assert state.topic_id == "topic-6"
    assert state.lesson.topic_id == "topic-6"
    assert len(state.transcript) == 1
    assert state.opening_question != old_opening
    assert state.explanation == ""

    for i in range(5):
        await controller.respond(f"articles {i}")
    assert controller.state.phase == Phase.FEEDBACK
    assert controller.state.feedback is not old_feedback
    second = controller.save_record()
    assert second.id != first.id
    assert second.topic_id == "topic-6"
    assert {r.topic_id for r in records.load_all("alice")} == {"topic-1", "topic-6"}
