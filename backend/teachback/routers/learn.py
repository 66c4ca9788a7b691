"""
Learn Flow Router

HTTP surface of the session controller. Every endpoint acts on the calling
learner's single active session and answers with the state snapshot plus any
pending notices:

- Setup: pick a topic and preferences
- Lesson: generate / regenerate the micro-lesson, check mini exercises
- Teach: open the dialogue and send explanation turns
- Questions: load, answer, skip, hint
- Feedback: compute the report and save the session record
- Navigation: next, back, goto, retry, new topic
"""

from __future__ import annotations
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..controller import ControllerRegistry, SessionController
from ..domain import LearnPreferences, Phase
from .deps import User, get_current_user, get_registry, http_errors

router = APIRouter(prefix="/learn", tags=["learn"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class TopicRequest(BaseModel):
	topic_id: str


class GoToRequest(BaseModel):
	phase: Phase


class ExerciseRequest(BaseModel):
	index: int = Field(ge=0)
	answer: str


class RespondRequest(BaseModel):
	utterance: str


class AnswerRequest(BaseModel):
	answer: str


def _controller(user: User = Depends(get_current_user), registry: ControllerRegistry = Depends(get_registry)) -> SessionController:
	return registry.get(user.username)


def _snapshot(controller: SessionController, **extra: Any) -> Dict[str, Any]:
	return {**controller.snapshot(), **extra}


# ============================================================================
# STATE AND NAVIGATION
# ============================================================================

@router.get("/state")
async def get_state(controller: SessionController = Depends(_controller)):
	return _snapshot(controller)


@router.post("/topic")
async def select_topic(req: TopicRequest, controller: SessionController = Depends(_controller)):
	with http_errors():
		controller.select_topic(req.topic_id)
	return _snapshot(controller)


@router.post("/preferences")
async def update_preferences(req: LearnPreferences, controller: SessionController = Depends(_controller)):
	with http_errors():
		controller.update_preferences(req)
	return _snapshot(controller)


@router.post("/next")
async def next_phase(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.next()
	return _snapshot(controller)


@router.post("/back")
async def previous_phase(controller: SessionController = Depends(_controller)):
	with http_errors():
		controller.back()
	return _snapshot(controller)


@router.post("/goto")
async def go_to_phase(req: GoToRequest, controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.go_to(req.phase)
	return _snapshot(controller)


@router.post("/retry")
async def retry(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.retry()
	return _snapshot(controller)


@router.post("/new-topic")
async def new_topic(controller: SessionController = Depends(_controller)):
	with http_errors():
		controller.new_topic()
	return _snapshot(controller)


# ============================================================================
# LESSON
# ============================================================================

@router.post("/lesson")
async def generate_lesson(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.generate_lesson()
	return _snapshot(controller)


@router.post("/lesson/regenerate")
async def regenerate_lesson(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.regenerate_lesson()
	return _snapshot(controller)


@router.post("/lesson/exercise")
async def check_exercise(req: ExerciseRequest, controller: SessionController = Depends(_controller)):
	with http_errors():
		correct, explanation = controller.check_exercise(req.index, req.answer)
	return {"correct": correct, "explanation": explanation}


# ============================================================================
# TEACH-BACK
# ============================================================================

@router.post("/teach/open")
async def open_dialogue(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.open_dialogue()
	return _snapshot(controller)


@router.post("/teach/respond")
async def respond(req: RespondRequest, controller: SessionController = Depends(_controller)):
	with http_errors():
		_, reply = await controller.respond(req.utterance)
	return _snapshot(controller, reply=reply.model_dump(by_alias=True))


# ============================================================================
# QUESTIONS
# ============================================================================

@router.post("/questions/load")
async def load_question(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.load_question()
	return _snapshot(controller)


@router.post("/questions/answer")
async def submit_answer(req: AnswerRequest, controller: SessionController = Depends(_controller)):
	with http_errors():
		_, reply = await controller.submit_answer(req.answer)
	return _snapshot(controller, coach=reply.model_dump(by_alias=True))


@router.post("/questions/skip")
async def skip_question(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.skip_question()
	return _snapshot(controller)


@router.get("/questions/hint")
async def get_hint(controller: SessionController = Depends(_controller)):
	with http_errors():
		hint = await controller.get_hint()
	return {"hint": hint, "index": controller.state.current_question_index}


# ============================================================================
# FEEDBACK
# ============================================================================

@router.post("/feedback")
async def compute_feedback(controller: SessionController = Depends(_controller)):
	with http_errors():
		await controller.compute_feedback()
	return _snapshot(controller)


@router.post("/save")
async def save_record(controller: SessionController = Depends(_controller)):
	with http_errors():
		record = controller.save_record()
	return _snapshot(controller, record=record.model_dump(mode="json", by_alias=True))
