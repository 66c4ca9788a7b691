"""
Boundaries the session controller talks to.

The built-in implementations live in ``content``, ``partner``, ``qa``,
``feedback`` and ``store``; anything satisfying these protocols (a model-backed
tutor, a remote content service) can be injected instead.
"""

from __future__ import annotations
from typing import AsyncIterator, Iterable, List, Optional, Protocol, Sequence

from .domain import (
    CoachReply,
    ConversationTurn,
    FeedbackResult,
    FollowUp,
    Lesson,
    QAItem,
    SessionRecord,
    SessionStatus,
    Topic,
)


class ContentProvider(Protocol):
    def list_topics(
        self,
        *,
        category: Optional[str] = None,
        level: Optional[str] = None,
        search: Optional[str] = None,
        starred_ids: Optional[Iterable[str]] = None,
    ) -> List[Topic]: ...

    def get_topic(self, topic_id: str, *, starred_ids: Optional[Iterable[str]] = None) -> Topic: ...

    async def generate_lesson(self, topic_id: str) -> Lesson: ...

    async def regenerate_lesson(self, topic_id: str) -> Lesson: ...


class ConversationPartner(Protocol):
    async def get_opening_question(self, topic_id: str) -> str: ...

    async def get_follow_up(self, transcript: Sequence[ConversationTurn], utterance: str) -> FollowUp: ...


class QAProvider(Protocol):
    async def get_next_question(self, topic_id: str, index: int, *, harder: bool = False) -> str: ...

    async def get_hint(self, topic_id: str, index: int) -> str: ...

    async def submit_answer(self, index: int, answer: str) -> CoachReply: ...


class FeedbackSynthesizer(Protocol):
    async def synthesize(
        self,
        topic: Topic,
        explanation: str,
        qa: Sequence[QAItem],
        *,
        catalog: Sequence[Topic],
        strict: bool = False,
    ) -> FeedbackResult: ...


class KeyValueStore(Protocol):
    def save(self, key: str, value: str) -> None: ...

    def load(self, key: str) -> Optional[str]: ...

    def remove(self, key: str) -> None: ...


class RecordStore(Protocol):
    def save(self, username: str, record: SessionRecord) -> SessionRecord: ...

    def load_all(self, username: str, status: Optional[SessionStatus] = None) -> List[SessionRecord]: ...

    def get(self, username: str, record_id: str) -> Optional[SessionRecord]: ...

    def delete(self, username: str, record_id: str) -> bool: ...

    def delete_all(self, username: str) -> int: ...


class SpeechChannel(Protocol):
    """Speech capture and playback, owned by the client; the dialogue rules never call it."""

    def listen(self) -> AsyncIterator[str]: ...

    async def speak(self, text: str) -> None: ...
