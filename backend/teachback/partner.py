"""
Rule-based conversation partner for the Teach phase.

The simulated student opens with a question about the topic and, after each
learner utterance, decides whether it has understood. The decision depends
only on how many learner turns came before the new utterance and on the
utterance length; the thresholds live in ``DialoguePolicy``.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .content import StaticContentProvider
from .domain import ConversationTurn, FollowUp, TurnRole
from .settings import Settings

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS AND CONFIGURATION
# ============================================================================

class DialoguePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    # At this many earlier learner turns the student always understands
    max_learner_turns: int = 4
    # Early short answers get a request for a concrete example
    short_reply_turn_limit: int = 2
    short_utterance_chars: int = 50
    # Early understanding needs enough turns and a detailed last answer
    understood_min_turns: int = 3
    detailed_utterance_chars: int = 80

    @classmethod
    def from_settings(cls, s: Settings) -> "DialoguePolicy":
        return cls(
            max_learner_turns=s.dialogue_max_learner_turns,
            short_reply_turn_limit=s.dialogue_short_reply_turn_limit,
            short_utterance_chars=s.dialogue_short_utterance_chars,
            understood_min_turns=s.dialogue_understood_min_turns,
            detailed_utterance_chars=s.dialogue_detailed_utterance_chars,
        )


FOLLOW_UPS: List[str] = [
    "Okay, I think I'm starting to get it. Can you give me an example sentence?",
    "When would I use this instead of something that looks similar?",
    "What mistake do people usually make with this, and how do I avoid it?",
    "Could you put it all together for me in a few sentences?",
]

CLOSING_ACK = "Thanks, I think I understand it now! Let's see how well you explained it."
ASK_FOR_EXAMPLE = "Sorry, I didn't quite follow. Could you explain that again with a concrete example?"

_OPENINGS = {
    "topic-1": "I keep mixing up \"I have done\" and \"I did\". What's the difference between present perfect and past simple?",
}


def count_learner_turns(transcript: Sequence[ConversationTurn]) -> int:
    return sum(1 for turn in transcript if turn.role == TurnRole.LEARNER)


def decide(policy: DialoguePolicy, turns: int, utterance: str) -> FollowUp:
    """Apply the understanding rules.

    Args:
        policy: Thresholds to apply
        turns: Learner turns that came before ``utterance``
        utterance: The learner's newest explanation

    Returns:
        The student's next line and whether it now understands
    """
    length = len(utterance.strip())
    if turns >= policy.max_learner_turns:
        return FollowUp(question=CLOSING_ACK, understood=True, note="turn limit reached")
    if turns < policy.short_reply_turn_limit and length < policy.short_utterance_chars:
        return FollowUp(question=ASK_FOR_EXAMPLE, understood=False, note="answer too short")
    understood = turns >= policy.understood_min_turns and length > policy.detailed_utterance_chars
    question = FOLLOW_UPS[min(turns, len(FOLLOW_UPS) - 1)]
    return FollowUp(question=question, understood=understood, note="detailed explanation" if understood else None)


class RuleBasedPartner:
    def __init__(self, catalog: StaticContentProvider, policy: Optional[DialoguePolicy] = None) -> None:
        self.catalog = catalog
        self.policy = policy or DialoguePolicy()

    async def get_opening_question(self, topic_id: str) -> str:
        if topic_id in _OPENINGS:
            return _OPENINGS[topic_id]
        topic = self.catalog.get_topic(topic_id)
        return f"Hi! I'm trying to learn about {topic.title}. Can you explain it to me in simple words?"

    async def get_follow_up(self, transcript: Sequence[ConversationTurn], utterance: str) -> FollowUp:
        turns = count_learner_turns(transcript)
        # Callers may pass the transcript with the utterance already appended
        last = transcript[-1] if transcript else None
        if last is not None and last.role == TurnRole.LEARNER and last.content == utterance.strip():
            turns -= 1
        reply = decide(self.policy, turns, utterance)
        logger.debug("Dialogue turn %d: understood=%s", turns + 1, reply.understood)
        return reply
