"""
Scripted Q&A provider for the Questions phase.

Five interrogation questions per topic, one hint per question index and a
coach note cycle. Lookups wrap around by index so any index is answerable.
"""

from __future__ import annotations
from typing import Dict, List

from .content import StaticContentProvider
from .domain import CoachReply

# Answers at or below this length are not accepted as real attempts
MIN_ACCEPTED_ANSWER_CHARS = 5

_QUESTIONS: Dict[str, List[str]] = {
    "topic-1": [
        "Can you give me an example of when I would use present perfect instead of past simple?",
        'What if I want to say something happened "already"? Which tense should I use?',
        'I\'m confused about "since" and "for". Can you explain the difference?',
        'Why can\'t I say "I have seen that movie yesterday"?',
        "How do I know if the action is connected to the present?",
    ],
}

_GENERIC_QUESTIONS: List[str] = [
    "Can you give me an example of {title} in a sentence about your day?",
    "What is the most important rule to remember about {title}?",
    "What mistake do learners often make with {title}?",
    "How would you explain {title} to a friend who is just starting English?",
    "When would you NOT use this pattern?",
]

_HARDER_QUESTIONS: List[str] = [
    "Can you give two contrasting examples of {title} and explain why each is correct?",
    "Which exceptions to the main rule of {title} do you know?",
    "How does {title} change in formal writing compared with conversation?",
    "Correct this sentence and explain your fix: it uses {title} the wrong way.",
    "How would you test whether someone really understands {title}?",
]

HINTS: List[str] = [
    "Think about experiences vs. specific past events.",
    'Consider words like "already" and "yet".',
    '"Since" is for a point in time, "for" is for a duration.',
    "Remember: specific time = past simple.",
    "Does the action still matter now? That's the key.",
]

_GENERIC_HINTS: List[str] = [
    "Start from the rule in the lesson, then add one example.",
    "Look back at the key words section of the lesson.",
    "Think about the common mistake the lesson warned about.",
    "Use simple words first, then add detail.",
    "Ask yourself what would change if you used a different form.",
]

COACH_NOTES: List[str | None] = [
    "Good example! Consider adding more details.",
    "Try using a more specific time expression.",
    None,
    "Great clarity. You could also mention signal words.",
    None,
]


class ScriptedQAProvider:
    def __init__(self, catalog: StaticContentProvider) -> None:
        self.catalog = catalog

    async def get_next_question(self, topic_id: str, index: int, *, harder: bool = False) -> str:
        if not harder and topic_id in _QUESTIONS:
            questions = _QUESTIONS[topic_id]
            return questions[index % len(questions)]
        title = self.catalog.get_topic(topic_id).title
        bank = _HARDER_QUESTIONS if harder else _GENERIC_QUESTIONS
        return bank[index % len(bank)].format(title=title)

    async def get_hint(self, topic_id: str, index: int) -> str:
        hints = HINTS if topic_id in _QUESTIONS else _GENERIC_HINTS
        return hints[index % len(hints)]

    async def submit_answer(self, index: int, answer: str) -> CoachReply:
        return CoachReply(
            coach_note=COACH_NOTES[index % len(COACH_NOTES)],
            accepted=len(answer) > MIN_ACCEPTED_ANSWER_CHARS,
        )
