"""
Built-in Content Provider

Serves the topic catalog and micro-lessons for the learn flow. Lessons are
static: the catalog carries a short rule sheet per topic and lessons are
assembled from it; "Present Perfect vs Past Simple" ships a fully written
lesson. Regeneration returns the same lesson marked as regenerated.
"""

from __future__ import annotations
import json
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .collaborators import KeyValueStore
from .domain import Lesson, LessonSection, MiniExercise, Topic
from .errors import ValidationFailed

logger = logging.getLogger(__name__)


# ============================================================================
# CATALOG
# ============================================================================

TOPICS: List[Topic] = [
    Topic(id="topic-1", title="Present Perfect vs Past Simple", category="Grammar", level="B1",
          estimated_minutes=10, tags=["tenses", "verbs", "common-mistakes"], starred=True),
    Topic(id="topic-2", title="Conditional Sentences Type 2", category="Grammar", level="B1",
          estimated_minutes=12, tags=["conditionals", "hypothetical", "if-clauses"]),
    Topic(id="topic-3", title="Academic Writing: Cohesive Devices", category="Writing", level="B2",
          estimated_minutes=15, tags=["academic", "linking-words", "paragraphs"], starred=True),
    Topic(id="topic-4", title='Phrasal Verbs with "Get"', category="Vocabulary", level="B1",
          estimated_minutes=8, tags=["phrasal-verbs", "informal", "get"]),
    Topic(id="topic-5", title="Expressing Opinions Politely", category="Speaking", level="B1",
          estimated_minutes=10, tags=["fluency", "formal", "debate"]),
    Topic(id="topic-6", title="Articles: A, An, and The", category="Grammar", level="A2",
          estimated_minutes=8, tags=["articles", "determiners", "basics"]),
    Topic(id="topic-7", title="Reported Speech", category="Grammar", level="B2",
          estimated_minutes=12, tags=["reporting", "say-tell", "tense-shift"]),
    Topic(id="topic-8", title="Business English: Email Etiquette", category="Writing", level="B2",
          estimated_minutes=10, tags=["business", "formal", "professional"]),
]

REGENERATED_SUFFIX = " (Regenerated with fresh examples)"


# ============================================================================
# LESSON BANK
# ============================================================================

_PRESENT_PERFECT_LESSON = Lesson(
    id="lesson-1",
    topic_id="topic-1",
    title="Present Perfect vs Past Simple",
    sections=[
        LessonSection(
            heading="When to Use Present Perfect",
            content="Use present perfect when the exact time of the action is not important, or when the action has a connection to the present moment.",
            examples=[
                "I have visited Paris three times. (experience, time not specified)",
                "She has lost her keys. (result affects now: she can't get in)",
                "We have lived here since 2020. (started in past, continues now)",
            ],
        ),
        LessonSection(
            heading="When to Use Past Simple",
            content="Use past simple when you are talking about a completed action at a specific time in the past. The time is often mentioned or clear from context.",
            examples=[
                "I visited Paris last summer. (specific time: last summer)",
                "She lost her keys yesterday. (specific time: yesterday)",
                "We moved here in 2020. (specific time: 2020)",
            ],
        ),
        LessonSection(
            heading="Key Signal Words",
            content="Certain words often indicate which tense to use.",
            examples=[
                "Present Perfect: ever, never, already, yet, just, since, for, recently",
                "Past Simple: yesterday, last week, ago, in 2019, when I was young",
            ],
        ),
    ],
    common_mistake='Using present perfect with specific past times: "I have seen him yesterday" is wrong, say "I saw him yesterday"',
    mini_exercises=[
        MiniExercise(
            question='Choose the correct form: "I _____ to London last year."',
            options=["have been", "went", "have gone", "was going"],
            correct_answer="went",
            explanation='We use past simple with "last year" because it\'s a specific past time.',
        ),
        MiniExercise(
            question='Choose the correct form: "She _____ her homework yet."',
            options=["didn't finish", "hasn't finished", "not finished", "don't finish"],
            correct_answer="hasn't finished",
            explanation='We use present perfect with "yet" because it indicates an action expected but not completed.',
        ),
    ],
)

# Rule sheets for the remaining topics: (rule, examples, common mistake, exercise)
RULE_SHEETS: Dict[str, Dict[str, object]] = {
    "topic-2": {
        "rule": "Use if + past simple, then would + base verb, to talk about unreal or unlikely situations in the present or future.",
        "examples": ["If I had more time, I would learn Japanese.", "If she lived closer, we would see her more often."],
        "mistake": 'Putting "would" in the if-clause: "If I would have money" is wrong, say "If I had money"',
        "exercise": ("If I _____ rich, I would travel the world.", ["am", "was", "were being", "would be"], "was",
                     'The if-clause takes past simple; "were" is also accepted in formal English.'),
    },
    "topic-3": {
        "rule": "Cohesive devices link sentences and paragraphs so the reader can follow the argument: addition, contrast, cause and result.",
        "examples": ["Moreover, the data suggests a clear trend.", "However, several studies disagree.", "As a result, costs increased."],
        "mistake": 'Starting every sentence with a linker: "Moreover... Furthermore... In addition..." reads as mechanical',
        "exercise": ("The results were promising. _____, the sample was small.", ["Moreover", "However", "Therefore", "For example"], "However",
                     '"However" introduces a contrast with the previous sentence.'),
    },
    "topic-4": {
        "rule": '"Get" combines with particles to form phrasal verbs whose meaning is often not literal.',
        "examples": ["I need to get over this cold.", "We get along really well.", "She got by on very little money."],
        "mistake": 'Splitting inseparable verbs: "get the cold over" is wrong, say "get over the cold"',
        "exercise": ("It took him months to _____ the breakup.", ["get over", "get by", "get along", "get away"], "get over",
                     '"Get over" means to recover from something.'),
    },
    "topic-5": {
        "rule": "Soften opinions with hedging phrases and modal verbs so that disagreement sounds respectful.",
        "examples": ["I see your point, but I'm not sure I agree.", "It seems to me that we might need more data."],
        "mistake": 'Being too direct: "You are wrong" sounds rude, try "I see it a little differently"',
        "exercise": ("Which phrase is the most polite way to disagree?", ["That's wrong.", "I'm not sure I agree.", "No way.", "You don't understand."],
                     "I'm not sure I agree.", "Hedging softens the disagreement without hiding it."),
    },
    "topic-6": {
        "rule": 'Use "a/an" for one non-specific countable thing and "the" when the listener knows which one you mean.',
        "examples": ["I saw a dog in the park. The dog was huge.", "She is an engineer.", "The sun rises in the east."],
        "mistake": 'Using "a" before vowel sounds: "a hour" is wrong, say "an hour"',
        "exercise": ("She waited for _____ hour.", ["a", "an", "the", "no article"], "an",
                     '"Hour" begins with a vowel sound, so it takes "an".'),
    },
    "topic-7": {
        "rule": "When reporting what someone said, shift the tense back one step and change pronouns and time words as needed.",
        "examples": ['"I am tired," she said. becomes She said she was tired.', '"We will call you," they said. becomes They said they would call me.'],
        "mistake": 'Using "say" with a person object: "He said me" is wrong, say "He told me"',
        "exercise": ('He said, "I like coffee." He said that he _____ coffee.', ["likes", "liked", "has liked", "will like"], "liked",
                     "Present simple shifts back to past simple in reported speech."),
    },
    "topic-8": {
        "rule": "Business emails need a clear subject line, a polite greeting, a focused purpose and a professional sign-off.",
        "examples": ["Dear Ms. Lee, I am writing to follow up on our meeting.", "Please let me know if you have any questions. Best regards, Sam"],
        "mistake": 'Writing "Hey!" to a client you have never met; use "Dear Mr./Ms. ..." instead',
        "exercise": ("Which sign-off suits a first email to a client?", ["Cheers!", "Best regards,", "Later,", "xoxo"], "Best regards,",
                     '"Best regards" is neutral and professional.'),
    },
}


def _build_lesson(topic: Topic) -> Lesson:
    sheet = RULE_SHEETS.get(topic.id)
    if sheet is None:
        raise LookupError(f"no lesson available for {topic.id}")
    question, options, answer, why = sheet["exercise"]
    return Lesson(
        id=f"lesson-{topic.id.split('-')[-1]}",
        topic_id=topic.id,
        title=topic.title,
        sections=[
            LessonSection(heading="The Rule", content=str(sheet["rule"]), examples=list(sheet["examples"])[:1]),
            LessonSection(heading="In Context", content=f"Here is how {topic.title.lower()} looks in real sentences.", examples=list(sheet["examples"])),
            LessonSection(heading="Key Words", content="Watch for these tags when you meet this pattern.", examples=[", ".join(topic.tags)]),
        ],
        common_mistake=str(sheet["mistake"]),
        mini_exercises=[MiniExercise(question=question, options=list(options), correct_answer=answer, explanation=why)],
    )


# ============================================================================
# PROVIDER
# ============================================================================

class StaticContentProvider:
    def __init__(self, topics: Optional[List[Topic]] = None) -> None:
        self.topics: List[Topic] = list(topics if topics is not None else TOPICS)
        self._by_id: Dict[str, Topic] = {t.id: t for t in self.topics}

    def _with_star(self, topic: Topic, starred_ids: Optional[Set[str]]) -> Topic:
        if starred_ids is None:
            return topic
        return topic.model_copy(update={"starred": topic.id in starred_ids})

    def list_topics(
        self,
        *,
        category: Optional[str] = None,
        level: Optional[str] = None,
        search: Optional[str] = None,
        starred_ids: Optional[Iterable[str]] = None,
    ) -> List[Topic]:
        stars = set(starred_ids) if starred_ids is not None else None
        needle = (search or "").strip().lower()
        result: List[Topic] = []
        for topic in self.topics:
            if category and topic.category.value.lower() != category.lower():
                continue
            if level and topic.level.value.lower() != level.lower():
                continue
            if needle and needle not in topic.title.lower() and not any(needle in tag.lower() for tag in topic.tags):
                continue
            result.append(self._with_star(topic, stars))
        return result

    def get_topic(self, topic_id: str, *, starred_ids: Optional[Iterable[str]] = None) -> Topic:
        topic = self._by_id.get(topic_id)
        if topic is None:
            raise LookupError(f"unknown topic: {topic_id}")
        return self._with_star(topic, set(starred_ids) if starred_ids is not None else None)

    async def generate_lesson(self, topic_id: str) -> Lesson:
        topic = self.get_topic(topic_id)
        if topic_id == _PRESENT_PERFECT_LESSON.topic_id:
            return _PRESENT_PERFECT_LESSON.model_copy(deep=True)
        return _build_lesson(topic)

    async def regenerate_lesson(self, topic_id: str) -> Lesson:
        lesson = await self.generate_lesson(topic_id)
        sections = [s.model_copy(update={"content": s.content + REGENERATED_SUFFIX}) for s in lesson.sections]
        return lesson.model_copy(update={"sections": sections})


def check_exercise(lesson: Lesson, index: int, answer: str) -> Tuple[bool, str]:
    if not 0 <= index < len(lesson.mini_exercises):
        raise ValidationFailed(f"lesson has no exercise {index}")
    exercise = lesson.mini_exercises[index]
    correct = " ".join(answer.split()).lower() == " ".join(exercise.correct_answer.split()).lower()
    return correct, exercise.explanation


# ============================================================================
# STARRED TOPICS
# ============================================================================

class StarredTopics:
    """Per-learner starred topic ids kept in the key-value store."""

    def __init__(self, kv: KeyValueStore, catalog: StaticContentProvider) -> None:
        self.kv = kv
        self.catalog = catalog

    @staticmethod
    def key(learner: str) -> str:
        return f"starred:{learner}"

    def get(self, learner: str) -> Set[str]:
        raw = self.kv.load(self.key(learner))
        if raw is not None:
            try:
                data = json.loads(raw)
                if isinstance(data, list):
                    return {str(x) for x in data}
            except ValueError:
                logger.debug("Discarding malformed starred list for %s", learner)
        # Catalog defaults until the learner stars something
        return {t.id for t in self.catalog.topics if t.starred}

    def toggle(self, learner: str, topic_id: str) -> bool:
        self.catalog.get_topic(topic_id)
        stars = self.get(learner)
        if topic_id in stars:
            stars.discard(topic_id)
        else:
            stars.add(topic_id)
        self.kv.save(self.key(learner), json.dumps(sorted(stars)))
        return topic_id in stars
