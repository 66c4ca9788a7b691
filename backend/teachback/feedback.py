"""
Teach-Back Feedback Synthesizer
===============================

Turns the learner's accumulated explanation and Q&A transcript into the
end-of-session report: four dimension scores, a total, a grade bucket,
remediation tips, corrections, missing points, a model explanation and a
suggestion for the next topic.

Scoring is a length heuristic:
- base = min(95, 60 + characters / 10)
- correctness = base + 5, coverage = base - 5 + 2 per answered question,
  clarity = base + 7.5, english = base - 5
- every dimension is rounded half up and clamped to 0..100
- total = mean of the four rounded dimensions, rounded half up

Results are deterministic for the same inputs. A non-zero ``jitter`` adds a
uniform offset per dimension drawn from a generator seeded with ``seed``.
"""

from __future__ import annotations

import logging
import math
import random
import re
from typing import List, Optional, Sequence, Tuple

from .content import RULE_SHEETS
from .domain import Correction, FeedbackResult, QAItem, Scores, Topic

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS AND CONFIGURATION
# ============================================================================

BASE_FLOOR = 60.0
BASE_CAP = 95.0
CHARS_PER_POINT = 10.0
COVERAGE_PER_ANSWER = 2.0

# Per-dimension offsets from the base score
OFFSETS = {
	"correctness": 5.0,
	"coverage": -5.0,
	"clarity": 7.5,
	"english": -5.0,
}

# (lower bound, label), checked from the top
GRADE_BUCKETS: List[Tuple[int, str]] = [
	(85, "Excellent"),
	(70, "Strong"),
	(55, "Improving"),
]
LOWEST_GRADE = "Needs Work"

MAX_TOP_FIXES = 3
DEFAULT_TOP_FIXES: List[str] = [
	"Add more specific examples with time expressions",
	"Clarify the connection to the present moment",
	"Use more formal grammar terminology",
]

# Corrections shown when strict corrections are off / on
RELAXED_CORRECTIONS = 2
STRICT_CORRECTIONS = 5
MAX_MISSING_POINTS = 3


# ============================================================================
# CANNED EXEMPLARS
# ============================================================================

_TOPIC_CORRECTIONS = {
	"topic-1": [
		Correction(
			bad="Present perfect is when action still matters now",
			good="We use the present perfect when an action has a connection to the present moment",
			why="More precise and uses correct grammatical terms",
		),
		Correction(
			bad="past simple is for finished things",
			good="Past simple is used for completed actions at a specific time in the past",
			why="More formal and complete description",
		),
	],
}

_TOPIC_MISSING_POINTS = {
	"topic-1": [
		'Did not mention the connection between present perfect and phrases like "since" and "for"',
		"Could expand on when experiences are relevant to use present perfect",
	],
}

_TOPIC_IMPROVED = {
	"topic-1": (
		"The present perfect tense is used when an action has a connection to the present moment, "
		"either because the time isn't specified, the action continues to now, or the result still matters. "
		'For example, "I have lost my keys" suggests I still can\'t find them. In contrast, past simple is used '
		'for completed actions at a specific past time. "I lost my keys yesterday" mentions exactly when it happened. '
		'Key words like "already," "yet," and "ever" signal present perfect, while "yesterday," "last week," '
		'and "ago" signal past simple.'
	),
}

# Informal phrasing the analysis rewrites: (pattern, replacement, reason)
_INFORMAL_PATTERNS: List[Tuple[str, str, str]] = [
	(r"\bis when\b", "is used when", "Define a form by its use, not as a time"),
	(r"\bthings\b", "actions", "Name the grammar precisely instead of using vague nouns"),
	(r"\bstuff\b", "examples", "Avoid informal filler in explanations"),
	(r"\bgonna\b", "going to", "Use the full form in a teaching explanation"),
	(r"\bwanna\b", "want to", "Use the full form in a teaching explanation"),
	(r"\bkinda\b", "somewhat", "Avoid informal filler in explanations"),
]

_EXAMPLE_MARKERS = re.compile(r"(for example|for instance|e\.g\.|such as|like \"|\")", re.IGNORECASE)

# Words a good explanation of the topic usually mentions
_SIGNAL_WORDS = {
	"topic-1": ["already", "yet", "ever", "never", "since", "yesterday", "ago", "last"],
	"topic-2": ["if", "would", "unreal", "imaginary"],
	"topic-3": ["however", "moreover", "therefore", "as a result", "in addition"],
	"topic-4": ["get over", "get along", "get by", "get up", "get on"],
	"topic-5": ["in my opinion", "i think", "i believe", "perhaps", "might"],
	"topic-6": ["a ", "an ", "the ", "vowel", "specific"],
	"topic-7": ["said", "told", "that", "backshift", "tense"],
	"topic-8": ["dear", "regards", "subject", "please", "formal"],
}


# ============================================================================
# SCORING
# ============================================================================

def round_half_up(value: float) -> int:
	"""Round .5 away from zero for positive values (Python's round() is banker's)."""
	return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
	return max(0, min(100, round_half_up(value)))


def base_score(explanation: str) -> float:
	return min(BASE_CAP, BASE_FLOOR + len(explanation.strip()) / CHARS_PER_POINT)


def answered_count(qa: Sequence[QAItem]) -> int:
	return sum(1 for item in qa if not item.skipped and item.answer.strip())


def total_score(scores: Scores) -> int:
	values = scores.values()
	return round_half_up(sum(values) / len(values))


def grade_for(total: int) -> str:
	for lower, label in GRADE_BUCKETS:
		if total >= lower:
			return label
	return LOWEST_GRADE


def compute_scores(explanation: str, qa: Sequence[QAItem], *, rng: Optional[random.Random] = None, jitter: float = 0.0) -> Scores:
	base = base_score(explanation)
	raw = {name: base + offset for name, offset in OFFSETS.items()}
	raw["coverage"] += COVERAGE_PER_ANSWER * answered_count(qa)
	if rng is not None and jitter > 0:
		for name in raw:
			raw[name] += rng.uniform(-jitter, jitter)
	return Scores(**{name: clamp_score(value) for name, value in raw.items()})


# ============================================================================
# CONTENT ANALYSIS
# ============================================================================

def _sentences(text: str) -> List[str]:
	return [s.strip() for s in re.split(r"(?<=[.!?])\s+|\n+", text) if s.strip()]


def find_corrections(explanation: str) -> List[Correction]:
	found: List[Correction] = []
	for sentence in _sentences(explanation):
		for pattern, replacement, why in _INFORMAL_PATTERNS:
			if re.search(pattern, sentence, re.IGNORECASE):
				good = re.sub(pattern, replacement, sentence, flags=re.IGNORECASE)
				found.append(Correction(bad=sentence, good=good[0].upper() + good[1:], why=why))
				break
	return found


def find_missing_points(topic: Topic, explanation: str) -> List[str]:
	lowered = explanation.lower()
	missing = list(_TOPIC_MISSING_POINTS.get(topic.id, []))
	for tag in topic.tags:
		words = tag.replace("-", " ")
		if words not in lowered:
			missing.append(f'Did not mention {words} when explaining {topic.title}')
	if not _EXAMPLE_MARKERS.search(explanation):
		missing.append("Did not include a concrete example sentence")
	return missing[:MAX_MISSING_POINTS]


def improved_explanation(topic: Topic) -> str:
	if topic.id in _TOPIC_IMPROVED:
		return _TOPIC_IMPROVED[topic.id]
	sheet = RULE_SHEETS.get(topic.id)
	if sheet is None:
		return f"{topic.title}: explain the rule first, then show it in two short example sentences."
	examples = " ".join(f'"{e}"' for e in sheet["examples"])
	return f"{sheet['rule']} For example: {examples} A common mistake to avoid: {sheet['mistake']}."


def missing_signal_words(topic: Topic, explanation: str) -> List[str]:
	"""Signal words for ``topic``, or [] when the explanation uses at least one."""
	words = _SIGNAL_WORDS.get(topic.id, [])
	lowered = f" {explanation.lower()} "
	if any(word in lowered for word in words):
		return []
	return words


def top_fixes(topic: Topic, explanation: str, qa: Sequence[QAItem]) -> List[str]:
	text = explanation.strip()
	fixes: List[str] = []
	if len(text) < 100:
		fixes.append("Develop your explanation with more detail before answering questions")
	if any(item.skipped for item in qa):
		fixes.append("Try to answer every follow-up question, even briefly")
	if text and not _EXAMPLE_MARKERS.search(text):
		fixes.append("Support each rule with a concrete example sentence")
	missing = missing_signal_words(topic, text)
	if text and missing:
		listed = ", ".join(f'"{w.strip()}"' for w in missing[:3])
		fixes.append(f"Use signal words such as {listed}")
	for default in DEFAULT_TOP_FIXES:
		if len(fixes) >= MAX_TOP_FIXES:
			break
		if default not in fixes:
			fixes.append(default)
	return fixes[:MAX_TOP_FIXES]


def pick_next_topic(current: Topic, catalog: Sequence[Topic]) -> Topic:
	others = [t for t in catalog if t.id != current.id]
	if not others:
		raise LookupError("catalog has no other topic to suggest")
	for topic in others:
		if not topic.starred:
			return topic
	return others[0]


# ============================================================================
# SYNTHESIZER
# ============================================================================

class HeuristicFeedbackSynthesizer:
	def __init__(self, jitter: float = 0.0, seed: Optional[int] = None) -> None:
		self.jitter = jitter
		self.seed = seed

	async def synthesize(
		self,
		topic: Topic,
		explanation: str,
		qa: Sequence[QAItem],
		*,
		catalog: Sequence[Topic],
		strict: bool = False,
	) -> FeedbackResult:
		"""Build the end-of-session report.

		Args:
			topic: Topic the learner taught
			explanation: Newline-joined learner utterances (may be empty)
			qa: Q&A round items, answered or skipped
			catalog: Topics with the learner's starred flags applied
			strict: Show every correction found instead of the first two

		Returns:
			A complete FeedbackResult

		Raises:
			LookupError: If the catalog has no topic other than ``topic``
		"""
		rng = random.Random(self.seed) if self.jitter > 0 else None
		scores = compute_scores(explanation, qa, rng=rng, jitter=self.jitter)
		total = total_score(scores)

		corrections = list(_TOPIC_CORRECTIONS.get(topic.id, [])) + find_corrections(explanation)
		limit = STRICT_CORRECTIONS if strict else RELAXED_CORRECTIONS
		result = FeedbackResult(
			scores=scores,
			total_score=total,
			grade=grade_for(total),
			top_fixes=top_fixes(topic, explanation, qa),
			corrections=corrections[:limit],
			missing_points=find_missing_points(topic, explanation),
			improved_explanation=improved_explanation(topic),
			next_suggestion=pick_next_topic(topic, catalog),
		)
		logger.info("Feedback for %s: total=%d grade=%s", topic.id, total, result.grade)
		return result
