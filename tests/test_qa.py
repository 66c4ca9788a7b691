"""Tests for the scripted Q&A provider."""

import pytest

from teachback.qa import COACH_NOTES, HINTS, ScriptedQAProvider


@pytest.fixture
def qa(catalog):
    return ScriptedQAProvider(catalog)


@pytest.mark.asyncio
async def test_questions_cycle_by_index(qa):
    first = await qa.get_next_question("topic-1", 0)
    assert first.startswith("Can you give me an example")
    assert await qa.get_next_question("topic-1", 5) == first


@pytest.mark.asyncio
async def test_generic_questions_name_the_topic(qa):
    question = await qa.get_next_question("topic-6", 1)
    assert "Articles: A, An, and The" in question


@pytest.mark.asyncio
async def test_harder_questions_differ(qa):
    normal = await qa.get_next_question("topic-1", 0)
    harder = await qa.get_next_question("topic-1", 0, harder=True)
    assert normal != harder
    assert "Present Perfect vs Past Simple" in harder


@pytest.mark.asyncio
async def test_hints_are_stateless_lookups(qa):
    assert await qa.get_hint("topic-1", 2) == HINTS[2]
    assert await qa.get_hint("topic-1", 2) == HINTS[2]
    assert await qa.get_hint("topic-1", 7) == HINTS[2]
    assert await qa.get_hint("topic-5", 0) != HINTS[0]


@pytest.mark.asyncio
async def test_coach_notes_follow_index(qa):
    assert (await qa.submit_answer(0, "a full answer")).coach_note == COACH_NOTES[0]
    assert (await qa.submit_answer(2, "a full answer")).coach_note is None
    assert (await qa.submit_answer(8, "a full answer")).coach_note == COACH_NOTES[3]


@pytest.mark.asyncio
async def test_only_longer_answers_are_accepted(qa):
    assert (await qa.submit_answer(0, "12345")).accepted is False
    assert (await qa.submit_answer(0, "123456")).accepted is True


@pytest.mark.asyncio
async def test_unknown_topic_raises(qa):
    with pytest.raises(LookupError):
        await qa.get_next_question("nope", 0)
