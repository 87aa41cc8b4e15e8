import random

import pytest

from soulconnect.domain.personas.selector import (
    ConversationContext,
    ScriptedPersonaSelector,
    default_library,
    parse_persona_library,
)


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def _context(message):
    return ConversationContext(message=message, sender_id="alice", room_id="room-1")


@pytest.fixture
def library():
    return parse_persona_library(
        {
            "fallback_reply": "fallback",
            "greeting_max_length": 20,
            "whisper_probability": 0.3,
            "emotion_words": ["Sad", "lonely"],
            "personas": {
                "ai-test": {
                    "display_name": "Tester",
                    "traits": ["anxiety", "anxiety", "ocd"],
                    "banks": {
                        "greetings": ["hello"],
                        "responses": ["response"],
                        "deepQuestions": ["question"],
                        "challenges": ["challenge"],
                        "whispers": ["whisper"],
                    },
                },
                "ai-empty": {"display_name": "Empty"},
            },
        }
    )


def test_short_message_gets_greeting(library):
    selector = ScriptedPersonaSelector(library, rng=FixedRandom(0.0))
    assert selector.select_reply("ai-test", _context("hi there?")) == "hello"


def test_question_beats_emotion(library):
    selector = ScriptedPersonaSelector(library, rng=FixedRandom(0.0))
    assert selector.select_reply("ai-test", _context("why do I feel so sad all the time?")) == "question"
    assert selector.select_reply("ai-test", _context("why do I feel so sad all the time？")) == "question"


def test_emotion_word_matches_case_insensitively(library):
    selector = ScriptedPersonaSelector(library, rng=FixedRandom(0.0))
    assert selector.select_reply("ai-test", _context("Everything feels LONELY tonight")) == "challenge"


def test_whisper_drawn_with_probability(library):
    assert ScriptedPersonaSelector(library, rng=FixedRandom(0.95)).select_reply(
        "ai-test", _context("the city hums quietly tonight")
    ) == "whisper"
    assert ScriptedPersonaSelector(library, rng=FixedRandom(0.5)).select_reply(
        "ai-test", _context("the city hums quietly tonight")
    ) == "response"


def test_unknown_or_empty_persona_falls_back(library):
    selector = ScriptedPersonaSelector(library)
    assert selector.select_reply("ai-missing", _context("anything at all here")) == "fallback"
    assert selector.select_reply("ai-empty", _context("anything at all here")) == "fallback"


def test_parsed_traits_are_deduplicated(library):
    assert library.personas["ai-test"].traits == ("anxiety", "ocd")
    assert library.emotion_words == ("sad", "lonely")


def test_bundled_personas_have_matching_banks():
    library = default_library()
    assert set(library.personas) == {"ai-dark-therapist", "ai-chaos-master", "ai-shadow-whisperer"}
    for persona in library.personas.values():
        assert persona.banks.get("greetings")
        assert persona.banks.get("responses")
    identities = library.identities()
    assert all(identity.is_synthetic for identity in identities)
