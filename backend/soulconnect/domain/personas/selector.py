"""Scripted persona replies chosen from YAML dialogue banks."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import yaml

from soulconnect.domain.identity.models import Identity, normalise_traits

CONTENT_DIR = Path(__file__).resolve().parent.parent.parent / "content"
DEFAULT_PERSONAS_PATH = CONTENT_DIR / "personas.yml"

GREETINGS = "greetings"
RESPONSES = "responses"
DEEP_QUESTIONS = "deepQuestions"
CHALLENGES = "challenges"
WHISPERS = "whispers"


@dataclass(slots=True)
class ConversationContext:
	message: str
	sender_id: str
	room_id: str
	sender_display_name: str = ""


class PersonaResponseSelector(Protocol):
	def select_reply(self, persona_id: str, context: ConversationContext) -> str: ...


@dataclass(slots=True)
class PersonaProfile:
	id: str
	display_name: str
	avatar: str = "🤖"
	traits: Tuple[str, ...] = ()
	bio: str = ""
	banks: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

	def to_identity(self) -> Identity:
		return Identity(
			id=self.id,
			display_name=self.display_name,
			traits=self.traits,
			is_synthetic=True,
			bio=self.bio,
			avatar=self.avatar,
		)


@dataclass(slots=True)
class PersonaLibrary:
	personas: Dict[str, PersonaProfile] = field(default_factory=dict)
	fallback_reply: str = "💭 Your words give me pause... let's keep this deep conversation going."
	greeting_max_length: int = 20
	whisper_probability: float = 0.3
	question_marks: Tuple[str, ...] = ("?", "？")
	emotion_words: Tuple[str, ...] = ()

	def identities(self) -> List[Identity]:
		return [persona.to_identity() for persona in self.personas.values()]


def _strings(raw: object) -> Tuple[str, ...]:
	if isinstance(raw, (list, tuple)):
		return tuple(str(item) for item in raw if str(item).strip())
	return ()


def parse_persona_library(data: Mapping[str, object]) -> PersonaLibrary:
	personas: Dict[str, PersonaProfile] = {}
	raw_personas = data.get("personas", {})
	if isinstance(raw_personas, dict):
		for persona_id, raw in raw_personas.items():
			raw = raw if isinstance(raw, dict) else {}
			raw_banks = raw.get("banks") if isinstance(raw.get("banks"), dict) else {}
			personas[str(persona_id)] = PersonaProfile(
				id=str(persona_id),
				display_name=str(raw.get("display_name") or persona_id),
				avatar=str(raw.get("avatar") or "🤖"),
				traits=normalise_traits(_strings(raw.get("traits"))),
				bio=str(raw.get("bio") or ""),
				banks={str(name): _strings(lines) for name, lines in raw_banks.items()},
			)
	library = PersonaLibrary(personas=personas)
	if data.get("fallback_reply"):
		library.fallback_reply = str(data["fallback_reply"])
	if data.get("greeting_max_length") is not None:
		library.greeting_max_length = int(data["greeting_max_length"])
	if data.get("whisper_probability") is not None:
		library.whisper_probability = float(data["whisper_probability"])
	if data.get("question_marks"):
		library.question_marks = _strings(data["question_marks"])
	library.emotion_words = tuple(word.lower() for word in _strings(data.get("emotion_words")))
	return library


def load_persona_library(path: str | Path = DEFAULT_PERSONAS_PATH) -> PersonaLibrary:
	with open(path, "r", encoding="utf-8") as handle:
		loaded = yaml.safe_load(handle) or {}
		if not isinstance(loaded, dict):
			raise ValueError("persona library must be a mapping")
	return parse_persona_library(loaded)


@lru_cache(maxsize=1)
def default_library() -> PersonaLibrary:
	return load_persona_library()


class ScriptedPersonaSelector:
	"""Pick a bank from message features, then a line from that bank.

	Short messages get a greeting, questions get a deep question, emotional
	messages get a challenge, and otherwise a whisper is drawn with
	``whisper_probability`` before falling back to the general responses.
	"""

	def __init__(self, library: PersonaLibrary, rng: Optional[random.Random] = None) -> None:
		self._library = library
		self._rng = rng or random.Random()

	@property
	def library(self) -> PersonaLibrary:
		return self._library

	def _pick(self, lines: Sequence[str]) -> str:
		return lines[self._rng.randrange(len(lines))]

	def select_reply(self, persona_id: str, context: ConversationContext) -> str:
		persona = self._library.personas.get(persona_id)
		if persona is None or not persona.banks:
			return self._library.fallback_reply
		banks = persona.banks
		text = context.message
		lowered = text.lower()

		if len(text) < self._library.greeting_max_length and banks.get(GREETINGS):
			return self._pick(banks[GREETINGS])
		if any(mark in text for mark in self._library.question_marks) and banks.get(DEEP_QUESTIONS):
			return self._pick(banks[DEEP_QUESTIONS])
		if any(word in lowered for word in self._library.emotion_words) and banks.get(CHALLENGES):
			return self._pick(banks[CHALLENGES])
		if banks.get(WHISPERS) and self._rng.random() > 1.0 - self._library.whisper_probability:
			return self._pick(banks[WHISPERS])
		if banks.get(RESPONSES):
			return self._pick(banks[RESPONSES])
		return self._library.fallback_reply
