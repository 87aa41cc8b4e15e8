"""Trait catalogue loaded from the bundled YAML content."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping, Optional, Tuple

import yaml

CONTENT_DIR = Path(__file__).resolve().parent.parent.parent / "content"
DEFAULT_TRAITS_PATH = CONTENT_DIR / "traits.yml"


@dataclass(slots=True)
class TraitDescriptor:
	key: str
	label: str
	personality_type: Optional[str] = None
	interests: Tuple[str, ...] = ()


@dataclass(slots=True)
class TraitCatalogue:
	descriptors: dict[str, TraitDescriptor] = field(default_factory=dict)
	complementary_pairs: Tuple[Tuple[str, str], ...] = ()
	default_personality_type: str = "Mystic Explorer"
	default_interests: Tuple[str, ...] = ()
	max_interests: int = 3

	def label(self, trait: str) -> str:
		descriptor = self.descriptors.get(trait)
		return descriptor.label if descriptor else trait

	def personality_type(self, traits: Iterable[str]) -> str:
		for trait in traits:
			descriptor = self.descriptors.get(trait)
			if descriptor and descriptor.personality_type:
				return descriptor.personality_type
		return self.default_personality_type

	def interests(self, traits: Iterable[str]) -> list[str]:
		collected: list[str] = []
		for trait in traits:
			descriptor = self.descriptors.get(trait)
			if descriptor:
				collected.extend(descriptor.interests)
		if not collected:
			collected = list(self.default_interests)
		return collected[: self.max_interests]


def _pairs(raw: object) -> Tuple[Tuple[str, str], ...]:
	pairs: list[Tuple[str, str]] = []
	if isinstance(raw, list):
		for item in raw:
			if isinstance(item, (list, tuple)) and len(item) == 2:
				pairs.append((str(item[0]), str(item[1])))
	return tuple(pairs)


def parse_trait_catalogue(data: Mapping[str, object]) -> TraitCatalogue:
	descriptors: dict[str, TraitDescriptor] = {}
	raw_traits = data.get("traits", {})
	if isinstance(raw_traits, dict):
		for key, entry in raw_traits.items():
			entry = entry if isinstance(entry, dict) else {}
			interests = entry.get("interests") or ()
			descriptors[str(key)] = TraitDescriptor(
				key=str(key),
				label=str(entry.get("label") or key),
				personality_type=entry.get("personality_type"),
				interests=tuple(str(item) for item in interests),
			)
	default_interests = data.get("default_interests") or ()
	return TraitCatalogue(
		descriptors=descriptors,
		complementary_pairs=_pairs(data.get("complementary_pairs")),
		default_personality_type=str(data.get("default_personality_type") or "Mystic Explorer"),
		default_interests=tuple(str(item) for item in default_interests),
		max_interests=int(data.get("max_interests") or 3),
	)


def load_trait_catalogue(path: str | Path = DEFAULT_TRAITS_PATH) -> TraitCatalogue:
	with open(path, "r", encoding="utf-8") as handle:
		loaded = yaml.safe_load(handle) or {}
		if not isinstance(loaded, dict):
			raise ValueError("trait catalogue must be a mapping")
	return parse_trait_catalogue(loaded)


@lru_cache(maxsize=1)
def default_catalogue() -> TraitCatalogue:
	return load_trait_catalogue()
