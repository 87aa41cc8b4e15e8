"""Process-wide wiring of stores, registry, router and services."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from soulconnect.domain.chat.registry import PresenceRegistry
from soulconnect.domain.chat.repo import ChatStore, MemoryChatStore, PostgresChatStore
from soulconnect.domain.chat.router import RoomRouter
from soulconnect.domain.chat.service import ChatService
from soulconnect.domain.identity.repo import IdentityStore, MemoryIdentityStore, PostgresIdentityStore
from soulconnect.domain.identity.service import IdentityService
from soulconnect.domain.identity.traits import TraitCatalogue, default_catalogue
from soulconnect.domain.matching.scorer import CompatibilityScorer
from soulconnect.domain.matching.service import MatchingService
from soulconnect.domain.personas.selector import PersonaLibrary, ScriptedPersonaSelector, default_library
from soulconnect.settings import settings


@dataclass(slots=True)
class Container:
	identity_store: IdentityStore
	chat_store: ChatStore
	registry: PresenceRegistry
	router: RoomRouter
	catalogue: TraitCatalogue
	personas: PersonaLibrary
	identities: IdentityService
	chat: ChatService
	matching: MatchingService


def build_container(
	*,
	backend: Optional[str] = None,
	identity_store: Optional[IdentityStore] = None,
	chat_store: Optional[ChatStore] = None,
	rng: Optional[random.Random] = None,
	catalogue: Optional[TraitCatalogue] = None,
	personas: Optional[PersonaLibrary] = None,
	persona_delay_seconds: Optional[float] = None,
) -> Container:
	backend = (backend or settings.store_backend).lower()
	if identity_store is None:
		identity_store = PostgresIdentityStore() if backend == "postgres" else MemoryIdentityStore()
	if chat_store is None:
		chat_store = PostgresChatStore() if backend == "postgres" else MemoryChatStore()
	catalogue = catalogue or default_catalogue()
	personas = personas or default_library()
	rng = rng or random.Random()

	registry = PresenceRegistry(identity_store)
	router = RoomRouter(chat_store, registry)
	selector = ScriptedPersonaSelector(personas, rng=rng)
	chat = ChatService(
		identity_store,
		chat_store,
		registry,
		router,
		selector,
		persona_delay_seconds=persona_delay_seconds,
	)
	return Container(
		identity_store=identity_store,
		chat_store=chat_store,
		registry=registry,
		router=router,
		catalogue=catalogue,
		personas=personas,
		identities=IdentityService(identity_store),
		chat=chat,
		matching=MatchingService(identity_store, CompatibilityScorer(catalogue, rng=rng), catalogue),
	)


_container: Optional[Container] = None


def get_container() -> Container:
	global _container
	if _container is None:
		_container = build_container()
	return _container


def set_container(container: Optional[Container]) -> None:
	global _container
	_container = container
