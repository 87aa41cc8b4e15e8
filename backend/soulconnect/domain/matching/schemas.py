"""Pydantic schemas for matching and presence listings."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class MatchOut(BaseModel):
	id: str
	display_name: str
	avatar: str
	traits: List[str]
	bio: str
	is_synthetic: bool
	compatibility: int
	factors: List[str]
	presence: str
	last_active_at: Optional[datetime] = None
	personality_type: str
	interests: List[str]


class MatchListResponse(BaseModel):
	matches: List[MatchOut]


class SimpleMatchOut(BaseModel):
	id: str
	display_name: str
	avatar: str
	traits: List[str]
	bio: str
	is_synthetic: bool
	match_score: int
	common_traits: List[str]


class SimpleMatchListResponse(BaseModel):
	matches: List[SimpleMatchOut]


class OnlineUserOut(BaseModel):
	id: str
	display_name: str
	avatar: str
	traits: List[str]
	presence: str
	status: Optional[str] = None
	personality_type: str
	is_synthetic: bool


class OnlineUserListResponse(BaseModel):
	users: List[OnlineUserOut]
