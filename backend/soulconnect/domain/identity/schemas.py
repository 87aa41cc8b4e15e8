"""Pydantic schemas for identity and profile flows."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import DEFAULT_VILLAIN_LEVEL, Identity


class RegisterRequest(BaseModel):
	display_name: Annotated[str, Field(min_length=1, max_length=80)]
	email: EmailStr
	password: Annotated[str, Field(min_length=8, max_length=256)]
	traits: List[str] = Field(default_factory=list)
	bio: Annotated[str, Field(default="", max_length=500)]


class LoginRequest(BaseModel):
	email: EmailStr
	password: str


class IdentityOut(BaseModel):
	id: str
	display_name: str
	email: Optional[str] = None
	traits: List[str]
	bio: str
	avatar: str
	is_synthetic: bool = False

	@classmethod
	def from_model(cls, identity: Identity) -> "IdentityOut":
		return cls(
			id=identity.id,
			display_name=identity.display_name,
			email=identity.email,
			traits=list(identity.traits),
			bio=identity.bio,
			avatar=identity.avatar,
			is_synthetic=identity.is_synthetic,
		)


class AuthResponse(BaseModel):
	access_token: str
	token_type: Literal["bearer"] = "bearer"
	expires_in: int
	user: IdentityOut


class ProfileOut(IdentityOut):
	status: Optional[str] = None
	villain_score: int = 0
	villain_level: str = DEFAULT_VILLAIN_LEVEL
	last_test_at: Optional[datetime] = None
	last_active_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, identity: Identity) -> "ProfileOut":
		return cls(
			id=identity.id,
			display_name=identity.display_name,
			email=identity.email,
			traits=list(identity.traits),
			bio=identity.bio,
			avatar=identity.avatar,
			is_synthetic=identity.is_synthetic,
			status=identity.status,
			villain_score=identity.villain_score,
			villain_level=identity.villain_level or DEFAULT_VILLAIN_LEVEL,
			last_test_at=identity.last_test_at,
			last_active_at=identity.last_active_at,
		)


class QuizResultsRequest(BaseModel):
	traits: List[str] = Field(default_factory=list, max_length=32)
	results: Any = None


class VillainTestRequest(BaseModel):
	score: Annotated[int, Field(ge=0)]
	level: Annotated[str, Field(min_length=1, max_length=80)]
	weapons_used: List[str] = Field(default_factory=list)
	attack_count: Annotated[int, Field(default=0, ge=0)]


class SavedResponse(BaseModel):
	ok: bool = True
	message: str
