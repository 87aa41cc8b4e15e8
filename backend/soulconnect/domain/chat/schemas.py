"""Pydantic schemas for the chat REST API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import Message, Room


class OpenRoomRequest(BaseModel):
	participant_id: str = Field(..., min_length=1, description="Counterpart identity id")


class GroupRoomRequest(BaseModel):
	participant_ids: List[str] = Field(..., min_length=1, max_length=64)
	name: Optional[str] = Field(default=None, max_length=120)


class SendMessageRequest(BaseModel):
	content: str


class PersonaReplyRequest(BaseModel):
	persona_id: Optional[str] = Field(default=None, description="Persona to answer; defaults to the first one in the room")
	message: Optional[str] = Field(default=None, description="Prompt; defaults to the requester's latest message")


class RoomResponse(BaseModel):
	room_id: str
	participant_ids: List[str]
	kind: str
	name: Optional[str] = None
	active: bool
	created_at: datetime
	last_activity_at: datetime

	@classmethod
	def from_model(cls, room: Room) -> "RoomResponse":
		return cls(
			room_id=room.room_id,
			participant_ids=list(room.participant_ids),
			kind=room.kind.value,
			name=room.name,
			active=room.active,
			created_at=room.created_at,
			last_activity_at=room.last_activity_at,
		)


class RoomListResponse(BaseModel):
	rooms: List[RoomResponse]


class MessageResponse(BaseModel):
	message_id: str
	room_id: str
	seq: int
	sender_id: str
	sender_display_name: str
	content: str
	kind: str
	sent_at: datetime
	read: bool = False

	@classmethod
	def from_model(cls, message: Message) -> "MessageResponse":
		return cls(
			message_id=message.message_id,
			room_id=message.room_id,
			seq=message.seq,
			sender_id=message.sender_id,
			sender_display_name=message.sender_display_name,
			content=message.content,
			kind=message.kind.value,
			sent_at=message.sent_at,
			read=message.read,
		)


class MessageListResponse(BaseModel):
	messages: List[MessageResponse]
	page: int
	limit: int
	has_more: bool
