"""FastAPI endpoints for chat rooms and message history."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from soulconnect.domain.chat.schemas import (
	GroupRoomRequest,
	MessageListResponse,
	MessageResponse,
	OpenRoomRequest,
	PersonaReplyRequest,
	RoomListResponse,
	RoomResponse,
	SendMessageRequest,
)
from soulconnect.domain.container import get_container
from soulconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/rooms", response_model=RoomResponse)
async def open_private_room(
	payload: OpenRoomRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> RoomResponse:
	room = await get_container().chat.open_private_room(auth_user.id, payload.participant_id)
	return RoomResponse.from_model(room)


@router.post("/rooms/group", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_group_room(
	payload: GroupRoomRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> RoomResponse:
	room = await get_container().chat.create_group_room(auth_user.id, payload.participant_ids, payload.name)
	return RoomResponse.from_model(room)


@router.get("/rooms", response_model=RoomListResponse)
async def list_rooms(auth_user: AuthenticatedUser = Depends(get_current_user)) -> RoomListResponse:
	rooms = await get_container().chat.list_rooms(auth_user.id)
	return RoomListResponse(rooms=[RoomResponse.from_model(room) for room in rooms])


@router.post("/rooms/{room_id}/archive", response_model=RoomResponse)
async def archive_room(
	room_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> RoomResponse:
	room = await get_container().chat.archive_room(auth_user.id, room_id)
	return RoomResponse.from_model(room)


@router.get("/rooms/{room_id}/messages", response_model=MessageListResponse)
async def list_messages(
	room_id: str,
	*,
	page: int = Query(default=1, ge=1),
	limit: int = Query(default=50, ge=1, le=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageListResponse:
	messages, has_more = await get_container().chat.history(auth_user.id, room_id, page=page, limit=limit)
	return MessageListResponse(
		messages=[MessageResponse.from_model(message) for message in messages],
		page=page,
		limit=limit,
		has_more=has_more,
	)


@router.post("/rooms/{room_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
	room_id: str,
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageResponse:
	message = await get_container().chat.send_message(auth_user.id, room_id, payload.content)
	return MessageResponse.from_model(message)


@router.post("/rooms/{room_id}/persona-reply", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def request_persona_reply(
	room_id: str,
	payload: Optional[PersonaReplyRequest] = None,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageResponse:
	payload = payload or PersonaReplyRequest()
	message = await get_container().chat.request_persona_reply(
		auth_user.id,
		room_id,
		persona_id=payload.persona_id,
		message=payload.message,
	)
	return MessageResponse.from_model(message)
