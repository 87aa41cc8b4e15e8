"""FastAPI endpoints for matching and the online listing."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from soulconnect.domain.container import get_container
from soulconnect.domain.matching import schemas
from soulconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["matching"])


@router.post("/matching/find", response_model=schemas.MatchListResponse)
async def find_matches(
	limit: Optional[int] = Query(default=None, ge=1, le=100),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MatchListResponse:
	return await get_container().matching.find_matches(auth_user.id, limit=limit)


@router.get("/matches", response_model=schemas.SimpleMatchListResponse)
async def simple_matches(auth_user: AuthenticatedUser = Depends(get_current_user)) -> schemas.SimpleMatchListResponse:
	return await get_container().matching.simple_matches(auth_user.id)


@router.get("/users/online", response_model=schemas.OnlineUserListResponse)
async def online_users(auth_user: AuthenticatedUser = Depends(get_current_user)) -> schemas.OnlineUserListResponse:
	return await get_container().matching.online_users(auth_user.id)
