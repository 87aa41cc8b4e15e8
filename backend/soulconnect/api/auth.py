"""FastAPI endpoints for registration and login."""

from __future__ import annotations

from fastapi import APIRouter, status

from soulconnect.domain.container import get_container
from soulconnect.domain.identity import schemas

router = APIRouter(prefix="/auth", tags=["identity"])


@router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: schemas.RegisterRequest) -> schemas.AuthResponse:
	return await get_container().identities.register(payload)


@router.post("/login", response_model=schemas.AuthResponse)
async def login(payload: schemas.LoginRequest) -> schemas.AuthResponse:
	return await get_container().identities.login(payload)
