"""Profile endpoints: own profile, personality quiz and villain quiz results."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from soulconnect.domain.container import get_container
from soulconnect.domain.identity import schemas
from soulconnect.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=schemas.ProfileOut)
async def get_profile(auth_user: AuthenticatedUser = Depends(get_current_user)) -> schemas.ProfileOut:
	return await get_container().identities.profile(auth_user.id)


@router.post("/test-results", response_model=schemas.SavedResponse)
async def save_test_results(
	payload: schemas.QuizResultsRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SavedResponse:
	await get_container().identities.save_test_results(auth_user.id, payload)
	return schemas.SavedResponse(message="test_results_saved")


@router.post("/villain-test", response_model=schemas.SavedResponse)
async def save_villain_test(
	payload: schemas.VillainTestRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.SavedResponse:
	await get_container().identities.save_villain_test(auth_user.id, payload)
	return schemas.SavedResponse(message="villain_test_saved")
