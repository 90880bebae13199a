from typing import List

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_profile_service
from domain.schemas import CandidateProfile, ErrorResponse, ProfileUpdateRequest
from domain.services.profile_service import ProfileService

router = APIRouter()

ERROR_RESPONSES = {status: {"model": ErrorResponse} for status in (404, 413, 502, 503)}


@router.post("/candidates/{candidate_id}/profile-updates", response_model=CandidateProfile,
             responses=ERROR_RESPONSES)
async def request_profile_update(
    candidate_id: str,
    body: ProfileUpdateRequest,
    service: ProfileService = Depends(get_profile_service),
) -> CandidateProfile:
    return await service.request_profile_update(candidate_id, body.to_trigger())


@router.get("/candidates/{candidate_id}/profiles", response_model=List[CandidateProfile])
def list_profiles(candidate_id: str, service: ProfileService = Depends(get_profile_service)):
    return service.get_profile_evolution(candidate_id)


@router.get("/candidates/{candidate_id}/profiles/latest", response_model=CandidateProfile)
def latest_profile(candidate_id: str, service: ProfileService = Depends(get_profile_service)):
    profile = service.get_latest_profile(candidate_id)
    if not profile:
        raise HTTPException(status_code=404, detail="profile not found")
    return profile


@router.get("/candidates/{candidate_id}/profiles/{version}", response_model=CandidateProfile)
def profile_version(candidate_id: str, version: int,
                    service: ProfileService = Depends(get_profile_service)):
    profile = service.get_profile_version(candidate_id, version)
    if not profile:
        raise HTTPException(status_code=404, detail="profile version not found")
    return profile
