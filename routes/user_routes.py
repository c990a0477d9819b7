from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from models.user_profile import ProfileView, UserProfile
from schemas.auth_schemas import StatusResponse
from schemas.user_schemas import (
    AdminCreateUserRequest,
    AdminProfileUpdate,
    PresenceUpdate,
    PrivacySettingsUpdate,
    ProfileUpdate,
)
from services.presence_service import PresenceTracker, mask_presence
from services.profile_service import ProfileService
from utils.dependencies import get_current_profile, get_presence_tracker, get_profile_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserProfile)
async def get_my_profile(current_profile: UserProfile = Depends(get_current_profile)):
    """Resolved profile of the signed-in user."""
    return current_profile


@router.patch("/me", response_model=UserProfile)
async def update_my_profile(
        updates: ProfileUpdate,
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    update_data = updates.model_dump(exclude_unset=True, mode='json')
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No update data provided")
    return await profile_service.update_profile(current_profile.id, update_data)


@router.patch("/me/settings", response_model=UserProfile)
async def update_my_settings(
        settings: PrivacySettingsUpdate,
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    update_data = settings.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No settings provided")
    return await profile_service.update_privacy_settings(current_profile.id, update_data)


@router.get("/me/views", response_model=List[ProfileView])
async def get_my_profile_views(
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Who looked at my profile, oldest first."""
    return await profile_service.get_profile_views(current_profile.id)


@router.post("/me/presence", response_model=StatusResponse)
async def set_my_presence(
        presence: PresenceUpdate,
        current_profile: UserProfile = Depends(get_current_profile),
        presence_tracker: PresenceTracker = Depends(get_presence_tracker)
):
    await presence_tracker.set_presence(current_profile.id, presence.online)
    return StatusResponse(status="success", message="online" if presence.online else "offline")


@router.get("/", response_model=List[UserProfile])
async def list_users(
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Every user the caller may see."""
    users = await profile_service.list_users(current_profile)
    return [mask_presence(user, current_profile.id) for user in users]


@router.get("/{uid}", response_model=UserProfile)
async def get_user(
        uid: str = Path(..., description="User ID"),
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    profile = await profile_service.get_visible_profile(current_profile, uid)
    await profile_service.track_profile_view(uid, current_profile.id)
    return mask_presence(profile, current_profile.id)


@router.post("/", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def admin_create_user(
        request: AdminCreateUserRequest,
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Create a user (auth principal and profile). Administrators only."""
    profile = UserProfile(id='pending', **request.model_dump(exclude={'password', 'api_call_limit'}))
    return await profile_service.admin_create_user(current_profile, profile, request.password,
                                                   api_call_limit=request.api_call_limit)


@router.patch("/{uid}", response_model=UserProfile)
async def admin_update_user(
        updates: AdminProfileUpdate,
        uid: str = Path(..., description="User ID"),
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    update_data = updates.model_dump(exclude_unset=True, mode='json')
    if not update_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No update data provided")
    return await profile_service.admin_update_profile(current_profile, uid, update_data)


@router.delete("/{uid}", response_model=StatusResponse)
async def admin_delete_user(
        uid: str = Path(..., description="User ID"),
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    await profile_service.delete_profile(current_profile, uid)
    return StatusResponse(status="success",
                          message="Profile deleted; the sign-in account must be removed separately")
