from typing import List

from fastapi import APIRouter, Depends, Path

from models.user_profile import UserProfile
from schemas.chat_schemas import MatchParams, StartersResponse
from services.match_service import MatchService, conversation_starters
from services.presence_service import mask_presence
from services.profile_service import ProfileService
from utils.dependencies import get_current_profile, get_match_service, get_profile_service

router = APIRouter(prefix="/matches", tags=["matches"])


@router.get("/", response_model=List[UserProfile])
async def get_suggestions(
        params: MatchParams = Depends(),
        current_profile: UserProfile = Depends(get_current_profile),
        match_service: MatchService = Depends(get_match_service)
):
    """Best-scoring candidates for the caller."""
    matches = await match_service.suggestions(current_profile, params.limit)
    return [mask_presence(user, current_profile.id) for user in matches]


@router.get("/{partner_id}/starters", response_model=StartersResponse)
async def get_conversation_starters(
        partner_id: str = Path(..., description="User to start a conversation with"),
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service)
):
    partner = await profile_service.get_visible_profile(current_profile, partner_id)
    return StartersResponse(partner_id=partner_id, starters=conversation_starters(current_profile, partner))
