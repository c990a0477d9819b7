from fastapi import APIRouter, Depends, status

from models.user_profile import UserProfile
from schemas.auth_schemas import SignupRequest, StatusResponse, TokenData
from services.identity_service import IdentityResolver
from services.profile_service import ProfileService
from utils.dependencies import get_current_user, get_identity_resolver, get_profile_service

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/signup", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def signup(
        request: SignupRequest,
        current_user: TokenData = Depends(get_current_user),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Create the profile for the principal that owns the token."""
    profile = UserProfile(id=current_user.uid, email=current_user.email or '', **request.model_dump())
    return await profile_service.signup(profile)


@router.get("/verify", response_model=TokenData)
async def verify_access_token(current_user: TokenData = Depends(get_current_user)):
    """Check a Firebase ID token."""
    return current_user


@router.post("/signout", response_model=StatusResponse)
async def signout(
        current_user: TokenData = Depends(get_current_user),
        resolver: IdentityResolver = Depends(get_identity_resolver)
):
    await resolver.sign_out(current_user.uid)
    return StatusResponse(status="success", message="Signed out")
