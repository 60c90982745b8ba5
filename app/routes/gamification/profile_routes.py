from fastapi import APIRouter, Depends
from typing import Any, Dict

from app.core.container import Services
from app.models.gamification.profile import ProfileUpdate
from app.routes.auth.dependencies import get_current_user_id, get_services
from app.utils.response import success_response, serialize_document

router = APIRouter(prefix="/profile", tags=["Profile"])

# Private bookkeeping sets, never returned
PROFILE_EXCLUDE = ("completed_challenges", "won_challenges")


async def my_profile_data(services: Services, user_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
    badges = await services.achievements.get_badges(user_id)
    data = serialize_document(profile, exclude=PROFILE_EXCLUDE)
    data["liked_projects_count"] = await services.voting.count_liked_by(user_id)
    return {
        "profile": data,
        "badges": [serialize_document(badge) for badge in badges]
    }


@router.get("/me")
async def get_my_profile(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Get the caller's XP, counters, liked project count and badges"""
    profile = await services.profiles.ensure_profile(user_id)
    return success_response(
        message="Profile retrieved successfully",
        data=await my_profile_data(services, user_id, profile)
    )


@router.put("/me")
async def update_my_profile(
    profile_data: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Update the caller's bio and GitHub user name"""
    profile = await services.profiles.update_profile(user_id, profile_data)
    return success_response(
        message="Profile updated successfully",
        data=await my_profile_data(services, user_id, profile)
    )


@router.get("/{user_id}")
async def get_profile(
    user_id: str,
    services: Services = Depends(get_services)
):
    """Public view of a user's profile and badges"""
    profile = await services.profiles.get_profile(user_id)
    badges = await services.achievements.get_badges(user_id)
    return success_response(
        message="Profile retrieved successfully",
        data={
            "profile": serialize_document(profile, exclude=PROFILE_EXCLUDE),
            "badges": [serialize_document(badge) for badge in badges]
        }
    )
