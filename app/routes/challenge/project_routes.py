from fastapi import APIRouter, Depends
from typing import Any, Dict, Optional

from app.core.container import Services
from app.routes.auth.dependencies import get_current_user_id, get_optional_user_id, get_services
from app.utils.response import success_response, serialize_document

router = APIRouter(prefix="/projects", tags=["Projects"])


def submission_to_json(submission: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
    """Convert submission document to JSON (voter lists stay private)"""
    data = serialize_document(submission, exclude=("liked_by", "voted_by"))
    data["has_liked"] = bool(user_id) and user_id in submission.get("liked_by", [])
    data["has_voted"] = bool(user_id) and user_id in submission.get("voted_by", [])
    return data


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: Services = Depends(get_services)
):
    """Get a project by ID (private projects are visible to their author only)"""
    submission = await services.submissions.get_visible_submission(project_id, user_id)
    return success_response(
        message="Project retrieved successfully",
        data={"project": submission_to_json(submission, user_id)}
    )


@router.post("/{project_id}/like")
async def toggle_like(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Like or unlike a project.

    - Likes are allowed at any time, including on your own project
    - Calling again removes the like
    """
    result = await services.voting.toggle_like(project_id, user_id)
    return success_response(
        message="Project liked" if result.liked else "Like removed",
        data={"liked": result.liked, "like_count": result.like_count}
    )


@router.post("/{project_id}/vote")
async def vote_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Vote for a project.

    - Only while the project's challenge is in voting
    - One vote per user, never for your own project
    - A vote also likes the project
    """
    result = await services.voting.vote(project_id, user_id)
    return success_response(
        message="Vote recorded",
        data={
            "vote_count": result.vote_count,
            "like_count": result.like_count,
            "has_liked": True,
            "has_voted": True
        }
    )
