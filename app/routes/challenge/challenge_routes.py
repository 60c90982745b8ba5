from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, Optional

from app.core.container import Services
from app.models.challenge.challenge import ChallengeCreate, ChallengeStatus, ChallengeUpdate
from app.models.challenge.submission import SubmissionContent, SubmitRequest
from app.routes.auth.dependencies import get_current_user_id, get_optional_user_id, get_services
from app.routes.challenge.project_routes import submission_to_json
from app.utils.response import success_response, serialize_document

router = APIRouter(prefix="/challenges", tags=["Challenges"])


def challenge_to_json(challenge: Dict[str, Any]) -> Dict[str, Any]:
    """Convert challenge document to JSON"""
    return serialize_document(challenge)


def with_user_submission(data: Dict[str, Any], submission: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Add the caller's submission status to a challenge JSON"""
    data["has_user_submitted"] = submission is not None
    if submission is not None:
        data["user_submission"] = {
            "id": str(submission["_id"]),
            "name": submission.get("name"),
            "submitted_at": submission["submitted_at"].isoformat() if submission.get("submitted_at") else None,
            "is_public": submission.get("is_public", False)
        }
    return data


@router.get("")
async def list_challenges(
    status: Optional[ChallengeStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: Services = Depends(get_services)
):
    """
    List challenges, newest first.

    - Drafts are hidden unless status=draft is requested
    - Authenticated callers also get has_user_submitted / user_submission
    """
    challenges, total = await services.challenges.list_challenges(status=status, page=page, limit=limit)
    submitted = await services.submissions.find_user_submissions(
        user_id, [str(challenge["_id"]) for challenge in challenges]
    )
    return success_response(
        message="Challenges retrieved successfully",
        data={
            "challenges": [
                with_user_submission(challenge_to_json(challenge), submitted.get(str(challenge["_id"])))
                for challenge in challenges
            ],
            "total": total,
            "page": page,
            "limit": limit
        }
    )


@router.post("")
async def create_challenge(
    challenge_data: ChallengeCreate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Create a new challenge.

    - Starts as draft unless status "active" is requested
    - voting_start_date must be after start_date, voting_end_date after voting_start_date
    """
    challenge = await services.challenges.create_challenge(challenge_data, actor_id=user_id)
    return success_response(
        message="Challenge created successfully",
        data={"challenge": challenge_to_json(challenge)},
        status_code=201
    )


@router.get("/{challenge_id}")
async def get_challenge(
    challenge_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: Services = Depends(get_services)
):
    """Get challenge details, with the caller's submission status"""
    challenge = await services.challenges.get_challenge(challenge_id)
    submitted = await services.submissions.find_user_submissions(user_id, [str(challenge["_id"])])
    return success_response(
        message="Challenge retrieved successfully",
        data={"challenge": with_user_submission(challenge_to_json(challenge), submitted.get(str(challenge["_id"])))}
    )


@router.patch("/{challenge_id}")
async def update_challenge(
    challenge_id: str,
    challenge_data: ChallengeUpdate,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Update a challenge that is not completed or archived"""
    challenge = await services.challenges.update_challenge(challenge_id, challenge_data, actor_id=user_id)
    return success_response(
        message="Challenge updated successfully",
        data={"challenge": challenge_to_json(challenge)}
    )


@router.post("/{challenge_id}/publish")
async def publish_challenge(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Publish a draft challenge (DRAFT -> ACTIVE)"""
    challenge = await services.challenges.publish(challenge_id, actor_id=user_id)
    return success_response(
        message="Challenge published",
        data={"challenge": challenge_to_json(challenge)}
    )


@router.post("/{challenge_id}/start-voting")
async def start_voting(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Open voting (DRAFT/ACTIVE -> VOTING).

    - Only once voting_start_date has passed
    - Makes every submission public and clears its votes
    """
    challenge = await services.challenges.start_voting(challenge_id, actor_id=user_id)
    return success_response(
        message="Voting started",
        data={"challenge": challenge_to_json(challenge)}
    )


@router.post("/{challenge_id}/end-voting")
async def end_voting(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Close voting (VOTING -> COMPLETED) and reward the top 3.

    - Only once voting_end_date has passed
    """
    results = await services.challenges.end_voting(challenge_id, actor_id=user_id)
    return success_response(
        message="Voting ended",
        data={
            "challenge": challenge_to_json(results.challenge),
            "winners": results.winners
        }
    )


@router.post("/{challenge_id}/archive")
async def archive_challenge(
    challenge_id: str,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """Archive a challenge that has not completed"""
    challenge = await services.challenges.archive(challenge_id, actor_id=user_id)
    return success_response(
        message="Challenge archived",
        data={"challenge": challenge_to_json(challenge)}
    )


@router.get("/{challenge_id}/ranking")
async def get_ranking(
    challenge_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    user_id: Optional[str] = Depends(get_optional_user_id),
    services: Services = Depends(get_services)
):
    """Submissions ranked by votes, earliest submission first on ties"""
    ranking = await services.challenges.get_ranking(challenge_id, limit, viewer_id=user_id)
    return success_response(
        message="Ranking retrieved successfully",
        data={
            "ranking": [
                {"position": position, **submission_to_json(submission, user_id)}
                for position, submission in enumerate(ranking, start=1)
            ]
        }
    )


@router.post("/{challenge_id}/submit")
async def submit_project(
    challenge_id: str,
    submission_data: SubmitRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services)
):
    """
    Submit a project to a challenge.

    - One project per user and challenge; submitting again updates it
    - Pass project_id to update a specific existing project
    - The first submission to a challenge awards its XP
    """
    content = SubmissionContent(**submission_data.model_dump(exclude={"project_id"}))
    result = await services.submissions.submit(
        user_id,
        challenge_id,
        content,
        existing_submission_id=submission_data.project_id
    )
    return success_response(
        message="Project submitted successfully" if result.created else "Project updated successfully",
        data={
            "project": submission_to_json(result.submission, user_id),
            "created": result.created,
            "xp_awarded": result.xp_awarded
        },
        status_code=201 if result.created else 200
    )
