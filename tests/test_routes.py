"""
API tests for the challenge, project and profile endpoints.
"""
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.models.challenge.challenge import ChallengeStatus
from app.services.auth.security import security_service

pytestmark = [pytest.mark.api, pytest.mark.asyncio]


def auth_headers(user_id: str) -> dict:
    token = security_service.create_access_token({"sub": f"{user_id}@example.com", "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def async_client(services):
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del app.state.services


def challenge_payload(clock, **overrides) -> dict:
    now = clock.now()
    payload = {
        "title": "API challenge",
        "description": "Created over HTTP",
        "start_date": (now - timedelta(days=1)).isoformat(),
        "voting_start_date": (now + timedelta(days=1)).isoformat(),
        "voting_end_date": (now + timedelta(days=2)).isoformat(),
        "status": "active",
    }
    payload.update(overrides)
    return payload


class TestChallengeEndpoints:

    async def test_create_and_get(self, async_client, clock):
        response = await async_client.post(
            "/api/challenges", json=challenge_payload(clock), headers=auth_headers("admin")
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        challenge = body["data"]["challenge"]
        assert challenge["status"] == "active"

        response = await async_client.get(f"/api/challenges/{challenge['id']}")
        assert response.status_code == 200
        assert response.json()["data"]["challenge"]["title"] == "API challenge"

    async def test_create_requires_auth(self, async_client, clock):
        response = await async_client.post("/api/challenges", json=challenge_payload(clock))

        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_invalid_token_is_rejected(self, async_client, clock):
        response = await async_client.post(
            "/api/challenges",
            json=challenge_payload(clock),
            headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401

    async def test_invalid_schedule(self, async_client, clock):
        payload = challenge_payload(clock, voting_end_date=clock.now().isoformat())

        response = await async_client.post("/api/challenges", json=payload, headers=auth_headers("admin"))

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_date_range"

    async def test_missing_fields(self, async_client):
        response = await async_client.post(
            "/api/challenges", json={"title": "No dates"}, headers=auth_headers("admin")
        )

        assert response.status_code == 422
        assert response.json()["success"] is False
        assert "errors" in response.json()

    async def test_unknown_challenge(self, async_client):
        response = await async_client.get("/api/challenges/does-not-exist")

        assert response.status_code == 404
        assert response.json()["message"] == "Challenge not found"

    async def test_start_voting_too_early(self, async_client, factory):
        challenge = await factory.challenge()

        response = await async_client.post(
            f"/api/challenges/{challenge['_id']}/start-voting", headers=auth_headers("admin")
        )

        assert response.status_code == 400
        assert response.json()["error"] == "too_early"

    async def test_full_lifecycle(self, async_client, factory, clock):
        challenge = await factory.challenge()
        challenge_id = str(challenge["_id"])

        response = await async_client.post(
            f"/api/challenges/{challenge_id}/submit",
            json={"name": "Alice's page", "html_code": "<h1>A</h1>"},
            headers=auth_headers("alice")
        )
        assert response.status_code == 201
        assert response.json()["data"]["xp_awarded"] == 50
        project_id = response.json()["data"]["project"]["id"]

        clock.set(challenge["voting_start_date"])
        response = await async_client.post(
            f"/api/challenges/{challenge_id}/start-voting", headers=auth_headers("admin")
        )
        assert response.status_code == 200
        assert response.json()["data"]["challenge"]["status"] == "voting"

        response = await async_client.post(f"/api/projects/{project_id}/vote", headers=auth_headers("bob"))
        assert response.status_code == 200
        assert response.json()["data"]["vote_count"] == 1

        response = await async_client.post(f"/api/projects/{project_id}/vote", headers=auth_headers("bob"))
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_vote"

        response = await async_client.post(f"/api/projects/{project_id}/vote", headers=auth_headers("alice"))
        assert response.status_code == 403

        response = await async_client.get(
            f"/api/challenges/{challenge_id}/ranking", headers=auth_headers("bob")
        )
        ranking = response.json()["data"]["ranking"]
        assert ranking[0]["position"] == 1
        assert ranking[0]["has_voted"] is True
        assert "voted_by" not in ranking[0]

        clock.set(challenge["voting_end_date"])
        response = await async_client.post(
            f"/api/challenges/{challenge_id}/end-voting", headers=auth_headers("admin")
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["challenge"]["status"] == "completed"
        assert data["winners"][0]["submission_id"] == project_id

        response = await async_client.post(
            f"/api/challenges/{challenge_id}/archive", headers=auth_headers("admin")
        )
        assert response.status_code == 409

    async def test_submit_to_archived_challenge(self, async_client, factory):
        challenge = await factory.challenge()
        await async_client.post(f"/api/challenges/{challenge['_id']}/archive", headers=auth_headers("admin"))

        response = await async_client.post(
            f"/api/challenges/{challenge['_id']}/submit",
            json={"name": "Late", "html_code": "<p>late</p>"},
            headers=auth_headers("alice")
        )

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    async def test_get_challenge_reports_user_submission(self, async_client, factory):
        challenge = await factory.challenge()
        project = (await factory.submit("alice", challenge)).submission

        as_alice = await async_client.get(f"/api/challenges/{challenge['_id']}", headers=auth_headers("alice"))
        as_bob = await async_client.get(f"/api/challenges/{challenge['_id']}", headers=auth_headers("bob"))
        anonymous = await async_client.get(f"/api/challenges/{challenge['_id']}")

        alice_view = as_alice.json()["data"]["challenge"]
        assert alice_view["has_user_submitted"] is True
        assert alice_view["user_submission"]["id"] == str(project["_id"])
        assert alice_view["user_submission"]["is_public"] is False
        assert as_bob.json()["data"]["challenge"]["has_user_submitted"] is False
        assert "user_submission" not in anonymous.json()["data"]["challenge"]

    async def test_list_challenges(self, async_client, factory):
        submitted = await factory.challenge(title="Submitted challenge")
        await factory.challenge(title="Untouched challenge")
        await factory.challenge(status=ChallengeStatus.DRAFT, title="Hidden draft")
        await factory.submit("alice", submitted)

        response = await async_client.get("/api/challenges", headers=auth_headers("alice"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total"] == 2
        flags = {challenge["title"]: challenge["has_user_submitted"] for challenge in data["challenges"]}
        assert flags == {"Submitted challenge": True, "Untouched challenge": False}

    async def test_list_challenges_by_status(self, async_client, factory):
        await factory.challenge(title="Open challenge")
        await factory.challenge(status=ChallengeStatus.VOTING, title="Voting challenge")

        response = await async_client.get("/api/challenges", params={"status": "voting"})

        titles = [challenge["title"] for challenge in response.json()["data"]["challenges"]]
        assert titles == ["Voting challenge"]


class TestProjectEndpoints:

    async def test_toggle_like(self, async_client, factory):
        challenge = await factory.challenge()
        project_id = str((await factory.submit("alice", challenge)).submission["_id"])

        liked = await async_client.post(f"/api/projects/{project_id}/like", headers=auth_headers("bob"))
        unliked = await async_client.post(f"/api/projects/{project_id}/like", headers=auth_headers("bob"))

        assert liked.json()["data"] == {"liked": True, "like_count": 1}
        assert unliked.json()["data"] == {"liked": False, "like_count": 0}

    async def test_vote_outside_voting(self, async_client, factory):
        challenge = await factory.challenge()
        project_id = str((await factory.submit("alice", challenge)).submission["_id"])

        response = await async_client.post(f"/api/projects/{project_id}/vote", headers=auth_headers("bob"))

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    async def test_get_own_private_project(self, async_client, factory):
        challenge = await factory.challenge()
        project_id = str((await factory.submit("alice", challenge)).submission["_id"])

        response = await async_client.get(f"/api/projects/{project_id}", headers=auth_headers("alice"))

        project = response.json()["data"]["project"]
        assert project["author_id"] == "alice"
        assert project["has_liked"] is False

    async def test_private_project_hidden_from_others(self, async_client, factory):
        challenge = await factory.challenge()
        project_id = str((await factory.submit("alice", challenge)).submission["_id"])

        anonymous = await async_client.get(f"/api/projects/{project_id}")
        other = await async_client.get(f"/api/projects/{project_id}", headers=auth_headers("bob"))

        assert anonymous.status_code == 404
        assert other.status_code == 404
        assert "html_code" not in str(anonymous.json())

    async def test_ranking_before_voting_shows_only_own_project(self, async_client, factory):
        challenge = await factory.challenge()
        await factory.submit("alice", challenge)
        await factory.submit("bob", challenge)

        anonymous = await async_client.get(f"/api/challenges/{challenge['_id']}/ranking")
        as_bob = await async_client.get(
            f"/api/challenges/{challenge['_id']}/ranking", headers=auth_headers("bob")
        )

        assert anonymous.json()["data"]["ranking"] == []
        assert [entry["author_id"] for entry in as_bob.json()["data"]["ranking"]] == ["bob"]


class TestProfileEndpoints:

    async def test_my_profile_with_badges(self, async_client, factory, bus):
        challenge = await factory.challenge()
        await factory.submit("alice", challenge)
        await bus.join()

        response = await async_client.get("/api/profile/me", headers=auth_headers("alice"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["profile"]["total_xp"] == 50
        assert {badge["slug"] for badge in data["badges"]} == {"first-project", "first-challenge-submit"}

    async def test_my_profile_is_created_on_first_visit(self, async_client):
        response = await async_client.get("/api/profile/me", headers=auth_headers("newcomer"))

        assert response.status_code == 200
        assert response.json()["data"]["profile"]["user_id"] == "newcomer"
        assert response.json()["data"]["badges"] == []

    async def test_my_profile_counts_liked_projects(self, async_client, factory, services):
        challenge = await factory.challenge()
        for author in ("alice", "carol"):
            project_id = str((await factory.submit(author, challenge)).submission["_id"])
            await services.voting.like(project_id, "bob")

        response = await async_client.get("/api/profile/me", headers=auth_headers("bob"))

        assert response.json()["data"]["profile"]["liked_projects_count"] == 2

    async def test_update_my_profile(self, async_client):
        response = await async_client.put(
            "/api/profile/me",
            json={"bio": "Frontend tinkerer", "github_user": "alice-dev"},
            headers=auth_headers("alice")
        )

        assert response.status_code == 200
        profile = response.json()["data"]["profile"]
        assert profile["bio"] == "Frontend tinkerer"
        assert profile["github_user"] == "alice-dev"
        assert profile["liked_projects_count"] == 0

        response = await async_client.put(
            "/api/profile/me", json={"bio": "Updated bio"}, headers=auth_headers("alice")
        )
        profile = response.json()["data"]["profile"]
        assert profile["bio"] == "Updated bio"
        assert profile["github_user"] == "alice-dev"

    async def test_update_my_profile_rejects_bad_github_user(self, async_client):
        response = await async_client.put(
            "/api/profile/me", json={"github_user": "not a user!"}, headers=auth_headers("alice")
        )

        assert response.status_code == 422
        assert response.json()["success"] is False

    async def test_update_requires_auth(self, async_client):
        response = await async_client.put("/api/profile/me", json={"bio": "Anonymous"})

        assert response.status_code == 401

    async def test_public_profile(self, async_client, factory, bus):
        challenge = await factory.challenge()
        await factory.submit("alice", challenge)
        await bus.join()

        response = await async_client.get("/api/profile/alice")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["profile"]["challenges_completed"] == 1
        assert "completed_challenges" not in data["profile"]
        assert len(data["badges"]) == 2

    async def test_public_profile_missing(self, async_client):
        response = await async_client.get("/api/profile/nobody")

        assert response.status_code == 404
