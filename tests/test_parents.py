"""
Tests for parent invitations and parent/player links
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from coachhub.core.errors import InvalidRequestError, NotFoundError
from coachhub.models.schemas import AcceptInviteRequest, ParentInviteRequest
from coachhub.services import parents


@pytest.fixture
def player(fake_db, team):
    return fake_db.seed("players", team_id=team["id"], first_name="Sam", last_name="Lee", jersey_number="7",
                        is_active=True)


class TestInvitations:

    def test_invite_normalizes_email(self, fake_db, team, player):
        invite = parents.invite_parent(team["id"], "coach-1", ParentInviteRequest(
            email="  Pat.Lee@Example.com ", first_name="Pat", player_ids=[player["id"]],
        ))

        assert invite["parent_email"] == "pat.lee@example.com"
        assert invite["status"] == "pending"
        assert invite["player_ids"] == [player["id"]]
        assert len(invite["token"]) >= 32

    def test_invite_rejects_other_teams_player(self, fake_db, team):
        outsider = fake_db.seed("players", team_id="other-team", first_name="X")
        with pytest.raises(InvalidRequestError):
            parents.invite_parent(team["id"], "coach-1", ParentInviteRequest(
                email="pat@example.com", player_ids=[outsider["id"]],
            ))

    def test_reinvite_refreshes_pending(self, fake_db, team, player):
        first = parents.invite_parent(team["id"], "coach-1", ParentInviteRequest(email="pat@example.com"))
        second = parents.invite_parent(team["id"], "coach-1", ParentInviteRequest(
            email="PAT@example.com", player_ids=[player["id"]],
        ))

        assert second["id"] == first["id"]
        assert second["token"] != first["token"]
        assert len(fake_db.rows("parent_invitations")) == 1


class TestAccept:

    def invite(self, team, player):
        return parents.invite_parent(team["id"], "coach-1", ParentInviteRequest(
            email="pat@example.com", last_name="Lee", relationship="guardian", player_ids=[player["id"]],
        ))

    def test_accept_links_players(self, fake_db, team, player):
        invite = self.invite(team, player)
        result = parents.accept_invitation("parent-user", None, AcceptInviteRequest(token=invite["token"], phone="555-0100"))

        assert result["team_id"] == team["id"]
        assert result["parent"]["email"] == "pat@example.com"
        link = fake_db.rows("player_parent_links")[0]
        assert link["player_id"] == player["id"]
        assert link["relationship"] == "guardian"
        assert fake_db.rows("parent_invitations")[0]["status"] == "accepted"

    def test_invitation_used_once(self, fake_db, team, player):
        invite = self.invite(team, player)
        parents.accept_invitation("parent-user", None, AcceptInviteRequest(token=invite["token"]))

        with pytest.raises(InvalidRequestError):
            parents.accept_invitation("parent-user", None, AcceptInviteRequest(token=invite["token"]))

    def test_expired_invitation(self, fake_db, team, player):
        invite = self.invite(team, player)
        fake_db.tables["parent_invitations"][0]["expires_at"] = (
            datetime.now(timezone.utc) - timedelta(hours=1)
        ).isoformat()

        with pytest.raises(InvalidRequestError):
            parents.accept_invitation("parent-user", None, AcceptInviteRequest(token=invite["token"]))

    def test_unknown_token(self, fake_db):
        with pytest.raises(NotFoundError):
            parents.accept_invitation("parent-user", None, AcceptInviteRequest(token="x" * 20))

    def test_existing_profile_reused(self, fake_db, team, player):
        profile = fake_db.seed("parent_profiles", user_id="parent-user", email="pat@example.com", last_name="Lee")
        invite = self.invite(team, player)

        result = parents.accept_invitation("parent-user", "pat@example.com", AcceptInviteRequest(token=invite["token"]))
        assert result["parent"]["id"] == profile["id"]
        assert len(fake_db.rows("parent_profiles")) == 1


class TestListing:

    def test_list_parents_with_players(self, fake_db, team, player):
        sibling = fake_db.seed("players", team_id=team["id"], first_name="Alex", last_name="Lee", is_active=False)
        lee = fake_db.seed("parent_profiles", user_id="u1", first_name="Pat", last_name="Lee")
        adams = fake_db.seed("parent_profiles", user_id="u2", first_name="Jo", last_name="Adams")
        fake_db.seed("player_parent_links", parent_id=lee["id"], player_id=player["id"], relationship="parent")
        fake_db.seed("player_parent_links", parent_id=lee["id"], player_id=sibling["id"], relationship="parent")
        fake_db.seed("player_parent_links", parent_id=adams["id"], player_id=player["id"], relationship="guardian")

        listed = parents.list_parents(team["id"])
        assert [p["last_name"] for p in listed] == ["Adams", "Lee"]
        assert {p["first_name"] for p in listed[1]["players"]} == {"Sam", "Alex"}

    def test_empty_roster(self, fake_db, team):
        assert parents.list_parents(team["id"]) == []


class TestRoutes:

    def test_invite_and_accept(self, client, fake_db, team, player):
        response = client.post(f"/api/teams/{team['id']}/parents/invite", json={
            "email": "pat@example.com", "player_ids": [player["id"]],
        })
        assert response.status_code == 201

        accepted = client.post("/api/parents/accept", json={"token": response.json()["token"]})
        assert accepted.status_code == 200
        assert accepted.json()["player_ids"] == [player["id"]]

        parents_list = client.get(f"/api/teams/{team['id']}/parents").json()["parents"]
        assert parents_list[0]["players"][0]["jersey_number"] == "7"

    def test_viewer_cannot_invite(self, client, fake_db, user):
        shared = fake_db.seed("teams", name="Bears", user_id=str(uuid.uuid4()))
        fake_db.seed("team_memberships", team_id=shared["id"], user_id=str(user.id), role="viewer", is_active=True)

        response = client.post(f"/api/teams/{shared['id']}/parents/invite", json={"email": "pat@example.com"})
        assert response.status_code == 403
