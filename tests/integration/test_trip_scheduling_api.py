"""
End-to-end API flows against the in-memory backend.

Auth and the scheduling service are swapped through dependency_overrides;
audit writes are replaced with an AsyncMock so no database is touched.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.auth.verify import auth_dependency
from app.features.trip_scheduling.services.scheduling_service import get_scheduling_service
from app.infrastructure.audit import audit_logger
from app.main import app

LEADER = "leader-1"


class ActingUser:
    """Mutable identity returned by the auth override."""

    def __init__(self, user_id: str = LEADER):
        self.user_id = user_id

    def __call__(self) -> dict:
        return {"sub": self.user_id}


@pytest.fixture
def acting_user():
    return ActingUser()


@pytest.fixture
def audit_mock(monkeypatch):
    mock = AsyncMock(return_value=True)
    monkeypatch.setattr(audit_logger, "log_trip_event", mock)
    return mock


@pytest.fixture
def client(service, acting_user, audit_mock):
    app.dependency_overrides[auth_dependency] = acting_user
    app.dependency_overrides[get_scheduling_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(client, acting_user, user_id):
    acting_user.user_id = user_id
    return client


def _create(client, **body):
    payload = {
        "circle_id": "circle-1",
        "name": "Lake weekend",
        "start_date": "2025-08-01",
        "end_date": "2025-08-05",
        "trip_length_days": 3,
        "participant_ids": ["member-2", "member-3"],
        **body,
    }
    response = client.post("/trips", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_requires_bearer_token():
    response = TestClient(app).get("/trips/trip-1/schedule")

    assert response.status_code in (401, 403)


def test_create_collaborative_trip(client):
    trip = _create(client)

    assert trip["status"] == "proposed"
    assert trip["created_by"] == LEADER
    assert trip["start_bound"] == "2025-08-01"
    assert trip["locked_start_date"] is None
    assert trip["version"] == 1


def test_create_hosted_trip_is_locked(client):
    trip = _create(client, type="hosted", start_date="2025-09-05", end_date="2025-09-07")

    assert trip["status"] == "locked"
    assert trip["locked_start_date"] == "2025-09-05"
    assert trip["locked_end_date"] == "2025-09-07"


def test_create_validation_error_body(client):
    response = client.post(
        "/trips",
        json={"circle_id": "c-1", "name": "Retreat", "type": "hosted"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "detail": {
            "code": "VALIDATION_ERROR",
            "message": "Hosted trips require start and end dates",
        }
    }


def test_hosted_trip_rejects_scheduling(client):
    trip = _create(client, type="hosted", start_date="2025-09-05", end_date="2025-09-07")

    response = client.post(f"/trips/{trip['id']}/availability", json={"broad_status": "available"})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "INVALID_STATE"


def test_unknown_trip_is_404(client):
    response = client.get("/trips/does-not-exist/schedule")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "TRIP_NOT_FOUND"


def test_outsider_is_forbidden(client, acting_user):
    trip = _create(client)

    response = _as(client, acting_user, "stranger").post(
        f"/trips/{trip['id']}/availability", json={"broad_status": "available"}
    )

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "FORBIDDEN"


def test_consensus_flow(client, acting_user, audit_mock):
    trip_id = _create(client)["id"]

    _as(client, acting_user, "member-2")
    response = client.post(f"/trips/{trip_id}/availability", json={"broad_status": "available"})
    assert response.status_code == 200
    assert response.json()["status"] == "scheduling"

    _as(client, acting_user, "member-3")
    response = client.post(
        f"/trips/{trip_id}/availability",
        json={
            "weekly_blocks": [
                {"start_date": "2025-08-01", "end_date": "2025-08-03", "status": "unavailable"}
            ],
            "days": {"2025-08-05": "maybe"},
        },
    )
    assert response.status_code == 200

    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["consensus_options"][0]["option_key"] == "2025-08-03_2025-08-05"
    assert schedule["viewer"]["days"] == {"2025-08-05": "maybe"}

    response = client.post(f"/trips/{trip_id}/open-voting")
    assert response.status_code == 403

    _as(client, acting_user, LEADER)
    response = client.post(f"/trips/{trip_id}/open-voting")
    assert response.status_code == 200
    ballot = [option["option_key"] for option in response.json()["voting_options"]]
    assert response.json()["status"] == "voting"
    audit_mock.assert_awaited()
    assert audit_mock.await_args.kwargs["action"] == "trip_voting_opened"

    _as(client, acting_user, "member-3")
    response = client.post(f"/trips/{trip_id}/availability", json={"broad_status": "maybe"})
    assert response.status_code == 409
    assert response.json()["detail"] == {
        "code": "INVALID_STATE",
        "message": "Availability is frozen while voting is open",
    }

    for user_id in ("member-2", "member-3"):
        response = _as(client, acting_user, user_id).post(
            f"/trips/{trip_id}/vote", json={"option_key": ballot[1]}
        )
        assert response.status_code == 200

    _as(client, acting_user, LEADER)
    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["voting"]["leading_option_key"] == ballot[1]
    assert schedule["voting"]["ready_to_lock"] is True
    assert schedule["viewer"]["can_lock"] is True

    response = client.post(f"/trips/{trip_id}/lock", json={"option_key": ballot[0]})
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "QUORUM_NOT_MET"

    response = client.post(f"/trips/{trip_id}/lock")
    assert response.status_code == 200
    locked = response.json()
    assert locked["status"] == "locked"
    assert locked["locked_start_date"] == ballot[1].split("_")[0]
    assert audit_mock.await_args.kwargs["action"] == "trip_dates_locked"

    response = client.post(f"/trips/{trip_id}/lock")
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Trip is already locked"


def test_funnel_flow(client, acting_user, audit_mock):
    trip_id = _create(client, scheduling_mode="funnel", end_date="2025-08-10")["id"]

    response = client.post(
        f"/trips/{trip_id}/dates/propose",
        json={"start_date": "2025-08-01", "end_date": "2025-08-03"},
    )
    assert response.status_code == 200
    proposal_id = response.json()["date_proposal"]["proposal_id"]
    assert response.json()["status"] == "voting"

    response = _as(client, acting_user, "member-2").post(
        f"/trips/{trip_id}/dates/react",
        json={"reaction_type": "WORKS", "proposal_id": proposal_id},
    )
    assert response.status_code == 200

    _as(client, acting_user, LEADER)
    response = client.post(f"/trips/{trip_id}/lock")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "QUORUM_NOT_MET"

    response = _as(client, acting_user, "member-3").post(
        f"/trips/{trip_id}/dates/react", json={"reaction_type": "WORKS", "note": "Works for me"}
    )
    assert response.status_code == 200

    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["funnel"]["date_state"] == "READY_TO_LOCK"
    assert schedule["funnel"]["approvals"] == 2
    assert schedule["viewer"]["reaction"]["note"] == "Works for me"

    _as(client, acting_user, LEADER)
    response = client.post(f"/trips/{trip_id}/lock")
    assert response.status_code == 200
    assert (response.json()["locked_start_date"], response.json()["locked_end_date"]) == (
        "2025-08-01",
        "2025-08-03",
    )

    response = _as(client, acting_user, "member-2").post(
        f"/trips/{trip_id}/dates/react", json={"reaction_type": "CANT"}
    )
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Dates are locked; scheduling is closed"


def test_funnel_window_suggestions(client, acting_user, audit_mock):
    trip_id = _create(client, scheduling_mode="funnel", end_date="2025-08-31")["id"]

    response = _as(client, acting_user, "member-2").post(
        f"/trips/{trip_id}/windows/propose",
        json={"description": "Mid August", "start_hint": "2025-08-14", "end_hint": "2025-08-17"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "scheduling"
    _as(client, acting_user, "member-3").post(
        f"/trips/{trip_id}/windows/propose", json={"description": "Late August"}
    )

    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["funnel"]["date_state"] == "WINDOWS_OPEN"
    windows = {w["description"]: w["window_id"] for w in schedule["funnel"]["windows"]}

    response = client.post(
        f"/trips/{trip_id}/windows/preference",
        json={"window_id": windows["Mid August"], "preference": "WORKS"},
    )
    assert response.status_code == 200
    response = client.post(
        f"/trips/{trip_id}/windows/preference",
        json={"window_id": windows["Mid August"], "preference": "SOMETIMES"},
    )
    assert response.status_code == 400

    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["funnel"]["windows"][0]["description"] == "Mid August"
    assert schedule["funnel"]["windows"][0]["score"] == 3
    assert schedule["viewer"]["window_preferences"] == {windows["Mid August"]: "WORKS"}

    response = client.post(f"/trips/{trip_id}/windows/compress", json={})
    assert response.status_code == 403

    _as(client, acting_user, LEADER)
    response = client.post(
        f"/trips/{trip_id}/windows/compress",
        json={"keep_window_ids": [windows["Mid August"]]},
    )
    assert response.status_code == 200
    assert response.json()["archived_window_ids"] == [windows["Late August"]]
    assert audit_mock.await_args.kwargs["action"] == "trip_windows_archived"

    client.post(
        f"/trips/{trip_id}/dates/propose",
        json={"start_date": "2025-08-14", "end_date": "2025-08-16"},
    )
    response = client.post(f"/trips/{trip_id}/windows/propose", json={"description": "September"})
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == (
        "Window suggestions are frozen once dates are proposed"
    )


def test_stale_reaction_is_rejected(client, acting_user):
    trip_id = _create(client, scheduling_mode="funnel", end_date="2025-08-10")["id"]
    first = client.post(
        f"/trips/{trip_id}/dates/propose",
        json={"start_date": "2025-08-01", "end_date": "2025-08-03"},
    ).json()["date_proposal"]["proposal_id"]
    client.post(
        f"/trips/{trip_id}/dates/propose",
        json={"start_date": "2025-08-05", "end_date": "2025-08-07"},
    )

    response = _as(client, acting_user, "member-2").post(
        f"/trips/{trip_id}/dates/react", json={"reaction_type": "WORKS", "proposal_id": first}
    )

    assert response.status_code == 409
    assert "proposal changed" in response.json()["detail"]["message"]


def test_heatmap_flow(client, acting_user):
    trip_id = _create(client, scheduling_mode="top3_heatmap", end_date="2025-08-07")["id"]

    response = _as(client, acting_user, "member-2").post(
        f"/trips/{trip_id}/date-picks",
        json={"picks": [{"rank": 1, "start_date": "2025-08-04"}]},
    )
    assert response.status_code == 200

    response = client.post(
        f"/trips/{trip_id}/date-picks",
        json={"picks": [{"rank": 1, "start_date": "2025-08-06"}]},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert schedule["heatmap"]["scores"] == {"2025-08-04": 3}
    assert schedule["heatmap"]["top_candidates"][0]["love_count"] == 1

    response = _as(client, acting_user, LEADER).post(
        f"/trips/{trip_id}/lock", json={"option_key": "2025-08-04"}
    )
    assert response.status_code == 200
    assert response.json()["locked_end_date"] == "2025-08-06"


def test_roster_and_cancel(client, acting_user, audit_mock):
    trip_id = _create(client)["id"]

    response = client.put(f"/trips/{trip_id}/participants/member-4", json={"status": "active"})
    assert response.status_code == 200
    schedule = client.get(f"/trips/{trip_id}/schedule").json()
    assert "member-4" in schedule["participant_ids"]

    response = _as(client, acting_user, "member-4").post(f"/trips/{trip_id}/cancel")
    assert response.status_code == 403

    response = _as(client, acting_user, LEADER).post(f"/trips/{trip_id}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "canceled"
    assert audit_mock.await_args.kwargs["action"] == "trip_canceled"

    response = client.post(f"/trips/{trip_id}/open-voting")
    assert response.status_code == 409
    assert response.json()["detail"]["message"] == "Trip has been canceled; scheduling is closed"
