"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Drives the HTTP surface through the TestClient against the SQLite engine:

- Auth guards on every mutating endpoint
- HuddleError → status code / payload mapping (404, 403, 409, 422, 429)
- Vote writes hand their targets to the recompute queue
- Health endpoint availability
"""

from __future__ import annotations

import pytest


@pytest.fixture
def host(make_user):
    return make_user("host")


@pytest.fixture
def gathering(client, auth_headers, host):
    resp = client.post(
        "/api/gatherings",
        json={"title": "Book club", "max_members": 3, "approval_required": True},
        headers=auth_headers(host),
    )
    assert resp.status_code == 201
    return resp.json()


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    PROTECTED = [
        ("post", "/api/gatherings"),
        ("post", "/api/gatherings/1/join"),
        ("delete", "/api/gatherings/1/membership"),
        ("post", "/api/memberships/1/approve"),
        ("post", "/api/schedules/1/join"),
        ("put", "/api/users/1/votes"),
        ("post", "/api/schedules/1/evaluation"),
    ]

    @pytest.mark.parametrize("method,endpoint", PROTECTED)
    def test_no_token_returns_401(self, client, method, endpoint):
        resp = getattr(client, method)(endpoint)
        assert resp.status_code == 401

    def test_garbage_token_returns_401(self, client):
        resp = client.post(
            "/api/gatherings",
            json={"title": "x", "max_members": 2},
            headers={"Authorization": "Bearer garbage.token.here"},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token"

    def test_public_reads_need_no_token(self, client, gathering):
        assert client.get(f"/api/gatherings/{gathering['id']}").status_code == 200
        assert client.get("/api/popularity/categories").status_code == 200


# ===========================================================================
# Gathering flows
# ===========================================================================
class TestGatheringRoutes:
    def test_create_returns_server_row(self, gathering, host):
        assert gathering["creator_id"] == host
        assert gathering["current_members"] == 1
        assert gathering["approval_required"] is True

    def test_invalid_body_returns_422(self, client, auth_headers, host):
        resp = client.post(
            "/api/gatherings", json={"title": "x", "max_members": 0},
            headers=auth_headers(host),
        )
        assert resp.status_code == 422

    def test_unknown_gathering_returns_404_payload(self, client):
        resp = client.get("/api/gatherings/9999")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "not_found"

    def test_request_approve_kick(self, client, auth_headers, gathering, host, make_user):
        gid = gathering["id"]
        applicant = make_user("applicant")

        resp = client.post(f"/api/gatherings/{gid}/join", headers=auth_headers(applicant))
        assert resp.status_code == 201
        membership = resp.json()
        assert membership["status"] == "pending"

        again = client.post(f"/api/gatherings/{gid}/join", headers=auth_headers(applicant))
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "already_member"

        forbidden = client.post(
            f"/api/memberships/{membership['id']}/approve", headers=auth_headers(applicant)
        )
        assert forbidden.status_code == 403

        approved = client.post(
            f"/api/memberships/{membership['id']}/approve", headers=auth_headers(host)
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert client.get(f"/api/gatherings/{gid}").json()["current_members"] == 2

        pending = client.get(f"/api/gatherings/{gid}/members", params={"status": "pending"})
        assert pending.json()["members"] == []

        kicked = client.post(
            f"/api/memberships/{membership['id']}/kick", headers=auth_headers(host)
        )
        assert kicked.json()["status"] == "kicked"
        assert client.get(f"/api/gatherings/{gid}").json()["current_members"] == 1

    def test_cancel_own_membership(self, client, auth_headers, make_user):
        host = make_user("host2")
        g = client.post(
            "/api/gatherings", json={"title": "Open", "max_members": 5},
            headers=auth_headers(host),
        ).json()
        member = make_user("member")
        client.post(f"/api/gatherings/{g['id']}/join", headers=auth_headers(member))

        resp = client.delete(f"/api/gatherings/{g['id']}/membership", headers=auth_headers(member))
        assert resp.status_code == 200
        assert resp.json()["cancelled"] == "approved"
        assert resp.json()["gathering"]["current_members"] == 1

        mine = client.get(f"/api/gatherings/{g['id']}/membership", headers=auth_headers(member))
        assert mine.json() == {"membership": None}

    def test_full_returns_409(self, client, auth_headers, make_user):
        host = make_user("host3")
        g = client.post(
            "/api/gatherings", json={"title": "Tiny", "max_members": 1},
            headers=auth_headers(host),
        ).json()
        resp = client.post(f"/api/gatherings/{g['id']}/join", headers=auth_headers(make_user()))
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "full"


# ===========================================================================
# Schedules
# ===========================================================================
class TestScheduleRoutes:
    def test_create_join_attendance(self, client, auth_headers, make_user):
        host, member = make_user("host"), make_user("member")
        g = client.post(
            "/api/gatherings", json={"title": "Climbing", "max_members": 5},
            headers=auth_headers(host),
        ).json()
        client.post(f"/api/gatherings/{g['id']}/join", headers=auth_headers(member))

        s = client.post(
            f"/api/gatherings/{g['id']}/schedules",
            json={"title": "Wall night", "max_members": 4},
            headers=auth_headers(host),
        )
        assert s.status_code == 201
        sid = s.json()["id"]

        assert client.post(f"/api/schedules/{sid}/join", headers=auth_headers(member)).status_code == 201
        resp = client.put(
            f"/api/schedules/{sid}/attendance", json={"status": "confirmed"},
            headers=auth_headers(member),
        )
        assert resp.status_code == 200
        assert resp.json()["attendance_status"] == "confirmed"

        detail = client.get(f"/api/schedules/{sid}").json()
        assert detail["current_members"] == 2
        assert len(detail["members"]) == 2

    def test_outsider_cannot_join_schedule(self, client, auth_headers, make_user):
        host = make_user("host")
        g = client.post(
            "/api/gatherings", json={"title": "Climbing", "max_members": 5},
            headers=auth_headers(host),
        ).json()
        sid = client.post(
            f"/api/gatherings/{g['id']}/schedules",
            json={"title": "Wall night", "max_members": 4},
            headers=auth_headers(host),
        ).json()["id"]
        resp = client.post(f"/api/schedules/{sid}/join", headers=auth_headers(make_user("x")))
        assert resp.status_code == 403


# ===========================================================================
# Votes and popularity
# ===========================================================================
class TestVoteRoutes:
    def test_vote_queues_recompute(self, client, auth_headers, make_user, recompute_queue):
        voter, target = make_user("voter"), make_user("target")
        resp = client.put(
            f"/api/users/{target}/votes", json={"category": "kind"},
            headers=auth_headers(voter),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["changed"] is True
        assert body["quota_consumed"] is True
        assert recompute_queue.pending == frozenset({target})

        mine = client.get(f"/api/users/{target}/votes", headers=auth_headers(voter))
        assert mine.json() == {"categories": ["kind"]}

    def test_noop_vote_queues_nothing(self, client, auth_headers, make_user, recompute_queue):
        voter, target = make_user("voter"), make_user("target")
        resp = client.put(
            f"/api/users/{target}/votes", json={"category": "kind", "active": False},
            headers=auth_headers(voter),
        )
        assert resp.json()["changed"] is False
        assert recompute_queue.pending == frozenset()

    def test_quota_exhausted_returns_429_with_retry_after(self, client, auth_headers, make_user):
        voter = make_user("voter")
        first, second = make_user("t1"), make_user("t2")
        client.put(
            f"/api/users/{first}/votes", json={"category": "thumbs_up"},
            headers=auth_headers(voter),
        )
        resp = client.put(
            f"/api/users/{second}/votes", json={"category": "thumbs_up"},
            headers=auth_headers(voter),
        )
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1
        assert resp.json()["detail"]["error"] == "rate_limited"

    def test_self_vote_returns_422(self, client, auth_headers, make_user):
        voter = make_user("voter")
        resp = client.put(
            f"/api/users/{voter}/votes", json={"category": "kind"}, headers=auth_headers(voter)
        )
        assert resp.status_code == 422
        assert resp.json()["detail"]["error"] == "self_vote"

    def test_unknown_category_returns_422(self, client, auth_headers, make_user):
        voter, target = make_user("voter"), make_user("target")
        resp = client.put(
            f"/api/users/{target}/votes", json={"category": "sparkly"},
            headers=auth_headers(voter),
        )
        assert resp.status_code == 422

    def test_popularity_after_drain(self, client, auth_headers, make_user, recompute_queue):
        import asyncio

        voter, target = make_user("voter", unlimited=True), make_user("target")
        for category in ("kind", "friendly", "thumbs_down"):
            client.put(
                f"/api/users/{target}/votes", json={"category": category},
                headers=auth_headers(voter),
            )

        before = client.get(f"/api/users/{target}/popularity").json()
        assert before["total_score"] == 0
        assert len(before["recent"]) == 3
        assert all("voter_id" not in r for r in before["recent"])

        assert asyncio.run(recompute_queue.drain_once()) == 1
        after = client.get(f"/api/users/{target}/popularity").json()
        assert after["total_score"] == 1
        assert after["categories"]["kind"] == 1

    def test_unknown_user_popularity_returns_404(self, client):
        assert client.get("/api/users/424242/popularity").status_code == 404

    def test_evaluation_before_completion_returns_409(self, client, auth_headers, make_user):
        host, member = make_user("host"), make_user("member")
        g = client.post(
            "/api/gatherings", json={"title": "Climbing", "max_members": 5},
            headers=auth_headers(host),
        ).json()
        client.post(f"/api/gatherings/{g['id']}/join", headers=auth_headers(member))
        sid = client.post(
            f"/api/gatherings/{g['id']}/schedules",
            json={"title": "Wall night", "max_members": 4},
            headers=auth_headers(host),
        ).json()["id"]
        client.post(f"/api/schedules/{sid}/join", headers=auth_headers(member))

        body = {"votes": [{"target_id": host, "category": "kind"}]}
        resp = client.post(
            f"/api/schedules/{sid}/evaluation", json=body, headers=auth_headers(member)
        )
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "not_completed"

        client.post(f"/api/schedules/{sid}/complete", headers=auth_headers(host))
        resp = client.post(
            f"/api/schedules/{sid}/evaluation", json=body, headers=auth_headers(member)
        )
        assert resp.status_code == 200
        status = client.get(f"/api/schedules/{sid}/evaluation", headers=auth_headers(member))
        assert status.json() == {"evaluated": True}


# ===========================================================================
# Category catalogue + server entry point
# ===========================================================================
class TestCategories:
    def test_every_category_listed_with_sign(self, client):
        categories = client.get("/api/popularity/categories").json()["categories"]
        by_key = {c["key"]: c for c in categories}
        assert len(by_key) == 8
        assert by_key["kind"]["positive_only"] is True
        assert by_key["thumbs_up"]["positive_only"] is False
        assert by_key["thumbs_down"]["positive_only"] is False


class TestServeEntryPoint:
    def test_serves_on_configured_port(self, tmp_path):
        from unittest.mock import patch

        from huddle.api import __main__ as serve

        path = tmp_path / "config.yaml"
        path.write_text("community_name: Test\napi_port: 8123\n", encoding="utf-8")
        with patch.object(serve.uvicorn, "run") as run:
            serve.main(["--config", str(path), "--host", "127.0.0.1"])
        run.assert_called_once_with("huddle.api.main:app", host="127.0.0.1", port=8123)
