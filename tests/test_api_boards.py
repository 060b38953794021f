"""
Board & card HTTP API tests.

Covers:
    1. Board create / get (nested columns and cards) / list
    2. Card create / move / archive over HTTP
    3. Error mapping: 400, 401, 403, 404, 409, 415, 422
    4. Cross-tenant access yields 404
    5. Health endpoints
"""

import pytest


def _create_card(client, headers, column_id, title="Card", **body):
    res = client.post(f"/api/v1/columns/{column_id}/cards", headers=headers, json={"title": title, **body})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════════


class TestBoardsAPI:
    def test_requires_authentication(self, client):
        res = client.get("/api/v1/boards")
        assert res.status_code == 401

    def test_create_board(self, client, member, auth_headers):
        res = client.post("/api/v1/boards", headers=auth_headers(member), json={"title": "Roadmap"})
        assert res.status_code == 201
        data = res.get_json()
        assert data["title"] == "Roadmap"
        assert data["created_by"] == member.id
        assert data["activity"]["type"] == "created"

    def test_create_board_blank_title(self, client, member, auth_headers):
        res = client.post("/api/v1/boards", headers=auth_headers(member), json={"title": ""})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVARIANT_VIOLATION"

    def test_get_board_with_children(self, client, board, columns, member, auth_headers):
        headers = auth_headers(member)
        _create_card(client, headers, columns[0].id, "First")
        res = client.get(f"/api/v1/boards/{board.id}", headers=headers)
        assert res.status_code == 200
        data = res.get_json()
        assert [c["title"] for c in data["columns"]] == ["To Do", "In Progress", "Done"]
        assert [c["title"] for c in data["columns"][0]["cards"]] == ["First"]

    def test_list_boards_only_membership(self, client, board, member, outsider, auth_headers):
        res = client.get("/api/v1/boards", headers=auth_headers(member))
        assert [b["id"] for b in res.get_json()["items"]] == [board.id]
        res = client.get("/api/v1/boards", headers=auth_headers(outsider))
        assert res.get_json()["items"] == []

    def test_outsider_forbidden(self, client, board, outsider, auth_headers):
        res = client.get(f"/api/v1/boards/{board.id}", headers=auth_headers(outsider))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_other_tenant_sees_not_found(self, client, board, make_user, other_tenant, auth_headers):
        foreign_admin = make_user("zed", role="admin", tenant_obj=other_tenant)
        res = client.get(f"/api/v1/boards/{board.id}", headers=auth_headers(foreign_admin))
        assert res.status_code == 404

    def test_missing_board(self, client, admin, auth_headers):
        res = client.get("/api/v1/boards/9999", headers=auth_headers(admin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_add_member_twice_conflicts(self, client, board, admin, outsider, auth_headers):
        headers = auth_headers(admin)
        url = f"/api/v1/boards/{board.id}/members"
        assert client.post(url, headers=headers, json={"user_id": outsider.id}).status_code == 201
        assert client.post(url, headers=headers, json={"user_id": outsider.id}).status_code == 409

    def test_add_member_requires_user_id(self, client, board, admin, auth_headers):
        res = client.post(f"/api/v1/boards/{board.id}/members", headers=auth_headers(admin), json={})
        assert res.status_code == 400

    def test_non_json_body_rejected(self, client, admin, auth_headers):
        res = client.post(
            "/api/v1/boards",
            headers={**auth_headers(admin), "Content-Type": "text/plain"},
            data="title=Roadmap",
        )
        assert res.status_code == 415

    def test_delete_board(self, client, board, admin, auth_headers):
        res = client.delete(f"/api/v1/boards/{board.id}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["deleted"] is True
        res = client.get(f"/api/v1/boards/{board.id}", headers=auth_headers(admin))
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Cards
# ═════════════════════════════════════════════════════════════════════════════


class TestCardsAPI:
    def test_create_and_get_card(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id, "Write docs", priority="High", due_date="2026-05-01")
        assert card["position"] == 0
        assert card["due_date"] == "2026-05-01"

        res = client.get(f"/api/v1/cards/{card['id']}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["priority"] == "High"

    def test_bad_priority(self, client, columns, member, auth_headers):
        res = client.post(
            f"/api/v1/columns/{columns[0].id}/cards", headers=auth_headers(member),
            json={"title": "X", "priority": "whenever"},
        )
        assert res.status_code == 422

    def test_move_card_to_done(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        res = client.post(f"/api/v1/cards/{card['id']}/move", headers=headers,
                          json={"column_id": columns[2].id, "position": 0})
        assert res.status_code == 200
        data = res.get_json()
        assert data["column_id"] == columns[2].id
        assert data["completed_at"] is not None
        assert data["activity"]["type"] == "moved"

    def test_move_card_reorders_siblings(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        ids = [_create_card(client, headers, columns[0].id, t)["id"] for t in ("a", "b", "c")]
        res = client.post(f"/api/v1/cards/{ids[2]}/move", headers=headers, json={"position": 0})
        assert res.status_code == 200

        board = client.get(f"/api/v1/boards/{columns[0].board_id}", headers=headers).get_json()
        todo = board["columns"][0]["cards"]
        assert [c["title"] for c in todo] == ["c", "a", "b"]
        assert [c["position"] for c in todo] == [0, 1, 2]

    @pytest.mark.parametrize("body", [{"position": "first"}, {"column_id": True}])
    def test_move_card_bad_types(self, client, columns, member, auth_headers, body):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        res = client.post(f"/api/v1/cards/{card['id']}/move", headers=headers, json=body)
        assert res.status_code == 400

    def test_move_card_negative_position(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        res = client.post(f"/api/v1/cards/{card['id']}/move", headers=headers, json={"position": -1})
        assert res.status_code == 422

    def test_move_card_empty_body(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        res = client.post(f"/api/v1/cards/{card['id']}/move", headers=headers, json={})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_INVARIANT_VIOLATION"

    def test_card_activity_feed(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        client.post(f"/api/v1/cards/{card['id']}/comments", headers=headers, json={"content": "hi"})
        res = client.get(f"/api/v1/cards/{card['id']}/activity", headers=headers)
        assert res.status_code == 200
        types = [a["type"] for a in res.get_json()["items"]]
        assert types[0] == "created"
        assert "comment" in types

    def test_outsider_cannot_create_card(self, client, columns, outsider, auth_headers):
        res = client.post(f"/api/v1/columns/{columns[0].id}/cards", headers=auth_headers(outsider),
                          json={"title": "Sneaky"})
        assert res.status_code == 403

    def test_delete_card(self, client, columns, member, auth_headers):
        headers = auth_headers(member)
        card = _create_card(client, headers, columns[0].id)
        res = client.delete(f"/api/v1/cards/{card['id']}", headers=headers)
        assert res.status_code == 200
        assert client.get(f"/api/v1/cards/{card['id']}", headers=headers).status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_health_is_public(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live_checks_database(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "ok"

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
        assert "error" in res.get_json()
