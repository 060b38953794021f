"""
Planning records — dependencies, milestones, budgets, risks, resources.
"""

import pytest

from taskboard.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from taskboard.services import board_service, planning_service


@pytest.fixture()
def cards(admin, actor, columns):
    a = actor(admin)
    return [board_service.create_card(a, columns[0].id, {"title": t}).entity for t in ("A", "B", "C")]


def _dep(actor, board, src, dst, **kw):
    return planning_service.create_record(
        actor, board.id, "dependency", {"from_card_id": src.id, "to_card_id": dst.id, **kw},
    )


class TestDependencies:
    def test_create_defaults(self, board, admin, actor, cards):
        rec = _dep(actor(admin), board, cards[0], cards[1])
        assert rec["type"] == "finish-to-start"
        assert rec["lag_days"] == 0

    def test_cycle_rejected(self, board, admin, actor, cards):
        a = actor(admin)
        _dep(a, board, cards[0], cards[1])
        _dep(a, board, cards[1], cards[2])
        with pytest.raises(ValidationError, match="cycle"):
            _dep(a, board, cards[2], cards[0])

    def test_self_dependency_rejected(self, board, admin, actor, cards):
        with pytest.raises(ValidationError):
            _dep(actor(admin), board, cards[0], cards[0])

    def test_card_from_other_board_rejected(self, board, admin, actor, cards):
        a = actor(admin)
        other = board_service.create_board(a, {"title": "Other"}).entity
        stray = board_service.create_card(a, other.columns[0].id, {"title": "Stray"}).entity
        with pytest.raises(ValidationError):
            _dep(a, board, cards[0], stray)

    def test_update_may_reverse_own_edge(self, board, admin, actor, cards):
        a = actor(admin)
        rec = _dep(a, board, cards[0], cards[1])
        updated = planning_service.update_record(a, rec["id"], {"from_card_id": cards[1].id, "to_card_id": cards[0].id})
        assert updated["from_card_id"] == cards[1].id

    def test_bad_type(self, board, admin, actor, cards):
        with pytest.raises(ValidationError):
            _dep(actor(admin), board, cards[0], cards[1], type="whenever")


class TestOtherFeatures:
    def test_risk_score(self, board, admin, actor):
        rec = planning_service.create_record(actor(admin), board.id, "risk", {
            "title": "Vendor delay", "probability": "high", "impact": "medium",
        })
        assert rec["score"] == 6
        assert rec["status"] == "identified"

    def test_risk_update_rescores(self, board, admin, actor):
        a = actor(admin)
        rec = planning_service.create_record(a, board.id, "risk", {"title": "Churn"})
        assert rec["score"] == 4
        rec = planning_service.update_record(a, rec["id"], {"impact": "low"})
        assert rec["score"] == 2
        assert rec["title"] == "Churn"

    def test_milestone_needs_due_date(self, board, admin, actor):
        with pytest.raises(ValidationError):
            planning_service.create_record(actor(admin), board.id, "milestone", {"title": "Beta"})

    def test_milestone_with_cards(self, board, admin, actor, cards):
        rec = planning_service.create_record(actor(admin), board.id, "milestone", {
            "title": "Beta", "due_date": "2026-06-30", "card_ids": [cards[0].id],
        })
        assert rec["card_ids"] == [cards[0].id]

    @pytest.mark.parametrize("card_ids", [["abc"], [None], "1,2"])
    def test_milestone_rejects_malformed_card_ids(self, board, admin, actor, card_ids):
        with pytest.raises(ValidationError):
            planning_service.create_record(actor(admin), board.id, "milestone", {
                "title": "Beta", "due_date": "2026-06-30", "card_ids": card_ids,
            })

    def test_resource_availability_bounds(self, board, admin, actor):
        with pytest.raises(ValidationError):
            planning_service.create_record(actor(admin), board.id, "resource", {"name": "Ana", "availability": 120})

    def test_budget_summary(self, board, admin, actor):
        a = actor(admin)
        planning_service.create_record(a, board.id, "budget", {"name": "Cloud", "total": 1000, "spent": 250})
        planning_service.create_record(a, board.id, "budget", {"name": "Ads", "total": 500, "spent": 600})
        planning_service.create_record(a, board.id, "budget", {"name": "Travel", "total": 200, "currency": "eur"})

        summary = planning_service.budget_summary(a, board.id)
        usd = summary["by_currency"]["USD"]
        assert summary["budgets"] == 3
        assert usd["total"] == 1500.0
        assert usd["remaining"] == 650.0
        assert usd["utilization_pct"] == 56.7
        assert usd["over_budget"] is False
        assert summary["by_currency"]["EUR"]["spent"] == 0.0

    def test_unknown_feature(self, board, admin, actor):
        with pytest.raises(ValidationError):
            planning_service.create_record(actor(admin), board.id, "gantt", {})


class TestAccess:
    def test_outsider_denied(self, board, outsider, actor):
        with pytest.raises(PermissionDenied):
            planning_service.list_records(actor(outsider), board.id)

    def test_other_tenant_not_found(self, board, admin, actor, other_tenant, make_user):
        rec = planning_service.create_record(actor(admin), board.id, "risk", {"title": "x"})
        stranger = make_user("zed", role="admin", tenant_obj=other_tenant)
        with pytest.raises(NotFoundError):
            planning_service.delete_record(actor(stranger), rec["id"])

    def test_list_by_feature(self, board, admin, actor):
        a = actor(admin)
        planning_service.create_record(a, board.id, "risk", {"title": "r"})
        planning_service.create_record(a, board.id, "resource", {"name": "Ana"})
        assert [r["feature"] for r in planning_service.list_records(a, board.id, "resource")] == ["resource"]
        assert len(planning_service.list_records(a, board.id)) == 2


class TestPlanningAPI:
    def test_malformed_card_ids_is_422(self, client, board, admin, auth_headers):
        res = client.post(f"/api/v1/boards/{board.id}/planning/milestone", headers=auth_headers(admin),
                          json={"title": "Beta", "due_date": "2026-06-30", "card_ids": ["abc"]})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"card_ids": ["abc"]}
