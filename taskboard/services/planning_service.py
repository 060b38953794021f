"""
Taskboard Platform
Planning records service — dependencies, milestones, budgets, risks, resources.

Each feature is a tagged variant stored in PlanningRecord.payload. Input is
validated and normalized by the feature's validator before any write;
updates merge the new fields into the stored payload and re-validate the
whole record.
"""

from __future__ import annotations

import logging

from taskboard.core.exceptions import NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.board import Card
from taskboard.models.planning import (
    DEPENDENCY_TYPES,
    PLANNING_FEATURES,
    RESOURCE_TYPES,
    RISK_LEVELS,
    RISK_STATUSES,
    PlanningRecord,
)
from taskboard.services import board_service, policy
from taskboard.services.policy import Actor

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Field helpers
# ═════════════════════════════════════════════════════════════════════════════


def _text(data: dict, key: str, required: bool = True, max_len: int = 300) -> str:
    value = (data.get(key) or "").strip() if isinstance(data.get(key, ""), str) else ""
    if required and not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    return value[:max_len]


def _number(data: dict, key: str, default=0.0, minimum=0.0, maximum=None) -> float:
    value = data.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", details={key: value})
    if number < minimum or (maximum is not None and number > maximum):
        bound = f"between {minimum:g} and {maximum:g}" if maximum is not None else f">= {minimum:g}"
        raise ValidationError(f"{key} must be {bound}", details={key: value})
    return number


def _board_card_ids(board_id: int, ids) -> list[int]:
    if ids in (None, ""):
        return []
    if not isinstance(ids, list):
        raise ValidationError("card ids must be a list")
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        raise ValidationError("card ids must be integers", details={"card_ids": ids})
    found = {
        row.id for row in db.session.query(Card.id).filter(Card.board_id == board_id, Card.id.in_(ids)).all()
    }
    missing = [i for i in ids if i not in found]
    if missing:
        raise ValidationError("Cards are not on this board", details={"card_ids": missing})
    return ids


# ═════════════════════════════════════════════════════════════════════════════
# Dependency graph
# ═════════════════════════════════════════════════════════════════════════════


def creates_cycle(board_id: int, from_card_id: int, to_card_id: int, ignore_record_id: int | None = None) -> bool:
    """
    Check whether adding from_card_id → to_card_id closes a cycle.

    Iterative DFS from to_card_id along existing dependency edges; reaching
    from_card_id means the new edge would close a loop.
    """
    if from_card_id == to_card_id:
        return True

    edges: dict[int, list[int]] = {}
    for rec in PlanningRecord.query.filter_by(board_id=board_id, feature="dependency").all():
        if rec.id == ignore_record_id:
            continue
        payload = rec.payload or {}
        edges.setdefault(payload.get("from_card_id"), []).append(payload.get("to_card_id"))

    visited = set()
    stack = [to_card_id]
    while stack:
        current = stack.pop()
        if current == from_card_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(edges.get(current, []))
    return False


# ═════════════════════════════════════════════════════════════════════════════
# Validators
# ═════════════════════════════════════════════════════════════════════════════


def _validate_dependency(board_id: int, data: dict, record_id: int | None) -> dict:
    try:
        from_id, to_id = int(data.get("from_card_id")), int(data.get("to_card_id"))
    except (TypeError, ValueError):
        raise ValidationError("from_card_id and to_card_id are required")
    _board_card_ids(board_id, [from_id, to_id])
    if from_id == to_id:
        raise ValidationError("A card cannot depend on itself")
    dep_type = data.get("type") or "finish-to-start"
    if dep_type not in DEPENDENCY_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(DEPENDENCY_TYPES))}",
                              details={"type": dep_type})
    lag = data.get("lag_days", 0)
    if isinstance(lag, bool) or not isinstance(lag, int) or lag < 0:
        raise ValidationError("lag_days must be a non-negative integer", details={"lag_days": lag})
    if creates_cycle(board_id, from_id, to_id, ignore_record_id=record_id):
        raise ValidationError("Dependency would create a cycle",
                              details={"from_card_id": from_id, "to_card_id": to_id})
    return {"from_card_id": from_id, "to_card_id": to_id, "type": dep_type, "lag_days": lag}


def _validate_milestone(board_id: int, data: dict, record_id: int | None) -> dict:
    due = board_service.parse_date(data.get("due_date"), "due_date")
    if due is None:
        raise ValidationError("due_date is required", details={"due_date": "required"})
    return {
        "title": _text(data, "title"),
        "description": _text(data, "description", required=False, max_len=2000),
        "due_date": due.isoformat(),
        "completed": bool(data.get("completed", False)),
        "card_ids": _board_card_ids(board_id, data.get("card_ids")),
    }


def _validate_budget(board_id: int, data: dict, record_id: int | None) -> dict:
    currency = (data.get("currency") or "USD").strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter code", details={"currency": currency})
    return {
        "name": _text(data, "name"),
        "total": _number(data, "total"),
        "spent": _number(data, "spent"),
        "currency": currency,
        "category": _text(data, "category", required=False, max_len=100),
    }


def _validate_risk(board_id: int, data: dict, record_id: int | None) -> dict:
    probability = data.get("probability", "medium")
    impact = data.get("impact", "medium")
    for key, value in (("probability", probability), ("impact", impact)):
        if value not in RISK_LEVELS:
            raise ValidationError(f"{key} must be one of: {', '.join(RISK_LEVELS)}", details={key: value})
    status = data.get("status", "identified")
    if status not in RISK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(RISK_STATUSES))}",
                              details={"status": status})
    return {
        "title": _text(data, "title"),
        "description": _text(data, "description", required=False, max_len=2000),
        "probability": probability,
        "impact": impact,
        "score": (RISK_LEVELS.index(probability) + 1) * (RISK_LEVELS.index(impact) + 1),
        "status": status,
        "mitigation": _text(data, "mitigation", required=False, max_len=2000),
        "owner_id": data.get("owner_id"),
    }


def _validate_resource(board_id: int, data: dict, record_id: int | None) -> dict:
    rtype = data.get("type", "person")
    if rtype not in RESOURCE_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(RESOURCE_TYPES))}",
                              details={"type": rtype})
    skills = data.get("skills") or []
    if not isinstance(skills, list):
        raise ValidationError("skills must be a list")
    return {
        "name": _text(data, "name"),
        "type": rtype,
        "availability": _number(data, "availability", default=100, maximum=100),
        "skills": [str(s).strip() for s in skills if str(s).strip()],
    }


_VALIDATORS = {
    "dependency": _validate_dependency,
    "milestone": _validate_milestone,
    "budget": _validate_budget,
    "risk": _validate_risk,
    "resource": _validate_resource,
}


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


def _get_record_or_404(actor: Actor, record_id: int) -> PlanningRecord:
    record = db.session.get(PlanningRecord, record_id)
    if record is None:
        raise NotFoundError("PlanningRecord", record_id, actor.tenant_id)
    # Raises NotFoundError for another tenant's board
    board_service.get_board_or_404(actor, record.board_id)
    return record


def _check_feature(feature: str) -> None:
    if feature not in PLANNING_FEATURES:
        raise ValidationError(
            f"feature must be one of: {', '.join(sorted(PLANNING_FEATURES))}",
            details={"feature": feature},
        )


def list_records(actor: Actor, board_id: int, feature: str | None = None) -> list[dict]:
    board = board_service.get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    q = PlanningRecord.query.filter_by(board_id=board.id)
    if feature:
        _check_feature(feature)
        q = q.filter_by(feature=feature)
    return [r.to_dict() for r in q.order_by(PlanningRecord.id).all()]


def create_record(actor: Actor, board_id: int, feature: str, data: dict) -> dict:
    board = board_service.get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_UPDATE, board)
    _check_feature(feature)
    payload = _VALIDATORS[feature](board.id, data, None)

    record = PlanningRecord(board_id=board.id, feature=feature, payload=payload, created_by=actor.user_id)
    db.session.add(record)
    db.session.commit()
    logger.info("Planning %s %s created on board %s", feature, record.id, board.id)
    return record.to_dict()


def update_record(actor: Actor, record_id: int, data: dict) -> dict:
    record = _get_record_or_404(actor, record_id)
    policy.require(actor, policy.BOARD_UPDATE, record)
    merged = {**(record.payload or {}), **data}
    record.payload = _VALIDATORS[record.feature](record.board_id, merged, record.id)
    db.session.commit()
    return record.to_dict()


def delete_record(actor: Actor, record_id: int) -> None:
    record = _get_record_or_404(actor, record_id)
    policy.require(actor, policy.BOARD_UPDATE, record)
    db.session.delete(record)
    db.session.commit()


def budget_summary(actor: Actor, board_id: int) -> dict:
    """Totals per currency plus utilization percentage."""
    records = list_records(actor, board_id, "budget")
    by_currency: dict[str, dict] = {}
    for rec in records:
        bucket = by_currency.setdefault(rec["currency"], {"total": 0.0, "spent": 0.0, "count": 0})
        bucket["total"] += rec["total"]
        bucket["spent"] += rec["spent"]
        bucket["count"] += 1
    for bucket in by_currency.values():
        bucket["remaining"] = round(bucket["total"] - bucket["spent"], 2)
        bucket["utilization_pct"] = round(bucket["spent"] / bucket["total"] * 100, 1) if bucket["total"] else 0.0
        bucket["over_budget"] = bucket["spent"] > bucket["total"]
    return {"board_id": board_id, "budgets": len(records), "by_currency": by_currency}
