"""
Taskboard Platform
Automation / Workflow Evaluator.

Consumes DomainEvents published by the Entity Store and runs matching
rules:

    trigger match   active rule, trigger_type == event.type, board scope,
                    every trigger_config constraint
    conditions      all evaluated and logged (no short-circuit), combined
                    left to right; each condition after the first joins the
                    running result with its own logical_operator (default AND)
    actions         ascending (order, id); a failing action is logged and
                    counted, the rest still run
    status          pending → running → completed | failed

Actions run as the rule's creator and go through board_service and
NotificationService only, so they raise their own events; events.publish
caps the resulting chain depth. The webhook action posts through
webhook_service and fails the action when the endpoint does not answer 2xx.

Usage:
    from taskboard.services import automation
    executions = automation.evaluate(event)
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import or_

from taskboard.core.exceptions import NotFoundError, PartialFailure, ValidationError
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.automation import (
    ACTION_TYPES,
    CONDITION_OPERATORS,
    LOGICAL_OPERATORS,
    RULE_KINDS,
    TRIGGER_CONFIG_KEYS,
    TRIGGER_TYPES,
    AutomationRule,
    RuleAction,
    RuleCondition,
    WorkflowExecution,
)
from taskboard.models.board import CARD_PRIORITIES, Board, Card, Column
from taskboard.models.notification import NOTIFICATION_TYPES
from taskboard.services import board_service, ordering, policy, webhook_service
from taskboard.services.events import DomainEvent
from taskboard.services.notification import NotificationService
from taskboard.services.policy import Actor

logger = logging.getLogger(__name__)

# Assignee placeholders resolved to a tenant admin at execution time
ADMIN_ALIASES = {"board_admin", "project_manager"}

# Each action type needs at least one of these config keys
_ACTION_REQUIRED_KEYS = {
    "move_card": ("column_id", "column_title"),
    "assign_user": ("user_id",),
    "unassign_user": ("user_id",),
    "add_label": ("label_id", "label_name"),
    "remove_label": ("label_id", "label_name"),
    "set_priority": ("priority",),
    "set_due_date": ("due_date", "days_from_now"),
    "create_subtask": ("title",),
    "add_comment": ("text",),
    "create_card": ("title",),
    "send_notification": ("user_id", "recipients"),
    "notify_board_members": ("title", "message"),
    "webhook": ("subscription_id", "url"),
}

SCHEDULE_PERIODS = {"hourly": timedelta(hours=1), "daily": timedelta(days=1), "weekly": timedelta(weeks=1)}

_PLACEHOLDER = re.compile(r"\{(card|board|event)\.([a-z_]+)\}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Context & templating
# ═════════════════════════════════════════════════════════════════════════════


def build_context(event: DomainEvent) -> dict:
    """Snapshot of card, board and event used by triggers, conditions and templates."""
    card_ctx: dict = {}
    if event.card_id is not None:
        card = db.session.get(Card, event.card_id)
        if card is not None:
            card_ctx = card.to_dict()
            column = card.column
            card_ctx["column_title"] = column.title
            card_ctx["column_is_done"] = column.is_done
            card_ctx["label_names"] = [lbl.name for lbl in card.labels]
            card_ctx["subtasks_remaining"] = card_ctx["subtask_count"] - card_ctx["subtasks_done"]
            if card.due_date:
                days = (card.due_date - _utcnow().date()).days
                card_ctx["days_until_due"] = days
                card_ctx["is_overdue"] = days < 0 and card.completed_at is None
            else:
                card_ctx["days_until_due"] = None
                card_ctx["is_overdue"] = False

    board_ctx: dict = {}
    if event.board_id is not None:
        board = db.session.get(Board, event.board_id)
        if board is not None:
            board_ctx = {"id": board.id, "title": board.title, "member_ids": board.member_ids()}

    event_ctx = {"type": event.type, "actor_id": event.actor_id, **(event.payload or {})}
    return {"card": card_ctx, "board": board_ctx, "event": event_ctx}


def resolve_field(context: dict, path: str):
    """Look up a dotted path; a bare field name refers to the card."""
    parts = path.split(".")
    if parts[0] not in context:
        parts = ["card"] + parts
    value = context
    for part in parts:
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def render_template(text: str, context: dict) -> str:
    """Expand {card.title}, {card.priority}, {card.due_date}, {board.title}, ..."""
    if not text:
        return ""

    def _sub(match):
        value = context.get(match.group(1), {}).get(match.group(2))
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    return _PLACEHOLDER.sub(_sub, text)


# ═════════════════════════════════════════════════════════════════════════════
# Conditions
# ═════════════════════════════════════════════════════════════════════════════


def _norm(value):
    return value.lower() if isinstance(value, str) else value


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _compare(actual, expected, op) -> bool:
    if actual is None or expected is None:
        return False
    try:
        a, b = float(actual), float(expected)
    except (TypeError, ValueError):
        a, b = str(actual), str(expected)  # ISO dates order lexicographically
    return a > b if op == "greater_than" else a < b


def check_condition(operator: str, actual, expected) -> bool:
    """Apply one condition operator; string comparisons ignore case."""
    if operator == "is_empty":
        return actual in (None, "", [], {})
    if operator == "is_not_empty":
        return actual not in (None, "", [], {})
    if operator == "equals":
        return _norm(actual) == _norm(expected)
    if operator == "not_equals":
        return _norm(actual) != _norm(expected)
    if operator in ("contains", "not_contains"):
        if isinstance(actual, (list, tuple)):
            found = _norm(expected) in [_norm(a) for a in actual]
        elif isinstance(actual, str) and expected is not None:
            found = str(expected).lower() in actual.lower()
        else:
            found = False
        return found if operator == "contains" else not found
    if operator in ("in", "not_in"):
        found = _norm(actual) in [_norm(e) for e in _as_list(expected)]
        return found if operator == "in" else not found
    if operator in ("greater_than", "less_than"):
        return _compare(actual, expected, operator)
    raise ValidationError(f"Unknown condition operator: {operator}")


def evaluate_conditions(conditions, context: dict, execution: WorkflowExecution | None = None) -> bool:
    """Combine every condition left to right. No conditions means True."""
    result = None
    for cond in sorted(conditions, key=lambda c: (c.position, c.id or 0)):
        actual = resolve_field(context, cond.field)
        outcome = check_condition(cond.operator, actual, cond.value)
        joiner = (cond.logical_operator or "AND").upper()
        if result is None:
            result = outcome
        elif joiner == "OR":
            result = result or outcome
        else:
            result = result and outcome
        if execution is not None:
            execution.log(
                "info",
                f"Condition {cond.field} {cond.operator} {cond.value!r}: {outcome}",
                data={"actual": actual, "result": outcome, "joined_with": joiner},
            )
    return True if result is None else bool(result)


# ═════════════════════════════════════════════════════════════════════════════
# Trigger matching
# ═════════════════════════════════════════════════════════════════════════════


def trigger_matches(rule: AutomationRule, event: DomainEvent, context: dict) -> bool:
    if not rule.is_active or rule.trigger_type != event.type:
        return False
    if rule.board_id is not None and rule.board_id != event.board_id:
        return False

    config = rule.trigger_config or {}
    card = context.get("card") or {}
    payload = event.payload or {}

    if config.get("board_id") is not None and config["board_id"] != event.board_id:
        return False
    if config.get("column_id") is not None:
        column_id = payload.get("to_column_id", card.get("column_id"))
        if column_id != config["column_id"]:
            return False
    if config.get("priority") and card.get("priority") != config["priority"]:
        return False
    if config.get("label_ids"):
        if not set(config["label_ids"]) & set(card.get("label_ids") or []):
            return False
    if config.get("assignee_id") is not None:
        assignees = set(card.get("member_ids") or [])
        if payload.get("assignee_id") is not None:
            assignees.add(payload["assignee_id"])
        if config["assignee_id"] not in assignees:
            return False
    if config.get("days_before_due") is not None:
        days = card.get("days_until_due")
        if days is None or days > config["days_before_due"]:
            return False
    return True


def matching_rules(event: DomainEvent) -> list[AutomationRule]:
    q = AutomationRule.query_for_tenant(event.tenant_id).filter(
        AutomationRule.is_active.is_(True),
        AutomationRule.trigger_type == event.type,
    )
    if event.board_id is not None:
        q = q.filter(or_(AutomationRule.board_id.is_(None), AutomationRule.board_id == event.board_id))
    else:
        q = q.filter(AutomationRule.board_id.is_(None))
    return q.order_by(AutomationRule.id).all()


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════════


def evaluate(event: DomainEvent, rules: list[AutomationRule] | None = None) -> list[WorkflowExecution]:
    """Run every matching rule for event. Returns one execution per matched rule.

    Each rule is isolated: a rule whose trigger or conditions blow up is
    rolled back and logged, and the remaining rules still run.
    """
    candidates = matching_rules(event) if rules is None else rules
    rule_ids = [rule.id for rule in candidates]
    executions = []
    for rule, rule_id in zip(candidates, rule_ids):
        try:
            if not trigger_matches(rule, event, build_context(event)):
                continue
            executions.append(execute_rule(rule, event))
        except Exception:
            db.session.rollback()
            logger.exception("Rule %s failed on %s card_id=%s, skipped", rule_id, event.type, event.card_id)
    return executions


def _rule_actor(rule: AutomationRule) -> Actor | None:
    owner = db.session.get(User, rule.created_by) if rule.created_by else None
    if owner is None or not owner.is_active or owner.tenant_id != rule.tenant_id:
        return None
    return Actor.from_user(owner)


def _close(execution: WorkflowExecution, status: str, started: float) -> None:
    execution.transition(status)
    execution.duration_ms = int((time.monotonic() - started) * 1000)
    db.session.commit()


def execute_rule(rule: AutomationRule, event: DomainEvent) -> WorkflowExecution:
    """Evaluate conditions and run actions for one matched rule."""
    started = time.monotonic()
    execution = WorkflowExecution(
        rule=rule,
        event_type=event.type,
        event_payload=event.to_dict(),
        triggered_by=event.actor_id,
        status="pending",
    )
    db.session.add(execution)
    execution.transition("running")
    rule.record_execution()

    context = build_context(event)
    met = evaluate_conditions(rule.conditions, context, execution)
    execution.conditions_met = met
    actions = [(a.id, a.type, dict(a.config or {})) for a in sorted(rule.actions, key=lambda a: (a.order, a.id))]

    if not met:
        execution.log("info", "Conditions not met, no actions run")
        _close(execution, "completed", started)
        return execution

    execution.total_actions = len(actions)
    db.session.commit()
    actor = _rule_actor(rule)
    rule_id = rule.id

    for action_id, action_type, config in actions:
        try:
            if actor is None:
                raise ValidationError("Rule owner is missing or inactive")
            detail = run_action(actor, action_type, config, event, context)
        except Exception as exc:
            # Best effort: partial progress stays visible in the log
            db.session.rollback()
            execution.actions_failed += 1
            execution.log("error", f"{action_type} failed: {exc}", action_id=action_id,
                          data={"error_type": type(exc).__name__})
            logger.warning("Rule %s action %s (%s) failed: %s", rule_id, action_id, action_type, exc)
        else:
            execution.actions_executed += 1
            execution.log("info", f"{action_type}: {detail}", action_id=action_id)
        db.session.commit()
        context = build_context(event)

    if execution.actions_failed:
        execution.error = f"{execution.actions_failed} of {len(actions)} action(s) failed"
        _close(execution, "failed", started)
    else:
        _close(execution, "completed", started)
    logger.info(
        "Rule %s executed for %s card_id=%s: %s (%d ok, %d failed)",
        rule_id, event.type, event.card_id, execution.status,
        execution.actions_executed, execution.actions_failed,
    )
    return execution


# ═════════════════════════════════════════════════════════════════════════════
# Actions
# ═════════════════════════════════════════════════════════════════════════════


def _tenant_admin(tenant_id: int) -> User | None:
    return (
        User.query.filter_by(tenant_id=tenant_id, role="admin", is_active=True)
        .order_by(User.id)
        .first()
    )


def _resolve_user_id(actor: Actor, value) -> int:
    if value in ADMIN_ALIASES:
        admin = _tenant_admin(actor.tenant_id)
        if admin is None:
            raise NotFoundError("User", value, actor.tenant_id)
        return admin.id
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid user reference: {value!r}")


def _resolve_label_id(actor: Actor, config: dict) -> int:
    if config.get("label_id") is not None:
        return int(config["label_id"])
    board_service.ensure_label_presets(actor.tenant_id)
    label = board_service.find_label_by_name(actor.tenant_id, config["label_name"])
    if label is None:
        raise NotFoundError("Label", config["label_name"], actor.tenant_id)
    return label.id


def _resolve_column_id(event: DomainEvent, config: dict) -> int:
    if config.get("column_id") is not None:
        return int(config["column_id"])
    wanted = str(config["column_title"]).lower()
    column = Column.query.filter(
        Column.board_id == event.board_id,
        db.func.lower(Column.title) == wanted,
    ).order_by(Column.position).first()
    if column is None:
        raise NotFoundError("Column", config["column_title"])
    return column.id


def _recipients(actor: Actor, config: dict, context: dict) -> list[int]:
    spec = config.get("recipients") or config.get("user_id")
    if spec == "card_members":
        return list(context["card"].get("member_ids") or [])
    if spec == "board_members":
        return list(context["board"].get("member_ids") or [])
    return [_resolve_user_id(actor, v) for v in _as_list(spec)]


def _require_card(event: DomainEvent, config: dict) -> int:
    card_id = config.get("card_id") or event.card_id
    if card_id is None:
        raise ValidationError("Action needs a card but the event has none")
    return int(card_id)


def run_action(actor: Actor, action_type: str, config: dict, event: DomainEvent, context: dict) -> str:
    """Execute one action; returns a short description for the execution log."""
    if action_type == "move_card":
        card_id = _require_card(event, config)
        column_id = _resolve_column_id(event, config)
        board_service.move_card(actor, card_id, column_id, config.get("position"))
        return f"card {card_id} moved to column {column_id}"

    if action_type == "assign_user":
        card_id = _require_card(event, config)
        user_id = _resolve_user_id(actor, config["user_id"])
        board_service.assign_member(actor, card_id, user_id)
        return f"user {user_id} assigned to card {card_id}"

    if action_type == "unassign_user":
        card_id = _require_card(event, config)
        user_id = _resolve_user_id(actor, config["user_id"])
        board_service.unassign_member(actor, card_id, user_id)
        return f"user {user_id} unassigned from card {card_id}"

    if action_type in ("add_label", "remove_label"):
        card_id = _require_card(event, config)
        label_id = _resolve_label_id(actor, config)
        fn = board_service.add_label if action_type == "add_label" else board_service.remove_label
        fn(actor, card_id, label_id)
        return f"label {label_id} {'added to' if action_type == 'add_label' else 'removed from'} card {card_id}"

    if action_type == "set_priority":
        card_id = _require_card(event, config)
        board_service.update_card(actor, card_id, {"priority": config["priority"]})
        return f"priority set to {config['priority']}"

    if action_type == "set_due_date":
        card_id = _require_card(event, config)
        if config.get("days_from_now") is not None:
            due = _utcnow().date() + timedelta(days=int(config["days_from_now"]))
        else:
            due = board_service.parse_date(config["due_date"], "due_date")
        board_service.update_card(actor, card_id, {"due_date": due})
        return f"due date set to {due.isoformat() if isinstance(due, date) else due}"

    if action_type == "create_subtask":
        card_id = _require_card(event, config)
        result = board_service.add_subtask(actor, card_id, render_template(config["title"], context))
        return f"subtask {result.entity.id} created"

    if action_type == "add_comment":
        card_id = _require_card(event, config)
        result = board_service.add_comment(actor, card_id, render_template(config["text"], context))
        return f"comment {result.entity.id} added"

    if action_type == "create_card":
        column_id = config.get("column_id")
        if column_id is None:
            board = db.session.get(Board, config.get("board_id") or event.board_id)
            if board is None or not board.columns:
                raise ValidationError("create_card needs a column_id or a board with columns")
            column_id = ordering.ordered(board.columns)[0].id
        data = {
            "title": render_template(config["title"], context),
            "description": render_template(config.get("description", ""), context),
        }
        if config.get("priority"):
            data["priority"] = config["priority"]
        result = board_service.create_card(actor, int(column_id), data)
        return f"card {result.entity.id} created"

    if action_type == "archive_card":
        card_id = _require_card(event, config)
        board_service.archive_card(actor, card_id, True)
        return f"card {card_id} archived"

    if action_type == "send_notification":
        recipients = _recipients(actor, config, context)
        title = render_template(config.get("title") or "Automation", context)
        message = render_template(config.get("message", ""), context)
        ntype = config.get("type", "info")
        for user_id in recipients:
            NotificationService.notify_user(
                user_id, title, message, ntype,
                related_card_id=event.card_id, related_board_id=event.board_id,
            )
        return f"{len(recipients)} notification(s) sent"

    if action_type == "notify_board_members":
        board_id = config.get("board_id") or event.board_id
        if board_id is None:
            raise ValidationError("notify_board_members needs a board")
        outcome = NotificationService.notify_board_members(
            board_id,
            render_template(config.get("title", ""), context),
            render_template(config.get("message", ""), context),
            config.get("type", "info"),
            related_card_id=event.card_id,
        )
        if outcome.failures:
            raise PartialFailure(
                f"{len(outcome.failures)} board member(s) could not be notified",
                results=[n.id for n in outcome.notifications],
                failures=outcome.failures,
            )
        return f"{len(outcome.notifications)} board member(s) notified"

    if action_type == "webhook":
        message = render_template(config.get("message", ""), context)
        return webhook_service.send_for_rule(actor, config, event, message)

    raise ValidationError(f"Unknown action type: {action_type}")


# ═════════════════════════════════════════════════════════════════════════════
# Rule management
# ═════════════════════════════════════════════════════════════════════════════


def _validate_conditions(conditions) -> list[dict]:
    if not isinstance(conditions, list):
        raise ValidationError("conditions must be a list")
    for i, cond in enumerate(conditions):
        if not isinstance(cond, dict) or not (cond.get("field") or "").strip():
            raise ValidationError(f"conditions[{i}].field is required")
        if cond.get("operator") not in CONDITION_OPERATORS:
            raise ValidationError(
                f"conditions[{i}].operator must be one of: {', '.join(sorted(CONDITION_OPERATORS))}",
                details={"operator": cond.get("operator")},
            )
        joiner = cond.get("logical_operator")
        if joiner is not None and str(joiner).upper() not in LOGICAL_OPERATORS:
            raise ValidationError(f"conditions[{i}].logical_operator must be AND or OR")
    return conditions


def _validate_actions(actions) -> list[dict]:
    if not isinstance(actions, list) or not actions:
        raise ValidationError("At least one action is required", details={"actions": "required"})
    for i, action in enumerate(actions):
        if not isinstance(action, dict) or action.get("type") not in ACTION_TYPES:
            raise ValidationError(
                f"actions[{i}].type must be one of: {', '.join(sorted(ACTION_TYPES))}",
                details={"type": action.get("type") if isinstance(action, dict) else None},
            )
        config = action.get("config") or {}
        if not isinstance(config, dict):
            raise ValidationError(f"actions[{i}].config must be an object")
        required = _ACTION_REQUIRED_KEYS.get(action["type"])
        if required and not any(config.get(k) not in (None, "") for k in required):
            raise ValidationError(
                f"actions[{i}] ({action['type']}) needs one of: {', '.join(required)}",
                details={"config": sorted(config)},
            )
        if action["type"] in ("send_notification", "notify_board_members"):
            if config.get("type", "info") not in NOTIFICATION_TYPES:
                raise ValidationError(f"actions[{i}].config.type is not a notification type")
        if action["type"] == "webhook" and config.get("subscription_id") is None:
            webhook_service.validate_url(config.get("url"))
    return actions


def _validate_trigger(trigger_type, trigger_config) -> dict:
    if trigger_type not in TRIGGER_TYPES:
        raise ValidationError(
            f"trigger_type must be one of: {', '.join(sorted(TRIGGER_TYPES))}",
            details={"trigger_type": trigger_type},
        )
    trigger_config = trigger_config or {}
    if not isinstance(trigger_config, dict):
        raise ValidationError("trigger_config must be an object")
    unknown = set(trigger_config) - TRIGGER_CONFIG_KEYS
    if unknown:
        raise ValidationError(f"Unknown trigger_config keys: {', '.join(sorted(unknown))}")

    def _is_int(value):
        return isinstance(value, int) and not isinstance(value, bool)

    for key in ("board_id", "column_id", "assignee_id", "days_before_due"):
        value = trigger_config.get(key)
        if value is not None and not _is_int(value):
            raise ValidationError(f"trigger_config.{key} must be an integer", details={key: value})
    if trigger_config.get("days_before_due") is not None and trigger_config["days_before_due"] < 0:
        raise ValidationError("trigger_config.days_before_due must be >= 0")
    label_ids = trigger_config.get("label_ids")
    if label_ids is not None and (not isinstance(label_ids, list) or not all(_is_int(i) for i in label_ids)):
        raise ValidationError("trigger_config.label_ids must be a list of integers", details={"label_ids": label_ids})
    priority = trigger_config.get("priority")
    if priority is not None and priority not in CARD_PRIORITIES:
        raise ValidationError(f"trigger_config.priority must be one of: {', '.join(CARD_PRIORITIES)}")
    schedule = trigger_config.get("schedule")
    if schedule is not None and schedule not in SCHEDULE_PERIODS:
        raise ValidationError(f"trigger_config.schedule must be one of: {', '.join(SCHEDULE_PERIODS)}")
    return trigger_config


def _apply_children(rule: AutomationRule, conditions, actions) -> None:
    if conditions is not None:
        rule.conditions = [
            RuleCondition(
                position=i,
                field=c["field"].strip(),
                operator=c["operator"],
                value=c.get("value"),
                logical_operator=str(c["logical_operator"]).upper() if c.get("logical_operator") else None,
            )
            for i, c in enumerate(conditions)
        ]
    if actions is not None:
        rule.actions = [
            RuleAction(type=a["type"], config=a.get("config") or {}, order=a.get("order", i))
            for i, a in enumerate(actions)
        ]


def get_rule_or_404(actor: Actor, rule_id: int) -> AutomationRule:
    return AutomationRule.get_or_404(actor.tenant_id, rule_id)


def create_rule(actor: Actor, data: dict) -> AutomationRule:
    board_id = data.get("board_id")
    if board_id is not None:
        board = board_service.get_board_or_404(actor, board_id)
        policy.require(actor, policy.RULE_MANAGE, board)
    else:
        policy.require(actor, policy.RULE_MANAGE, None)

    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    kind = data.get("kind", "rule")
    if kind not in RULE_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(sorted(RULE_KINDS))}")
    trigger_config = _validate_trigger(data.get("trigger_type"), data.get("trigger_config"))
    conditions = _validate_conditions(data.get("conditions") or [])
    actions = _validate_actions(data.get("actions"))

    rule = AutomationRule(
        tenant_id=actor.tenant_id,
        board_id=board_id,
        kind=kind,
        name=name,
        description=data.get("description") or "",
        trigger_type=data["trigger_type"],
        trigger_config=trigger_config,
        is_active=bool(data.get("is_active", True)),
        created_by=actor.user_id,
    )
    _apply_children(rule, conditions, actions)
    db.session.add(rule)
    db.session.commit()
    logger.info("Automation rule created id=%s trigger=%s board_id=%s", rule.id, rule.trigger_type, board_id)
    return rule


def update_rule(actor: Actor, rule_id: int, data: dict) -> AutomationRule:
    rule = get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        rule.name = name
    if "description" in data:
        rule.description = data.get("description") or ""
    if "trigger_type" in data or "trigger_config" in data:
        trigger_type = data.get("trigger_type", rule.trigger_type)
        rule.trigger_config = _validate_trigger(trigger_type, data.get("trigger_config", rule.trigger_config))
        rule.trigger_type = trigger_type
    if "is_active" in data:
        rule.is_active = bool(data["is_active"])
    conditions = _validate_conditions(data["conditions"]) if "conditions" in data else None
    actions = _validate_actions(data["actions"]) if "actions" in data else None
    _apply_children(rule, conditions, actions)
    db.session.commit()
    return rule


def delete_rule(actor: Actor, rule_id: int) -> None:
    rule = get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)
    db.session.delete(rule)
    db.session.commit()
    logger.info("Automation rule deleted id=%s", rule_id)


def toggle_rule(actor: Actor, rule_id: int) -> AutomationRule:
    rule = get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)
    rule.is_active = not rule.is_active
    db.session.commit()
    return rule


def list_rules(actor: Actor, board_id: int | None = None) -> list[dict]:
    q = AutomationRule.query_for_tenant(actor.tenant_id)
    if board_id is not None:
        board = board_service.get_board_or_404(actor, board_id)
        policy.require(actor, policy.BOARD_READ, board)
        q = q.filter(or_(AutomationRule.board_id == board_id, AutomationRule.board_id.is_(None)))
    rules = q.order_by(AutomationRule.id).all()
    return [r.to_dict() for r in rules if policy.authorize(actor, policy.RULE_MANAGE, r)
            or r.board_id is None]


def run_rule_manually(actor: Actor, rule_id: int, card_id: int | None = None) -> WorkflowExecution:
    """Execute a rule now against an optional card, skipping the trigger match."""
    rule = get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)
    board_id = rule.board_id
    if card_id is not None:
        card = board_service.get_card_or_404(actor, card_id)
        if rule.board_id is not None and card.board_id != rule.board_id:
            raise ValidationError("Card is not on the rule's board", details={"card_id": card_id})
        board_id = card.board_id
    event = DomainEvent(
        type="manual",
        tenant_id=actor.tenant_id,
        board_id=board_id,
        card_id=card_id,
        actor_id=actor.user_id,
        payload={"rule_id": rule.id},
    )
    return execute_rule(rule, event)


def run_scheduled_rules(now: datetime | None = None) -> dict:
    """Fire active ``schedule`` rules whose interval (hourly/daily/weekly) has elapsed."""
    now = now or _utcnow()
    stats = {"checked": 0, "executed": 0, "failed": 0}

    for rule in AutomationRule.query.filter_by(trigger_type="schedule", is_active=True).order_by(AutomationRule.id).all():
        stats["checked"] += 1
        period = SCHEDULE_PERIODS.get((rule.trigger_config or {}).get("schedule"), SCHEDULE_PERIODS["daily"])
        last = rule.last_executed_at
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        if last is not None and now - last < period:
            continue
        event = DomainEvent(type="schedule", tenant_id=rule.tenant_id, board_id=rule.board_id,
                            payload={"scheduled_at": now.isoformat()})
        execution = execute_rule(rule, event)
        stats["executed"] += 1
        if execution.status == "failed":
            stats["failed"] += 1
    return stats


def list_executions(actor: Actor, rule_id: int, limit: int = 50) -> list[dict]:
    rule = get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)
    executions = rule.executions.order_by(WorkflowExecution.id.desc()).limit(limit).all()
    return [e.to_dict() for e in executions]


def get_stats(actor: Actor) -> dict:
    rules = AutomationRule.query_for_tenant(actor.tenant_id).all()
    rule_ids = [r.id for r in rules]
    statuses = Counter()
    if rule_ids:
        rows = (
            db.session.query(WorkflowExecution.status, db.func.count(WorkflowExecution.id))
            .filter(WorkflowExecution.rule_id.in_(rule_ids))
            .group_by(WorkflowExecution.status)
            .all()
        )
        statuses.update(dict(rows))
    total = sum(statuses.values())
    return {
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r.is_active),
        "by_trigger": dict(Counter(r.trigger_type for r in rules)),
        "total_executions": total,
        "executions_by_status": dict(statuses),
        "success_rate": round(statuses.get("completed", 0) / total * 100, 1) if total else 0.0,
    }


# ── Templates ────────────────────────────────────────────────────────────────

RULE_TEMPLATES: dict[str, dict] = {
    "auto_assign_high_priority": {
        "name": "Auto-assign high priority cards",
        "description": "Assign new High priority cards to a board admin",
        "trigger_type": "card_created",
        "conditions": [{"field": "card.priority", "operator": "equals", "value": "High"}],
        "actions": [{"type": "assign_user", "config": {"user_id": "board_admin"}}],
    },
    "overdue_reminder": {
        "name": "Overdue reminder",
        "description": "Notify card members when a card becomes overdue",
        "trigger_type": "card_overdue",
        "conditions": [],
        "actions": [{
            "type": "send_notification",
            "config": {
                "recipients": "card_members",
                "title": "Card overdue",
                "message": "'{card.title}' was due on {card.due_date}",
                "type": "warning",
            },
        }],
    },
    "auto_move_completed": {
        "name": "Move finished cards to Done",
        "description": "Move a card to Done once all of its subtasks are finished",
        "trigger_type": "card_updated",
        "conditions": [
            {"field": "card.subtask_count", "operator": "greater_than", "value": 0},
            {"field": "card.subtasks_remaining", "operator": "equals", "value": 0, "logical_operator": "AND"},
            {"field": "card.column_is_done", "operator": "equals", "value": False, "logical_operator": "AND"},
        ],
        "actions": [{"type": "move_card", "config": {"column_title": "Done"}}],
    },
    "due_soon_notify": {
        "name": "Due soon",
        "description": "Tell the board a card is due within a day",
        "trigger_type": "due_date_approaching",
        "trigger_config": {"days_before_due": 1},
        "conditions": [],
        "actions": [{
            "type": "notify_board_members",
            "config": {"title": "Due soon", "message": "'{card.title}' is due {card.due_date}", "type": "due_date"},
        }],
    },
}


def list_templates() -> list[dict]:
    return [{"key": key, **tpl} for key, tpl in RULE_TEMPLATES.items()]


def create_from_template(actor: Actor, template_key: str, board_id: int | None = None,
                         name: str | None = None) -> AutomationRule:
    template = RULE_TEMPLATES.get(template_key)
    if template is None:
        raise NotFoundError("RuleTemplate", template_key)
    data = {**template, "board_id": board_id}
    if name:
        data["name"] = name
    return create_rule(actor, data)
