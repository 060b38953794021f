"""
Taskboard Platform
Automation rule & workflow models.

Models:
    - AutomationRule: trigger + conditions + ordered actions (kind rule|workflow)
    - RuleCondition: field/operator/value triple joined by its own logical_operator
    - RuleAction: typed action with JSON config, executed by ascending order
    - WorkflowExecution: one evaluation of a matched rule (state machine)
    - ExecutionLog: ordered info/warning/error entries of an execution
"""

from datetime import datetime, timezone

from taskboard.models import db
from taskboard.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

RULE_KINDS = {"rule", "workflow"}

TRIGGER_TYPES = {
    "card_created",
    "card_updated",
    "card_moved",
    "card_completed",
    "card_assigned",
    "card_overdue",
    "due_date_approaching",
    "schedule",
    "manual",
}

# Keys accepted in AutomationRule.trigger_config
TRIGGER_CONFIG_KEYS = {
    "board_id", "column_id", "priority", "label_ids", "assignee_id",
    "days_before_due", "schedule",
}

CONDITION_OPERATORS = {
    "equals", "not_equals", "contains", "not_contains",
    "greater_than", "less_than", "is_empty", "is_not_empty",
    "in", "not_in",
}
LOGICAL_OPERATORS = {"AND", "OR"}

ACTION_TYPES = {
    "move_card",
    "assign_user",
    "unassign_user",
    "add_label",
    "remove_label",
    "set_priority",
    "set_due_date",
    "create_subtask",
    "add_comment",
    "create_card",
    "archive_card",
    "send_notification",
    "notify_board_members",
    "webhook",
}

EXECUTION_STATUSES = {"pending", "running", "completed", "failed"}
LOG_LEVELS = {"info", "warning", "error"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

EXECUTION_TRANSITIONS = {
    "pending":   ["running"],
    "running":   ["completed", "failed"],
    "completed": [],
    "failed":    [],
}


def validate_execution_transition(old_status, new_status):
    """Return True if WorkflowExecution status transition is valid."""
    return new_status in EXECUTION_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Rule definition
# ═════════════════════════════════════════════════════════════════════════════


class AutomationRule(TenantModel):
    """
    Automation rule or multi-step workflow.

    board_id NULL means the rule applies to every board of the tenant.
    Actions run with the permissions of created_by.
    """

    __tablename__ = "automation_rules"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=True, index=True)
    kind = db.Column(db.String(20), default="rule", nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    trigger_type = db.Column(db.String(40), nullable=False, index=True)
    trigger_config = db.Column(db.JSON, default=dict)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    execution_count = db.Column(db.Integer, default=0, nullable=False)
    last_executed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    conditions = db.relationship(
        "RuleCondition", back_populates="rule", order_by="RuleCondition.position",
        cascade="all, delete-orphan",
    )
    actions = db.relationship(
        "RuleAction", back_populates="rule", order_by="RuleAction.order",
        cascade="all, delete-orphan",
    )
    executions = db.relationship(
        "WorkflowExecution", back_populates="rule", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def record_execution(self):
        self.execution_count = (self.execution_count or 0) + 1
        self.last_executed_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "board_id": self.board_id,
            "kind": self.kind,
            "name": self.name,
            "description": self.description,
            "trigger_type": self.trigger_type,
            "trigger_config": self.trigger_config or {},
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "is_active": self.is_active,
            "execution_count": self.execution_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<AutomationRule {self.id} {self.trigger_type}: {self.name}>"


class RuleCondition(db.Model):
    __tablename__ = "rule_conditions"

    id = db.Column(db.Integer, primary_key=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    field = db.Column(db.String(100), nullable=False, comment="Dotted path, e.g. card.priority")
    operator = db.Column(db.String(20), nullable=False)
    value = db.Column(db.JSON, nullable=True)
    logical_operator = db.Column(db.String(3), nullable=True, comment="AND/OR join with the preceding result")

    rule = db.relationship("AutomationRule", back_populates="conditions")

    def to_dict(self):
        return {
            "id": self.id,
            "position": self.position,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "logical_operator": self.logical_operator,
        }


class RuleAction(db.Model):
    __tablename__ = "rule_actions"

    id = db.Column(db.Integer, primary_key=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    config = db.Column(db.JSON, default=dict)
    order = db.Column(db.Integer, nullable=False, default=0)

    rule = db.relationship("AutomationRule", back_populates="actions")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "config": self.config or {},
            "order": self.order,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Execution record
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowExecution(db.Model):
    """
    One evaluation of a matched rule.

    pending → running → completed | failed.  Terminal states are final.
    """

    __tablename__ = "workflow_executions"

    id = db.Column(db.Integer, primary_key=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("automation_rules.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = db.Column(db.String(40), nullable=False)
    event_payload = db.Column(db.JSON, default=dict)
    triggered_by = db.Column(db.Integer, nullable=True, comment="User id that caused the event")
    status = db.Column(db.String(20), default="pending", nullable=False)
    conditions_met = db.Column(db.Boolean, nullable=True)
    actions_executed = db.Column(db.Integer, default=0, nullable=False)
    actions_failed = db.Column(db.Integer, default=0, nullable=False)
    total_actions = db.Column(db.Integer, default=0, nullable=False)
    error = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    rule = db.relationship("AutomationRule", back_populates="executions")
    logs = db.relationship(
        "ExecutionLog", back_populates="execution", order_by="ExecutionLog.sequence",
        cascade="all, delete-orphan",
    )

    def transition(self, new_status):
        """Move to new_status; raises ValueError on an illegal edge."""
        if not validate_execution_transition(self.status, new_status):
            raise ValueError(f"Invalid execution transition {self.status} -> {new_status}")
        self.status = new_status
        if new_status == "running":
            self.started_at = _utcnow()
        elif new_status in ("completed", "failed"):
            self.finished_at = _utcnow()

    def log(self, level, message, action_id=None, data=None):
        entry = ExecutionLog(
            sequence=len(self.logs),
            level=level,
            message=message,
            action_id=action_id,
            data=data or {},
        )
        self.logs.append(entry)
        return entry

    def to_dict(self, include_logs=True):
        d = {
            "id": self.id,
            "rule_id": self.rule_id,
            "event_type": self.event_type,
            "event_payload": self.event_payload or {},
            "triggered_by": self.triggered_by,
            "status": self.status,
            "conditions_met": self.conditions_met,
            "actions_executed": self.actions_executed,
            "actions_failed": self.actions_failed,
            "total_actions": self.total_actions,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
        }
        if include_logs:
            d["logs"] = [entry.to_dict() for entry in self.logs]
        return d

    def __repr__(self):
        return f"<WorkflowExecution {self.id} rule={self.rule_id} [{self.status}]>"


class ExecutionLog(db.Model):
    __tablename__ = "execution_logs"

    id = db.Column(db.Integer, primary_key=True)
    execution_id = db.Column(
        db.Integer, db.ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False)
    level = db.Column(db.String(10), default="info", nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    action_id = db.Column(db.Integer, nullable=True)
    data = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    execution = db.relationship("WorkflowExecution", back_populates="logs")

    def to_dict(self):
        return {
            "sequence": self.sequence,
            "level": self.level,
            "message": self.message,
            "action_id": self.action_id,
            "data": self.data or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
