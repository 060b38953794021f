"""
Taskboard Platform
Planning ("premium") feature records.

Dependencies, milestones, budgets, risks and resources are small,
independent value records. They share one table as a tagged variant:
`feature` selects the payload shape, validated in
taskboard.services.planning_service.
"""

from datetime import datetime, timezone

from taskboard.models import db


PLANNING_FEATURES = {"dependency", "milestone", "budget", "risk", "resource"}

DEPENDENCY_TYPES = {"finish-to-start", "start-to-start", "finish-to-finish", "start-to-finish"}
RISK_LEVELS = ("low", "medium", "high")
RISK_STATUSES = {"identified", "analyzing", "mitigating", "closed"}
RESOURCE_TYPES = {"person", "equipment", "material"}


class PlanningRecord(db.Model):
    """One premium planning record on a board, keyed by feature."""

    __tablename__ = "planning_records"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    feature = db.Column(db.String(20), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "feature": self.feature,
            **(self.payload or {}),
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<PlanningRecord {self.id} {self.feature} board={self.board_id}>"
