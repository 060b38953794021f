"""
Taskboard Platform
Board domain model.

Tables:
    boards, board_members, board_columns, cards
    card_labels / card_members   (M2M association, detached on delete)
    labels                        (tenant-scoped presets, shared)
    subtasks, comments, attachments, activities, time_entries  (card-owned)

Ownership:
    Board ─owns─▶ Column ─owns─▶ Card ─owns─▶ Subtask/Comment/Attachment/
    Activity/TimeEntry.  Members (users) and Labels are shared references.
    Children store their parent's id; parents expose position-ordered lists.
"""

from datetime import datetime, timezone

from taskboard.models import db
from taskboard.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

CARD_PRIORITIES = ("Low", "Medium", "High")
DEFAULT_PRIORITY = "Medium"

ACTIVITY_TYPES = {
    "created", "updated", "moved", "label", "member", "due_date",
    "attachment", "subtask", "priority", "comment",
}

BOARD_MEMBER_ROLES = {"owner", "member"}

LABEL_PRESETS = [
    {"name": "Urgent", "color": "#ef4444"},
    {"name": "Bug", "color": "#f59e0b"},
    {"name": "Feature", "color": "#10b981"},
    {"name": "UI/UX", "color": "#3b82f6"},
]

# (title, is_done) per column; every template column is a default column
BOARD_TEMPLATES = {
    "kanban": {
        "name": "Basic Kanban",
        "columns": [("To Do", False), ("In Progress", False), ("Done", True)],
    },
    "software": {
        "name": "Software Development",
        "columns": [
            ("Backlog", False), ("To Do", False), ("In Progress", False),
            ("Code Review", False), ("Testing", False), ("Done", True),
        ],
    },
    "marketing": {
        "name": "Marketing",
        "columns": [
            ("Ideas", False), ("Planning", False), ("Design", False),
            ("Review", False), ("Published", True), ("Analysis", False),
        ],
    },
    "personal": {
        "name": "Personal",
        "columns": [("Today", False), ("This Week", False), ("Later", False), ("Done", True)],
    },
}
DEFAULT_TEMPLATE = "kanban"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Association tables ───────────────────────────────────────────────────────

card_labels = db.Table(
    "card_labels",
    db.Column("card_id", db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True),
    db.Column("label_id", db.Integer, db.ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True),
)

card_members = db.Table(
    "card_members",
    db.Column("card_id", db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


# ═════════════════════════════════════════════════════════════════════════════
# Board
# ═════════════════════════════════════════════════════════════════════════════


class Board(TenantModel):
    """Top-level container: ordered columns plus a member set."""

    __tablename__ = "boards"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    background = db.Column(db.String(100), default="#0079bf")
    is_archived = db.Column(db.Boolean, default=False, nullable=False)
    is_starred = db.Column(db.Boolean, default=False, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    columns = db.relationship(
        "Column", back_populates="board", order_by="Column.position",
        cascade="all, delete-orphan",
    )
    members = db.relationship(
        "BoardMember", back_populates="board", cascade="all, delete-orphan",
    )
    activities = db.relationship(
        "Activity", back_populates="board", cascade="all",
        order_by="Activity.id",
    )

    def member_ids(self):
        return [m.user_id for m in self.members]

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "description": self.description,
            "background": self.background,
            "is_archived": self.is_archived,
            "is_starred": self.is_starred,
            "created_by": self.created_by,
            "member_ids": self.member_ids(),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["columns"] = [c.to_dict(include_cards=True) for c in self.columns]
        return d

    def __repr__(self):
        return f"<Board {self.id}: {self.title[:40]}>"


class BoardMember(db.Model):
    """Membership link between a board and a user (shared reference)."""

    __tablename__ = "board_members"
    __table_args__ = (
        db.UniqueConstraint("board_id", "user_id", name="uq_board_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = db.Column(db.String(20), default="member")
    added_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    board = db.relationship("Board", back_populates="members")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "board_id": self.board_id,
            "user_id": self.user_id,
            "role": self.role,
            "username": self.user.username if self.user else None,
            "added_at": _iso(self.added_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Column
# ═════════════════════════════════════════════════════════════════════════════


class Column(db.Model):
    """Ordered lane within a board. Position is dense 0..n-1 per board."""

    __tablename__ = "board_columns"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    is_done = db.Column(db.Boolean, default=False, nullable=False,
                        comment="Cards entering this column are completed")
    color = db.Column(db.String(20), default="")
    wip_limit = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    board = db.relationship("Board", back_populates="columns")
    cards = db.relationship(
        "Card", back_populates="column", order_by="Card.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_cards=False):
        d = {
            "id": self.id,
            "board_id": self.board_id,
            "title": self.title,
            "position": self.position,
            "is_default": self.is_default,
            "is_done": self.is_done,
            "color": self.color,
            "wip_limit": self.wip_limit,
            "card_count": len(self.cards),
        }
        if include_cards:
            d["cards"] = [c.to_dict() for c in self.cards]
        return d

    def __repr__(self):
        return f"<Column {self.id} pos={self.position}: {self.title}>"


# ═════════════════════════════════════════════════════════════════════════════
# Label
# ═════════════════════════════════════════════════════════════════════════════


class Label(TenantModel):
    """Tenant-wide label preset. Never deleted by card or board deletion."""

    __tablename__ = "labels"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_label_tenant_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    color = db.Column(db.String(20), nullable=False)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "color": self.color}


# ═════════════════════════════════════════════════════════════════════════════
# Card
# ═════════════════════════════════════════════════════════════════════════════


class Card(db.Model):
    """
    Work item inside a column.

    recurrence holds the pattern dict for recurring templates:
        {"type": "daily|weekly|monthly|yearly", "interval": 1,
         "start_date": "YYYY-MM-DD", "days_of_week": [1, 3],
         "day_of_month": 31, "end_date": "YYYY-MM-DD", "occurrences": 10}
    recurrence_last_created / recurrence_count are the engine's bookkeeping.
    parent_recurrence_id points back to the template of a generated instance.
    """

    __tablename__ = "cards"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = db.Column(db.Integer, db.ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    position = db.Column(db.Integer, nullable=False, default=0)
    priority = db.Column(db.String(10), default=DEFAULT_PRIORITY, nullable=False)
    due_date = db.Column(db.Date, nullable=True, index=True)
    start_date = db.Column(db.Date, nullable=True)
    estimated_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, default=0.0)
    # day the due-date scanner last raised events for this card; cleared when due_date changes
    due_alerted_on = db.Column(db.Date, nullable=True)

    # Recurrence
    recurrence = db.Column(db.JSON(none_as_null=True), nullable=True)
    recurrence_last_created = db.Column(db.Date, nullable=True)
    recurrence_count = db.Column(db.Integer, default=0, nullable=False)
    parent_recurrence_id = db.Column(
        db.Integer, db.ForeignKey("cards.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    is_archived = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    column = db.relationship("Column", back_populates="cards")
    labels = db.relationship("Label", secondary=card_labels, order_by="Label.id")
    members = db.relationship("User", secondary=card_members, order_by="User.id")
    subtasks = db.relationship(
        "Subtask", back_populates="card", order_by="Subtask.position",
        cascade="all, delete-orphan",
    )
    comments = db.relationship(
        "Comment", back_populates="card", order_by="Comment.id",
        cascade="all, delete-orphan",
    )
    attachments = db.relationship(
        "Attachment", back_populates="card", order_by="Attachment.id",
        cascade="all, delete-orphan",
    )
    activities = db.relationship(
        "Activity", back_populates="card", order_by="Activity.id",
        cascade="all",
    )
    time_entries = db.relationship(
        "TimeEntry", back_populates="card", order_by="TimeEntry.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_completed(self):
        return self.completed_at is not None

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "board_id": self.board_id,
            "column_id": self.column_id,
            "title": self.title,
            "description": self.description,
            "position": self.position,
            "priority": self.priority,
            "due_date": _iso(self.due_date),
            "start_date": _iso(self.start_date),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "recurrence": self.recurrence,
            "recurrence_last_created": _iso(self.recurrence_last_created),
            "recurrence_count": self.recurrence_count,
            "parent_recurrence_id": self.parent_recurrence_id,
            "is_archived": self.is_archived,
            "completed_at": _iso(self.completed_at),
            "created_by": self.created_by,
            "label_ids": [lbl.id for lbl in self.labels],
            "member_ids": [u.id for u in self.members],
            "subtask_count": len(self.subtasks),
            "subtasks_done": sum(1 for s in self.subtasks if s.is_done),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["labels"] = [lbl.to_dict() for lbl in self.labels]
            d["subtasks"] = [s.to_dict() for s in self.subtasks]
            d["comments"] = [c.to_dict() for c in self.comments]
            d["attachments"] = [a.to_dict() for a in self.attachments]
            d["time_entries"] = [t.to_dict() for t in self.time_entries]
        return d

    def __repr__(self):
        return f"<Card {self.id} col={self.column_id} pos={self.position}: {self.title[:40]}>"


# ── Card-owned children ──────────────────────────────────────────────────────


class Subtask(db.Model):
    __tablename__ = "subtasks"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(500), nullable=False)
    is_done = db.Column(db.Boolean, default=False, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    card = db.relationship("Card", back_populates="subtasks")

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "title": self.title,
            "is_done": self.is_done,
            "position": self.position,
        }


class Comment(db.Model):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    card = db.relationship("Card", back_populates="comments")

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": _iso(self.created_at),
        }


class Attachment(db.Model):
    __tablename__ = "attachments"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = db.Column(db.String(300), nullable=False)
    url = db.Column(db.String(1000), nullable=False)
    content_type = db.Column(db.String(100), default="")
    size_bytes = db.Column(db.Integer, default=0)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    card = db.relationship("Card", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "file_name": self.file_name,
            "url": self.url,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "uploaded_by": self.uploaded_by,
            "created_at": _iso(self.created_at),
        }


class Activity(db.Model):
    """
    Append-only audit entry.

    Card-level entries carry card_id; board-level entries (column changes,
    card deletion) have card_id NULL. Feed order is (created_at, id).
    """

    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type = db.Column(db.String(20), nullable=False)
    message = db.Column(db.String(1000), default="")
    old_value = db.Column(db.JSON, nullable=True)
    new_value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    board = db.relationship("Board", back_populates="activities")
    card = db.relationship("Card", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "type": self.type,
            "message": self.message,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Activity {self.id} {self.type} card={self.card_id}>"


class TimeEntry(db.Model):
    """Time logged by one user against one card. ended_at NULL means a running timer."""

    __tablename__ = "time_entries"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, default=0, nullable=False)
    entry_date = db.Column(db.Date, nullable=False, index=True, comment="Calendar-day bucket for reports")
    description = db.Column(db.String(500), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    card = db.relationship("Card", back_populates="time_entries")

    @property
    def is_running(self):
        return self.started_at is not None and self.ended_at is None

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_minutes": self.duration_minutes,
            "entry_date": _iso(self.entry_date),
            "description": self.description,
            "is_running": self.is_running,
        }
