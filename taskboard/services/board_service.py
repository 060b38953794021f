"""
Taskboard Platform
Entity Store — boards, columns, cards and card children.

Every mutating function follows the same sequence:

    1. load the target inside the actor's tenant (NotFoundError otherwise)
    2. policy.require(actor, action, target)
    3. validate invariants before touching the session (ValidationError)
    4. mutate, renumbering positions through the ordering engine
    5. append exactly one Activity entry
    6. commit, then publish exactly one DomainEvent

and returns a MutationResult carrying the entity, the activity entry (with
its 0-based feed position) and the event. A request that changes nothing
returns a MutationResult without activity or event.

Rules:
  - tenant scope always comes from the Actor, never from request data.
  - db.session.commit() happens only in service modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import or_

from taskboard.core.exceptions import ConflictError, NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.board import (
    BOARD_MEMBER_ROLES,
    BOARD_TEMPLATES,
    CARD_PRIORITIES,
    DEFAULT_PRIORITY,
    DEFAULT_TEMPLATE,
    LABEL_PRESETS,
    Attachment,
    Board,
    BoardMember,
    Card,
    Column,
    Comment,
    Label,
    Subtask,
    card_labels,
    card_members,
)
from taskboard.services import activity, ordering, policy
from taskboard.services.events import DomainEvent, publish
from taskboard.services.policy import Actor

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Result type
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class MutationResult:
    entity: Any
    activity: Any = None
    event: DomainEvent | None = None

    @property
    def changed(self) -> bool:
        return self.activity is not None

    def to_dict(self) -> dict:
        d = dict(self.entity) if isinstance(self.entity, dict) else self.entity.to_dict()
        d["activity"] = activity.serialize(self.activity)
        return d


def finish_mutation(entity, entry, event: DomainEvent | None) -> MutationResult:
    db.session.commit()
    publish(event)
    return MutationResult(entity=entity, activity=entry, event=event)


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════


def parse_date(value, field: str) -> date | None:
    """Accept None, a date, or an ISO string (date or datetime)."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={field: value})


def _require_title(value, field: str = "title", max_len: int = 500) -> str:
    title = (value or "").strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(title) > max_len:
        raise ValidationError(f"{field} must be <= {max_len} characters", details={field: "too long"})
    return title


def _validate_priority(value) -> str:
    if value not in CARD_PRIORITIES:
        raise ValidationError(
            f"priority must be one of: {', '.join(CARD_PRIORITIES)}",
            details={"priority": value},
        )
    return value


def _validate_hours(value, field: str) -> float | None:
    if value in (None, ""):
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})
    if hours < 0:
        raise ValidationError(f"{field} must be >= 0", details={field: value})
    return hours


def domain_event(event_type: str, actor: Actor | None, board_id: int, card_id: int | None = None,
                 tenant_id: int | None = None, **payload) -> DomainEvent:
    return DomainEvent(
        type=event_type,
        tenant_id=tenant_id if tenant_id is not None else actor.tenant_id,
        board_id=board_id,
        card_id=card_id,
        actor_id=actor.user_id if actor else None,
        payload=payload,
    )


def get_board_or_404(actor: Actor, board_id: int) -> Board:
    return Board.get_or_404(actor.tenant_id, board_id)


def get_column_or_404(actor: Actor, column_id: int) -> Column:
    column = db.session.get(Column, column_id)
    if column is None or column.board.tenant_id != actor.tenant_id:
        raise NotFoundError("Column", column_id, actor.tenant_id)
    return column


def get_card_or_404(actor: Actor, card_id: int) -> Card:
    card = db.session.get(Card, card_id)
    if card is None or card.column.board.tenant_id != actor.tenant_id:
        raise NotFoundError("Card", card_id, actor.tenant_id)
    return card


def _get_child_or_404(actor: Actor, model, child_id: int):
    child = db.session.get(model, child_id)
    if child is None or child.card.column.board.tenant_id != actor.tenant_id:
        raise NotFoundError(model.__name__, child_id, actor.tenant_id)
    return child


def _get_tenant_user(actor: Actor, user_id) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or user.tenant_id != actor.tenant_id:
        raise NotFoundError("User", user_id, actor.tenant_id)
    return user


def _get_tenant_label(actor: Actor, label_id) -> Label:
    return Label.get_or_404(actor.tenant_id, label_id)


def _check_wip_limit(column: Column) -> None:
    if column.wip_limit is None:
        return
    active = sum(1 for c in column.cards if not c.is_archived)
    if active >= column.wip_limit:
        raise ValidationError(
            f"Column '{column.title}' is at its WIP limit ({column.wip_limit})",
            details={"column_id": column.id, "wip_limit": column.wip_limit},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════════


def list_boards(actor: Actor, include_archived: bool = False, starred_only: bool = False) -> list[dict]:
    """Boards visible to the actor: all tenant boards for admins, own/member boards otherwise."""
    q = Board.query_for_tenant(actor.tenant_id)
    if not actor.is_admin:
        member_board_ids = db.session.query(BoardMember.board_id).filter(
            BoardMember.user_id == actor.user_id
        )
        q = q.filter(or_(Board.created_by == actor.user_id, Board.id.in_(member_board_ids)))
    if not include_archived:
        q = q.filter(Board.is_archived.is_(False))
    if starred_only:
        q = q.filter(Board.is_starred.is_(True))
    return [b.to_dict() for b in q.order_by(Board.created_at.desc(), Board.id.desc()).all()]


def get_board(actor: Actor, board_id: int, include_children: bool = False) -> dict:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    return board.to_dict(include_children=include_children)


def create_board(actor: Actor, data: dict) -> MutationResult:
    """Create a board with its template's default columns; creator becomes owner."""
    policy.require(actor, policy.BOARD_CREATE)
    title = _require_title(data.get("title"), max_len=200)
    template_key = data.get("template") or DEFAULT_TEMPLATE
    template = BOARD_TEMPLATES.get(template_key)
    if template is None:
        raise ValidationError(
            f"template must be one of: {', '.join(sorted(BOARD_TEMPLATES))}",
            details={"template": template_key},
        )
    extra_members = [_get_tenant_user(actor, uid) for uid in data.get("member_ids") or []]

    board = Board(
        tenant_id=actor.tenant_id,
        title=title,
        description=data.get("description") or "",
        background=data.get("background") or "#0079bf",
        is_starred=bool(data.get("is_starred", False)),
        created_by=actor.user_id,
    )
    db.session.add(board)
    for position, (col_title, is_done) in enumerate(template["columns"]):
        board.columns.append(Column(title=col_title, position=position, is_default=True, is_done=is_done))
    board.members.append(BoardMember(user_id=actor.user_id, role="owner"))
    for user in extra_members:
        if user.id != actor.user_id:
            board.members.append(BoardMember(user_id=user.id, role="member"))
    db.session.flush()

    entry = activity.record(
        board.id, "created", f"Board '{title}' created from template '{template_key}'",
        user_id=actor.user_id, new_value={"title": title, "template": template_key},
    )
    logger.info("Board created id=%s tenant_id=%s template=%s", board.id, actor.tenant_id, template_key)
    return finish_mutation(board, entry, domain_event("board_created", actor, board.id))


_BOARD_FIELDS = ("title", "description", "background", "is_archived", "is_starred")


def update_board(actor: Actor, board_id: int, data: dict) -> MutationResult:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_UPDATE, board)

    changes = {}
    for key in _BOARD_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "title":
            value = _require_title(value, max_len=200)
        elif key in ("is_archived", "is_starred"):
            value = bool(value)
        elif value is None:
            value = ""
        if getattr(board, key) != value:
            changes[key] = (getattr(board, key), value)

    if not changes:
        return MutationResult(entity=board)

    for key, (_old, new) in changes.items():
        setattr(board, key, new)
    entry = activity.record(
        board.id, "updated", f"Board updated: {', '.join(sorted(changes))}",
        user_id=actor.user_id,
        old_value={k: v[0] for k, v in changes.items()},
        new_value={k: v[1] for k, v in changes.items()},
    )
    return finish_mutation(board, entry, domain_event("board_updated", actor, board.id, fields=sorted(changes)))


def delete_board(actor: Actor, board_id: int) -> MutationResult:
    """Hard-delete a board with its columns, cards and card-owned children.

    Users and labels are shared references and stay. The board's own
    activity feed is deleted with it, so the result carries no activity.
    """
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_DELETE, board)

    snapshot = board.to_dict()
    card_count = Card.query.filter_by(board_id=board.id).count()
    snapshot["deleted_columns"] = len(board.columns)
    snapshot["deleted_cards"] = card_count

    db.session.delete(board)
    logger.info(
        "Board deleted id=%s tenant_id=%s columns=%d cards=%d",
        board_id, actor.tenant_id, snapshot["deleted_columns"], card_count,
    )
    return finish_mutation(snapshot, None, domain_event("board_deleted", actor, board_id, title=snapshot["title"]))


def list_board_members(actor: Actor, board_id: int) -> list[dict]:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    return [m.to_dict() for m in board.members]


def add_board_member(actor: Actor, board_id: int, user_id: int, role: str = "member") -> MutationResult:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_MANAGE_MEMBERS, board)
    user = _get_tenant_user(actor, user_id)
    if role not in BOARD_MEMBER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(BOARD_MEMBER_ROLES))}")
    if any(m.user_id == user.id for m in board.members):
        raise ConflictError("BoardMember", "user_id", str(user.id))

    member = BoardMember(user_id=user.id, role=role)
    board.members.append(member)
    entry = activity.record(
        board.id, "member", f"{user.username} joined the board",
        user_id=actor.user_id, new_value={"user_id": user.id, "role": role},
    )
    return finish_mutation(member, entry, domain_event("board_member_added", actor, board.id, user_id=user.id))


def remove_board_member(actor: Actor, board_id: int, user_id: int) -> MutationResult:
    """Remove a board member. Card assignments on this board are detached too."""
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_MANAGE_MEMBERS, board)
    member = next((m for m in board.members if m.user_id == user_id), None)
    if member is None:
        raise NotFoundError("BoardMember", user_id, actor.tenant_id)

    snapshot = member.to_dict()
    board_card_ids = db.session.query(Card.id).filter(Card.board_id == board.id)
    db.session.execute(
        card_members.delete().where(
            card_members.c.user_id == user_id,
            card_members.c.card_id.in_(board_card_ids),
        )
    )
    board.members.remove(member)
    entry = activity.record(
        board.id, "member", f"User {user_id} left the board",
        user_id=actor.user_id, old_value={"user_id": user_id},
    )
    return finish_mutation(snapshot, entry, domain_event("board_member_removed", actor, board.id, user_id=user_id))


# ═════════════════════════════════════════════════════════════════════════════
# Columns
# ═════════════════════════════════════════════════════════════════════════════


def create_column(actor: Actor, board_id: int, data: dict) -> MutationResult:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_UPDATE, board)
    title = _require_title(data.get("title"), max_len=200)
    wip_limit = data.get("wip_limit")
    if wip_limit is not None and (not isinstance(wip_limit, int) or wip_limit < 1):
        raise ValidationError("wip_limit must be a positive integer", details={"wip_limit": wip_limit})

    siblings = list(board.columns)
    column = Column(
        title=title,
        is_default=False,
        is_done=bool(data.get("is_done", False)),
        color=data.get("color") or "",
        wip_limit=wip_limit,
    )
    ordering.insert_at(siblings, column, data.get("position"))
    board.columns.append(column)
    db.session.flush()

    entry = activity.record(
        board.id, "created", f"Column '{title}' added at position {column.position}",
        user_id=actor.user_id, new_value={"column_id": column.id, "position": column.position},
    )
    return finish_mutation(column, entry, domain_event("column_created", actor, board.id, column_id=column.id))


def update_column(actor: Actor, column_id: int, data: dict) -> MutationResult:
    column = get_column_or_404(actor, column_id)
    policy.require(actor, policy.BOARD_UPDATE, column)

    changes = {}
    if "title" in data:
        changes["title"] = _require_title(data["title"], max_len=200)
    if "color" in data:
        changes["color"] = data["color"] or ""
    if "is_done" in data:
        changes["is_done"] = bool(data["is_done"])
    if "wip_limit" in data:
        wip_limit = data["wip_limit"]
        if wip_limit is not None and (not isinstance(wip_limit, int) or wip_limit < 1):
            raise ValidationError("wip_limit must be a positive integer", details={"wip_limit": wip_limit})
        changes["wip_limit"] = wip_limit
    changes = {k: v for k, v in changes.items() if getattr(column, k) != v}

    if not changes:
        return MutationResult(entity=column)

    old = {k: getattr(column, k) for k in changes}
    for key, value in changes.items():
        setattr(column, key, value)
    entry = activity.record(
        column.board_id, "updated", f"Column '{column.title}' updated",
        user_id=actor.user_id, old_value=old, new_value=changes,
    )
    return finish_mutation(column, entry, domain_event("column_updated", actor, column.board_id, column_id=column.id))


def move_column(actor: Actor, column_id: int, new_index: int) -> MutationResult:
    column = get_column_or_404(actor, column_id)
    policy.require(actor, policy.BOARD_UPDATE, column)
    if new_index is None:
        raise ValidationError("position is required", details={"position": "required"})

    old_position = column.position
    ordering.move_to(column.board.columns, column, new_index)
    if column.position == old_position:
        return MutationResult(entity=column)

    entry = activity.record(
        column.board_id, "moved", f"Column '{column.title}' moved {old_position} -> {column.position}",
        user_id=actor.user_id,
        old_value={"position": old_position}, new_value={"position": column.position},
    )
    return finish_mutation(column, entry, domain_event("column_moved", actor, column.board_id, column_id=column.id))


def delete_column(actor: Actor, column_id: int) -> MutationResult:
    """Delete a column and its cards. A default column must be empty first."""
    column = get_column_or_404(actor, column_id)
    policy.require(actor, policy.BOARD_UPDATE, column)
    if column.is_default and column.cards:
        raise ValidationError(
            "A default column cannot be deleted while it holds cards",
            details={"column_id": column.id, "card_count": len(column.cards)},
        )

    board = column.board
    snapshot = column.to_dict()
    ordering.remove_from(board.columns, column)
    board.columns.remove(column)  # delete-orphan removes the row and its cards
    entry = activity.record(
        board.id, "updated", f"Column '{snapshot['title']}' deleted with {snapshot['card_count']} card(s)",
        user_id=actor.user_id, old_value={"column_id": column_id, "title": snapshot["title"]},
    )
    return finish_mutation(snapshot, entry, domain_event("column_deleted", actor, board.id, column_id=column_id))


# ═════════════════════════════════════════════════════════════════════════════
# Labels (tenant presets)
# ═════════════════════════════════════════════════════════════════════════════


def ensure_label_presets(tenant_id: int) -> list[Label]:
    """Seed the four label presets for a tenant if it has none (no commit)."""
    existing = Label.query_for_tenant(tenant_id).all()
    if existing:
        return existing
    created = [Label(tenant_id=tenant_id, **preset) for preset in LABEL_PRESETS]
    db.session.add_all(created)
    db.session.flush()
    return created


def list_labels(actor: Actor) -> list[dict]:
    labels = ensure_label_presets(actor.tenant_id)
    db.session.commit()
    return [lbl.to_dict() for lbl in sorted(labels, key=lambda x: x.id)]


def create_label(actor: Actor, data: dict) -> dict:
    name = _require_title(data.get("name"), field="name", max_len=50)
    color = (data.get("color") or "").strip() or "#6b7280"
    if Label.query_for_tenant(actor.tenant_id).filter_by(name=name).first():
        raise ConflictError("Label", "name", name)
    label = Label(tenant_id=actor.tenant_id, name=name, color=color)
    db.session.add(label)
    db.session.commit()
    return label.to_dict()


def find_label_by_name(tenant_id: int, name: str) -> Label | None:
    return Label.query_for_tenant(tenant_id).filter(Label.name == name).first()


# ═════════════════════════════════════════════════════════════════════════════
# Cards
# ═════════════════════════════════════════════════════════════════════════════


def list_cards(actor: Actor, board_id: int, filters: dict | None = None) -> list[dict]:
    """Search a board's cards.

    filters: q (title/description text), label_id, member_id, priority,
             column_id, due_before, due_after, include_archived, completed
    """
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    filters = filters or {}

    q = Card.query.filter(Card.board_id == board.id)
    if not filters.get("include_archived"):
        q = q.filter(Card.is_archived.is_(False))
    text = (filters.get("q") or "").strip()
    if text:
        like = f"%{text}%"
        q = q.filter(or_(Card.title.ilike(like), Card.description.ilike(like)))
    if filters.get("priority"):
        q = q.filter(Card.priority == _validate_priority(filters["priority"]))
    if filters.get("column_id"):
        q = q.filter(Card.column_id == filters["column_id"])
    if filters.get("label_id"):
        q = q.filter(Card.id.in_(
            db.session.query(card_labels.c.card_id).filter(card_labels.c.label_id == filters["label_id"])
        ))
    if filters.get("member_id"):
        q = q.filter(Card.id.in_(
            db.session.query(card_members.c.card_id).filter(card_members.c.user_id == filters["member_id"])
        ))
    due_before = parse_date(filters.get("due_before"), "due_before")
    if due_before:
        q = q.filter(Card.due_date <= due_before)
    due_after = parse_date(filters.get("due_after"), "due_after")
    if due_after:
        q = q.filter(Card.due_date >= due_after)
    if filters.get("completed") is not None:
        completed = filters["completed"]
        q = q.filter(Card.completed_at.isnot(None) if completed else Card.completed_at.is_(None))

    cards = q.join(Column, Card.column_id == Column.id).order_by(Column.position, Card.position, Card.id).all()
    return [c.to_dict() for c in cards]


def get_card(actor: Actor, card_id: int) -> dict:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.BOARD_READ, card)
    d = card.to_dict(include_children=True)
    d["activity"] = activity.list_for_card(card.id)
    return d


def _apply_card_fields(card: Card, data: dict, *, creating: bool) -> dict:
    """Validate and apply scalar card fields. Returns {field: (old, new)}."""
    from taskboard.services.recurrence import parse_pattern

    updates = {}
    if "title" in data or creating:
        updates["title"] = _require_title(data.get("title"))
    if "description" in data:
        updates["description"] = data.get("description") or ""
    if "priority" in data:
        updates["priority"] = _validate_priority(data.get("priority") or DEFAULT_PRIORITY)
    if "due_date" in data:
        updates["due_date"] = parse_date(data.get("due_date"), "due_date")
    if "start_date" in data:
        updates["start_date"] = parse_date(data.get("start_date"), "start_date")
    if "estimated_hours" in data:
        updates["estimated_hours"] = _validate_hours(data.get("estimated_hours"), "estimated_hours")
    if "recurrence" in data:
        raw = data.get("recurrence")
        if raw:
            if card.parent_recurrence_id is not None:
                raise ValidationError(
                    "A generated recurrence instance cannot recur itself",
                    details={"parent_recurrence_id": card.parent_recurrence_id},
                )
            updates["recurrence"] = parse_pattern(raw).to_dict()
        else:
            updates["recurrence"] = None

    start = updates.get("start_date", card.start_date)
    due = updates.get("due_date", card.due_date)
    if start and due and start > due:
        raise ValidationError("start_date must not be after due_date",
                              details={"start_date": start.isoformat(), "due_date": due.isoformat()})

    changes = {}
    for key, value in updates.items():
        old = getattr(card, key)
        if creating or old != value:
            changes[key] = (old, value)
            setattr(card, key, value)
    if "due_date" in changes and not creating:
        card.due_alerted_on = None
    return changes


def _jsonable(value):
    return value.isoformat() if isinstance(value, (date, datetime)) else value


def _build_card(column: Column, data: dict, created_by: int | None, parent_recurrence_id: int | None = None) -> Card:
    card = Card(
        board_id=column.board_id,
        priority=DEFAULT_PRIORITY,
        created_by=created_by,
        parent_recurrence_id=parent_recurrence_id,
        recurrence_count=0,
    )
    _apply_card_fields(card, data, creating=True)
    if column.is_done:
        card.completed_at = _utcnow()
    ordering.insert_at(column.cards, card, data.get("position"))
    column.cards.append(card)
    return card


def create_card(actor: Actor, column_id: int, data: dict) -> MutationResult:
    column = get_column_or_404(actor, column_id)
    policy.require(actor, policy.CARD_WRITE, column)
    _check_wip_limit(column)

    labels = [_get_tenant_label(actor, lid) for lid in data.get("label_ids") or []]
    members = [_get_tenant_user(actor, uid) for uid in data.get("member_ids") or []]
    for user in members:
        if not policy.is_board_member(user.id, column.board):
            raise ValidationError(f"User {user.id} is not a member of this board", details={"member_ids": user.id})

    card = _build_card(column, data, actor.user_id)
    card.labels.extend(labels)
    card.members.extend(members)
    for index, title in enumerate(data.get("subtasks") or []):
        card.subtasks.append(Subtask(title=_require_title(title), position=index))
    db.session.flush()

    entry = activity.record(
        card.board_id, "created", f"Card '{card.title}' created in '{column.title}'",
        card_id=card.id, user_id=actor.user_id,
        new_value={"column_id": column.id, "position": card.position},
    )
    return finish_mutation(card, entry, domain_event("card_created", actor, card.board_id, card.id, column_id=column.id))


def clone_recurring_card(template: Card, occurrence: date) -> tuple[Card, Any, DomainEvent]:
    """Create one instance of a recurring template (flushed, not committed).

    Copies title, description, labels, priority and estimated hours;
    subtasks are fresh copies marked not done. Comments and attachments
    are never copied. The caller commits together with its bookkeeping.
    """
    board = db.session.get(Board, template.board_id)
    column = template.column
    if column.is_done:
        column = next((c for c in ordering.ordered(board.columns) if not c.is_done), column)

    card = _build_card(
        column,
        {
            "title": template.title,
            "description": template.description,
            "priority": template.priority,
            "estimated_hours": template.estimated_hours,
            "due_date": occurrence,
        },
        template.created_by,
        parent_recurrence_id=template.id,
    )
    card.labels.extend(template.labels)
    for index, subtask in enumerate(ordering.ordered(template.subtasks)):
        card.subtasks.append(Subtask(title=subtask.title, position=index, is_done=False))
    db.session.flush()

    entry = activity.record(
        card.board_id, "created",
        f"Recurring card '{card.title}' generated for {occurrence.isoformat()}",
        card_id=card.id, user_id=template.created_by,
        new_value={"parent_recurrence_id": template.id, "due_date": occurrence.isoformat()},
    )
    event = DomainEvent(
        type="card_created",
        tenant_id=board.tenant_id,
        board_id=board.id,
        card_id=card.id,
        actor_id=template.created_by,
        payload={"column_id": column.id, "parent_recurrence_id": template.id},
    )
    return card, entry, event


def update_card(actor: Actor, card_id: int, data: dict) -> MutationResult:
    """Update scalar fields; one activity entry summarises the whole edit."""
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)

    changes = _apply_card_fields(card, data, creating=False)
    if not changes:
        return MutationResult(entity=card)

    if "recurrence" in changes and changes["recurrence"][1] is None:
        # Instances may only point at a card that still recurs
        detached = Card.query.filter(Card.parent_recurrence_id == card.id).update(
            {"parent_recurrence_id": None}, synchronize_session="fetch",
        )
        card.recurrence_last_created = None
        card.recurrence_count = 0
        if detached:
            logger.info("Recurrence removed from card %s, detached %d instance(s)", card.id, detached)

    fields = sorted(changes)
    if fields == ["priority"]:
        tag = "priority"
    elif fields == ["due_date"]:
        tag = "due_date"
    else:
        tag = "updated"
    entry = activity.record(
        card.board_id, tag, f"Card updated: {', '.join(fields)}",
        card_id=card.id, user_id=actor.user_id,
        old_value={k: _jsonable(v[0]) for k, v in changes.items()},
        new_value={k: _jsonable(v[1]) for k, v in changes.items()},
    )
    return finish_mutation(card, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=fields))


def move_card(actor: Actor, card_id: int, column_id: int | None = None, index: int | None = None) -> MutationResult:
    """Move a card within its column or into another column of the same board.

    Entering a done column completes the card (card_completed event);
    leaving it clears completion. A move within the card's own column
    without an index changes nothing.
    """
    if column_id is None and index is None:
        raise ValidationError("column_id or position is required", details={"column_id": None, "position": None})
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    source = card.column
    target = source if column_id is None else get_column_or_404(actor, column_id)
    if target.board_id != source.board_id:
        raise ValidationError(
            "Cards can only move between columns of the same board",
            details={"column_id": column_id},
        )

    old = {"column_id": source.id, "position": card.position}
    if target is source and index is None:
        return MutationResult(entity=card)
    if target is source:
        ordering.move_to(source.cards, card, index)
    else:
        _check_wip_limit(target)
        ordering.remove_from(source.cards, card)
        ordering.insert_at(target.cards, card, index)
        card.column = target
    new = {"column_id": target.id, "position": card.position}
    if old == new:
        return MutationResult(entity=card)

    event_type = "card_moved"
    if target.is_done and card.completed_at is None:
        card.completed_at = _utcnow()
        event_type = "card_completed"
    elif not target.is_done and card.completed_at is not None:
        card.completed_at = None

    entry = activity.record(
        card.board_id, "moved", f"Card moved from '{source.title}' to '{target.title}'",
        card_id=card.id, user_id=actor.user_id, old_value=old, new_value=new,
    )
    return finish_mutation(card, entry, domain_event(
        event_type, actor, card.board_id, card.id,
        from_column_id=source.id, to_column_id=target.id,
    ))


def archive_card(actor: Actor, card_id: int, archived: bool = True) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    if card.is_archived == archived:
        return MutationResult(entity=card)
    card.is_archived = archived
    entry = activity.record(
        card.board_id, "updated", "Card archived" if archived else "Card restored",
        card_id=card.id, user_id=actor.user_id,
        old_value={"is_archived": not archived}, new_value={"is_archived": archived},
    )
    return finish_mutation(card, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["is_archived"]))


def delete_card(actor: Actor, card_id: int) -> MutationResult:
    """Delete a card and its owned children; labels and members are only detached."""
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)

    column = card.column
    snapshot = card.to_dict()
    ordering.remove_from(column.cards, card)
    column.cards.remove(card)
    entry = activity.record(
        snapshot["board_id"], "updated", f"Card '{snapshot['title']}' deleted",
        user_id=actor.user_id, old_value={"card_id": card_id, "title": snapshot["title"]},
    )
    return finish_mutation(snapshot, entry, domain_event("card_deleted", actor, snapshot["board_id"], card_id))


# ── Labels & members on a card ───────────────────────────────────────────────


def add_label(actor: Actor, card_id: int, label_id: int) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    label = _get_tenant_label(actor, label_id)
    if label in card.labels:
        return MutationResult(entity=card)
    card.labels.append(label)
    entry = activity.record(
        card.board_id, "label", f"Label '{label.name}' added",
        card_id=card.id, user_id=actor.user_id, new_value={"label_id": label.id},
    )
    return finish_mutation(card, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["labels"]))


def remove_label(actor: Actor, card_id: int, label_id: int) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    label = _get_tenant_label(actor, label_id)
    if label not in card.labels:
        return MutationResult(entity=card)
    card.labels.remove(label)
    entry = activity.record(
        card.board_id, "label", f"Label '{label.name}' removed",
        card_id=card.id, user_id=actor.user_id, old_value={"label_id": label.id},
    )
    return finish_mutation(card, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["labels"]))


def assign_member(actor: Actor, card_id: int, user_id: int) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    user = _get_tenant_user(actor, user_id)
    if not policy.is_board_member(user.id, card.column.board):
        raise ValidationError(f"User {user.id} is not a member of this board", details={"user_id": user.id})
    if user in card.members:
        return MutationResult(entity=card)
    card.members.append(user)
    entry = activity.record(
        card.board_id, "member", f"{user.username} assigned",
        card_id=card.id, user_id=actor.user_id, new_value={"user_id": user.id},
    )
    return finish_mutation(card, entry, domain_event("card_assigned", actor, card.board_id, card.id, assignee_id=user.id))


def unassign_member(actor: Actor, card_id: int, user_id: int) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    user = _get_tenant_user(actor, user_id)
    if user not in card.members:
        return MutationResult(entity=card)
    card.members.remove(user)
    entry = activity.record(
        card.board_id, "member", f"{user.username} unassigned",
        card_id=card.id, user_id=actor.user_id, old_value={"user_id": user.id},
    )
    return finish_mutation(card, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["members"]))


# ── Subtasks ─────────────────────────────────────────────────────────────────


def add_subtask(actor: Actor, card_id: int, title: str, position: int | None = None) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    subtask = Subtask(title=_require_title(title))
    ordering.insert_at(card.subtasks, subtask, position)
    card.subtasks.append(subtask)
    db.session.flush()
    entry = activity.record(
        card.board_id, "subtask", f"Subtask '{subtask.title}' added",
        card_id=card.id, user_id=actor.user_id, new_value={"subtask_id": subtask.id},
    )
    return finish_mutation(subtask, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["subtasks"]))


def update_subtask(actor: Actor, subtask_id: int, data: dict) -> MutationResult:
    subtask = _get_child_or_404(actor, Subtask, subtask_id)
    card = subtask.card
    policy.require(actor, policy.CARD_WRITE, card)

    changes = {}
    if "title" in data:
        changes["title"] = _require_title(data["title"])
    if "is_done" in data:
        changes["is_done"] = bool(data["is_done"])
    changes = {k: v for k, v in changes.items() if getattr(subtask, k) != v}
    if "position" in data and data["position"] != subtask.position:
        ordering.move_to(card.subtasks, subtask, data["position"])
        changes["position"] = subtask.position
    if not changes:
        return MutationResult(entity=subtask)

    for key, value in changes.items():
        setattr(subtask, key, value)
    if changes.get("is_done") is True:
        message = f"Subtask '{subtask.title}' completed"
    else:
        message = f"Subtask '{subtask.title}' updated"
    entry = activity.record(
        card.board_id, "subtask", message,
        card_id=card.id, user_id=actor.user_id, new_value={"subtask_id": subtask.id, **changes},
    )
    return finish_mutation(subtask, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["subtasks"]))


def delete_subtask(actor: Actor, subtask_id: int) -> MutationResult:
    subtask = _get_child_or_404(actor, Subtask, subtask_id)
    card = subtask.card
    policy.require(actor, policy.CARD_WRITE, card)
    snapshot = subtask.to_dict()
    ordering.remove_from(card.subtasks, subtask)
    card.subtasks.remove(subtask)
    entry = activity.record(
        card.board_id, "subtask", f"Subtask '{snapshot['title']}' removed",
        card_id=card.id, user_id=actor.user_id, old_value={"subtask_id": subtask_id},
    )
    return finish_mutation(snapshot, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["subtasks"]))


# ── Comments ─────────────────────────────────────────────────────────────────


def add_comment(actor: Actor, card_id: int, content: str) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    text = (content or "").strip()
    if not text:
        raise ValidationError("content is required", details={"content": "required"})
    comment = Comment(user_id=actor.user_id, content=text)
    card.comments.append(comment)
    db.session.flush()
    entry = activity.record(
        card.board_id, "comment", text[:200],
        card_id=card.id, user_id=actor.user_id, new_value={"comment_id": comment.id},
    )
    return finish_mutation(comment, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["comments"]))


def delete_comment(actor: Actor, comment_id: int) -> MutationResult:
    comment = _get_child_or_404(actor, Comment, comment_id)
    card = comment.card
    policy.require(actor, policy.COMMENT_MODIFY, comment)
    snapshot = comment.to_dict()
    card.comments.remove(comment)
    entry = activity.record(
        card.board_id, "comment", "Comment deleted",
        card_id=card.id, user_id=actor.user_id, old_value={"comment_id": comment_id},
    )
    return finish_mutation(snapshot, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["comments"]))


# ── Attachments ──────────────────────────────────────────────────────────────


def add_attachment(actor: Actor, card_id: int, data: dict) -> MutationResult:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    file_name = _require_title(data.get("file_name"), field="file_name", max_len=300)
    url = _require_title(data.get("url"), field="url", max_len=1000)
    size = data.get("size_bytes") or 0
    if not isinstance(size, int) or size < 0:
        raise ValidationError("size_bytes must be a non-negative integer", details={"size_bytes": size})

    attachment = Attachment(
        file_name=file_name,
        url=url,
        content_type=data.get("content_type") or "",
        size_bytes=size,
        uploaded_by=actor.user_id,
    )
    card.attachments.append(attachment)
    db.session.flush()
    entry = activity.record(
        card.board_id, "attachment", f"Attached '{file_name}'",
        card_id=card.id, user_id=actor.user_id, new_value={"attachment_id": attachment.id},
    )
    return finish_mutation(attachment, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["attachments"]))


def delete_attachment(actor: Actor, attachment_id: int) -> MutationResult:
    attachment = _get_child_or_404(actor, Attachment, attachment_id)
    card = attachment.card
    policy.require(actor, policy.CARD_WRITE, card)
    snapshot = attachment.to_dict()
    card.attachments.remove(attachment)
    entry = activity.record(
        card.board_id, "attachment", f"Removed '{snapshot['file_name']}'",
        card_id=card.id, user_id=actor.user_id, old_value={"attachment_id": attachment_id},
    )
    return finish_mutation(snapshot, entry, domain_event("card_updated", actor, card.board_id, card.id, fields=["attachments"]))


# ── Activity feeds ───────────────────────────────────────────────────────────


def get_card_activity(actor: Actor, card_id: int) -> list[dict]:
    card = get_card_or_404(actor, card_id)
    policy.require(actor, policy.BOARD_READ, card)
    return activity.list_for_card(card.id)


def get_board_activity(actor: Actor, board_id: int, include_cards: bool = True, limit: int = 100) -> list[dict]:
    board = get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    return activity.list_for_board(board.id, include_cards=include_cards, limit=limit)
