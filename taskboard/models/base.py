"""
TenantModel — abstract base for rows owned by one tenant.

Boards, labels, automation rules and directory configs carry their own
tenant_id. Everything below a board (columns, cards, card children) is
scoped through the board instead.
"""

from taskboard.core.exceptions import NotFoundError
from taskboard.models import db


class TenantModel(db.Model):
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        return cls.query.filter_by(tenant_id=tenant_id)

    @classmethod
    def get_or_404(cls, tenant_id, pk):
        """Row ``pk`` if it belongs to ``tenant_id``; otherwise NotFoundError.

        A row of another tenant is reported exactly like a missing one.
        """
        row = db.session.get(cls, pk) if pk is not None else None
        if row is None or row.tenant_id != tenant_id:
            raise NotFoundError(cls.__name__, pk, tenant_id)
        return row
