"""
Taskboard Platform
Active Directory connection settings (one per tenant).

The bind password is Fernet-encrypted at rest (taskboard.utils.crypto)
and never returned by to_dict().
"""

from datetime import datetime, timezone

from taskboard.models import db
from taskboard.models.base import TenantModel


class DirectoryConfig(TenantModel):
    """Per-tenant LDAP / Active Directory connection."""

    __tablename__ = "directory_configs"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_directory_config_tenant"),
    )

    id = db.Column(db.Integer, primary_key=True)
    server_url = db.Column(db.String(500), nullable=False, comment="ldap://host:389 or ldaps://host:636")
    domain = db.Column(db.String(200), nullable=False, comment="e.g. corp.example.com")
    base_dns = db.Column(db.JSON, nullable=False, default=list,
                         comment="Organizational units searched independently")
    bind_username = db.Column(db.String(200), nullable=False)
    bind_password_encrypted = db.Column(db.Text, nullable=True)
    use_ssl = db.Column(db.Boolean, default=False, nullable=False)
    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    status = db.Column(db.String(20), default="configured",
                       comment="configured, active, failed")
    last_tested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "server_url": self.server_url,
            "domain": self.domain,
            "base_dns": self.base_dns or [],
            "bind_username": self.bind_username,
            "has_password": bool(self.bind_password_encrypted),
            "use_ssl": self.use_ssl,
            "is_enabled": self.is_enabled,
            "status": self.status,
            "last_tested_at": self.last_tested_at.isoformat() if self.last_tested_at else None,
            "error_message": self.error_message,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DirectoryConfig tenant={self.tenant_id} {self.server_url}>"
