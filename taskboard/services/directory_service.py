"""
Taskboard Platform
Directory lookup — Active Directory / LDAP configuration, search and import.

One DirectoryConfig per tenant; every base DN in it is searched as an
independent sub-source. A failing sub-source is logged and reported in
SearchOutcome.failures while the others still answer; only when every
sub-source fails does the search raise ExternalUnavailableError.

All operations are admin-only except authenticate(), which backs the
directory login flow in user_service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app

from taskboard.core.exceptions import ExternalUnavailableError, NotFoundError, ValidationError
from taskboard.integrations.ldap_gateway import (
    DirectorySource,
    DirectorySourceError,
    DirectoryUser,
    LdapDirectorySource,
)
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.directory import DirectoryConfig
from taskboard.services import policy
from taskboard.services.policy import Actor
from taskboard.utils.crypto import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SearchOutcome:
    users: list[DirectoryUser] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "users": [u.to_dict() for u in self.users],
            "total": len(self.users),
            "failures": self.failures,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Configuration
# ═════════════════════════════════════════════════════════════════════════════


def _get_config(tenant_id: int) -> DirectoryConfig:
    config = DirectoryConfig.query_for_tenant(tenant_id).first()
    if config is None:
        raise NotFoundError("DirectoryConfig", tenant_id=tenant_id)
    return config


def get_config(actor: Actor) -> dict:
    policy.require(actor, policy.DIRECTORY_MANAGE)
    return _get_config(actor.tenant_id).to_dict()


def _normalize_base_dns(value) -> list[str]:
    if isinstance(value, str):
        value = value.split(";")
    if not isinstance(value, list):
        raise ValidationError("base_dns must be a list of DNs")
    dns = [str(dn).strip() for dn in value if str(dn).strip()]
    if not dns:
        raise ValidationError("At least one base DN is required", details={"base_dns": "required"})
    return dns


def save_config(actor: Actor, data: dict) -> dict:
    """Create or replace the tenant's directory configuration.

    An omitted bind_password keeps the stored one.
    """
    policy.require(actor, policy.DIRECTORY_MANAGE)

    server_url = (data.get("server_url") or "").strip()
    if not server_url.lower().startswith(("ldap://", "ldaps://")):
        raise ValidationError("server_url must start with ldap:// or ldaps://", details={"server_url": server_url})
    domain = (data.get("domain") or "").strip()
    if not domain:
        raise ValidationError("domain is required", details={"domain": "required"})
    bind_username = (data.get("bind_username") or "").strip()
    if not bind_username:
        raise ValidationError("bind_username is required", details={"bind_username": "required"})
    base_dns = _normalize_base_dns(data.get("base_dns"))

    config = DirectoryConfig.query_for_tenant(actor.tenant_id).first()
    if config is None:
        if not data.get("bind_password"):
            raise ValidationError("bind_password is required", details={"bind_password": "required"})
        config = DirectoryConfig(tenant_id=actor.tenant_id, created_by=actor.user_id)
        db.session.add(config)

    config.server_url = server_url
    config.domain = domain
    config.base_dns = base_dns
    config.bind_username = bind_username
    config.use_ssl = bool(data.get("use_ssl", server_url.lower().startswith("ldaps://")))
    config.is_enabled = bool(data.get("is_enabled", True))
    if data.get("bind_password"):
        config.bind_password_encrypted = encrypt_secret(data["bind_password"])
    config.status = "configured"
    config.error_message = None
    db.session.commit()
    logger.info("Directory config saved tenant_id=%s server=%s base_dns=%d", actor.tenant_id, server_url, len(base_dns))
    return config.to_dict()


def delete_config(actor: Actor) -> None:
    policy.require(actor, policy.DIRECTORY_MANAGE)
    config = _get_config(actor.tenant_id)
    db.session.delete(config)
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Sources
# ═════════════════════════════════════════════════════════════════════════════


def build_sources(config: DirectoryConfig) -> list[DirectorySource]:
    """One LdapDirectorySource per configured base DN."""
    password = decrypt_secret(config.bind_password_encrypted) if config.bind_password_encrypted else ""
    timeout = current_app.config.get("DIRECTORY_TIMEOUT_SECONDS", 30)
    size_limit = current_app.config.get("DIRECTORY_MAX_RESULTS", 1000)
    return [
        LdapDirectorySource(
            server_url=config.server_url,
            domain=config.domain,
            base_dn=base_dn,
            bind_username=config.bind_username,
            bind_password=password,
            use_ssl=config.use_ssl,
            timeout=timeout,
            size_limit=size_limit,
        )
        for base_dn in config.base_dns or []
    ]


def _enabled_sources(tenant_id: int) -> list[DirectorySource]:
    config = _get_config(tenant_id)
    if not config.is_enabled:
        raise ValidationError("Directory integration is disabled for this tenant")
    sources = build_sources(config)
    if not sources:
        raise ValidationError("Directory configuration has no base DNs")
    return sources


def test_connection(actor: Actor) -> dict:
    """Bind against every base DN and record the outcome on the config."""
    policy.require(actor, policy.DIRECTORY_MANAGE)
    config = _get_config(actor.tenant_id)
    results = []
    for source in build_sources(config):
        try:
            source.test_connection()
            results.append({"base_dn": source.name, "ok": True, "error": None})
        except DirectorySourceError as exc:
            logger.warning("Directory test failed tenant_id=%s base=%s: %s", actor.tenant_id, source.name, exc.reason)
            results.append({"base_dn": source.name, "ok": False, "error": exc.reason})

    ok = bool(results) and all(r["ok"] for r in results)
    config.status = "active" if ok else "failed"
    config.last_tested_at = _utcnow()
    config.error_message = None if ok else "; ".join(r["error"] for r in results if r["error"]) or "no base DNs"
    db.session.commit()
    return {"ok": ok, "results": results, "config": config.to_dict()}


# ═════════════════════════════════════════════════════════════════════════════
# Search & import
# ═════════════════════════════════════════════════════════════════════════════


def _search_sources(tenant_id: int, query: str) -> SearchOutcome:
    sources = _enabled_sources(tenant_id)
    outcome = SearchOutcome()
    found: list[DirectoryUser] = []
    for source in sources:
        try:
            found.extend(source.search(query))
        except DirectorySourceError as exc:
            logger.warning("Directory source %s failed tenant_id=%s: %s", source.name, tenant_id, exc.reason)
            outcome.failures.append({"source": source.name, "error": exc.reason})

    if len(outcome.failures) == len(sources):
        raise ExternalUnavailableError("directory", "; ".join(f["error"] for f in outcome.failures))

    seen = set()
    for user in found:
        key = (user.username or "").lower()
        if not user.email or not key or key in seen:
            continue
        seen.add(key)
        outcome.users.append(user)
    return outcome


def search(actor: Actor, query: str) -> SearchOutcome:
    """Search every base DN; users without email are dropped, usernames deduplicated."""
    policy.require(actor, policy.DIRECTORY_SEARCH)
    return _search_sources(actor.tenant_id, query or "")


def provision_user(tenant_id: int, record: DirectoryUser) -> tuple[User, bool]:
    """Create or refresh a local active_directory user (no commit). Role is preserved."""
    if not record.email:
        raise ValidationError("Directory user has no email address", details={"username": record.username})
    user = (
        User.query.filter_by(tenant_id=tenant_id, auth_provider="active_directory", external_id=record.username)
        .first()
        or User.query.filter_by(tenant_id=tenant_id, email=record.email.lower()).first()
    )
    created = user is None
    if created:
        if User.query.filter_by(tenant_id=tenant_id, username=record.username).first():
            raise ValidationError(
                f"A local user named '{record.username}' already exists",
                details={"username": record.username},
            )
        user = User(tenant_id=tenant_id, username=record.username, role="user", password_hash=None)
        db.session.add(user)

    user.email = record.email.lower()
    user.full_name = record.display_name or record.username
    user.department = record.department
    user.title = record.title
    user.auth_provider = "active_directory"
    user.external_id = record.username
    user.is_active = record.is_active
    db.session.flush()
    return user, created


def import_user(actor: Actor, username: str) -> tuple[dict, bool]:
    """Look up one account by exact username and provision it locally."""
    policy.require(actor, policy.DIRECTORY_MANAGE)
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required", details={"username": "required"})

    outcome = _search_sources(actor.tenant_id, username)
    record = next((u for u in outcome.users if u.username.lower() == username.lower()), None)
    if record is None:
        raise NotFoundError("DirectoryUser", username, actor.tenant_id)

    user, created = provision_user(actor.tenant_id, record)
    db.session.commit()
    logger.info("Directory user %s %s tenant_id=%s", username, "imported" if created else "refreshed", actor.tenant_id)
    return user.to_dict(), created


def authenticate(tenant_id: int, username: str, password: str) -> DirectoryUser | None:
    """Try each base DN; None means the credentials were rejected."""
    sources = _enabled_sources(tenant_id)
    errors = []
    for source in sources:
        try:
            record = source.authenticate(username, password)
        except DirectorySourceError as exc:
            logger.warning("Directory auth source %s failed: %s", source.name, exc.reason)
            errors.append(exc.reason)
            continue
        if record is not None:
            return record
    if len(errors) == len(sources):
        raise ExternalUnavailableError("directory", "; ".join(errors))
    return None
