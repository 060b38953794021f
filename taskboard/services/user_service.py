"""
User Service — registration, login (local and directory), user administration.
"""

import logging
import re
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from taskboard.core.exceptions import ConflictError, NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.auth import USER_ROLES, Tenant, User
from taskboard.services import directory_service, policy
from taskboard.services.policy import Actor
from taskboard.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{3,100}$")


class UserServiceError(Exception):
    """Authentication failures that map to 401/403 rather than a domain error."""
    def __init__(self, message, status_code=401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _utcnow():
    return datetime.now(timezone.utc)


def _get_tenant(slug: str) -> Tenant:
    tenant = Tenant.query.filter_by(slug=(slug or "").strip().lower()).first()
    if tenant is None or not tenant.is_active:
        raise UserServiceError("Unknown or inactive tenant", 401)
    return tenant


# ═══════════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════════
def register(tenant_slug: str, email: str, username: str, password: str,
             full_name: str = None, tenant_name: str = None) -> User:
    """Register a local account.

    An unknown tenant slug creates the tenant; its first user is the
    tenant admin, everyone after that starts with role ``user``.
    """
    try:
        email = validate_email(email or "", check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": email})
    if not _USERNAME_RE.match(username or ""):
        raise ValidationError("username must be 3-100 characters of letters, digits, '.', '_' or '-'",
                              details={"username": username})
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters",
                              details={"password": "too short"})

    slug = (tenant_slug or "").strip().lower()
    if not re.match(r"^[a-z0-9\-]{2,100}$", slug):
        raise ValidationError("tenant must be a slug of lowercase letters, digits or '-'",
                              details={"tenant": tenant_slug})
    tenant = Tenant.query.filter_by(slug=slug).first()
    if tenant is None:
        tenant = Tenant(name=tenant_name or slug, slug=slug)
        db.session.add(tenant)
        db.session.flush()
        logger.info("Tenant created slug=%s", slug)
    elif not tenant.is_active:
        raise ValidationError("Tenant is inactive")

    if User.query.filter_by(tenant_id=tenant.id, email=email).first():
        raise ConflictError("User", "email", email)
    if User.query.filter_by(tenant_id=tenant.id, username=username).first():
        raise ConflictError("User", "username", username)

    is_first = User.query.filter_by(tenant_id=tenant.id).count() == 0
    user = User(
        tenant_id=tenant.id,
        email=email,
        username=username,
        password_hash=hash_password(password),
        full_name=full_name or username,
        role="admin" if is_first else "user",
        auth_provider="local",
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User registered id=%s tenant_id=%s role=%s", user.id, tenant.id, user.role)
    return user


# ═══════════════════════════════════════════════════════════════
# Login helpers
# ═══════════════════════════════════════════════════════════════
def authenticate_user(tenant_slug: str, email: str, password: str) -> User:
    """Authenticate a user with email + password. Returns User on success."""
    tenant = _get_tenant(tenant_slug)
    user = User.query.filter_by(tenant_id=tenant.id, email=(email or "").strip().lower()).first()
    if not user:
        raise UserServiceError("Invalid email or password", 401)

    if not user.is_active:
        raise UserServiceError("Account is disabled", 403)

    if not user.password_hash:
        raise UserServiceError("Password login not available. Use directory login.", 403)

    if not verify_password(password or "", user.password_hash):
        raise UserServiceError("Invalid email or password", 401)

    user.last_login_at = _utcnow()
    db.session.commit()
    return user


def authenticate_directory_user(tenant_slug: str, username: str, password: str) -> User:
    """Bind against the tenant directory, then provision or refresh the local user.

    A returning user keeps the role assigned locally.
    """
    tenant = _get_tenant(tenant_slug)
    record = directory_service.authenticate(tenant.id, username, password)
    if record is None:
        raise UserServiceError("Invalid directory credentials", 401)
    if not record.is_active:
        raise UserServiceError("Directory account is disabled", 403)

    user, created = directory_service.provision_user(tenant.id, record)
    if not user.is_active:
        raise UserServiceError("Account is disabled", 403)
    user.last_login_at = _utcnow()
    db.session.commit()
    logger.info("Directory login user_id=%s tenant_id=%s created=%s", user.id, tenant.id, created)
    return user


# ═══════════════════════════════════════════════════════════════
# Administration
# ═══════════════════════════════════════════════════════════════
def get_user(actor: Actor, user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or user.tenant_id != actor.tenant_id:
        raise NotFoundError("User", user_id, actor.tenant_id)
    return user


def list_users(actor: Actor, q: str = None, include_inactive: bool = True) -> list[dict]:
    """Tenant user directory; visible to every member of the tenant."""
    query = User.query.filter_by(tenant_id=actor.tenant_id)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(
            User.username.ilike(like) | User.email.ilike(like) | User.full_name.ilike(like)
        )
    return [u.to_dict() for u in query.order_by(User.username).all()]


def update_user(actor: Actor, user_id: int, data: dict) -> User:
    """Change a user's role, active flag or profile fields (admin only)."""
    policy.require(actor, policy.USER_MANAGE)
    user = get_user(actor, user_id)

    if "role" in data:
        if data["role"] not in USER_ROLES:
            raise ValidationError(f"role must be one of: {', '.join(sorted(USER_ROLES))}",
                                  details={"role": data["role"]})
        if user.id == actor.user_id and data["role"] != "admin":
            raise ValidationError("Admins cannot remove their own admin role")
        user.role = data["role"]
    if "is_active" in data:
        if user.id == actor.user_id and not data["is_active"]:
            raise ValidationError("Admins cannot deactivate themselves")
        user.is_active = bool(data["is_active"])
    for key in ("full_name", "department", "title"):
        if key in data:
            setattr(user, key, data[key])

    db.session.commit()
    logger.info("User %s updated by %s: %s", user.id, actor.user_id, sorted(data))
    return user


def change_password(actor: Actor, current_password: str, new_password: str) -> None:
    user = get_user(actor, actor.user_id)
    if user.auth_provider != "local":
        raise ValidationError("Directory accounts change their password in the directory")
    if not verify_password(current_password or "", user.password_hash):
        raise UserServiceError("Current password is incorrect", 401)
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    user.password_hash = hash_password(new_password)
    db.session.commit()
