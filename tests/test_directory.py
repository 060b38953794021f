"""
Directory (Active Directory / LDAP) configuration, search and import.

LDAP servers are replaced by in-memory DirectorySource fakes through
monkeypatching directory_service.build_sources.

Covers:
    1. Config validation, bind password encryption, admin-only access
    2. Multi-source search: dedupe, email filter, partial and total failure
    3. Import / refresh of directory users (role preserved)
    4. Directory login provisioning a local user
    5. ldap_gateway helpers (filter escaping, bind DN, entry mapping)
    6. /api/v1/directory endpoints (207 on partial search)
"""

import pytest

from taskboard.core.exceptions import ExternalUnavailableError, NotFoundError, PermissionDenied, ValidationError
from taskboard.integrations.ldap_gateway import (
    DirectorySource,
    DirectorySourceError,
    DirectoryUser,
    build_search_filter,
    entry_to_user,
    format_bind_dn,
)
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.directory import DirectoryConfig
from taskboard.services import directory_service, user_service
from taskboard.utils.crypto import decrypt_secret


class FakeSource(DirectorySource):
    def __init__(self, name, users=(), error=None, passwords=None):
        self.name = name
        self.users = list(users)
        self.error = error
        self.passwords = passwords or {}

    def search(self, query):
        if self.error:
            raise DirectorySourceError(self.name, self.error)
        q = query.lower()
        return [u for u in self.users if q in u.username.lower() or q in (u.email or "").lower()]

    def authenticate(self, username, password):
        if self.error:
            raise DirectorySourceError(self.name, self.error)
        if self.passwords.get(username) != password:
            return None
        return next((u for u in self.users if u.username == username), None)

    def test_connection(self):
        if self.error:
            raise DirectorySourceError(self.name, self.error)


def _person(username, email=None, **kw):
    return DirectoryUser(id=f"guid-{username}", username=username,
                         email=email if email is not None else f"{username}@corp.example", **kw)


CONFIG = {
    "server_url": "ldaps://dc1.corp.example",
    "domain": "corp.example",
    "base_dns": ["OU=Staff,DC=corp,DC=example", "OU=Contractors,DC=corp,DC=example"],
    "bind_username": "svc-taskboard",
    "bind_password": "s3cret",
}


@pytest.fixture()
def configured(admin, actor):
    directory_service.save_config(actor(admin), CONFIG)


@pytest.fixture()
def sources(monkeypatch, configured):
    """Install fake sources; returns the list so tests can fill it."""
    installed = []
    monkeypatch.setattr(directory_service, "build_sources", lambda config: installed)
    return installed


# ═════════════════════════════════════════════════════════════════════════════
# Configuration
# ═════════════════════════════════════════════════════════════════════════════


class TestConfig:
    def test_password_is_encrypted(self, admin, actor, configured):
        config = DirectoryConfig.query.one()
        assert config.bind_password_encrypted != "s3cret"
        assert decrypt_secret(config.bind_password_encrypted) == "s3cret"
        assert config.use_ssl is True
        assert directory_service.get_config(actor(admin))["has_password"] is True

    def test_update_keeps_password_when_omitted(self, admin, actor, configured):
        data = {k: v for k, v in CONFIG.items() if k != "bind_password"}
        data["base_dns"] = "OU=A,DC=corp; OU=B,DC=corp"
        result = directory_service.save_config(actor(admin), data)
        assert result["base_dns"] == ["OU=A,DC=corp", "OU=B,DC=corp"]
        assert decrypt_secret(DirectoryConfig.query.one().bind_password_encrypted) == "s3cret"

    @pytest.mark.parametrize("field,value", [
        ("server_url", "http://dc1"),
        ("domain", ""),
        ("bind_username", ""),
        ("base_dns", []),
    ])
    def test_validation(self, admin, actor, field, value):
        with pytest.raises(ValidationError):
            directory_service.save_config(actor(admin), {**CONFIG, field: value})

    def test_new_config_needs_password(self, admin, actor):
        data = {k: v for k, v in CONFIG.items() if k != "bind_password"}
        with pytest.raises(ValidationError):
            directory_service.save_config(actor(admin), data)

    def test_admin_only(self, member, actor):
        with pytest.raises(PermissionDenied):
            directory_service.save_config(actor(member), CONFIG)
        with pytest.raises(PermissionDenied):
            directory_service.search(actor(member), "x")

    def test_missing_config(self, admin, actor):
        with pytest.raises(NotFoundError):
            directory_service.get_config(actor(admin))

    def test_connection_result_recorded(self, admin, actor, sources):
        sources.extend([FakeSource("OU=Staff"), FakeSource("OU=Contractors", error="timeout")])
        result = directory_service.test_connection(actor(admin))
        assert result["ok"] is False
        assert [r["ok"] for r in result["results"]] == [True, False]
        assert DirectoryConfig.query.one().status == "failed"

    def test_delete_config(self, admin, actor, configured):
        directory_service.delete_config(actor(admin))
        assert DirectoryConfig.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Search & import
# ═════════════════════════════════════════════════════════════════════════════


class TestSearch:
    def test_merges_and_dedupes_by_username(self, admin, actor, sources):
        sources.extend([
            FakeSource("OU=Staff", [_person("jdoe"), _person("asmith")]),
            FakeSource("OU=Contractors", [_person("JDoe", "john.doe@corp.example"), _person("nomail", email="")]),
        ])
        outcome = directory_service.search(actor(admin), "")
        assert [u.username for u in outcome.users] == ["jdoe", "asmith"]
        assert outcome.partial is False

    def test_partial_failure(self, admin, actor, sources):
        sources.extend([
            FakeSource("OU=Staff", [_person("jdoe")]),
            FakeSource("OU=Contractors", error="connection refused"),
        ])
        outcome = directory_service.search(actor(admin), "jdoe")
        assert [u.username for u in outcome.users] == ["jdoe"]
        assert outcome.partial is True
        assert outcome.failures == [{"source": "OU=Contractors", "error": "connection refused"}]

    def test_all_sources_failing_is_unavailable(self, admin, actor, sources):
        sources.extend([FakeSource("a", error="down"), FakeSource("b", error="down")])
        with pytest.raises(ExternalUnavailableError):
            directory_service.search(actor(admin), "x")

    def test_disabled_config(self, admin, actor, sources):
        directory_service.save_config(actor(admin), {**CONFIG, "is_enabled": False})
        with pytest.raises(ValidationError):
            directory_service.search(actor(admin), "x")

    def test_import_creates_then_refreshes(self, admin, actor, sources):
        sources.append(FakeSource("OU=Staff", [_person("jdoe", department="R&D", display_name="John Doe")]))
        user, created = directory_service.import_user(actor(admin), "jdoe")
        assert created is True
        assert user["auth_provider"] == "active_directory"
        assert user["full_name"] == "John Doe"

        stored = db.session.get(User, user["id"])
        stored.role = "admin"
        db.session.commit()
        sources[0].users[0].department = "Ops"

        user, created = directory_service.import_user(actor(admin), "JDOE")
        assert created is False
        assert user["role"] == "admin"
        assert db.session.get(User, user["id"]).department == "Ops"
        assert User.query.filter_by(username="jdoe").count() == 1

    def test_import_unknown_user(self, admin, actor, sources):
        sources.append(FakeSource("OU=Staff", [_person("jdoe")]))
        with pytest.raises(NotFoundError):
            directory_service.import_user(actor(admin), "ghost")

    def test_import_clashing_local_username(self, admin, actor, sources, make_user):
        make_user("jdoe", email="someone.else@example.com")
        sources.append(FakeSource("OU=Staff", [_person("jdoe")]))
        with pytest.raises(ValidationError):
            directory_service.import_user(actor(admin), "jdoe")


class TestDirectoryLogin:
    def test_login_provisions_user(self, tenant, sources):
        sources.append(FakeSource("OU=Staff", [_person("jdoe")], passwords={"jdoe": "pw"}))
        user = user_service.authenticate_directory_user(tenant.slug, "jdoe", "pw")
        assert user.auth_provider == "active_directory"
        assert user.password_hash is None
        assert user.role == "user"

    def test_bad_credentials(self, tenant, sources):
        sources.append(FakeSource("OU=Staff", [_person("jdoe")], passwords={"jdoe": "pw"}))
        with pytest.raises(user_service.UserServiceError) as exc:
            user_service.authenticate_directory_user(tenant.slug, "jdoe", "nope")
        assert exc.value.status_code == 401

    def test_directory_unreachable(self, tenant, sources):
        sources.append(FakeSource("OU=Staff", error="down"))
        with pytest.raises(ExternalUnavailableError):
            user_service.authenticate_directory_user(tenant.slug, "jdoe", "pw")


# ═════════════════════════════════════════════════════════════════════════════
# Gateway helpers
# ═════════════════════════════════════════════════════════════════════════════


class TestGatewayHelpers:
    def test_search_filter_escapes_input(self):
        f = build_search_filter("a*b(c)")
        assert "a\\2ab\\28c\\29" in f
        assert f.count("(") == f.count(")")

    def test_empty_query_filter(self):
        assert build_search_filter("  ").startswith("(&(objectClass=user)")

    @pytest.mark.parametrize("username,expected", [
        ("jdoe", "jdoe@corp.example"),
        ("jdoe@corp.example", "jdoe@corp.example"),
        ("CORP\\jdoe", "CORP\\jdoe"),
    ])
    def test_bind_dn(self, username, expected):
        assert format_bind_dn(username, "corp.example") == expected

    def test_entry_to_user(self):
        user = entry_to_user({
            "sAMAccountName": ["jdoe"],
            "mail": ["jdoe@corp.example"],
            "givenName": ["John"],
            "sn": ["Doe"],
            "memberOf": ["CN=Developers,OU=Groups,DC=corp", "CN=VPN,OU=Groups,DC=corp"],
            "userAccountControl": ["514"],
        })
        assert user.display_name == "John Doe"
        assert user.groups == ["Developers", "VPN"]
        assert user.is_active is False


# ═════════════════════════════════════════════════════════════════════════════
# API
# ═════════════════════════════════════════════════════════════════════════════


class TestDirectoryAPI:
    def test_partial_search_is_207(self, client, admin, auth_headers, sources):
        sources.extend([FakeSource("ok", [_person("jdoe")]), FakeSource("bad", error="down")])
        res = client.get("/api/v1/directory/search?q=jdoe", headers=auth_headers(admin))
        assert res.status_code == 207
        body = res.get_json()
        assert body["total"] == 1
        assert body["failures"][0]["source"] == "bad"

    def test_total_failure_is_503(self, client, admin, auth_headers, sources):
        sources.append(FakeSource("bad", error="down"))
        res = client.get("/api/v1/directory/search?q=jdoe", headers=auth_headers(admin))
        assert res.status_code == 503

    def test_non_admin_forbidden(self, client, member, auth_headers, configured):
        res = client.get("/api/v1/directory/config", headers=auth_headers(member))
        assert res.status_code == 403

    def test_import_endpoint(self, client, admin, auth_headers, sources):
        sources.append(FakeSource("ok", [_person("jdoe")]))
        res = client.post("/api/v1/directory/import", json={"username": "jdoe"}, headers=auth_headers(admin))
        assert res.status_code == 201
        assert res.get_json()["created"] is True
