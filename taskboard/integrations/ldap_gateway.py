"""Active Directory / LDAP gateway.

Architecture:
  DirectorySource is the abstract interface the directory service talks to.
  LdapDirectorySource implements it on top of ldap3 for one base DN
  (organizational unit); a tenant with several OUs gets one source per OU
  so that a failing OU can be skipped without losing the others.

Search filter (user input is always escaped):
  (&(objectClass=user)(objectCategory=person)
    (!(userAccountControl:1.2.840.113556.1.4.803:=2))      # not disabled
    (|(sAMAccountName=*q*)(mail=*q*)(displayName=*q*)
      (givenName=*q*)(sn=*q*)(department=*q*)))

Constants:
  connect/receive timeout = caller supplied (DIRECTORY_TIMEOUT_SECONDS)
  size_limit             = caller supplied (DIRECTORY_MAX_RESULTS)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field

from ldap3 import NONE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPBindError, LDAPException
from ldap3.utils.conv import escape_filter_chars

logger = logging.getLogger(__name__)

USER_ATTRIBUTES = [
    "sAMAccountName",
    "mail",
    "displayName",
    "givenName",
    "sn",
    "department",
    "title",
    "manager",
    "memberOf",
    "userAccountControl",
    "objectGUID",
]

_BASE_FILTER = "(&(objectClass=user)(objectCategory=person)(!(userAccountControl:1.2.840.113556.1.4.803:=2))"
_SEARCH_FIELDS = ("sAMAccountName", "mail", "displayName", "givenName", "sn", "department")
_UAC_ACCOUNTDISABLE = 0x2


# ── Value objects ─────────────────────────────────────────────────────────────


@dataclass
class DirectoryUser:
    """One person record as read from the directory."""

    id: str
    username: str
    email: str | None = None
    display_name: str = ""
    first_name: str = ""
    last_name: str = ""
    department: str = ""
    title: str = ""
    manager: str = ""
    groups: list[str] = field(default_factory=list)
    is_active: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


class DirectorySourceError(Exception):
    """Raised when a directory source cannot be reached or queried."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


# ── Filter & DN helpers ───────────────────────────────────────────────────────


def format_bind_dn(username: str, domain: str) -> str:
    """user@domain for bare names; UPN and DOMAIN\\user forms are kept as given."""
    if "@" in username or "\\" in username or "=" in username:
        return username
    return f"{username}@{domain}" if domain else username


def build_search_filter(query: str | None) -> str:
    """Filter for active person accounts, optionally matching query on common fields."""
    query = (query or "").strip()
    if not query:
        return _BASE_FILTER + ")"
    q = escape_filter_chars(query)
    alternatives = "".join(f"({attr}=*{q}*)" for attr in _SEARCH_FIELDS)
    return f"{_BASE_FILTER}(|{alternatives}))"


def _first(attrs: dict, name: str) -> str:
    values = attrs.get(name) or []
    if not isinstance(values, list):
        return str(values)
    return str(values[0]) if values else ""


def _group_name(dn: str) -> str:
    """CN of a group DN: 'CN=Developers,OU=Groups,DC=corp' -> 'Developers'."""
    first = dn.split(",", 1)[0]
    return first[3:] if first.upper().startswith("CN=") else dn


def entry_to_user(attrs: dict) -> DirectoryUser:
    """Map an ldap3 attribute dict (attr -> list of values) to a DirectoryUser."""
    username = _first(attrs, "sAMAccountName")
    uac = _first(attrs, "userAccountControl")
    try:
        disabled = bool(int(uac) & _UAC_ACCOUNTDISABLE) if uac else False
    except ValueError:
        disabled = False
    first_name = _first(attrs, "givenName")
    last_name = _first(attrs, "sn")
    return DirectoryUser(
        id=_first(attrs, "objectGUID") or username,
        username=username,
        email=_first(attrs, "mail") or None,
        display_name=_first(attrs, "displayName") or f"{first_name} {last_name}".strip() or username,
        first_name=first_name,
        last_name=last_name,
        department=_first(attrs, "department"),
        title=_first(attrs, "title"),
        manager=_first(attrs, "manager"),
        groups=[_group_name(str(dn)) for dn in attrs.get("memberOf") or []],
        is_active=not disabled,
    )


# ── Sources ───────────────────────────────────────────────────────────────────


class DirectorySource(ABC):
    """Abstract directory sub-source searched by DirectoryService."""

    name: str = "directory"

    @abstractmethod
    def search(self, query: str) -> list[DirectoryUser]:
        """Return matching users; raise DirectorySourceError when unreachable."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> DirectoryUser | None:
        """Bind as the user; return their record, or None on bad credentials."""

    @abstractmethod
    def test_connection(self) -> None:
        """Bind with the service account; raise DirectorySourceError on failure."""


class LdapDirectorySource(DirectorySource):
    """ldap3-backed source for a single base DN."""

    def __init__(
        self,
        *,
        server_url: str,
        domain: str,
        base_dn: str,
        bind_username: str,
        bind_password: str,
        use_ssl: bool = False,
        timeout: int = 30,
        size_limit: int = 1000,
    ) -> None:
        self.server_url = server_url
        self.domain = domain
        self.base_dn = base_dn
        self.bind_username = bind_username
        self._bind_password = bind_password
        self.use_ssl = use_ssl or server_url.lower().startswith("ldaps://")
        self.timeout = timeout
        self.size_limit = size_limit
        self.name = base_dn

    def _connect(self, user: str, password: str) -> Connection:
        server = Server(self.server_url, use_ssl=self.use_ssl, get_info=NONE, connect_timeout=self.timeout)
        return Connection(
            server,
            user=format_bind_dn(user, self.domain),
            password=password,
            auto_bind=True,
            receive_timeout=self.timeout,
            read_only=True,
        )

    def _search(self, conn: Connection, search_filter: str) -> list[DirectoryUser]:
        conn.search(
            search_base=self.base_dn,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=USER_ATTRIBUTES,
            size_limit=self.size_limit,
            time_limit=self.timeout,
        )
        if conn.result and conn.result.get("description") not in ("success", "sizeLimitExceeded"):
            raise DirectorySourceError(self.name, conn.result.get("message") or conn.result.get("description"))
        return [entry_to_user(entry.entry_attributes_as_dict) for entry in conn.entries]

    def search(self, query: str) -> list[DirectoryUser]:
        started = time.monotonic()
        try:
            conn = self._connect(self.bind_username, self._bind_password)
        except LDAPException as exc:
            raise DirectorySourceError(self.name, f"bind failed: {exc}") from exc
        try:
            users = self._search(conn, build_search_filter(query))
        except LDAPException as exc:
            raise DirectorySourceError(self.name, f"search failed: {exc}") from exc
        finally:
            conn.unbind()
        logger.info(
            "Directory search base=%s results=%d duration_ms=%d",
            self.base_dn, len(users), int((time.monotonic() - started) * 1000),
        )
        return users

    def authenticate(self, username: str, password: str) -> DirectoryUser | None:
        if not username or not password:
            return None
        try:
            conn = self._connect(username, password)
        except LDAPBindError:
            logger.info("Directory bind rejected for %s", username)
            return None
        except LDAPException as exc:
            raise DirectorySourceError(self.name, f"bind failed: {exc}") from exc
        try:
            account = username.split("\\")[-1].split("@")[0]
            f = f"(&(objectClass=user)(sAMAccountName={escape_filter_chars(account)}))"
            users = self._search(conn, f)
        except LDAPException as exc:
            raise DirectorySourceError(self.name, f"lookup failed: {exc}") from exc
        finally:
            conn.unbind()
        return users[0] if users else None

    def test_connection(self) -> None:
        try:
            conn = self._connect(self.bind_username, self._bind_password)
        except LDAPException as exc:
            raise DirectorySourceError(self.name, f"bind failed: {exc}") from exc
        conn.unbind()
