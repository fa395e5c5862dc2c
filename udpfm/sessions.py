import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .roles import ASSIGNABLE_ROLES, Role

"""
sessions.py — who is talking to us, under which name, with which role.

UDP has no connections, so a "client" is just the (address, port) a datagram
came from. That pair, stringified as "address:port", is the session key.

Admin rule: the very first registration this process ever handles becomes the
admin, and that identity stays admin for the life of the process. If it goes
quiet and gets reaped, nobody else is promoted; the same identity registering
again gets its admin role back.
"""

Endpoint = Tuple[str, int]

DEFAULT_USER_NAME = "Anonymous"


def client_id_for(endpoint: Endpoint) -> str:
    """Stable session key for an (address, port) pair."""
    return f"{endpoint[0]}:{endpoint[1]}"


@dataclass
class Session:
    client_id: str
    user_name: str
    role: Role
    endpoint: Endpoint
    last_seen: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """In-memory session table plus the one-time admin pointer."""
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._admin_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        # Snapshot so callers can remove while iterating.
        return iter(list(self._sessions.values()))

    @property
    def admin_id(self) -> Optional[str]:
        return self._admin_id

    @property
    def admin_session(self) -> Optional[Session]:
        """The admin's session, if the admin is currently registered."""
        if self._admin_id is None:
            return None
        return self._sessions.get(self._admin_id)

    def is_admin(self, client_id: str) -> bool:
        return client_id == self._admin_id

    def register(self, endpoint: Endpoint, user_name: Optional[str]) -> Tuple[Session, bool]:
        """
        Create or refresh the session for `endpoint`.

        Returns (session, created). A repeat registration from the same
        endpoint updates the existing record and keeps its role.
        """
        client_id = client_id_for(endpoint)
        name = (user_name or "").strip() or DEFAULT_USER_NAME

        existing = self._sessions.get(client_id)
        if existing is not None:
            existing.user_name = name
            existing.endpoint = endpoint
            existing.last_seen = time.monotonic()
            return existing, False

        if self._admin_id is None:
            self._admin_id = client_id
        role = Role.ADMIN if client_id == self._admin_id else Role.USER

        session = Session(client_id=client_id, user_name=name, role=role, endpoint=endpoint)
        self._sessions[client_id] = session
        return session, True

    def lookup(self, client_id: str) -> Optional[Session]:
        return self._sessions.get(client_id)

    def lookup_by_name(self, user_name: str) -> Optional[Session]:
        """First session (in registration order) with that display name."""
        for session in self._sessions.values():
            if session.user_name == user_name:
                return session
        return None

    def set_role(self, client_id: str, role: Role) -> Session:
        """
        Change a non-admin session's role.

        Raises:
            KeyError: unknown client_id.
            ValueError: target is the admin, or `role` is not assignable.
        """
        session = self._sessions[client_id]
        if client_id == self._admin_id:
            raise ValueError("Cannot change admin's role")
        if role not in ASSIGNABLE_ROLES:
            raise ValueError(f"Role {role.value} cannot be assigned")
        session.role = role
        return session

    def remove(self, client_id: str) -> Optional[Session]:
        return self._sessions.pop(client_id, None)

    def touch(self, client_id: str) -> None:
        session = self._sessions.get(client_id)
        if session is not None:
            session.last_seen = time.monotonic()

    def idle_sessions(self, max_idle: float, now: Optional[float] = None) -> List[Session]:
        """Sessions that have not sent anything for more than `max_idle` seconds."""
        now = time.monotonic() if now is None else now
        return [s for s in self._sessions.values() if now - s.last_seen > max_idle]
