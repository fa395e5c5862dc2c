import logging
from typing import Any, Callable, Dict

from . import messages as m
from .sessions import Endpoint, Session, SessionRegistry

"""
notify.py — unsolicited pushes about other sessions.

Only the admin watches the user table, so connect/disconnect events go to the
admin session (when it is currently registered). Role changes go to both ends.
"""

logger = logging.getLogger(__name__)

SendFn = Callable[[Endpoint, Dict[str, Any]], None]


class Notifier:
    def __init__(self, registry: SessionRegistry, send: SendFn) -> None:
        self.registry = registry
        self._send = send

    def _to_admin(self, about_client_id: str, msg: Dict[str, Any]) -> bool:
        admin = self.registry.admin_session
        if admin is None or admin.client_id == about_client_id:
            return False
        self._send(admin.endpoint, msg)
        return True

    def user_connected(self, session: Session) -> bool:
        return self._to_admin(
            session.client_id,
            m.user_connected(session.user_name, session.client_id, session.role.value),
        )

    def user_disconnected(self, client_id: str) -> bool:
        return self._to_admin(client_id, m.user_disconnected(client_id))

    def role_changed(self, admin: Session, target: Session) -> None:
        new_role = target.role.value
        logger.info("Role of %s (%s) set to %s by %s", target.user_name, target.client_id, new_role, admin.user_name)
        self._send(
            admin.endpoint,
            m.role_updated(new_role, f"Role updated for {target.user_name} to {new_role}", target.client_id),
        )
        self._send(target.endpoint, m.role_updated(new_role, f"Your role has been updated to: {new_role}"))
