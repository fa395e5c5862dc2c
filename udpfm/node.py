import asyncio
import errno
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, assert_never

from pydantic import ValidationError

from . import files
from . import messages as m
from .config import ServerConfig
from .errors import CommandError, ErrorKind, permission, validation
from .framing import FrameError, decode_datagram, encode_datagram
from .notify import Notifier
from .roles import Capability, capabilities_of, parse_assignable_role
from .sandbox import ensure_root, resolve
from .sessions import Endpoint, Session, SessionRegistry, client_id_for
from .supervisor import ProcessSupervisor

"""
node.py — the UDP file server: datagram in, dispatch, datagram(s) out.

Per-client states are implicit:
  Unregistered --register--> Registered --fileAccess/execute--> Executing
  Executing --process exit (supervisor)--> Registered

Everything runs on one asyncio loop. A datagram is decoded synchronously in
datagram_received(), then handled in its own task so file I/O and process
spawning never hold up the socket.

Notes:
- Protocol errors (bad JSON, unknown `type`, missing fields) are logged and
  dropped with no reply. UDP gives the client no way to tell that apart from a
  lost packet anyway.
- Request errors (CommandError) always come back as an `error` datagram.
"""

logger = logging.getLogger(__name__)


class BindError(RuntimeError):
    """Neither the configured port nor the fallback port could be bound."""


class FileOperation(str, Enum):
    LIST = "list"
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    DELETE = "delete"


# Capability each operation needs; listing is open to every registered session.
REQUIRED_CAPABILITY: Dict[FileOperation, Capability] = {
    FileOperation.READ: Capability.READ,
    FileOperation.WRITE: Capability.WRITE,
    FileOperation.EXECUTE: Capability.EXECUTE,
    FileOperation.DELETE: Capability.DELETE,
}


@dataclass
class ServerContext:
    """All mutable server state, in one place, handed to every handler."""
    config: ServerConfig
    root: Path
    registry: SessionRegistry
    supervisor: ProcessSupervisor
    notifier: Notifier


class _ServerProtocol(asyncio.DatagramProtocol):
    """Thin asyncio adapter; all the logic lives in FileServer."""
    def __init__(self, server: "FileServer") -> None:
        self.server = server

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        self.server.datagram_received(data, addr)

    def error_received(self, exc: Exception) -> None:
        # ICMP port-unreachable from a client that went away, mostly.
        logger.warning("Socket error: %s", exc)


class FileServer:
    """
    UDP command server:
      - Registers clients and hands out roles (first one is admin).
      - Runs list/read/write/delete against the managed directory.
      - Executes scripts and proxies their stdio over datagrams.
      - Lets the admin change other sessions' roles.
    """
    def __init__(self, config: Optional[ServerConfig] = None) -> None:
        self.config = config or ServerConfig()
        self.transport: Optional[asyncio.DatagramTransport] = None
        self.address: Optional[Tuple[Any, ...]] = None

        registry = SessionRegistry()
        self.ctx = ServerContext(
            config=self.config,
            root=ensure_root(self.config.managed_dir),
            registry=registry,
            supervisor=ProcessSupervisor(self.send, timeout=self.config.exec_timeout),
            notifier=Notifier(registry, self.send),
        )
        self._tasks: Set[asyncio.Task] = set()
        self._reaper: Optional[asyncio.Task] = None
        self._closed: Optional[asyncio.Event] = None
        self._closing = False

    # -------------------------
    # Socket lifecycle
    # -------------------------

    async def start(self) -> None:
        """Bind the UDP socket, falling back to port+1 once if it is taken."""
        loop = asyncio.get_running_loop()
        host, port = self.config.host, self.config.port
        self._closed = asyncio.Event()

        try:
            transport, _ = await loop.create_datagram_endpoint(lambda: _ServerProtocol(self), local_addr=(host, port))
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise BindError(f"Cannot bind UDP {host}:{port}: {exc}") from exc
            logger.warning("Port %s is in use, attempting to bind to %s", port, port + 1)
            try:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: _ServerProtocol(self), local_addr=(host, port + 1)
                )
            except OSError as exc2:
                raise BindError(f"Cannot bind UDP {host}:{port} or fallback port {port + 1}: {exc2}") from exc2

        self.transport = transport
        self.address = transport.get_extra_info("sockname")
        logger.info("Server running on %s:%s", self.address[0], self.address[1])
        logger.info("Managing files in: %s", self.ctx.root)

        if self.config.idle_timeout:
            self._reaper = asyncio.create_task(self._reap_forever(self.config.idle_timeout), name="idle-reaper")

    async def serve_forever(self) -> None:
        """Start, then run until close() is called or the task is cancelled."""
        await self.start()
        try:
            await self._closed.wait()
        finally:
            await self.close()

    async def close(self) -> None:
        """Tell the admin everyone is gone, stop all children, close the socket."""
        if self._closing:
            return
        self._closing = True

        if self._reaper is not None:
            self._reaper.cancel()
            self._reaper = None

        registry = self.ctx.registry
        for session in registry:
            if not registry.is_admin(session.client_id):
                self.ctx.notifier.user_disconnected(session.client_id)

        await self.ctx.supervisor.shutdown()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        if self.transport is not None:
            self.transport.close()
            self.transport = None
        if self._closed is not None:
            self._closed.set()

    def send(self, endpoint: Endpoint, msg: Dict[str, Any]) -> None:
        """Best-effort single datagram to `endpoint`."""
        if self.transport is None or self.transport.is_closing():
            logger.debug("Transport closed; dropping %s for %s", msg.get("type"), endpoint)
            return
        try:
            data = encode_datagram(msg)
        except FrameError as exc:
            logger.warning("Reply %s to %s does not fit in a datagram: %s", msg.get("type"), endpoint, exc)
            data = encode_datagram(
                m.error("Response too large for a single datagram", details=str(exc), kind=ErrorKind.IO.value)
            )
        self.transport.sendto(data, endpoint)

    # -------------------------
    # Inbound path
    # -------------------------

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        message = self._decode(data, addr)
        if message is None:
            return
        task = asyncio.create_task(self._handle(message, addr))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def dispatch_datagram(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        """Decode and handle one datagram, inline. Same rules as the socket path."""
        message = self._decode(data, addr)
        if message is not None:
            await self.dispatch(message, addr)

    def _decode(self, data: bytes, addr: Tuple[Any, ...]) -> Optional[m.ClientMessage]:
        logger.debug("Received %d bytes from %s:%s", len(data), addr[0], addr[1])
        try:
            obj = decode_datagram(data)
        except FrameError as exc:
            logger.warning("Dropped datagram from %s:%s: %s", addr[0], addr[1], exc)
            return None
        try:
            return m.parse_message(obj)
        except ValidationError as exc:
            logger.warning(
                "Unknown or malformed message type %r from %s:%s (%d problems); dropped",
                obj.get("type"), addr[0], addr[1], exc.error_count(),
            )
            return None

    async def _handle(self, message: m.ClientMessage, addr: Tuple[Any, ...]) -> None:
        try:
            await self.dispatch(message, addr)
        except Exception:
            # One bad request must never take the server down.
            logger.exception("Error processing %s from %s:%s", message.type, addr[0], addr[1])

    async def dispatch(self, message: m.ClientMessage, addr: Tuple[Any, ...]) -> None:
        endpoint: Endpoint = (addr[0], addr[1])

        if isinstance(message, m.RegisterMessage):
            self.handle_register(endpoint, message)
            return

        registry = self.ctx.registry
        session = registry.lookup(client_id_for(endpoint))
        if session is None:
            logger.warning("%s from unknown client %s; dropped", message.type, client_id_for(endpoint))
            return
        registry.touch(session.client_id)

        try:
            if isinstance(message, m.FileAccessMessage):
                await self.handle_file_access(session, message)
            elif isinstance(message, m.ProcessInputMessage):
                await self.ctx.supervisor.forward_input(session.client_id, message.input)
            elif isinstance(message, m.RoleManagementMessage):
                self.handle_role_management(session, message)
            else:
                assert_never(message)
        except CommandError as exc:
            logger.info("Refused %s from %s: %s", message.type, session.client_id, exc.message)
            self.send(session.endpoint, m.error(exc.message, exc.details, exc.kind.value))

    # -------------------------
    # Handlers
    # -------------------------

    def handle_register(self, endpoint: Endpoint, message: m.RegisterMessage) -> Session:
        registry = self.ctx.registry
        session, created = registry.register(endpoint, message.userName)
        is_admin = registry.is_admin(session.client_id)

        if is_admin:
            logger.info("Admin registered: %s (%s)", session.user_name, session.client_id)
        else:
            logger.info(
                "User %s: %s (%s)", "registered" if created else "re-registered", session.user_name, session.client_id
            )
            self.ctx.notifier.user_connected(session)

        self.send(endpoint, m.registration_success(session.user_name, session.role.value, is_admin))
        return session

    async def handle_file_access(self, session: Session, message: m.FileAccessMessage) -> None:
        ctx = self.ctx
        op_name = message.operation

        # Filename and path problems are reported before anything else.
        path: Optional[Path] = None
        if op_name != FileOperation.LIST.value:
            path = resolve(ctx.root, message.filename, op_name)

        try:
            operation = FileOperation(op_name)
        except ValueError:
            raise validation(f"Unknown operation: {op_name}") from None

        needed = REQUIRED_CAPABILITY.get(operation)
        if needed is not None and not capabilities_of(session.role).allows(needed):
            logger.warning("%s (%s) lacks %s permission", session.user_name, session.role.value, needed.value)
            raise permission(f"Permission denied: Your role cannot {operation.value} files")

        filename = message.filename or ""
        if operation is FileOperation.LIST:
            result = await files.list_files(ctx.root)
        elif operation is FileOperation.READ:
            result = await files.read_file(path, filename)
        elif operation is FileOperation.WRITE:
            result = await files.write_file(path, filename, message.content)
            logger.info("%s wrote %s", session.user_name, filename)
        elif operation is FileOperation.DELETE:
            result = await files.delete_file(path, filename)
            logger.info("%s deleted %s", session.user_name, filename)
        elif operation is FileOperation.EXECUTE:
            # Output, errors and the final execute_end arrive as pushes.
            await ctx.supervisor.start(session.client_id, session.endpoint, path, filename)
            return
        else:
            assert_never(operation)

        self.send(session.endpoint, m.success(**result))

    def handle_role_management(self, session: Session, message: m.RoleManagementMessage) -> None:
        registry = self.ctx.registry
        if not capabilities_of(session.role).can_manage_users:
            raise permission("Permission denied: Your role cannot manage users")

        # Client ids are authoritative; a display name is accepted as a fallback.
        target = registry.lookup(message.targetClientId) or registry.lookup_by_name(message.targetClientId)
        if target is None:
            raise validation("Invalid client ID")
        if registry.is_admin(target.client_id):
            raise validation("Cannot change admin's role")

        role = parse_assignable_role(message.newRole)
        registry.set_role(target.client_id, role)
        self.ctx.notifier.role_changed(session, target)

    # -------------------------
    # Session teardown
    # -------------------------

    def end_session(self, client_id: str, reason: str = "removed") -> Optional[Session]:
        """Drop a session: stop its process and tell the admin."""
        session = self.ctx.registry.lookup(client_id)
        if session is None:
            return None
        self.ctx.supervisor.stop(client_id)
        self.ctx.notifier.user_disconnected(client_id)
        self.ctx.registry.remove(client_id)
        logger.info("User disconnected (%s): %s (%s)", reason, session.user_name, client_id)
        return session

    def reap_idle_sessions(self, max_idle: float, now: Optional[float] = None) -> List[Session]:
        """End every session silent for longer than `max_idle`, unless it is running something."""
        reaped = []
        for session in self.ctx.registry.idle_sessions(max_idle, now):
            if self.ctx.supervisor.is_active(session.client_id):
                continue
            if self.end_session(session.client_id, reason="idle") is not None:
                reaped.append(session)
        return reaped

    async def _reap_forever(self, max_idle: float) -> None:
        interval = max(1.0, max_idle / 4)
        while True:
            await asyncio.sleep(interval)
            self.reap_idle_sessions(max_idle)
