# tests/conftest.py
import json
import logging
from typing import Any, Callable, Dict, List, Tuple

import anyio
import pytest

from udpfm.config import ServerConfig
from udpfm.node import FileServer

ADMIN_ADDR = ("127.0.0.1", 40001)
USER_ADDR = ("127.0.0.1", 40002)
OTHER_ADDR = ("127.0.0.1", 40003)


# ------------------------------------------------------------------------------
# 1. Global Configuration
# ------------------------------------------------------------------------------

@pytest.fixture(scope="session")
def anyio_backend():
    """The server is written against asyncio directly, so only run that backend."""
    return "asyncio"


@pytest.fixture(autouse=True)
def setup_test_logging(caplog):
    """Capture DEBUG logs for every test; pytest shows them on failure."""
    caplog.set_level(logging.DEBUG)


# ------------------------------------------------------------------------------
# 2. Transport doubles
# ------------------------------------------------------------------------------

class RecordingTransport:
    """Stands in for asyncio.DatagramTransport; keeps every datagram sent."""

    def __init__(self) -> None:
        self.sent: List[Tuple[Tuple[str, int], Dict[str, Any]]] = []
        self._closing = False

    def sendto(self, data: bytes, addr=None) -> None:
        self.sent.append((addr, json.loads(data.decode("utf-8"))))

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        self._closing = True

    def get_extra_info(self, name, default=None):
        return ("127.0.0.1", 0) if name == "sockname" else default

    # helpers -------------------------------------------------------------

    def to(self, addr) -> List[Dict[str, Any]]:
        return [msg for dest, msg in self.sent if tuple(dest) == tuple(addr)]

    def last(self, addr) -> Dict[str, Any]:
        msgs = self.to(addr)
        assert msgs, f"nothing was sent to {addr}"
        return msgs[-1]

    def of_type(self, addr, msg_type: str) -> List[Dict[str, Any]]:
        return [msg for msg in self.to(addr) if msg.get("type") == msg_type]

    def clear(self) -> None:
        self.sent.clear()


async def wait_until(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll until predicate() is true; fail the test after `timeout` seconds."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.02)


# ------------------------------------------------------------------------------
# 3. Server fixtures
# ------------------------------------------------------------------------------

@pytest.fixture
def managed_dir(tmp_path):
    return tmp_path / "managed_files"


@pytest.fixture
def make_server(managed_dir):
    """Factory for a FileServer wired to a RecordingTransport instead of a socket."""

    def _make(**overrides) -> FileServer:
        config = ServerConfig(managed_dir=str(managed_dir), **overrides)
        server = FileServer(config)
        server.transport = RecordingTransport()
        return server

    return _make


@pytest.fixture
async def server(make_server):
    srv = make_server(exec_timeout=30.0)
    yield srv
    await srv.ctx.supervisor.shutdown()


async def send(server: FileServer, addr, **msg) -> None:
    """Push one JSON datagram through the full decode + dispatch path."""
    await server.dispatch_datagram(json.dumps(msg).encode("utf-8"), addr)


async def register(server: FileServer, addr, name: str) -> Dict[str, Any]:
    await send(server, addr, type="register", userName=name)
    return server.transport.of_type(addr, "registration_success")[-1]
