import asyncio
import sys
from typing import Any, Callable, Dict, Optional, Tuple

from . import messages as m
from .framing import FrameError, decode_datagram, encode_datagram
from .roles import ROLE_PERMISSIONS, capabilities_of

"""
client.py — interactive terminal client for the UDP file server.

Reads commands from stdin, sends one datagram per command, and prints whatever
comes back. While a remote process is running, every typed line goes to that
process's stdin instead of being parsed as a command.

The admin also gets a live table of connected users (fed by user_connected /
user_disconnected / role_updated pushes) so `setrole` can take a display name.
"""

Endpoint = Tuple[str, int]

CONFIRM_COMMANDS = ("write", "execute", "delete")


def parse_command(line: str) -> Tuple[str, Optional[str], str]:
    """Split 'cmd filename rest of content' into its three parts."""
    parts = line.strip().split(" ")
    command = parts[0]
    filename = parts[1] if len(parts) > 1 and parts[1] else None
    content = " ".join(parts[2:])
    return command, filename, content


class _ClientProtocol(asyncio.DatagramProtocol):
    def __init__(self, inbox: "asyncio.Queue[Dict[str, Any]]") -> None:
        self.inbox = inbox

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        try:
            self.inbox.put_nowait(decode_datagram(data))
        except FrameError as exc:
            print(f"✗ Message handling error: {exc}")

    def error_received(self, exc: Exception) -> None:
        print(f"✗ Client error: {exc}")


class ClientNode:
    def __init__(
        self,
        server: Endpoint,
        user_name: str,
        readline: Optional[Callable[[], str]] = None,
    ) -> None:
        self.server = server
        self.user_name = user_name
        self.readline = readline or sys.stdin.readline
        self.inbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self.transport: Optional[asyncio.DatagramTransport] = None

        self.is_admin = False
        self.role: Optional[str] = None
        self.executing = False
        self.connected_users: Dict[str, Dict[str, str]] = {}  # client_id -> {userName, role}

    async def start(self) -> None:
        """Open the socket and say who we are."""
        loop = asyncio.get_running_loop()
        self.transport, _ = await loop.create_datagram_endpoint(
            lambda: _ClientProtocol(self.inbox), remote_addr=self.server
        )
        self.send({"type": m.REGISTER, "userName": self.user_name})

    def send(self, msg: Dict[str, Any]) -> None:
        self.transport.sendto(encode_datagram(msg))

    async def run(self) -> None:
        await self.start()
        receiver = asyncio.create_task(self._receive_loop())
        try:
            while True:
                line = await self._read_line()
                if line is None or not await self.handle_line(line):
                    break
        finally:
            receiver.cancel()
            self.transport.close()

    async def _read_line(self) -> Optional[str]:
        # Blocking stdin read off the loop; '' means EOF.
        line = await asyncio.get_running_loop().run_in_executor(None, self.readline)
        return line.rstrip("\r\n") if line else None

    async def _receive_loop(self) -> None:
        while True:
            self.handle_message(await self.inbox.get())

    async def _confirm(self, command: str, filename: Optional[str]) -> bool:
        print(f'! Are you sure you want to {command} "{filename}"? (y/n): ')
        answer = await self._read_line()
        return (answer or "").strip().lower() == "y"

    # -------------------------
    # Outgoing: one typed line
    # -------------------------

    async def handle_line(self, line: str) -> bool:
        """Act on one line of input. Returns False when the user wants out."""
        if self.executing:
            self.send({"type": m.PROCESS_INPUT, "input": line})
            return True

        if not line.strip():
            return True

        command, filename, content = parse_command(line)

        if command == "exit":
            print("→ Disconnecting...")
            return False
        if command == "help":
            self.show_help()
            return True

        if self.is_admin and command == "users":
            self.show_users()
            return True
        if self.is_admin and command == "setrole":
            self.request_role_change(filename, content.strip())
            return True

        if command in CONFIRM_COMMANDS and not await self._confirm(command, filename):
            print("! Operation cancelled")
            return True

        self.send({"type": m.FILE_ACCESS, "operation": command, "filename": filename, "content": content})
        if command == "execute":
            # Lines go to the process until execute_end (or an error) arrives.
            self.executing = True
        return True

    def request_role_change(self, target_name: Optional[str], new_role: str) -> bool:
        if not target_name or not new_role:
            print("✗ Usage: setrole <username> <role>")
            return False
        target_id = next(
            (cid for cid, user in self.connected_users.items() if user["userName"] == target_name), None
        )
        if target_id is None:
            print(f'✗ User "{target_name}" not found')
            return False
        self.send({"type": m.ROLE_MANAGEMENT, "targetClientId": target_id, "newRole": new_role})
        return True

    # -------------------------
    # Incoming: one datagram
    # -------------------------

    def handle_message(self, data: Dict[str, Any]) -> None:
        mt = data.get("type")

        if mt == m.REGISTRATION_SUCCESS:
            self.is_admin = bool(data.get("isAdmin"))
            self.role = data.get("role")
            print(f"✓ {data.get('message')}")
            print(f"Role: {(self.role or '').replace('_', ' ').title()}")
            self.show_help()

        elif mt == m.USER_CONNECTED and self.is_admin:
            self.connected_users[data["clientId"]] = {"userName": data.get("userName", ""), "role": data.get("role") or "user"}
            print(f"\n→ New user connected: {data.get('userName')}")
            self.show_users()

        elif mt == m.USER_DISCONNECTED and self.is_admin:
            user = self.connected_users.pop(data.get("clientId"), None)
            print(f"\n! User disconnected: {user['userName'] if user else data.get('clientId')}")
            self.show_users()

        elif mt == m.ROLE_UPDATED:
            target = data.get("targetClientId")
            if self.is_admin and target is not None:
                if target in self.connected_users:
                    self.connected_users[target]["role"] = data.get("newRole", "")
                print(f"\n✓ {data.get('message')}")
                self.show_users()
            else:
                self.role = data.get("newRole")
                print(f"✓ {data.get('message')}")
                print("\nYour new permissions are:")
                self.show_help()

        elif mt == m.SUCCESS:
            self._print_success(data)

        elif mt == m.ERROR:
            # A refused execute never started, so stop routing input to it. A
            # timeout is different: execute_end still follows.
            if data.get("message") != m.TIMEOUT_MESSAGE:
                self.executing = False
            print(f"✗ {data.get('message')}")
            if data.get("details"):
                print(f"! {data['details']}")

        elif mt == m.EXECUTE_OUTPUT:
            sys.stdout.write(data.get("output", ""))
            sys.stdout.flush()

        elif mt == m.EXECUTE_ERROR:
            print(f"! {data.get('error')}")

        elif mt == m.EXECUTE_END:
            self.executing = False
            print(f"→ {data.get('message')}\n")

    def _print_success(self, data: Dict[str, Any]) -> None:
        if "files" in data:
            print(f"✓ {data.get('message')}")
            print("\nFiles in managed directory:")
            print("─" * 60)
            print("Name".ljust(20) + "Size".ljust(10) + "Type".ljust(10) + "Last Modified")
            print("─" * 60)
            for entry in data["files"]:
                if "error" in entry:
                    print(f"{entry['name']:<20}[Error reading file info]")
                else:
                    print(f"{entry['name']:<20}{entry['size']:<10}{entry['type']:<10}{entry['modified']}")
            print("─" * 60)
        elif "content" in data:
            print("✓ File content:")
            print(data["content"])
            print(f"ℹ {data.get('details')}")
        else:
            print(f"✓ {data.get('message')}")
            if data.get("details"):
                print(f"ℹ {data['details']}")

    def show_users(self) -> None:
        print("\nConnected Users:")
        print("─" * 40)
        print("Username".ljust(20) + "Role".ljust(20))
        print("─" * 40)
        for user in self.connected_users.values():
            print(f"{user['userName']:<20}{user['role']:<20}")
        print("─" * 40)

    def show_help(self) -> None:
        print("\n=== Available Commands ===")
        print("Basic Commands:")
        print("  help              : Show this help message")
        print("  list              : Show all files")
        print("  read <filename>   : Show file content")
        print("  exit              : Quit application")

        perms = capabilities_of(self.role)
        if perms.can_write:
            print("  write <filename> <content>  : Create/Update file with content")
        if perms.can_execute:
            print("  execute <filename>          : Execute file")
        if perms.can_delete:
            print("  delete <filename>           : Delete a file")
        if perms.can_manage_users:
            print("  users                       : List connected users")
            print("  setrole <username> <role>   : Set user role")
            print("\nAvailable Roles:")
            for role, caps in ROLE_PERMISSIONS.items():
                print(f"  - {role.value:<11}({caps.description})")
        if not perms.can_write:
            print("\nYou have read-only access.")
        print("\n======================\n")
