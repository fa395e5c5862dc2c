"""
udpfm — UDP file manager: a single-process command server over datagrams.

What it does:
- Clients register by name; the first one becomes admin for the life of the
  process, everyone else starts as a read-only `user`.
- Roles (admin, power_user, moderator, user) gate list/read/write/execute/delete
  on one sandboxed managed directory.
- `execute` runs a script under its interpreter and streams its stdout/stderr
  back as datagrams; client lines are fed to its stdin. Five minute cap.

Limits (inherent to plain UDP):
- Best effort only: no acks, no retransmission, no ordering, no fragmentation.
- No authentication. Run it on a network you trust.
"""
__all__ = [
    "client",
    "config",
    "errors",
    "files",
    "framing",
    "messages",
    "node",
    "notify",
    "roles",
    "run_node",
    "sandbox",
    "sessions",
    "supervisor",
]
