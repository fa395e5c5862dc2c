import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

"""
config.py — server settings.

Defaults: UDP 3000 on all interfaces, a `managed_files` directory next to
where the server runs, and a five minute process timeout. Every field can be set through a UDPFM_* environment variable, and
command-line flags win over both.
"""

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_MANAGED_DIR = "./managed_files"
DEFAULT_EXEC_TIMEOUT = 300.0  # seconds of wall-clock time per child process


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    managed_dir: str = DEFAULT_MANAGED_DIR
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT
    idle_timeout: Optional[float] = None  # None = never reap idle sessions
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        idle = env.get("UDPFM_IDLE_TIMEOUT")
        return cls(
            host=env.get("UDPFM_HOST", DEFAULT_HOST),
            port=int(env.get("UDPFM_PORT", DEFAULT_PORT)),
            managed_dir=env.get("UDPFM_MANAGED_DIR", DEFAULT_MANAGED_DIR),
            exec_timeout=float(env.get("UDPFM_EXEC_TIMEOUT", DEFAULT_EXEC_TIMEOUT)),
            idle_timeout=float(idle) if idle else None,
            log_level=env.get("UDPFM_LOG_LEVEL", "INFO").upper(),
        )

    def with_overrides(self, **overrides: Any) -> "ServerConfig":
        """Copy with every non-None override applied (argparse leaves unset flags as None)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
