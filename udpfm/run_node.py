import argparse
import asyncio
import logging
from typing import Optional, Sequence

from .client import ClientNode
from .config import DEFAULT_PORT, ServerConfig
from .node import BindError, FileServer

"""
run_node.py — single entry point for the UDP file manager.

Modes:
- server: bind UDP, manage the file directory, run scripts for clients
- client: interactive terminal client that talks to a running server

Server settings come from UDPFM_* environment variables first; any flag given
here overrides them.
"""

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_server(config: ServerConfig) -> None:
    """Serve forever on the configured host/port."""
    server = FileServer(config)
    await server.serve_forever()


async def run_client(server: str, name: Optional[str]) -> None:
    """Prompt for a name if none was given, then run the interactive loop."""
    host, _, port = server.rpartition(":")
    print("=== UDP File Manager ===")
    while not name:
        name = input("Enter your name: ").strip()
        if not name:
            print("✗ Name cannot be empty")
    client = ClientNode((host or "localhost", int(port)), name)
    await client.run()


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Quick examples:
      Server:  python -m udpfm.run_node --mode server --port 3000 --managed-dir ./managed_files
      Client:  python -m udpfm.run_node --mode client --server 127.0.0.1:3000 --name alice
    """
    p = argparse.ArgumentParser(prog="udpfm")
    p.add_argument("--mode", choices=["server", "client"], required=True)

    # server
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--managed-dir")
    p.add_argument("--exec-timeout", type=float, help="Seconds before a running script is killed")
    p.add_argument("--idle-timeout", type=float, help="Reap sessions silent for this many seconds")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    # client
    p.add_argument("--server", default=f"localhost:{DEFAULT_PORT}", help="host:port of the server")
    p.add_argument("--name", help="Display name to register with")

    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig.from_env().with_overrides(
        host=args.host,
        port=args.port,
        managed_dir=args.managed_dir,
        exec_timeout=args.exec_timeout,
        idle_timeout=args.idle_timeout,
        log_level=args.log_level,
    )


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[Sequence[str]] = None) -> None:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)

    if args.mode == "server":
        config = build_config(args)
        logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
        try:
            asyncio.run(run_server(config))
        except BindError as exc:
            raise SystemExit(f"udpfm: {exc}") from exc
        except KeyboardInterrupt:
            logging.getLogger(__name__).info("Shutting down")

    elif args.mode == "client":
        try:
            asyncio.run(run_client(args.server, args.name))
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
