import asyncio
import codecs
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from . import messages as m
from .errors import CommandError, ErrorKind
from .framing import OUTPUT_CHUNK_SIZE
from .sessions import Endpoint

"""
supervisor.py — at most one interactive child process per session.

Lifecycle of a handle (ActiveProcess.state):

    SPAWNING  -> the file check and create_subprocess_exec() are in flight;
                 the slot is already reserved so a second `execute` is
                 refused, and client input is queued until stdin exists.
    RUNNING   -> stdout/stderr are pumped to the client as push messages,
                 client input is written to stdin, the timeout timer is armed.
    DRAINING  -> the process has exited; remaining pipe data is flushed out.
    EXITED    -> timer cancelled, slot released, stdin closed, and exactly one
                 `execute_end` sent.

The timeout timer holds a reference to its own handle, never to the session,
so a late timer can only ever kill the process it was armed for.
"""

logger = logging.getLogger(__name__)

SendFn = Callable[[Endpoint, Dict[str, Any]], None]

DEFAULT_TIMEOUT = 300.0  # five minutes of wall-clock time

# Extension -> interpreter argv prefix. The script path is appended as-is.
DEFAULT_INTERPRETERS: Dict[str, Sequence[str]] = {
    ".py": (sys.executable or "python",),
    ".js": ("node",),
    ".bat": ("cmd", "/c"),
}

# How long to wait for pipes to hit EOF once the process is gone. Matters when
# a grandchild inherited the pipes and outlives its parent.
DRAIN_GRACE = 2.0


class ProcessState(str, Enum):
    SPAWNING = "spawning"
    RUNNING = "running"
    DRAINING = "draining"
    EXITED = "exited"


class ActiveProcess:
    """One supervised child and everything needed to tear it down."""
    def __init__(self, client_id: str, endpoint: Endpoint, filename: str) -> None:
        self.client_id = client_id
        self.endpoint = endpoint
        self.filename = filename
        self.state = ProcessState.SPAWNING
        self.proc: Optional[asyncio.subprocess.Process] = None
        self.timer: Optional[asyncio.TimerHandle] = None
        self.timed_out = False
        self.returncode: Optional[int] = None
        self.waiter: Optional[asyncio.Task] = None
        self.pending_input: List[str] = []  # lines received while SPAWNING

    def __repr__(self) -> str:
        pid = self.proc.pid if self.proc else None
        return f"<ActiveProcess {self.filename!r} client={self.client_id} pid={pid} {self.state.value}>"


class ProcessSupervisor:
    def __init__(
        self,
        send: SendFn,
        timeout: float = DEFAULT_TIMEOUT,
        interpreters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self._send = send
        self.timeout = timeout
        self.interpreters = dict(DEFAULT_INTERPRETERS if interpreters is None else interpreters)
        self._active: Dict[str, ActiveProcess] = {}

    def is_active(self, client_id: str) -> bool:
        return client_id in self._active

    def get(self, client_id: str) -> Optional[ActiveProcess]:
        return self._active.get(client_id)

    def __len__(self) -> int:
        return len(self._active)

    def command_for(self, path: Path, filename: str) -> list:
        """argv for running `path`, or CommandError if nothing can run it."""
        ext = path.suffix.lower()
        prefix = self.interpreters.get(ext)
        if not prefix:
            raise CommandError(
                ErrorKind.PROCESS,
                f'Cannot execute "{filename}"',
                details=f"Unsupported file type: {ext or '(none)'}",
            )
        return [*prefix, str(path)]

    async def start(self, client_id: str, endpoint: Endpoint, path: Path, filename: str) -> ActiveProcess:
        """
        Spawn `path` under its interpreter for `client_id`.

        Raises:
            CommandError: missing file, unsupported extension, a process is
            already running for this client, or the spawn itself failed.
        """
        current = self._active.get(client_id)
        if current is not None:
            raise CommandError(
                ErrorKind.PROCESS,
                "A process is already running for this session",
                details=f'"{current.filename}" must finish before another file is executed',
            )

        # Reserve before the first await so input sent right behind the
        # execute request finds this handle.
        handle = ActiveProcess(client_id, endpoint, filename)
        self._active[client_id] = handle

        try:
            if not await asyncio.to_thread(path.is_file):
                raise CommandError(ErrorKind.IO, f'File "{filename}" does not exist')
            argv = self.command_for(path, filename)
            try:
                handle.proc = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(path.parent),
                )
            except OSError as exc:
                logger.error("Spawn of %s failed: %s", argv, exc)
                raise CommandError(ErrorKind.PROCESS, f'Failed to execute "{filename}"', details=str(exc)) from exc
        except BaseException:
            self._release(handle)
            handle.state = ProcessState.EXITED
            handle.pending_input.clear()
            raise

        handle.state = ProcessState.RUNNING
        handle.timer = asyncio.get_running_loop().call_later(self.timeout, self._on_timeout, handle)
        handle.waiter = asyncio.create_task(self._supervise(handle), name=f"supervise-{client_id}")
        logger.info("Started interactive process %s for %s (pid %s)", filename, client_id, handle.proc.pid)
        await self._flush_pending(handle)
        return handle

    async def forward_input(self, client_id: str, text: str) -> bool:
        """
        Write `text` plus a newline to the client's process.

        Input arriving while the process is still being spawned is queued and
        written as soon as stdin exists. Returns False (and does nothing) when
        no process is running or its stdin is already gone.
        """
        handle = self._active.get(client_id)
        if handle is not None and handle.state is ProcessState.SPAWNING:
            logger.debug("Queued input for %s until %s has started", client_id, handle.filename)
            handle.pending_input.append(text)
            return True
        if handle is None or handle.state is not ProcessState.RUNNING or handle.proc is None:
            logger.debug("Input from %s with no running process; ignored", client_id)
            return False
        return await self._write_lines(handle, [text])

    async def _flush_pending(self, handle: ActiveProcess) -> None:
        lines, handle.pending_input = handle.pending_input, []
        if lines:
            await self._write_lines(handle, lines)

    async def _write_lines(self, handle: ActiveProcess, lines: List[str]) -> bool:
        stdin = handle.proc.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            # All writes land before the first await, so lines keep their order.
            for line in lines:
                stdin.write((line + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.info("Process %s closed its input: %s", handle.filename, exc)
            return False
        return True

    def stop(self, client_id: str) -> bool:
        """Kill the client's process if any; the normal exit path reports it."""
        handle = self._active.get(client_id)
        if handle is None or handle.proc is None or handle.proc.returncode is not None:
            return False
        logger.info("Stopping process %s for %s", handle.filename, client_id)
        self._kill(handle)
        return True

    async def shutdown(self) -> None:
        """Kill every child and wait for their exit handling to finish."""
        handles = list(self._active.values())
        for handle in handles:
            if handle.proc is not None and handle.proc.returncode is None:
                self._kill(handle)
        waiters = [h.waiter for h in handles if h.waiter is not None]
        if waiters:
            await asyncio.gather(*waiters, return_exceptions=True)

    # -------------------------
    # Internals
    # -------------------------

    def _release(self, handle: ActiveProcess) -> None:
        # Only drop the slot if it still belongs to this very handle.
        if self._active.get(handle.client_id) is handle:
            del self._active[handle.client_id]

    def _kill(self, handle: ActiveProcess) -> None:
        try:
            handle.proc.kill()
        except ProcessLookupError:
            pass

    def _on_timeout(self, handle: ActiveProcess) -> None:
        handle.timer = None
        if handle.state is not ProcessState.RUNNING or handle.proc is None or handle.proc.returncode is not None:
            return
        logger.warning("Process %s for %s timed out after %ss", handle.filename, handle.client_id, self.timeout)
        handle.timed_out = True
        self._send(handle.endpoint, m.error(m.TIMEOUT_MESSAGE, kind=ErrorKind.PROCESS.value))
        self._kill(handle)

    async def _pump(self, stream: Optional[asyncio.StreamReader], handle: ActiveProcess, build) -> None:
        """Forward one pipe to the client, chunk by chunk, until EOF."""
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(OUTPUT_CHUNK_SIZE)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                self._send(handle.endpoint, build(text))
            if not chunk:
                return

    async def _supervise(self, handle: ActiveProcess) -> None:
        proc = handle.proc
        pumps = asyncio.gather(
            self._pump(proc.stdout, handle, m.execute_output),
            self._pump(proc.stderr, handle, m.execute_error),
        )
        try:
            handle.returncode = await proc.wait()
            handle.state = ProcessState.DRAINING
            if handle.timer is not None:
                handle.timer.cancel()
                handle.timer = None
            try:
                await asyncio.wait_for(asyncio.shield(pumps), DRAIN_GRACE)
            except asyncio.TimeoutError:
                logger.warning("Output of %s still open after exit; dropping the rest", handle.filename)
                pumps.cancel()
        except Exception:
            logger.exception("Supervision of %r failed", handle)
        finally:
            if not pumps.done():
                pumps.cancel()
            if handle.timer is not None:
                handle.timer.cancel()
                handle.timer = None
            self._release(handle)
            self._close_stdin(proc)
            handle.state = ProcessState.EXITED
            code = handle.returncode if handle.returncode is not None else proc.returncode
            logger.info("Process ended: %s (code: %s)", handle.filename, code)
            if handle.timed_out:
                message = f"Process terminated after timeout (code {code})"
            else:
                message = f"Process ended with code {code}"
            self._send(handle.endpoint, m.execute_end(message))

    @staticmethod
    def _close_stdin(proc: asyncio.subprocess.Process) -> None:
        if proc.stdin is None or proc.stdin.is_closing():
            return
        try:
            proc.stdin.close()
        except (BrokenPipeError, ConnectionResetError):
            pass
