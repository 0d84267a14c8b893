"""Run identity and cancellation shared by every component of a run."""

import asyncio
import os
import secrets
import weakref
from collections.abc import Mapping
from typing import Optional

PID_ENV_VAR = "rdsrecorder_PROCESS_ID"
PID_BYTES = 12


def generate_pid() -> str:
    """Return a new 24 hex character process identifier."""
    return secrets.token_hex(PID_BYTES)


class RunHandle:
    """PID, recovery flag and cancellation signal of one run.

    Children share the identity and get their own cancellation, which is
    also triggered when any ancestor is cancelled. Parents hold their
    children weakly, so a scope nobody references anymore drops out.
    """

    def __init__(self, pid: str, recovery: bool = False) -> None:
        """Initialize run handle.

        Args:
            pid: Run identifier, embedded in every artifact the run produces
            recovery: True when the PID was inherited from a previous run
        """
        self._pid = pid
        self._recovery = recovery
        self._cancelled = asyncio.Event()
        self._children: "weakref.WeakSet[RunHandle]" = weakref.WeakSet()

    @property
    def pid(self) -> str:
        return self._pid

    @property
    def is_recovery(self) -> bool:
        return self._recovery

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Cancel this handle and all of its children."""
        self._cancelled.set()
        for child in list(self._children):
            child.cancel()

    def child(self) -> "RunHandle":
        """Create a child scope with the same identity."""
        child = RunHandle(self._pid, self._recovery)
        self._children.add(child)
        if self.cancelled:
            child.cancel()
        return child

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for cancellation or until the timeout elapses.

        Returns:
            True if the handle was cancelled, False on timeout
        """
        if timeout is not None and timeout <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def __repr__(self) -> str:
        return f"RunHandle(pid={self._pid!r}, recovery={self._recovery})"


def create_run_handle(environ: Optional[Mapping[str, str]] = None) -> RunHandle:
    """Build the run handle for this process.

    A non-empty ``rdsrecorder_PROCESS_ID`` is inherited verbatim and marks the
    run as a recovery; otherwise a fresh PID is generated.
    """
    environ = os.environ if environ is None else environ
    inherited = environ.get(PID_ENV_VAR)
    if inherited:
        return RunHandle(inherited, recovery=True)
    return RunHandle(generate_pid())
