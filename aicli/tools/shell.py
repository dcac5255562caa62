"""Local shell execution."""

from __future__ import annotations

import asyncio
import os
import signal
import time

# Cap output per stream to prevent memory issues.
MAX_OUTPUT_BYTES = 100 * 1024  # 100 KB


def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Signal the whole process group so children of ``sh -c`` go too."""
    if proc.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGTERM)
        else:
            proc.terminate()
    except ProcessLookupError:
        pass


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


async def _reap(proc: asyncio.subprocess.Process) -> None:
    _terminate(proc)
    try:
        await asyncio.wait_for(proc.wait(), timeout=5)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()


async def run_shell(
    command: str,
    *,
    cwd: str | None = None,
    timeout: float = 30,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
) -> dict:
    """
    Run *command* through the system shell.

    Returns a dict with ``exit_code``, ``stdout``, ``stderr``,
    ``duration_ms`` and, when applicable, ``timed_out`` and ``truncated``.
    The child is terminated on timeout and when the awaiting task is
    cancelled.
    """
    t0 = time.monotonic()
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        stdin=asyncio.subprocess.DEVNULL,
        cwd=cwd,
        start_new_session=True,
    )
    try:
        stdout_raw, stderr_raw = await asyncio.wait_for(
            proc.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        await _reap(proc)
        duration_ms = round((time.monotonic() - t0) * 1000)
        return {
            "exit_code": -1,
            "stdout": "",
            "stderr": f"Command timed out after {timeout}s",
            "duration_ms": duration_ms,
            "timed_out": True,
        }
    except asyncio.CancelledError:
        _kill(proc)
        raise

    duration_ms = round((time.monotonic() - t0) * 1000)

    stdout = stdout_raw[:max_output_bytes].decode("utf-8", errors="replace")
    stderr = stderr_raw[:max_output_bytes].decode("utf-8", errors="replace")

    truncated = {}
    if len(stdout_raw) > max_output_bytes:
        truncated["stdout"] = True
    if len(stderr_raw) > max_output_bytes:
        truncated["stderr"] = True

    result: dict = {
        "exit_code": proc.returncode,
        "stdout": stdout,
        "stderr": stderr,
        "duration_ms": duration_ms,
    }
    if truncated:
        result["truncated"] = truncated
    return result
