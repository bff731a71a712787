"""Async subprocess execution for version queries, installs and downloads."""

from __future__ import annotations

import asyncio
import os
import signal
import sys

_OUTPUT_LIMIT = 20000


async def run_command(
    cmd: list[str],
    env: dict[str, str] | None = None,
    timeout: float | None = 60.0,
    *,
    cwd: str | None = None,
    stream: bool = False,
) -> tuple[int, str, str]:
    """Run a subprocess, return (returncode, stdout, stderr).

    Uses asyncio.create_subprocess_exec -- never shell=True.
    Uses start_new_session=True so a timed-out child group can be killed.
    With ``stream`` the child's stdout and stderr are merged, echoed to the
    controlling terminal line by line and returned as stdout.
    ``timeout=None`` waits for the child indefinitely.
    """
    if env is not None:
        env = {**os.environ, **env}
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT if stream else asyncio.subprocess.PIPE,
        env=env,
        cwd=cwd,
        start_new_session=True,
    )
    try:
        if stream:
            stdout_bytes = await asyncio.wait_for(_tee(proc), timeout=timeout)
            stderr_bytes = b""
        else:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout
            )
    except TimeoutError:
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
        except (ProcessLookupError, OSError, AttributeError):
            proc.kill()
        await proc.wait()
        return (-1, "", f"Command timed out after {timeout}s")

    return (
        proc.returncode or 0,
        stdout_bytes.decode(errors="replace")[-_OUTPUT_LIMIT:],
        stderr_bytes.decode(errors="replace")[-_OUTPUT_LIMIT:],
    )


async def _tee(proc: asyncio.subprocess.Process) -> bytes:
    chunks: list[bytes] = []
    assert proc.stdout is not None
    while line := await proc.stdout.readline():
        chunks.append(line)
        sys.stdout.write(line.decode(errors="replace"))
        sys.stdout.flush()
    await proc.wait()
    return b"".join(chunks)
