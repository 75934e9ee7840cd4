"""Utility functions for subprocess management, paths and atomic writes."""

import asyncio
import json
import os
import tempfile
from typing import Any, Dict, List, Mapping, Optional


async def run_subprocess_with_cancellation(
    cmd: List[str],
    stdin_data: Optional[bytes] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Run a subprocess with proper cancellation support.

    When the task is cancelled (e.g., by Ctrl+C or an expired search deadline),
    the subprocess will be terminated.

    Args:
        cmd: Command to execute as a list of strings
        stdin_data: Optional data to send to stdin
        env: Optional full environment for the child
        timeout: Optional deadline in seconds

    Returns:
        Dictionary with returncode, stdout (bytes), and stderr (str)

    Raises:
        asyncio.CancelledError: If the task is cancelled
        asyncio.TimeoutError: If the deadline expires
        FileNotFoundError: If the executable does not exist
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if stdin_data else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env) if env is not None else None,
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=stdin_data), timeout=timeout
        )
        return {
            "returncode": process.returncode,
            "stdout": stdout or b"",
            "stderr": stderr.decode(errors="replace") if stderr else "",
        }
    except (asyncio.CancelledError, asyncio.TimeoutError):
        await terminate_process(process)
        raise


async def terminate_process(process: asyncio.subprocess.Process) -> None:
    """Terminate a child process, killing it if it does not exit in time."""
    try:
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
    except (ProcessLookupError, OSError):
        # Process might have already finished
        pass


async def run_json_command(cmd: List[str], timeout: Optional[float] = None) -> Any:
    """Run a CLI that prints JSON and return the decoded document.

    Raises RuntimeError with the command's stderr on a non-zero exit.
    """
    result = await run_subprocess_with_cancellation(cmd, timeout=timeout)
    if result["returncode"] != 0:
        raise RuntimeError(
            f"{' '.join(cmd[:3])} failed: {result['stderr'].strip() or result['returncode']}"
        )
    return json.loads(result["stdout"] or b"null")


def expand_path(path: str) -> str:
    """Expand ``~`` and environment variables in a path."""
    return os.path.expandvars(os.path.expanduser(path))


def atomic_write(path: str, data: bytes, mode: int = 0o600) -> None:
    """Write ``data`` to ``path`` via a sibling temp file and ``os.replace``."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
