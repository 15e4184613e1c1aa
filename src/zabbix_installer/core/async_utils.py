"""
Async utility functions for subprocess and file operations.

Every shell-out made by the installer goes through run_command_async so that
tests can replace a single callable, and so that a missing binary is reported
as a failed command instead of an exception.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

import aiofiles

# Exit status conventionally used by shells for "command not found"
COMMAND_NOT_FOUND = 127

# Exit status used by coreutils timeout(1) for a command that ran too long
COMMAND_TIMED_OUT = 124


@dataclass
class AsyncProcessResult:
    """Result from async subprocess execution, mimics subprocess.CompletedProcess."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.returncode == 0

    def output(self, limit: int = 500) -> str:
        """Combined, truncated output for log messages."""
        text = (self.stderr or self.stdout or "").strip()
        return text[:limit]


CommandRunner = Callable[..., Awaitable[AsyncProcessResult]]


async def run_command_async(
    cmd: List[str],
    timeout: Optional[float] = 300.0,
    env: Optional[Dict[str, str]] = None,
) -> AsyncProcessResult:
    """
    Run a command without blocking the event loop.

    Args:
        cmd: Command and arguments
        timeout: Timeout in seconds, or None to wait indefinitely
        env: Extra environment variables merged over os.environ

    Returns:
        AsyncProcessResult with returncode, stdout, stderr. A missing binary
        gives COMMAND_NOT_FOUND; a command killed after the timeout gives
        COMMAND_TIMED_OUT.
    """
    process_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(  # nosec B603
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=process_env,
        )
    except FileNotFoundError:
        return AsyncProcessResult(
            returncode=COMMAND_NOT_FOUND,
            stdout="",
            stderr=f"{cmd[0]}: command not found",
        )

    try:
        if timeout is not None:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        else:
            stdout_bytes, stderr_bytes = await process.communicate()
    except asyncio.TimeoutError:
        try:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass
        return AsyncProcessResult(
            returncode=COMMAND_TIMED_OUT,
            stdout="",
            stderr=f"{cmd[0]}: timed out after {timeout:g} s",
        )

    return AsyncProcessResult(
        returncode=process.returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
        stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
    )


async def read_file_async(filepath: str, encoding: str = "utf-8") -> str:
    """Read a whole text file without blocking the event loop."""
    async with aiofiles.open(filepath, mode="r", encoding=encoding) as file_handle:
        return await file_handle.read()


async def write_file_async(
    filepath: str, content: str, encoding: str = "utf-8", mode: str = "w"
) -> None:
    """
    Write to a file without blocking the event loop.

    Args:
        filepath: Path to file to write
        content: Content to write
        encoding: File encoding (default utf-8)
        mode: File mode ('w' for write, 'a' for append)
    """
    async with aiofiles.open(filepath, mode=mode, encoding=encoding) as file_handle:
        await file_handle.write(content)
