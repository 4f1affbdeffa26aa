from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable


SpawnFn = Callable[[list[str]], Awaitable[asyncio.subprocess.Process]]


async def spawn_command(cmd: list[str]) -> asyncio.subprocess.Process:
    """Start ``cmd`` with stdin closed and both output streams piped.

    Raises ``OSError`` (typically ``FileNotFoundError``) when the binary cannot be started.
    """
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


def kill_process(process: asyncio.subprocess.Process) -> bool:
    if process.returncode is not None:
        return False
    try:
        process.kill()
    except ProcessLookupError:
        return False
    return True
