"""
Async runner for the macOS command line tools used during signing
(security, codesign, spctl, productbuild).
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .console import log_info
from .errors import ExternalToolFailure

# Identity listing is a quick keychain query; signing a large bundle with
# timestamps and flattening it can take much longer.
QUERY_TIMEOUT = 60.0
DEFAULT_TOOL_TIMEOUT = 30 * 60.0


@dataclass(frozen=True)
class ToolResult:
    cmd: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """Combined diagnostic output, as reported in failures."""
        return "\n".join(part.strip() for part in (self.stdout, self.stderr) if part.strip())


class ToolRunner:
    """Runs external tools as asyncio subprocesses with an explicit timeout."""

    def __init__(self, timeout: float = DEFAULT_TOOL_TIMEOUT, echo: bool = True):
        self.timeout = timeout
        self.echo = echo

    async def run(self, cmd: Sequence[str], timeout: Optional[float] = None,
                  check: bool = True) -> ToolResult:
        """Run ``cmd`` and collect its output.

        Raises ExternalToolFailure when the tool exits non-zero (if ``check``)
        or does not finish within the timeout; a timed-out process is killed.
        """
        cmd = [str(c) for c in cmd]
        if self.echo:
            log_info(f"Running: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            # shell convention: 127 not found, 126 found but not executable
            returncode = 127 if isinstance(e, FileNotFoundError) else 126
            raise ExternalToolFailure(cmd, returncode, str(e)) from e

        limit = self.timeout if timeout is None else timeout
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ExternalToolFailure(cmd, None, f"no result after {limit:g}s")

        result = ToolResult(
            cmd=cmd,
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise ExternalToolFailure(cmd, result.returncode, result.output)
        return result
