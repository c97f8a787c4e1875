"""
Flattening of a signed Mac App Store bundle into a single installer package.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from .console import log_success
from .tools import ToolRunner

INSTALL_LOCATION = "/Applications"


@dataclass(frozen=True)
class Artifact:
    """A file produced by a signing pass."""
    path: str
    arch: Optional[str]
    display_name: str


class Flattener(Protocol):
    async def flatten(self, app_path: str, identity: str, keychain: Optional[str],
                      out_file: str, display_name: str) -> Artifact:
        ...


def productbuild_args(identity: str, keychain: Optional[str]) -> List[str]:
    """Signing arguments shared by every productbuild invocation."""
    args = ["--sign", identity]
    if keychain:
        args.extend(["--keychain", keychain])
    return args


class ProductbuildFlattener:
    """Builds ``<name>-<version>.pkg`` from the app bundle with productbuild."""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.runner = runner or ToolRunner()

    async def flatten(self, app_path: str, identity: str, keychain: Optional[str],
                      out_file: str, display_name: str) -> Artifact:
        cmd = ["productbuild"] + productbuild_args(identity, keychain)
        cmd.extend(["--component", str(app_path), INSTALL_LOCATION, str(out_file)])
        await self.runner.run(cmd)
        log_success(f"Created installer package: {Path(out_file).name}")
        return Artifact(path=str(out_file), arch=None, display_name=display_name)
