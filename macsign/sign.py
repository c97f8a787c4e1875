"""
Application signing.

``SignOptions`` is the complete, immutable description of one signing
request. Signers turn it into tool invocations: ``CodesignSigner`` drives
``codesign``/``spctl`` directly, ``CommandSigner`` hands the request to an
external signing command in its argument form (see ``SignOptions.to_args``).
"""

import argparse
import asyncio
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .config import SIGNING_TYPES
from .console import log_info, log_success
from .errors import IdentityNotFound
from .tools import QUERY_TIMEOUT, ToolRunner

PLATFORMS = ("darwin", "mas")
MACHO_MAGIC = {
    b"\xfe\xed\xfa\xce", b"\xce\xfa\xed\xfe",
    b"\xfe\xed\xfa\xcf", b"\xcf\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe", b"\xbe\xba\xfe\xca",
}
NESTED_BUNDLE_SUFFIXES = (".framework", ".app", ".xpc", ".appex", ".bundle")
LIBRARY_SUFFIXES = (".dylib", ".so", ".node")


@dataclass(frozen=True)
class SignOptions:
    identity: str
    type: str
    platform: str
    version: str
    app: str
    keychain: Optional[str] = None
    gatekeeper_assess: bool = False
    entitlements: Optional[str] = None
    entitlements_inherit: Optional[str] = None
    skip_identity_validation: bool = True

    def to_args(self) -> List[str]:
        """Argument form understood by signing commands (``electron-osx-sign`` style)."""
        args = [
            f"--identity={self.identity}",
            f"--type={self.type}",
            f"--platform={self.platform}",
            f"--version={self.version}",
        ]
        if self.keychain:
            args.append(f"--keychain={self.keychain}")
        if self.entitlements:
            args.append(f"--entitlements={self.entitlements}")
        if self.entitlements_inherit:
            args.append(f"--entitlements-inherit={self.entitlements_inherit}")
        args.append("--gatekeeper-assess" if self.gatekeeper_assess else "--no-gatekeeper-assess")
        args.append("--no-identity-validation" if self.skip_identity_validation else "--identity-validation")
        # "--" keeps an app path starting with "-" from being read as an option
        args.extend(["--", self.app])
        return args

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "SignOptions":
        ns = _sign_args_parser().parse_args(list(args))
        return cls(
            identity=ns.identity,
            type=ns.type,
            platform=ns.platform,
            version=ns.version,
            app=ns.app,
            keychain=ns.keychain,
            gatekeeper_assess=ns.gatekeeper_assess,
            entitlements=ns.entitlements,
            entitlements_inherit=ns.entitlements_inherit,
            skip_identity_validation=not ns.identity_validation,
        )


def _sign_args_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sign", add_help=False, allow_abbrev=False)
    parser.add_argument("app")
    parser.add_argument("--identity", required=True)
    parser.add_argument("--type", choices=SIGNING_TYPES, required=True)
    parser.add_argument("--platform", choices=PLATFORMS, required=True)
    parser.add_argument("--version", required=True)
    parser.add_argument("--keychain")
    parser.add_argument("--entitlements")
    parser.add_argument("--entitlements-inherit", dest="entitlements_inherit")
    parser.add_argument("--gatekeeper-assess", action=argparse.BooleanOptionalAction, default=False)
    parser.add_argument("--identity-validation", action=argparse.BooleanOptionalAction, default=True)
    return parser


class Signer(Protocol):
    async def sign(self, options: SignOptions) -> None:
        ...


def is_macho(path: Path) -> bool:
    """Check the file header instead of trusting the executable bit."""
    try:
        with open(path, "rb") as f:
            return f.read(4) in MACHO_MAGIC
    except OSError:
        return False


def collect_nested_code(app_path) -> List[Path]:
    """Find nested bundles, libraries and Mach-O executables inside an app bundle.

    Deepest paths come first: nested code has to be signed before the bundle
    that contains it.
    """
    app_path = Path(app_path)
    main_executables = app_path / "Contents" / "MacOS"
    found = []
    for root, dirs, files in os.walk(app_path):
        root_path = Path(root)
        for d in dirs:
            if d.endswith(NESTED_BUNDLE_SUFFIXES):
                found.append(root_path / d)
        for name in files:
            file_path = root_path / name
            if file_path.is_symlink() or root_path == main_executables:
                continue
            if name.endswith(LIBRARY_SUFFIXES):
                found.append(file_path)
            elif os.access(file_path, os.X_OK) and is_macho(file_path):
                found.append(file_path)
    return sorted(found, key=lambda p: (-len(p.parts), str(p)))


class CodesignSigner:
    """Signs an app bundle with codesign, nested code first, then the bundle."""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.runner = runner or ToolRunner()

    def codesign_args(self, options: SignOptions, entitlements: Optional[str]) -> List[str]:
        cmd = ["codesign", "--sign", options.identity, "--force", "--verbose"]
        if options.keychain:
            cmd.extend(["--keychain", options.keychain])
        if options.platform == "darwin":
            # hardened runtime is required for notarization
            cmd.extend(["--options", "runtime"])
        if options.type == "distribution":
            cmd.append("--timestamp")
        else:
            cmd.append("--timestamp=none")
        if entitlements:
            cmd.extend(["--entitlements", entitlements])
        return cmd

    async def validate_identity(self, options: SignOptions) -> None:
        cmd = ["security", "find-identity", "-v", "-p", "codesigning"]
        if options.keychain:
            cmd.append(options.keychain)
        result = await self.runner.run(cmd, timeout=QUERY_TIMEOUT)
        if options.identity not in result.stdout:
            raise IdentityNotFound(f"Identity {options.identity!r} is not a valid code signing identity")

    async def sign(self, options: SignOptions) -> None:
        if not options.skip_identity_validation:
            await self.validate_identity(options)

        nested = await asyncio.to_thread(collect_nested_code, options.app)
        log_info(f"Found {len(nested)} nested items to sign")
        for path in nested:
            await self.runner.run(self.codesign_args(options, options.entitlements_inherit) + [str(path)])

        await self.runner.run(self.codesign_args(options, options.entitlements) + [options.app])
        await self.runner.run(["codesign", "--verify", "--deep", "--strict", "--verbose=2", options.app])

        # Gatekeeper rejects App Store identities outside the store
        if options.gatekeeper_assess and options.platform == "darwin":
            await self.runner.run([
                "spctl", "--assess", "--type", "execute", "--verbose",
                "--ignore-cache", "--no-cache", options.app,
            ])
        log_success(f"Signed app bundle: {Path(options.app).name}")


class CommandSigner:
    """Delegates signing to an external command that accepts ``SignOptions.to_args()``."""

    def __init__(self, command: str, runner: Optional[ToolRunner] = None):
        self.command = shlex.split(command)
        self.runner = runner or ToolRunner()

    async def sign(self, options: SignOptions) -> None:
        await self.runner.run(self.command + options.to_args())
