#!/usr/bin/env python3
"""
macsign - sign a macOS app bundle for direct and Mac App Store distribution
Usage: macsign --config macsign.json [--target mas] [--prepackaged <dir>] [options]
"""

import argparse
import asyncio
import dataclasses
import sys
from typing import List, Optional

from . import __version__
from .config import MacOptions, load_config, merge_options
from .console import log_error, log_info, log_step, log_success, log_warning
from .errors import ConfigError, InstallerIdentityNotFound, SigningError
from .flatten import Artifact, ProductbuildFlattener, productbuild_args
from .flow import BuildReport, PackagingFlowController
from .keychain import IdentityResolver, SecurityIdentitySource
from .orchestrator import SignState, SigningOrchestrator
from .sign import CodesignSigner, CommandSigner, SignOptions
from .tools import ToolRunner

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_SIGNING = 2
EXIT_INSTALLER = 4


class DryRunSigner:
    """Prints the signing invocation instead of running it."""

    async def sign(self, options: SignOptions) -> None:
        log_info(f"Would sign: {' '.join(options.to_args())}")


class DryRunFlattener:
    async def flatten(self, app_path, identity, keychain, out_file, display_name) -> Artifact:
        cmd = ["productbuild"] + productbuild_args(identity, keychain)
        cmd.extend(["--component", app_path, "/Applications", out_file])
        log_info(f"Would run: {' '.join(cmd)}")
        return Artifact(path=out_file, arch=None, display_name=display_name)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="macsign",
        description="Sign a macOS app bundle and build Mac App Store installer packages",
    )
    parser.add_argument("--config", help="Build configuration file (default: macsign.json)")
    parser.add_argument("--target", action="append", default=[],
                        help="Distribution target, repeatable (zip, dmg, mas, mas-dev, ...)")
    parser.add_argument("--prepackaged", help="Sign an existing app directory, skip bundling")
    parser.add_argument("--out", help="Output directory (default: directories.output)")
    parser.add_argument("--identity", help="Signing identity qualifier for direct distribution")
    parser.add_argument("--keychain", help="Keychain holding the signing identities")
    parser.add_argument("--force-sign", action="store_true", help="Fail when the app cannot be signed")
    parser.add_argument("--sign-command", help="External signing command receiving the sign arguments")
    parser.add_argument("--dry-run", action="store_true", help="Print tool invocations instead of running them")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def exit_code_for(report: BuildReport) -> int:
    code = EXIT_OK
    for p in report.passes:
        if not p.failed:
            continue
        if isinstance(p.error, ConfigError):
            code = max(code, EXIT_CONFIG)
        elif isinstance(p.error, InstallerIdentityNotFound) or p.signed:
            code = max(code, EXIT_INSTALLER)
        else:
            code = max(code, EXIT_SIGNING)
    return code


def print_summary(report: BuildReport) -> None:
    log_step("Signing Summary")
    for p in report.passes:
        if p.failed:
            log_error(f"{p.name}: failed ({p.error})")
        elif p.state is SignState.SKIPPED:
            log_warning(f"{p.name}: unsigned ({p.skip_reason.value})")
        else:
            log_success(f"{p.name}: {p.state.value} with {p.sign_options.identity}")
    for artifact in report.artifacts:
        log_success(f"  {artifact.display_name} -> {artifact.path}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        log_error(str(e))
        return EXIT_CONFIG

    if args.identity:
        config = dataclasses.replace(
            config, mac=merge_options(config.mac, MacOptions.from_dict({"identity": args.identity})))
    if args.keychain:
        config = dataclasses.replace(config, keychain=args.keychain)
    if args.force_sign:
        config = dataclasses.replace(config, force_code_signing=True)

    runner = ToolRunner(timeout=config.tool_timeout)
    if args.dry_run:
        signer, flattener = DryRunSigner(), DryRunFlattener()
    else:
        signer = CommandSigner(args.sign_command, runner) if args.sign_command else CodesignSigner(runner)
        flattener = ProductbuildFlattener(runner)

    resolver = IdentityResolver(SecurityIdentitySource(), auto_discovery=config.auto_discovery)
    orchestrator = SigningOrchestrator(config, resolver, signer, flattener)
    controller = PackagingFlowController(config, orchestrator, prepackaged=args.prepackaged, out_dir=args.out)

    log_step(f"Signing {config.product_name} {config.version}")
    try:
        report = asyncio.run(controller.run(args.target))
    except SigningError as e:
        log_error(str(e))
        return EXIT_SIGNING

    print_summary(report)
    return exit_code_for(report)


if __name__ == "__main__":
    sys.exit(main())
