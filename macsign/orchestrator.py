"""
Signing decisions for one packaging pass.

A pass walks START -> PLATFORM_CHECK -> POLICY_CHECK -> IDENTITY_SEARCH and
ends SKIPPED (bundle ships unsigned), FATAL (pass aborted), SIGNED, or, for
Mac App Store passes, FLATTENED once the installer package exists. Every
state entered is kept on the PassReport so the decision can be audited.
"""

import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .config import BuildConfig, BuildVariant, MacOptions
from .console import log_info, log_step, log_warning
from .entitlements import ResourceListing, check_deprecated, read_resource_listing, resolve_entitlements
from .errors import (
    AmbiguousOrMisconfiguredQualifier,
    IdentityDisabledButForced,
    IdentityNotFound,
    InstallerIdentityNotFound,
    SigningError,
)
from .flatten import Artifact, Flattener
from .keychain import (
    DEVELOPER_ID_APPLICATION,
    MAC_DEVELOPER,
    MAS_APPLICATION,
    MAS_INSTALLER,
    Ambiguous,
    Found,
    IdentityLookup,
    IdentityResolver,
    NotFound,
    is_apple_identity,
)
from .sign import SignOptions, Signer


class SignState(Enum):
    START = "start"
    PLATFORM_CHECK = "platform-check"
    POLICY_CHECK = "policy-check"
    IDENTITY_SEARCH = "identity-search"
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    FATAL = "fatal"
    SIGNED = "signed"
    FLATTENED = "flattened"


class SkipReason(Enum):
    PLATFORM_UNSUPPORTED = "platform-unsupported"
    IDENTITY_DISABLED = "identity-disabled"
    IDENTITY_NOT_FOUND = "identity-not-found"


@dataclass
class PassReport:
    """Audit record of one signing pass."""
    name: str
    variant: BuildVariant
    app_path: Optional[str] = None
    trail: List[SignState] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skip_reason: Optional[SkipReason] = None
    sign_options: Optional[SignOptions] = None
    signed: bool = False
    artifacts: List[Artifact] = field(default_factory=list)
    error: Optional[SigningError] = None

    @property
    def state(self) -> SignState:
        return self.trail[-1] if self.trail else SignState.START

    @property
    def failed(self) -> bool:
        return self.state is SignState.FATAL

    def enter(self, state: SignState) -> None:
        self.trail.append(state)

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        log_warning(message)

    def skip(self, reason: SkipReason, message: str) -> None:
        self.warn(message)
        self.skip_reason = reason
        self.enter(SignState.SKIPPED)


def gatekeeper_assess(identity_name: str) -> bool:
    return is_apple_identity(identity_name)


def not_signed_message(lookup: NotFound, is_store: bool) -> str:
    if lookup.discovery_disabled:
        return "App is not signed: env CSC_IDENTITY_AUTO_DISCOVERY is set to false"
    if is_store:
        wanted = f'"{lookup.cert_type}" identity'
    else:
        wanted = f'"{DEVELOPER_ID_APPLICATION}" identity or custom non-Apple code signing certificate'
    return f"App is not signed: cannot find valid {wanted}"


def check_unambiguous(lookup: IdentityLookup) -> None:
    if isinstance(lookup, Ambiguous):
        hashes = ", ".join(i.sha1 for i in lookup.candidates)
        raise AmbiguousOrMisconfiguredQualifier(
            lookup.name,
            f'Identity "{lookup.name}" is carried by {len(lookup.candidates)} certificates ({hashes}), '
            f"remove the duplicates or specify the certificate hash",
        )


class SigningOrchestrator:
    """Decides whether and how to sign one pass, then signs (and flattens MAS builds)."""

    def __init__(self, config: BuildConfig, resolver: IdentityResolver, signer: Signer,
                 flattener: Flattener, host_platform: Optional[str] = None,
                 on_artifact: Optional[Callable[[Artifact], None]] = None):
        self.config = config
        self.resolver = resolver
        self.signer = signer
        self.flattener = flattener
        self.host_platform = host_platform
        self.on_artifact = on_artifact

    def app_path(self, app_out_dir) -> Path:
        return Path(app_out_dir) / f"{self.config.product_filename}.app"

    async def sign(self, report: PassReport, app_out_dir, options: MacOptions) -> PassReport:
        """Run the decision state machine for one pass.

        Raises SigningError (after recording FATAL on the report) when the pass
        has to be aborted.
        """
        report.app_path = str(self.app_path(app_out_dir))
        try:
            await self._sign(report, Path(app_out_dir), options)
        except SigningError as e:
            report.error = e
            report.enter(SignState.FATAL)
            raise
        return report

    async def _sign(self, report: PassReport, app_out_dir: Path, options: MacOptions) -> None:
        report.enter(SignState.START)
        listing = await read_resource_listing(self.config.build_resources)
        check_deprecated(listing)

        report.enter(SignState.PLATFORM_CHECK)
        if (self.host_platform or sys.platform) != "darwin":
            report.skip(SkipReason.PLATFORM_UNSUPPORTED,
                        "macOS application code signing is supported only on macOS, skipping.")
            return

        report.enter(SignState.POLICY_CHECK)
        is_store = report.variant.is_store
        if not is_store and options.identity_disabled:
            if self.config.force_code_signing:
                raise IdentityDisabledButForced()
            report.skip(SkipReason.IDENTITY_DISABLED,
                        "identity explicitly is set to null, skipping macOS application code signing.")
            return

        report.enter(SignState.IDENTITY_SEARCH)
        qualifier = (options.identity or self.config.mac.identity) if is_store else options.identity
        lookup = await self.find_app_identity(report, options, qualifier)
        if not isinstance(lookup, Found):
            message = not_signed_message(lookup, is_store)
            if is_store or self.config.force_code_signing:
                raise IdentityNotFound(message)
            report.skip(SkipReason.IDENTITY_NOT_FOUND, f"{message}, skipping code signing")
            return

        report.enter(SignState.RESOLVED)
        sign_options = self.sign_options(report, app_out_dir, options, lookup, listing)
        report.sign_options = sign_options

        log_step(f"Signing app (identity: {lookup.name})")
        await self.signer.sign(sign_options)
        report.signed = True
        report.enter(SignState.SIGNED)

        if is_store:
            await self.flatten(report, app_out_dir, qualifier)

    async def find_app_identity(self, report: PassReport, options: MacOptions,
                                qualifier: Optional[str]) -> IdentityLookup:
        is_store = report.variant.is_store
        keychain = self.config.keychain
        explicit_type = options.type
        is_development = (explicit_type or "distribution") == "development"

        if report.variant is BuildVariant.STORE:
            cert_type = MAS_APPLICATION
        elif is_development:
            cert_type = MAC_DEVELOPER
        else:
            cert_type = DEVELOPER_ID_APPLICATION

        lookup = await self.resolver.resolve(cert_type, qualifier, keychain)
        check_unambiguous(lookup)
        if isinstance(lookup, Found) or is_store or is_development or explicit_type == "distribution":
            return lookup

        lookup = await self.resolver.resolve(MAC_DEVELOPER, qualifier, keychain)
        check_unambiguous(lookup)
        if isinstance(lookup, Found):
            report.warn("Mac Developer is used to sign app - it is only for development and testing, "
                        "not for production")
        elif qualifier is not None:
            raise AmbiguousOrMisconfiguredQualifier(
                qualifier,
                f'Identity name "{qualifier}" is specified, but no valid identity with this name in the keychain',
            )
        return lookup

    def sign_options(self, report: PassReport, app_out_dir: Path, options: MacOptions,
                     found: Found, listing: ResourceListing) -> SignOptions:
        entitlements = resolve_entitlements(report.variant, options.entitlements,
                                            options.entitlements_inherit, listing)
        return SignOptions(
            identity=found.name,
            type=options.type or "distribution",
            platform=report.variant.platform,
            version=options.bundle_version or self.config.version,
            app=str(self.app_path(app_out_dir)),
            keychain=self.config.keychain,
            gatekeeper_assess=gatekeeper_assess(found.name),
            entitlements=entitlements.entitlements,
            entitlements_inherit=entitlements.entitlements_inherit,
        )

    async def flatten(self, report: PassReport, app_out_dir: Path, qualifier: Optional[str]) -> None:
        keychain = self.config.keychain
        lookup = await self.resolver.resolve(MAS_INSTALLER, qualifier, keychain)
        check_unambiguous(lookup)
        if not isinstance(lookup, Found):
            raise InstallerIdentityNotFound(MAS_INSTALLER)

        version = self.config.version
        out_file = app_out_dir / f"{self.config.product_filename}-{version}.pkg"
        log_info(f"Flattening {report.app_path} (installer identity: {lookup.name})")
        artifact = await self.flattener.flatten(
            report.app_path, lookup.name, keychain, str(out_file),
            f"{self.config.product_name}-{version}.pkg",
        )
        report.artifacts.append(artifact)
        report.enter(SignState.FLATTENED)
        if self.on_artifact is not None:
            self.on_artifact(artifact)
