"""
Code signing identity discovery.

Identities are listed from a keychain with ``security find-identity -v`` and
matched against a certificate type and an optional qualifier. Lookups return
an explicit result (Found / NotFound / Ambiguous) instead of ``None`` so that
"no identity" is never confused with "more than one identity".
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Tuple, Union

from .tools import QUERY_TIMEOUT, ToolRunner

DEVELOPER_ID_APPLICATION = "Developer ID Application"
MAC_DEVELOPER = "Mac Developer"
MAS_APPLICATION = "3rd Party Mac Developer Application"
MAS_INSTALLER = "3rd Party Mac Developer Installer"

# Identities issued by Apple. Only these are eligible for gatekeeper assessment.
APPLE_CERTIFICATE_PREFIXES = (
    "Developer ID Application:",
    "3rd Party Mac Developer Application:",
    "Developer ID Installer:",
    "3rd Party Mac Developer Installer:",
)

IDENTITY_LINE = re.compile(r'^\s*\d+\)\s+([0-9A-Fa-f]{40})\s+"(.*)"')
TEAM_ID = re.compile(r"\(([A-Z0-9]+)\)\s*$")


@dataclass(frozen=True, order=True)
class Identity:
    """A certificate/key pair usable by codesign, as listed in one keychain."""
    name: str
    sha1: str
    keychain: Optional[str] = None

    @property
    def team_id(self) -> Optional[str]:
        match = TEAM_ID.search(self.name)
        return match.group(1) if match else None

    @property
    def short_name(self) -> str:
        """Name without the certificate type prefix, e.g. ``Jane Doe (ABCDE12345)``."""
        return self.name.split(": ", 1)[1] if ": " in self.name else self.name

    def matches(self, qualifier: str) -> bool:
        return qualifier in (self.name, self.short_name, self.team_id, self.sha1.upper(), self.sha1.lower())


@dataclass(frozen=True)
class Found:
    identity: Identity

    @property
    def name(self) -> str:
        return self.identity.name


@dataclass(frozen=True)
class NotFound:
    cert_type: str
    qualifier: Optional[str] = None
    discovery_disabled: bool = False


@dataclass(frozen=True)
class Ambiguous:
    name: str
    candidates: Tuple[Identity, ...] = field(default_factory=tuple)


IdentityLookup = Union[Found, NotFound, Ambiguous]


def is_apple_identity(name: str) -> bool:
    """True when the identity was issued by Apple; decides gatekeeper assessment."""
    return any(name.startswith(prefix) for prefix in APPLE_CERTIFICATE_PREFIXES)


def parse_identities(output: str, keychain: Optional[str] = None) -> List[Identity]:
    """Parse ``security find-identity`` output into distinct identities.

    The summary line ("N valid identities found") is ignored, and an identity
    listed more than once (same hash, same name) is kept once.
    """
    seen = set()
    identities = []
    for line in output.splitlines():
        match = IDENTITY_LINE.match(line)
        if not match:
            continue
        sha1, name = match.group(1).upper(), match.group(2)
        if (sha1, name) in seen:
            continue
        seen.add((sha1, name))
        identities.append(Identity(name=name, sha1=sha1, keychain=keychain))
    return identities


def select_identity(identities: Iterable[Identity], cert_type: str,
                    qualifier: Optional[str] = None) -> IdentityLookup:
    """Pick the identity of ``cert_type`` matching ``qualifier``.

    Candidates are ordered by name and the first name wins. A winning name
    carried by more than one certificate is reported as Ambiguous.
    """
    identities = list(identities)
    candidates = [
        i for i in identities
        if i.name.startswith(f"{cert_type}:") and (qualifier is None or i.matches(qualifier))
    ]

    if not candidates and cert_type == DEVELOPER_ID_APPLICATION:
        # custom non-Apple code signing certificate
        candidates = [
            i for i in identities
            if not is_apple_identity(i.name)
            and not i.name.startswith(f"{MAC_DEVELOPER}:")
            and (qualifier is None or i.matches(qualifier))
        ]

    if not candidates:
        return NotFound(cert_type, qualifier)

    first = min(i.name for i in candidates)
    same_name = sorted(i for i in candidates if i.name == first)
    if len({i.sha1 for i in same_name}) > 1:
        return Ambiguous(first, tuple(same_name))
    return Found(same_name[0])


class IdentitySource(Protocol):
    async def list_identities(self, keychain: Optional[str]) -> List[Identity]:
        ...


class SecurityIdentitySource:
    """Lists identities with the ``security`` tool."""

    def __init__(self, runner: Optional[ToolRunner] = None):
        self.runner = runner or ToolRunner(echo=False)

    async def list_identities(self, keychain: Optional[str]) -> List[Identity]:
        cmd = ["security", "find-identity", "-v"]
        if keychain:
            cmd.append(keychain)
        result = await self.runner.run(cmd, timeout=QUERY_TIMEOUT)
        return parse_identities(result.stdout, keychain)


class IdentityResolver:
    """Resolves signing identities within one credential context at a time."""

    def __init__(self, source: Optional[IdentitySource] = None, auto_discovery: bool = True):
        self.source = source or SecurityIdentitySource()
        self.auto_discovery = auto_discovery

    async def resolve(self, cert_type: str, qualifier: Optional[str],
                      keychain: Optional[str]) -> IdentityLookup:
        """Find an identity of ``cert_type`` in ``keychain`` (default search list when None)."""
        if qualifier is None and not self.auto_discovery:
            return NotFound(cert_type, qualifier, discovery_disabled=True)

        identities = await self.source.list_identities(keychain)
        own = [i for i in identities if i.keychain == keychain]
        return select_identity(own, cert_type, qualifier)
