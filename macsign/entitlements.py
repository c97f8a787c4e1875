"""
Entitlements selection for macOS builds.

Entitlements are looked up by convention in the build resources directory
(``entitlements.mac.plist`` for direct distribution, ``entitlements.mas.plist``
for the Mac App Store) unless the build options name a file explicitly.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional

from .config import BuildVariant
from .errors import DeprecatedResourceName

DEPRECATED_NAMES = {
    "entitlements.osx.plist": "entitlements.mac.plist",
    "entitlements.osx.inherit.plist": "entitlements.mac.inherit.plist",
}


@dataclass(frozen=True)
class ResourceListing:
    """File names found in the build resources directory."""
    directory: Path
    names: FrozenSet[str] = frozenset()

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def path(self, name: str) -> str:
        return str(self.directory / name)


@dataclass(frozen=True)
class Entitlements:
    entitlements: Optional[str] = None
    entitlements_inherit: Optional[str] = None


def list_resources(directory) -> ResourceListing:
    directory = Path(directory)
    if not directory.is_dir():
        return ResourceListing(directory)
    return ResourceListing(directory, frozenset(os.listdir(directory)))


async def read_resource_listing(directory) -> ResourceListing:
    """Read the resources directory once; a missing directory lists nothing."""
    return await asyncio.to_thread(list_resources, directory)


def check_deprecated(listing: ResourceListing) -> None:
    for name, replacement in DEPRECATED_NAMES.items():
        if name in listing:
            raise DeprecatedResourceName(name, replacement)


def entitlements_suffix(variant: BuildVariant) -> str:
    return "mas" if variant.is_store else "mac"


def resolve_entitlements(variant: BuildVariant, explicit: Optional[str], explicit_inherit: Optional[str],
                         listing: ResourceListing) -> Entitlements:
    """Select the entitlements files to sign with.

    Explicit paths are used as given. Otherwise the conventional file is used
    when present in the resources directory. Having neither is not an error.
    """
    check_deprecated(listing)

    suffix = entitlements_suffix(variant)
    entitlements = explicit
    if entitlements is None:
        name = f"entitlements.{suffix}.plist"
        if name in listing:
            entitlements = listing.path(name)

    inherit = explicit_inherit
    if inherit is None:
        name = f"entitlements.{suffix}.inherit.plist"
        if name in listing:
            inherit = listing.path(name)

    return Entitlements(entitlements, inherit)
