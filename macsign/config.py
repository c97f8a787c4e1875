"""
Build configuration for macOS signing.

The configuration is read from a JSON file (``macsign.json`` by default) with
environment overrides for CI, the same way the build scripts read
``apple_credentials/config/app_config.json``. Per-channel options are typed
``MacOptions`` layers combined with an explicit field-by-field merge.
"""

import dataclasses
import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .errors import ConfigError
from .tools import DEFAULT_TOOL_TIMEOUT

DEFAULT_CONFIG_FILE = "macsign.json"
SIGNING_TYPES = ("development", "distribution")


class BuildVariant(Enum):
    DIRECT = "direct"
    STORE = "store"
    STORE_DEVELOPMENT = "store-development"

    @classmethod
    def from_target(cls, target: str) -> "BuildVariant":
        return {"mas": cls.STORE, "mas-dev": cls.STORE_DEVELOPMENT}.get(target, cls.DIRECT)

    @property
    def is_store(self) -> bool:
        return self is not BuildVariant.DIRECT

    @property
    def platform(self) -> str:
        """Platform name handed to the signer."""
        return "mas" if self.is_store else "darwin"


STORE_TARGETS = ("mas", "mas-dev")

# JSON key -> attribute names it controls
OPTION_KEYS = {
    "identity": ("identity", "identity_disabled"),
    "type": ("type",),
    "entitlements": ("entitlements",),
    "entitlementsInherit": ("entitlements_inherit",),
    "bundleVersion": ("bundle_version",),
}


@dataclass(frozen=True)
class MacOptions:
    """Signing options of one configuration layer (``mac``, ``mas`` or ``mas-dev``).

    ``fields_set`` holds the attributes the layer defines explicitly, so that an
    explicit ``"identity": null`` (signing disabled) can be told apart from an
    identity that was simply not configured.
    """
    identity: Optional[str] = None
    identity_disabled: bool = False
    type: Optional[str] = None
    entitlements: Optional[str] = None
    entitlements_inherit: Optional[str] = None
    bundle_version: Optional[str] = None
    fields_set: FrozenSet[str] = frozenset()

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]], section: str = "mac") -> "MacOptions":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ConfigError(f'"{section}" must be an object')

        values: Dict[str, Any] = {}
        fields_set = set()
        for key, attrs in OPTION_KEYS.items():
            if key not in raw:
                continue
            value = raw[key]
            if value is not None and not isinstance(value, str):
                raise ConfigError(f'"{section}.{key}" must be a string or null')
            fields_set.update(attrs)
            if key == "identity":
                values["identity"] = value
                values["identity_disabled"] = value is None
            else:
                values[attrs[0]] = value

        if values.get("type") not in (None,) + SIGNING_TYPES:
            raise ConfigError(f'"{section}.type" must be one of {", ".join(SIGNING_TYPES)}')
        return cls(fields_set=frozenset(fields_set), **values)

    def with_type(self, signing_type: str) -> "MacOptions":
        return dataclasses.replace(self, type=signing_type, fields_set=self.fields_set | {"type"})


def merge_options(base: MacOptions, override: MacOptions) -> MacOptions:
    """Overlay ``override`` on ``base``: every attribute the override sets wins."""
    values = {}
    for f in dataclasses.fields(MacOptions):
        if f.name == "fields_set":
            continue
        source = override if f.name in override.fields_set else base
        values[f.name] = getattr(source, f.name)
    return MacOptions(fields_set=base.fields_set | override.fields_set, **values)


def sanitize_file_name(name: str) -> str:
    return re.sub(r'[/\\?%*:|"<>]', "", name).strip()


@dataclass(frozen=True)
class BuildConfig:
    product_name: str
    version: str
    product_filename: str = ""
    build_resources: Path = Path("build")
    output: Path = Path("dist")
    force_code_signing: bool = False
    keychain: Optional[str] = None
    auto_discovery: bool = True
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    mac: MacOptions = field(default_factory=MacOptions)
    mas: MacOptions = field(default_factory=MacOptions)
    mas_dev: MacOptions = field(default_factory=MacOptions)

    def __post_init__(self):
        if not self.product_filename:
            object.__setattr__(self, "product_filename", sanitize_file_name(self.product_name))

    def options_for(self, variant: BuildVariant) -> MacOptions:
        """Effective options of a pass; store development always signs for development."""
        if variant is BuildVariant.DIRECT:
            return self.mac
        options = merge_options(self.mac, self.mas)
        if variant is BuildVariant.STORE_DEVELOPMENT:
            options = merge_options(options, self.mas_dev).with_type("development")
        return options


def env_flag(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "":
        return None
    return value.strip().lower() not in ("0", "false", "no", "off")


def config_from_dict(raw: Mapping[str, Any], base_dir: Path = Path("."),
                     env: Optional[Mapping[str, str]] = None) -> BuildConfig:
    """Build a BuildConfig from parsed JSON, applying environment overrides."""
    env = os.environ if env is None else env

    product_name = raw.get("productName")
    version = raw.get("version")
    if not product_name:
        raise ConfigError('"productName" is required')
    if not version:
        raise ConfigError('"version" is required')

    directories = raw.get("directories") or {}
    mac = MacOptions.from_dict(raw.get("mac"), "mac")
    if "identity" not in mac.fields_set and env.get("CSC_NAME"):
        mac = merge_options(mac, MacOptions.from_dict({"identity": env["CSC_NAME"]}))

    timeout = env.get("MACSIGN_TOOL_TIMEOUT") or raw.get("toolTimeout") or DEFAULT_TOOL_TIMEOUT
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid tool timeout: {timeout!r}")

    force_code_signing = raw.get("forceCodeSigning", False)
    if not isinstance(force_code_signing, bool):
        raise ConfigError('"forceCodeSigning" must be true or false')

    # "mas-dev" is named after the target; "masDev" is accepted as well
    if "mas-dev" in raw and "masDev" in raw:
        raise ConfigError('use either "mas-dev" or "masDev", not both')
    mas_dev_key = "masDev" if "masDev" in raw else "mas-dev"

    auto_discovery = env_flag(env.get("CSC_IDENTITY_AUTO_DISCOVERY"))

    return BuildConfig(
        product_name=str(product_name),
        version=str(version),
        product_filename=raw.get("productFilename") or "",
        build_resources=base_dir / directories.get("buildResources", "build"),
        output=base_dir / directories.get("output", "dist"),
        force_code_signing=force_code_signing,
        keychain=raw.get("keychain") or env.get("CSC_KEYCHAIN") or None,
        auto_discovery=True if auto_discovery is None else auto_discovery,
        tool_timeout=timeout,
        mac=mac,
        mas=MacOptions.from_dict(raw.get("mas"), "mas"),
        mas_dev=MacOptions.from_dict(raw.get(mas_dev_key), mas_dev_key),
    )


def load_config(path=None, env: Optional[Mapping[str, str]] = None) -> BuildConfig:
    """Load the JSON build configuration file."""
    config_path = Path(path or DEFAULT_CONFIG_FILE)
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration must be a JSON object: {config_path}")
    return config_from_dict(raw, config_path.parent, env)
